import os
import sys
from datetime import date, datetime

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from bill_models import TrackedFile
from bill_tracker import BillTracker
from config_loader import DEFAULTS

SUBMITTED = os.path.join("2025-26", "JUNE 2025 BILLS SUBMITTED IN JULY 2025")


def _defaults():
    return {k: dict(v) for k, v in DEFAULTS.items()}


@pytest.fixture
def tracker(tmp_path):
    june = tmp_path / "Bills" / "June"
    june.mkdir(parents=True)
    (june / "invoice.pdf").write_bytes(b"%PDF-invoice")
    gst = tmp_path / "GST"
    gst.mkdir()

    t = BillTracker(str(tmp_path / "data"), _defaults())
    t.select_root_folder(str(tmp_path / "Bills"))
    t.set_selected_subfolders([str(june)])
    t.set_gst_submitted_root(str(gst))
    t.refresh()
    # pin the file's dates so the bill month is deterministic
    path = str(june / "invoice.pdf")
    t.engine.last_files = [TrackedFile(path, "invoice.pdf", ".pdf", 12, datetime(2025, 6, 10), datetime(2025, 6, 10), "June", str(june))]
    t.bill = path
    t.gst = str(gst)
    return t


def test_configuration_persists(tracker, tmp_path):
    again = BillTracker(str(tmp_path / "data"), _defaults())
    assert again.config.root_path == str(tmp_path / "Bills")
    assert again.gst_root == tracker.gst


def test_select_root_rejects_missing_folder(tmp_path):
    t = BillTracker(str(tmp_path / "data"), _defaults())
    with pytest.raises(ValueError):
        t.select_root_folder(str(tmp_path / "nope"))
    with pytest.raises(RuntimeError):
        t.require_config()


def test_mark_sent_copies_into_submission_folder(tracker):
    record, errors = tracker.mark_sent(tracker.bill, "2025-07")
    expected = os.path.join(tracker.gst, SUBMITTED, "invoice.pdf")

    assert errors == []
    assert record.bill_month == "2025-06"
    assert record.mirrored_path == expected
    assert os.path.exists(expected)
    assert tracker.store.get(tracker.bill) == record

    result = tracker.refresh()
    assert result.changed == 0
    assert tracker.status_of(tracker.bill) == "sent"


def test_undo_mark_sent_removes_copy_and_redo_restores_it(tracker):
    record, _ = tracker.mark_sent(tracker.bill, "2025-07")
    tracker.undo()
    assert tracker.store.get(tracker.bill) is None
    assert not os.path.exists(record.mirrored_path)
    assert tracker.refresh().changed == 0
    assert tracker.status_of(tracker.bill) == "pending"

    tracker.redo()
    assert os.path.exists(record.mirrored_path)
    assert tracker.status_of(tracker.bill) == "sent"


def test_mark_pending_survives_reconciliation(tracker):
    record, _ = tracker.mark_sent(tracker.bill, "2025-07")
    previous, errors = tracker.mark_pending(tracker.bill)

    assert previous == record
    assert errors == []
    assert not os.path.exists(record.mirrored_path)
    tracker.refresh()
    assert tracker.status_of(tracker.bill) == "pending"
    assert tracker.mark_pending(tracker.bill) == (None, [])


def test_update_sent_month_moves_copy(tracker):
    first, _ = tracker.mark_sent(tracker.bill, "2025-07")
    moved, _ = tracker.update_sent_month(tracker.bill, "2025-08")

    assert moved.bill_month == "2025-06"
    assert "SUBMITTED IN AUGUST 2025" in moved.mirrored_path
    assert os.path.exists(moved.mirrored_path)
    assert not os.path.exists(first.mirrored_path)


def test_mark_sent_keeps_user_bill_month(tracker):
    tracker.update_bill_month(tracker.bill, "2025-05")
    record, _ = tracker.mark_sent(tracker.bill, "2025-07")
    assert record.bill_month == "2025-05"
    assert "MAY 2025 BILLS SUBMITTED IN JULY 2025" in record.mirrored_path


def test_toggle_ignore_and_undo(tracker):
    assert tracker.toggle_ignored_file(tracker.bill) is True
    assert tracker.refresh().files == []
    tracker.undo()
    assert tracker.bill not in tracker.config.ignored_files
    assert [f.path for f in tracker.refresh().files] == [tracker.bill]


def test_history_persists_between_runs(tracker, tmp_path):
    tracker.mark_sent(tracker.bill, "2025-07")
    tracker.save_history()

    again = BillTracker(str(tmp_path / "data"), _defaults())
    again.load_history()
    assert again.action_log.can_undo
    again.undo()
    assert again.store.get(tracker.bill) is None


def test_settings_validation(tracker):
    tracker.update_settings(sync_interval=15, default_sent_month="previous")
    assert tracker.config.settings.sync_interval == 15
    with pytest.raises(ValueError):
        tracker.update_settings(colour="red")
    with pytest.raises(ValueError):
        tracker.update_settings(sync_interval=0)


def test_tags_are_deduplicated(tracker):
    tracker.add_tag(tracker.bill, "electricity")
    assert tracker.add_tag(tracker.bill, " electricity ") == ["electricity"]
    assert tracker.add_tag(tracker.bill, "q1") == ["electricity", "q1"]
    assert tracker.remove_tag(tracker.bill, "electricity") == ["q1"]
    tracker.remove_tag(tracker.bill, "q1")
    assert tracker.bill not in tracker.config.tags


def test_due_reminders(tracker):
    soon = tracker.add_reminder(tracker.bill, "2025-07-12", "pay electricity")
    tracker.add_reminder(tracker.bill, "2025-08-30")
    with pytest.raises(ValueError):
        tracker.add_reminder(tracker.bill, "12/07/2025")

    due = tracker.due_reminders(today=date(2025, 7, 10), mark_notified=True)
    assert [r.id for r in due] == [soon.id]
    assert tracker.due_reminders(today=date(2025, 7, 10)) == []
    assert tracker.remove_reminder(soon.id)
    assert not tracker.remove_reminder("missing")


def test_move_files_rekeys_records_and_tags(tracker, tmp_path):
    tracker.mark_sent(tracker.bill, "2025-07")
    tracker.add_tag(tracker.bill, "power")
    moved, errors = tracker.move_files([tracker.bill], str(tmp_path / "Bills" / "Archive"))

    new_path = moved[tracker.bill]
    assert errors == []
    assert tracker.store.get(tracker.bill) is None
    assert tracker.store.get(new_path).sent_month == "2025-07"
    assert tracker.config.tags == {new_path: ["power"]}


def test_delete_files_drops_records(tracker):
    tracker.mark_sent(tracker.bill, "2025-07")
    deleted, errors = tracker.delete_files([tracker.bill, tracker.bill + ".missing"])
    assert deleted == [tracker.bill]
    assert len(errors) == 1
    assert len(tracker.store) == 0


def test_summary_and_orphans(tracker):
    tracker.mark_sent(tracker.bill, "2025-07")
    summary = tracker.summary(today=date(2025, 7, 20))
    assert summary["total"] == 1
    assert summary["sent"] == 1
    assert summary["percentage"] == 100
    assert tracker.find_orphans() == []
