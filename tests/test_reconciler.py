import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from bill_models import Configuration, TrackingRecord
from reconciler import ReconciliationEngine
from tracker_errors import MatchError
from tracking_store import TrackingStore

SUBMITTED = "JUNE 2025 BILLS SUBMITTED IN JULY 2025"


@pytest.fixture
def env(tmp_path):
    root = tmp_path / "Bills"
    june = root / "June"
    june.mkdir(parents=True)
    (june / "invoice.pdf").write_bytes(b"%PDF-invoice")
    (june / "receipt.pdf").write_bytes(b"%PDF-receipt")
    gst = tmp_path / "GST"
    gst.mkdir()
    config = Configuration(root_path=str(root), selected_subfolders={str(june)}, gst_submitted_root_path=str(gst))
    store = TrackingStore(str(tmp_path / "data" / "tracking.json"))
    engine = ReconciliationEngine(store, lambda: config)
    return engine, store, config, june, gst


def _submit(gst, name, year="2025-26", folder=SUBMITTED):
    dest = gst / year / folder
    dest.mkdir(parents=True, exist_ok=True)
    (dest / name).write_bytes(b"%PDF")
    return dest / name


def test_without_gst_root_only_files_are_listed(env):
    engine, store, config, june, gst = env
    config.gst_submitted_root_path = None
    result = engine.refresh()

    assert sorted(f.name for f in result.files) == ["invoice.pdf", "receipt.pdf"]
    assert not result.gst_checked
    assert result.changed == 0
    assert len(store) == 0


def test_copy_in_gst_folder_marks_bill_sent(env):
    engine, store, config, june, gst = env
    copy = _submit(gst, "invoice.pdf")

    result = engine.refresh()
    invoice = str(june / "invoice.pdf")
    assert result.updated == [invoice]
    assert result.changed == 1
    record = store.get(invoice)
    assert record.sent_month == "2025-07"
    assert record.mirrored_path == str(copy)
    assert store.status(str(june / "receipt.pdf")) == "pending"


def test_second_pass_changes_nothing(env):
    engine, store, config, june, gst = env
    _submit(gst, "invoice.pdf")
    engine.refresh()
    before = store.all()

    result = engine.refresh()
    assert result.changed == 0
    assert store.all() == before


def test_missing_copy_reverts_sent_bill_to_pending(env):
    engine, store, config, june, gst = env
    copy = _submit(gst, "invoice.pdf")
    engine.refresh()
    os.remove(copy)

    result = engine.refresh()
    assert result.removed == [str(june / "invoice.pdf")]
    assert store.get(str(june / "invoice.pdf")) is None


def test_pending_record_with_bill_month_is_kept(env):
    engine, store, config, june, gst = env
    store.put(str(june / "receipt.pdf"), TrackingRecord(bill_month="2025-05"))
    result = engine.refresh()
    assert result.changed == 0
    assert store.get(str(june / "receipt.pdf")).bill_month == "2025-05"


def test_later_submission_wins(env):
    engine, store, config, june, gst = env
    _submit(gst, "invoice.pdf")
    later = _submit(gst, "invoice.pdf", folder="JUNE 2025 BILLS SUBMITTED IN AUGUST 2025")
    engine.refresh()
    record = store.get(str(june / "invoice.pdf"))
    assert record.sent_month == "2025-08"
    assert record.mirrored_path == str(later)


def test_unreadable_gst_root_leaves_store_untouched(env):
    engine, store, config, june, gst = env
    store.put(str(june / "invoice.pdf"), TrackingRecord(bill_month="2025-06", sent_month="2025-07", sent_at="2025-07-01T00:00:00"))
    config.gst_submitted_root_path = str(gst / "missing")

    result = engine.refresh()
    assert not result.gst_checked
    assert any(isinstance(e, MatchError) for e in result.errors)
    assert store.get(str(june / "invoice.pdf")).is_sent


def test_bare_name_selection_and_ignored_files(env):
    engine, store, config, june, gst = env
    config.selected_subfolders = {"June"}
    config.ignored_files = {"receipt.pdf"}
    result = engine.refresh()
    assert [f.name for f in result.files] == ["invoice.pdf"]


def test_busy_engine_drops_request(env):
    engine = env[0]
    engine._lock.acquire()
    try:
        assert engine.is_busy
        assert engine.refresh("drop") is None
        assert engine.refresh("queue") is None
        assert engine._rerun_requested
    finally:
        engine._lock.release()


def test_queued_request_reruns_once(env):
    engine, store, config, june, gst = env
    calls = []

    def provider():
        calls.append(1)
        if len(calls) == 1:
            assert engine.refresh("queue") is None
        return config

    engine.config_provider = provider
    result = engine.refresh("drop")
    assert result is not None
    assert len(calls) == 2


def test_unknown_busy_policy(env):
    with pytest.raises(ValueError):
        env[0].refresh("wait")


def test_offline_bill_folder_keeps_sent_records(env, tmp_path):
    engine, store, config, june, gst = env
    _submit(gst, "invoice.pdf")
    engine.refresh()
    invoice = str(june / "invoice.pdf")
    assert store.get(invoice).is_sent

    os.rename(tmp_path / "Bills", tmp_path / "Bills-offline")
    result = engine.refresh()

    assert result.files == []
    assert len(result.errors) == 1
    assert result.removed == []
    assert not result.gst_checked
    assert store.get(invoice).sent_month == "2025-07"


def test_unreadable_subfolder_only_protects_its_own_records(env, tmp_path):
    engine, store, config, june, gst = env
    july = tmp_path / "Bills" / "July"
    july.mkdir()
    (july / "phone.pdf").write_bytes(b"%PDF")
    config.selected_subfolders = {str(june), str(july)}
    _submit(gst, "invoice.pdf")
    _submit(gst, "phone.pdf")
    engine.refresh()
    receipt = str(june / "receipt.pdf")
    store.put(receipt, TrackingRecord(bill_month="2025-06", sent_month="2025-07", sent_at="2025-07-01T00:00:00"))

    os.rename(july, tmp_path / "Bills" / "July-moved")
    result = engine.refresh()

    assert [e.path for e in result.errors] == [str(july)]
    assert store.get(str(july / "phone.pdf")).is_sent
    assert result.removed == [receipt]
    assert store.get(str(june / "invoice.pdf")).is_sent
