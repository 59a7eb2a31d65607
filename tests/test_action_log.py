import os
import sys
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from action_log import ActionLog, IgnoreFile, MarkPending, MarkSent, UpdateTracking, action_from_dict
from bill_models import TrackingRecord
from tracker_errors import PersistenceError
from tracking_store import TrackingStore

SENT = TrackingRecord(bill_month="2025-06", sent_month="2025-07", sent_at="2025-07-02T10:00:00")


@pytest.fixture
def store(tmp_path):
    return TrackingStore(str(tmp_path / "tracking.json"))


def test_undo_restores_previous_record_and_redo_reapplies(store):
    log = ActionLog(store)
    store.put("/a.pdf", SENT)
    log.push(MarkSent("/a.pdf", SENT, previous=None))

    assert log.undo().path == "/a.pdf"
    assert store.get("/a.pdf") is None
    assert log.can_redo

    log.redo()
    assert store.get("/a.pdf") == SENT
    assert log.undo_depth == 1 and log.redo_depth == 0


def test_undo_mark_pending_puts_record_back(store):
    log = ActionLog(store)
    log.push(MarkPending("/a.pdf", previous=SENT))
    log.undo()
    assert store.get("/a.pdf") == SENT


def test_update_tracking_inverse(store):
    pending = TrackingRecord(bill_month="2025-05")
    changed = pending.merged(bill_month="2025-06")
    store.put("/a.pdf", changed)
    log = ActionLog(store)
    log.push(UpdateTracking("/a.pdf", pending, changed))

    log.undo()
    assert store.get("/a.pdf") == pending
    log.redo()
    assert store.get("/a.pdf") == changed


def test_ignore_file_uses_callback(store):
    set_ignored = MagicMock()
    log = ActionLog(store, set_ignored=set_ignored)
    log.push(IgnoreFile("/a.pdf", ignore=True))

    log.undo()
    set_ignored.assert_called_with("/a.pdf", False)
    log.redo()
    set_ignored.assert_called_with("/a.pdf", True)


def test_history_is_bounded(store):
    log = ActionLog(store, set_ignored=MagicMock(), capacity=10)
    for i in range(15):
        log.push(IgnoreFile(f"/{i}.pdf"))
    assert log.undo_depth == 10
    undone = [log.undo().path for _ in range(10)]
    assert undone[0] == "/14.pdf" and undone[-1] == "/5.pdf"
    assert log.undo() is None


def test_push_clears_redo(store):
    log = ActionLog(store, set_ignored=MagicMock())
    log.push(IgnoreFile("/a.pdf"))
    log.undo()
    assert log.can_redo
    log.push(IgnoreFile("/b.pdf"))
    assert not log.can_redo
    assert log.redo() is None


def test_record_change_hook_sees_before_and_after(store):
    hook = MagicMock()
    store.put("/a.pdf", SENT)
    log = ActionLog(store, on_record_change=hook)
    log.push(MarkSent("/a.pdf", SENT, previous=None))
    log.undo()
    hook.assert_called_once_with("/a.pdf", SENT, None)


def test_history_survives_serialization(store):
    log = ActionLog(store, set_ignored=MagicMock())
    log.push(MarkSent("/a.pdf", SENT))
    log.push(IgnoreFile("/b.pdf", ignore=False))
    log.undo()

    other = ActionLog(store, set_ignored=MagicMock())
    other.load_dict(log.to_dict())
    assert other.undo_depth == 1 and other.redo_depth == 1
    assert other.redo() == IgnoreFile("/b.pdf", ignore=False)


def test_unknown_action_type_rejected():
    with pytest.raises(ValueError):
        action_from_dict({"type": "DeleteEverything", "path": "/a"})


def test_failed_undo_stays_on_the_stack(store, tmp_path):
    pending = TrackingRecord(bill_month="2025-05")
    store.put("/a.pdf", SENT)
    log = ActionLog(store)
    log.push(UpdateTracking("/a.pdf", pending, SENT))

    writable = store.path
    blocker = tmp_path / "blocker"
    blocker.write_text("not a folder")
    store.path = str(blocker / "tracking.json")
    with pytest.raises(PersistenceError):
        log.undo()
    assert log.undo_depth == 1 and log.redo_depth == 0

    store.path = writable
    assert log.undo() == UpdateTracking("/a.pdf", pending, SENT)
    assert TrackingStore(writable).get("/a.pdf") == pending
    assert log.undo_depth == 0 and log.redo_depth == 1


def test_failed_redo_stays_on_the_stack(store):
    set_ignored = MagicMock(side_effect=[None, PersistenceError(None, "save_config", "disk full"), None])
    log = ActionLog(store, set_ignored=set_ignored)
    log.push(IgnoreFile("/a.pdf", ignore=True))
    log.undo()

    with pytest.raises(PersistenceError):
        log.redo()
    assert log.undo_depth == 0 and log.redo_depth == 1

    log.redo()
    set_ignored.assert_called_with("/a.pdf", True)
    assert log.undo_depth == 1 and log.redo_depth == 0


def _perform(log, store, ignored, action):
    if isinstance(action, IgnoreFile):
        (ignored.add if action.ignore else ignored.discard)(action.path)
    elif isinstance(action, MarkSent):
        store.put(action.path, action.record)
    elif isinstance(action, MarkPending):
        store.remove(action.path)
    else:
        store.write(action.path, action.new)
    log.push(action)


def test_mixed_history_undoes_to_start_and_redoes_to_end(store):
    ignored = {"/e.pdf"}
    log = ActionLog(store, set_ignored=lambda path, on: (ignored.add if on else ignored.discard)(path))
    store.put("/b.pdf", TrackingRecord(bill_month="2025-04"))
    store.put("/d.pdf", SENT)
    start = (store.all(), set(ignored))

    rebilled = SENT.merged(bill_month="2025-05")
    steps = [
        lambda: MarkSent("/a.pdf", SENT, previous=store.get("/a.pdf")),
        lambda: UpdateTracking("/a.pdf", store.get("/a.pdf"), rebilled),
        lambda: IgnoreFile("/b.pdf", ignore=True),
        lambda: MarkSent("/b.pdf", SENT, previous=store.get("/b.pdf")),
        lambda: MarkPending("/a.pdf", previous=store.get("/a.pdf")),
        lambda: IgnoreFile("/b.pdf", ignore=False),
        lambda: IgnoreFile("/e.pdf", ignore=False),
        lambda: UpdateTracking("/c.pdf", store.get("/c.pdf"), TrackingRecord(bill_month="2025-03")),
        lambda: MarkPending("/d.pdf", previous=store.get("/d.pdf")),
    ]
    for step in steps:
        _perform(log, store, ignored, step())
    end = (store.all(), set(ignored))
    assert end != start

    for _ in steps:
        log.undo()
    assert (store.all(), ignored) == start
    assert (TrackingStore(store.path).all(), ignored) == start
    assert log.undo() is None

    for _ in steps:
        log.redo()
    assert (store.all(), ignored) == end
    assert TrackingStore(store.path).all() == end[0]
    assert log.redo() is None
