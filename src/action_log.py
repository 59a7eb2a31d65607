"""
Undo/redo history for tracking edits.

Actions are a closed set of dataclasses; each carries exactly what it needs
to be reversed. The log keeps two bounded stacks. Undo applies the inverse of
the newest action and moves it to the redo stack; redo re-applies it and
moves it back. push() is the only way new work enters the log and it clears
the redo stack.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from bill_models import TrackingRecord
from tracking_store import TrackingStore

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 10


@dataclass(frozen=True)
class MarkSent:
    path: str
    record: TrackingRecord
    previous: Optional[TrackingRecord] = None


@dataclass(frozen=True)
class MarkPending:
    path: str
    previous: Optional[TrackingRecord] = None


@dataclass(frozen=True)
class IgnoreFile:
    path: str
    ignore: bool = True


@dataclass(frozen=True)
class UpdateTracking:
    path: str
    previous: Optional[TrackingRecord]
    new: Optional[TrackingRecord]


UndoableAction = Union[MarkSent, MarkPending, IgnoreFile, UpdateTracking]

_ACTION_TYPES = {cls.__name__: cls for cls in (MarkSent, MarkPending, IgnoreFile, UpdateTracking)}


def _record_to_dict(record: Optional[TrackingRecord]) -> Optional[Dict]:
    return record.to_dict() if record is not None else None


def _record_from_dict(data: Optional[Dict]) -> Optional[TrackingRecord]:
    return TrackingRecord.from_dict(data) if data is not None else None


def action_to_dict(action: UndoableAction) -> Dict:
    if isinstance(action, MarkSent):
        return {"type": "MarkSent", "path": action.path, "record": _record_to_dict(action.record), "previous": _record_to_dict(action.previous)}
    if isinstance(action, MarkPending):
        return {"type": "MarkPending", "path": action.path, "previous": _record_to_dict(action.previous)}
    if isinstance(action, IgnoreFile):
        return {"type": "IgnoreFile", "path": action.path, "ignore": action.ignore}
    if isinstance(action, UpdateTracking):
        return {"type": "UpdateTracking", "path": action.path, "previous": _record_to_dict(action.previous), "new": _record_to_dict(action.new)}
    raise TypeError(f"unknown action type: {type(action).__name__}")


def action_from_dict(data: Dict) -> UndoableAction:
    kind = data.get("type")
    if kind not in _ACTION_TYPES:
        raise ValueError(f"unknown action type: {kind!r}")
    if kind == "MarkSent":
        return MarkSent(data["path"], _record_from_dict(data["record"]), _record_from_dict(data.get("previous")))
    if kind == "MarkPending":
        return MarkPending(data["path"], _record_from_dict(data.get("previous")))
    if kind == "IgnoreFile":
        return IgnoreFile(data["path"], bool(data.get("ignore", True)))
    return UpdateTracking(data["path"], _record_from_dict(data.get("previous")), _record_from_dict(data.get("new")))


class ActionLog:
    """Two bounded stacks of UndoableAction applied against a TrackingStore.

    Args:
        store: tracking store that record-changing actions are applied to
        set_ignored: callback(path, ignored) used for IgnoreFile actions
        on_record_change: optional callback(path, before, after) run after
            every record write, e.g. to keep mirrored copies in step
        capacity: maximum entries per stack; overflow drops the oldest
    """

    def __init__(
        self,
        store: TrackingStore,
        set_ignored: Optional[Callable[[str, bool], None]] = None,
        on_record_change: Optional[Callable[[str, Optional[TrackingRecord], Optional[TrackingRecord]], None]] = None,
        capacity: int = DEFAULT_CAPACITY,
    ):
        self.store = store
        self.set_ignored = set_ignored
        self.on_record_change = on_record_change
        self.capacity = capacity
        self._undo: deque = deque(maxlen=capacity)
        self._redo: deque = deque(maxlen=capacity)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def push(self, action: UndoableAction):
        if len(self._undo) == self.capacity:
            logger.debug("History full, dropping oldest action %s", self._undo[0])
        self._undo.append(action)
        self._redo.clear()

    def clear(self):
        self._undo.clear()
        self._redo.clear()

    def undo(self) -> Optional[UndoableAction]:
        if not self._undo:
            return None
        action = self._undo[-1]
        # stays on the stack when applying fails so the undo can be retried
        self._apply(action, forward=False)
        self._undo.pop()
        self._redo.append(action)
        logger.info("Undid %s for %s", type(action).__name__, action.path)
        return action

    def redo(self) -> Optional[UndoableAction]:
        if not self._redo:
            return None
        action = self._redo[-1]
        self._apply(action, forward=True)
        self._redo.pop()
        self._undo.append(action)
        logger.info("Redid %s for %s", type(action).__name__, action.path)
        return action

    def _write_record(self, path: str, record: Optional[TrackingRecord]):
        before = self.store.get(path)
        self.store.write(path, record)
        if self.on_record_change is not None:
            self.on_record_change(path, before, record)

    def _apply(self, action: UndoableAction, forward: bool):
        if isinstance(action, MarkSent):
            self._write_record(action.path, action.record if forward else action.previous)
        elif isinstance(action, MarkPending):
            if forward:
                self._write_record(action.path, None)
            elif action.previous is not None:
                self._write_record(action.path, action.previous)
        elif isinstance(action, IgnoreFile):
            if self.set_ignored is None:
                raise RuntimeError("IgnoreFile actions need a set_ignored callback")
            self.set_ignored(action.path, action.ignore if forward else not action.ignore)
        elif isinstance(action, UpdateTracking):
            self._write_record(action.path, action.new if forward else action.previous)
        else:
            raise TypeError(f"unknown action type: {type(action).__name__}")

    def to_dict(self) -> Dict:
        return {
            "capacity": self.capacity,
            "undo": [action_to_dict(a) for a in self._undo],
            "redo": [action_to_dict(a) for a in self._redo],
        }

    def load_dict(self, data: Dict):
        self._undo = deque((action_from_dict(a) for a in data.get("undo", [])), maxlen=self.capacity)
        self._redo = deque((action_from_dict(a) for a in data.get("redo", [])), maxlen=self.capacity)
