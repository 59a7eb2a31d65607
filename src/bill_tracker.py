"""
Bill folder tracker facade.

Owns one TrackingStore and one ConfigurationStore and injects them into the
reconciliation engine, the action log and the bulk coordinator. Every
manual edit goes through here so that it is persisted and undoable.
"""

import logging
import os
import uuid
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from action_log import ActionLog, IgnoreFile, MarkPending, MarkSent, UpdateTracking
from bill_models import Configuration, FolderStructure, Reminder, TrackingRecord, TrackerSettings
from bulk_operations import BulkOperationCoordinator
from config_loader import get_data_dir, load_tracker_defaults
from config_store import CONFIG_FILE_NAME, ConfigurationStore
from file_ops import delete_files, move_files
from folder_scanner import scan
from gst_matcher import derive_folder_names, find_orphans
from gst_mirror import copy_to_submitted_tree, delete_from_submitted_tree, restore_mirror
from month_utils import current_month, previous_month, validate_month
from reconciler import ReconciliationEngine
from report import build_report, detailed_stats, export_report
from tracker_errors import MirrorError, TrackerError
from tracking_store import TRACKING_FILE_NAME, TrackingStore, read_json, write_json_atomic

logger = logging.getLogger(__name__)

HISTORY_FILE_NAME = "action_log.json"


class BillTracker:
    def __init__(self, data_dir: str = None, defaults: Dict = None):
        self.data_dir = data_dir or get_data_dir()
        self.defaults = defaults or load_tracker_defaults()
        self.store = TrackingStore(os.path.join(self.data_dir, TRACKING_FILE_NAME))
        self.config_store = ConfigurationStore(os.path.join(self.data_dir, CONFIG_FILE_NAME))
        self.history_path = os.path.join(self.data_dir, HISTORY_FILE_NAME)
        self.config: Optional[Configuration] = self.config_store.load()

        self.engine = ReconciliationEngine(self.store, lambda: self.config, self.defaults["scan"]["extensions"])
        self.action_log = ActionLog(
            self.store,
            set_ignored=self._set_ignored,
            on_record_change=self._sync_mirror,
            capacity=self.defaults["history"]["capacity"],
        )
        self.bulk = BulkOperationCoordinator(
            self.store,
            self.action_log,
            lambda: self.config,
            files_provider=lambda: self.engine.last_files,
            set_ignored_many=self._set_ignored_many,
        )

    # ------------------------------------------------------------------
    # configuration
    # ------------------------------------------------------------------

    def require_config(self) -> Configuration:
        if self.config is None:
            raise RuntimeError("No bill folder configured yet; select a root folder first")
        return self.config

    @property
    def gst_root(self) -> Optional[str]:
        return self.config.gst_submitted_root_path if self.config else None

    def save_config(self):
        self.config_store.save(self.require_config())

    def select_root_folder(self, root_path: str) -> FolderStructure:
        if not os.path.isdir(root_path):
            raise ValueError(f"Not a folder: {root_path}")
        root_path = os.path.abspath(root_path)
        structure = scan(root_path)
        if self.config is None:
            self.config = Configuration(root_path=root_path)
        elif self.config.root_path != root_path:
            self.config.root_path = root_path
            self.config.selected_subfolders = set()
            self.config.ignored_subfolders = set()
        self.save_config()
        logger.info("Root folder set to %s (%d subfolders)", root_path, len(structure.subfolders))
        return structure

    def folder_structure(self) -> FolderStructure:
        return scan(self.require_config().root_path)

    def set_selected_subfolders(self, subfolders: Iterable[str]):
        selected = {s for s in subfolders if s}
        if not selected:
            raise ValueError("Please select at least one subfolder")
        self.require_config().selected_subfolders = selected
        self.save_config()

    def set_ignored_subfolders(self, subfolders: Iterable[str]):
        self.require_config().ignored_subfolders = {s for s in subfolders if s}
        self.save_config()

    def set_gst_submitted_root(self, path: Optional[str]):
        if path and not os.path.isdir(path):
            raise ValueError(f"Not a folder: {path}")
        self.require_config().gst_submitted_root_path = os.path.abspath(path) if path else None
        self.save_config()

    def update_settings(self, **changes) -> TrackerSettings:
        settings = self.require_config().settings
        for key, value in changes.items():
            if key not in TrackerSettings.__dataclass_fields__:
                raise ValueError(f"Unknown setting: {key}")
            if key == "sync_interval" and int(value) <= 0:
                raise ValueError("sync_interval must be a positive number of minutes")
            if key == "default_sent_month" and value not in ("current", "previous"):
                raise ValueError("default_sent_month must be 'current' or 'previous'")
            setattr(settings, key, value)
        self.save_config()
        return settings

    def default_sent_month(self) -> str:
        if self.config and self.config.settings.default_sent_month == "previous":
            return previous_month()
        return current_month()

    # ------------------------------------------------------------------
    # reconciliation
    # ------------------------------------------------------------------

    def refresh(self, if_busy: str = None):
        return self.engine.refresh(if_busy or self.defaults["sync"]["busy_policy"])

    @property
    def files(self):
        return self.engine.last_files

    def status_of(self, path: str) -> str:
        return self.store.status(path)

    # ------------------------------------------------------------------
    # mirrored copies
    # ------------------------------------------------------------------

    def _place_mirror(self, path: str, record: TrackingRecord, errors: List[TrackerError]) -> TrackingRecord:
        """Ensure a sent record has its copy in the submitted folder matching its months."""
        if not self.gst_root or not record.is_sent or not record.bill_month:
            return record
        try:
            year_folder, submission_folder = derive_folder_names(record.sent_month, record.bill_month)
            expected = os.path.join(self.gst_root, year_folder, submission_folder, os.path.basename(path))
            if record.mirrored_path == expected and os.path.exists(expected):
                return record
            destination = copy_to_submitted_tree(path, self.gst_root, year_folder, submission_folder)
        except MirrorError as e:
            logger.warning("Mirror copy failed for %s: %s", path, e)
            errors.append(e)
            return record
        record = record.merged(mirrored_path=destination)
        self.store.put(path, record)
        return record

    def _sync_mirror(self, path: str, before: Optional[TrackingRecord], after: Optional[TrackingRecord], errors: Optional[List[TrackerError]] = None):
        """Best-effort: drop a copy the new record no longer points at, restore one it does."""
        errors = errors if errors is not None else []
        stale = before.mirrored_path if before else None
        keep = after.mirrored_path if after is not None and after.is_sent else None
        if stale and stale != keep:
            try:
                delete_from_submitted_tree(stale)
            except MirrorError as e:
                logger.warning("Could not remove mirrored copy %s: %s", stale, e)
                errors.append(e)
        if keep and not os.path.exists(keep):
            try:
                restore_mirror(path, keep)
            except MirrorError as e:
                logger.warning("Could not restore mirrored copy %s: %s", keep, e)
                errors.append(e)

    def _apply_update(self, path: str, record: Optional[TrackingRecord], errors: List[TrackerError]) -> Optional[TrackingRecord]:
        """Tracking update first, then the best-effort mirror phase."""
        before = self.store.get(path)
        self.store.write(path, record)
        if record is not None:
            record = self._place_mirror(path, record, errors)
        self._sync_mirror(path, before, record, errors)
        return record

    # ------------------------------------------------------------------
    # manual tracking edits
    # ------------------------------------------------------------------

    def _file_bill_month(self, path: str) -> str:
        return self.bulk.bill_month_for(path, {f.path: f for f in self.engine.last_files})

    def mark_sent(self, path: str, sent_month: str = None) -> Tuple[TrackingRecord, List[TrackerError]]:
        sent_month = validate_month(sent_month or self.default_sent_month())
        previous = self.store.get(path)
        bill_month = (previous.bill_month if previous else None) or self._file_bill_month(path)
        fields = dict(bill_month=bill_month, sent_month=sent_month, sent_at=datetime.now().isoformat(timespec="seconds"))
        record = previous.merged(**fields) if previous else TrackingRecord(**fields)
        errors: List[TrackerError] = []
        record = self._apply_update(path, record, errors)
        self.action_log.push(MarkSent(path, record, previous))
        return record, errors

    def mark_pending(self, path: str) -> Tuple[Optional[TrackingRecord], List[TrackerError]]:
        """Drop the tracking record and its mirrored copy. Returns the removed record."""
        previous = self.store.get(path)
        if previous is None:
            return None, []
        errors: List[TrackerError] = []
        self._apply_update(path, None, errors)
        self.action_log.push(MarkPending(path, previous))
        return previous, errors

    def update_bill_month(self, path: str, bill_month: str) -> Tuple[TrackingRecord, List[TrackerError]]:
        validate_month(bill_month)
        previous = self.store.get(path)
        record = previous.merged(bill_month=bill_month) if previous else TrackingRecord(bill_month=bill_month)
        errors: List[TrackerError] = []
        record = self._apply_update(path, record, errors)
        self.action_log.push(UpdateTracking(path, previous, record))
        return record, errors

    def update_sent_month(self, path: str, sent_month: str) -> Tuple[TrackingRecord, List[TrackerError]]:
        validate_month(sent_month)
        previous = self.store.get(path)
        sent_at = (previous.sent_at if previous else None) or datetime.now().isoformat(timespec="seconds")
        if previous:
            record = previous.merged(sent_month=sent_month, sent_at=sent_at, bill_month=previous.bill_month or self._file_bill_month(path))
        else:
            record = TrackingRecord(bill_month=self._file_bill_month(path), sent_month=sent_month, sent_at=sent_at)
        errors: List[TrackerError] = []
        record = self._apply_update(path, record, errors)
        self.action_log.push(UpdateTracking(path, previous, record))
        return record, errors

    def bulk_mark_sent(self, paths: Iterable[str], sent_month: str = None):
        return self.bulk.bulk_mark_sent(paths, sent_month or self.default_sent_month())

    # ------------------------------------------------------------------
    # ignored files
    # ------------------------------------------------------------------

    def _set_ignored(self, path: str, ignored: bool):
        self._set_ignored_many([path], ignored)

    def _set_ignored_many(self, paths: List[str], ignored: bool):
        config = self.require_config()
        if ignored:
            config.ignored_files.update(paths)
        else:
            config.ignored_files.difference_update(paths)
        self.save_config()

    def toggle_ignored_file(self, path: str) -> bool:
        """Flip a file's ignored flag. Returns True when the file is now ignored."""
        ignore = path not in self.require_config().ignored_files
        self._set_ignored(path, ignore)
        self.action_log.push(IgnoreFile(path, ignore=ignore))
        return ignore

    def undo(self):
        return self.action_log.undo()

    def redo(self):
        return self.action_log.redo()

    def load_history(self):
        data = read_json(self.history_path, "load_history")
        if data:
            self.action_log.load_dict(data)

    def save_history(self):
        write_json_atomic(self.history_path, self.action_log.to_dict(), "save_history")

    # ------------------------------------------------------------------
    # tags and reminders
    # ------------------------------------------------------------------

    def set_tags(self, path: str, tags: Iterable[str]) -> List[str]:
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t and t.strip()))
        config = self.require_config()
        if cleaned:
            config.tags[path] = cleaned
        else:
            config.tags.pop(path, None)
        self.save_config()
        return cleaned

    def add_tag(self, path: str, tag: str) -> List[str]:
        return self.set_tags(path, self.require_config().tags.get(path, []) + [tag])

    def remove_tag(self, path: str, tag: str) -> List[str]:
        return self.set_tags(path, [t for t in self.require_config().tags.get(path, []) if t != tag])

    def add_reminder(self, path: str, due_date: str, note: str = "") -> Reminder:
        date.fromisoformat(due_date)
        reminder = Reminder(id=uuid.uuid4().hex[:8], file_path=path, due_date=due_date, note=note)
        self.require_config().reminders.append(reminder)
        self.save_config()
        return reminder

    def remove_reminder(self, reminder_id: str) -> bool:
        config = self.require_config()
        kept = [r for r in config.reminders if r.id != reminder_id]
        if len(kept) == len(config.reminders):
            return False
        config.reminders = kept
        self.save_config()
        return True

    def due_reminders(self, today: Optional[date] = None, within_days: int = None, mark_notified: bool = False) -> List[Reminder]:
        today = today or date.today()
        within_days = self.defaults["reminders"]["notice_days"] if within_days is None else within_days
        due = []
        for r in self.require_config().reminders:
            if r.notified:
                continue
            days_left = (date.fromisoformat(r.due_date) - today).days
            if 0 <= days_left <= within_days:
                due.append(r)
        if due and mark_notified:
            for r in due:
                r.notified = True
            self.save_config()
        return due

    # ------------------------------------------------------------------
    # file operations and reports
    # ------------------------------------------------------------------

    def delete_files(self, paths: Iterable[str]):
        deleted, errors = delete_files(list(paths))
        records = self.store.all()
        dropped = [p for p in deleted if p in records]
        if dropped:
            for p in dropped:
                del records[p]
            self.store.replace_all(records)
        return deleted, errors

    def move_files(self, paths: Iterable[str], dest_root: str):
        moved, errors = move_files(list(paths), dest_root)
        records = self.store.all()
        rekeyed = False
        for old, new in moved.items():
            if old in records:
                records[new] = records.pop(old)
                rekeyed = True
        if rekeyed:
            self.store.replace_all(records)
        config = self.config
        if config and any(old in config.tags for old in moved):
            for old, new in moved.items():
                if old in config.tags:
                    config.tags[new] = config.tags.pop(old)
            self.save_config()
        return moved, errors

    def build_report(self, today: Optional[date] = None) -> Dict:
        tags = self.config.tags if self.config else {}
        return build_report(self.engine.last_files, self.store.all(), tags, today)

    def export_report(self, destination: str) -> str:
        return export_report(self.build_report(), destination)

    def summary(self, today: Optional[date] = None) -> Dict:
        return detailed_stats(self.engine.last_files, self.store.all(), today)

    def find_orphans(self) -> List[Dict]:
        if not self.gst_root:
            raise RuntimeError("No GST submitted folder configured")
        return find_orphans(self.gst_root, [f.name for f in self.engine.last_files], self.defaults["orphans"]["min_similarity"])
