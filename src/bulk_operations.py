import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from action_log import ActionLog, IgnoreFile, MarkPending, UpdateTracking
from bill_models import BulkResult, Configuration, TrackedFile, TrackingRecord
from folder_scanner import stat_file
from gst_matcher import derive_folder_names
from gst_mirror import copy_to_submitted_tree, delete_from_submitted_tree
from month_utils import get_bill_month, validate_month
from tracker_errors import MirrorError
from tracking_store import TrackingStore

logger = logging.getLogger(__name__)


class BulkOperationCoordinator:
    """Applies one logical edit across many files.

    Each batch is committed with a single store write and yields one
    undoable action per file, so undo walks back one file at a time.
    """

    def __init__(
        self,
        store: TrackingStore,
        action_log: ActionLog,
        config_provider: Callable[[], Optional[Configuration]],
        files_provider: Callable[[], List[TrackedFile]] = lambda: [],
        set_ignored_many: Optional[Callable[[List[str], bool], None]] = None,
    ):
        self.store = store
        self.action_log = action_log
        self.config_provider = config_provider
        self.files_provider = files_provider
        self.set_ignored_many = set_ignored_many

    def _gst_root(self) -> Optional[str]:
        config = self.config_provider()
        return config.gst_submitted_root_path if config else None

    def bill_month_for(self, path: str, known: Dict[str, TrackedFile]) -> str:
        """Bill month from the file's own dates, never from a batch-wide default."""
        tracked = known.get(path)
        if tracked is None:
            try:
                tracked = stat_file(path)
            except OSError as e:
                logger.warning("Cannot read dates of %s, using previous month: %s", path, e)
                return get_bill_month()
        return get_bill_month(tracked.created, tracked.modified)

    def bulk_mark_sent(self, paths: Iterable[str], sent_month: str) -> BulkResult:
        validate_month(sent_month)
        paths = list(dict.fromkeys(paths))
        known = {f.path: f for f in self.files_provider()}
        gst_root = self._gst_root()
        records = self.store.all()
        new_records = dict(records)
        result = BulkResult()
        now = datetime.now().isoformat(timespec="seconds")

        for path in paths:
            previous = records.get(path)
            fields = dict(bill_month=self.bill_month_for(path, known), sent_month=sent_month, sent_at=now)
            new_records[path] = previous.merged(**fields) if previous else TrackingRecord(**fields)
            result.updated.append(path)

        # records are committed before any copy lands in the GST tree
        self.store.replace_all(new_records)
        try:
            if gst_root:
                self._mirror_batch(paths, records, new_records, gst_root, result)
                if result.mirrored:
                    self.store.replace_all(new_records)
        finally:
            for path in result.updated:
                self.action_log.push(UpdateTracking(path, records.get(path), new_records[path]))
        logger.info("Marked %d bills sent in %s (%d mirrored)", len(result.updated), sent_month, len(result.mirrored))
        return result

    def _mirror_batch(self, paths, records, new_records, gst_root, result):
        for path in paths:
            record = new_records[path]
            try:
                year_folder, submission_folder = derive_folder_names(record.sent_month, record.bill_month)
                destination = copy_to_submitted_tree(path, gst_root, year_folder, submission_folder)
            except MirrorError as e:
                logger.warning("Mirror copy failed for %s: %s", path, e)
                result.errors.append(e)
                continue
            new_records[path] = record.merged(mirrored_path=destination)
            result.mirrored.append(path)
            previous = records.get(path)
            stale = previous.mirrored_path if previous else None
            if stale and stale != destination:
                self._delete_mirror(stale, result)

    def bulk_mark_pending(self, paths: Iterable[str]) -> BulkResult:
        records = self.store.all()
        new_records = dict(records)
        result = BulkResult()
        removed = []
        for path in dict.fromkeys(paths):
            previous = new_records.pop(path, None)
            if previous is None:
                continue
            removed.append((path, previous))
            result.updated.append(path)

        if removed:
            self.store.replace_all(new_records)
        for path, previous in removed:
            if previous.mirrored_path:
                self._delete_mirror(previous.mirrored_path, result)
            self.action_log.push(MarkPending(path, previous))
        return result

    def bulk_set_bill_month(self, paths: Iterable[str], bill_month: str) -> BulkResult:
        validate_month(bill_month)
        records = self.store.all()
        new_records = dict(records)
        result = BulkResult()
        for path in dict.fromkeys(paths):
            previous = records.get(path)
            new_records[path] = previous.merged(bill_month=bill_month) if previous else TrackingRecord(bill_month=bill_month)
            result.updated.append(path)
        self.store.replace_all(new_records)
        for path in result.updated:
            self.action_log.push(UpdateTracking(path, records.get(path), new_records[path]))
        return result

    def bulk_ignore(self, paths: Iterable[str]) -> BulkResult:
        if self.set_ignored_many is None:
            raise RuntimeError("bulk_ignore needs a set_ignored_many callback")
        config = self.config_provider()
        already = config.ignored_files if config else set()
        to_ignore = [p for p in dict.fromkeys(paths) if p not in already]
        result = BulkResult(updated=to_ignore)
        if not to_ignore:
            return result
        self.set_ignored_many(to_ignore, True)
        for path in to_ignore:
            self.action_log.push(IgnoreFile(path, ignore=True))
        return result

    def _delete_mirror(self, mirrored_path: str, result: BulkResult):
        try:
            delete_from_submitted_tree(mirrored_path)
        except MirrorError as e:
            logger.warning("Could not remove mirrored copy %s: %s", mirrored_path, e)
            result.errors.append(e)
