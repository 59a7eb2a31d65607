"""
Reconciliation of the tracking store against the GST submitted folder.

The GST tree is the physical evidence of submission: a bill whose name is
found under `<YYYY-YY>/<...> BILLS SUBMITTED IN <...>/` is sent in that
month, and a tracked bill with no such copy is pending again. Deltas are
applied to the store in one whole-document write.
"""

import logging
import threading
import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from bill_models import Configuration, ReconcileResult, TrackedFile, TrackingRecord
from folder_scanner import filter_ignored, is_within, resolve_selected_paths, scan, scan_files
from gst_matcher import latest_matches, scan_submitted_folder
from month_utils import get_bill_month
from tracker_errors import MatchError, ScanError
from tracking_store import TrackingStore

logger = logging.getLogger(__name__)

BUSY_POLICIES = ("drop", "queue")


def _is_bare_name(identifier: str) -> bool:
    return "/" not in identifier and "\\" not in identifier


class ReconciliationEngine:
    """Single-actor orchestrator of scan, match and store updates.

    Args:
        store: the tracking store instance this engine owns writes to
        config_provider: returns the current Configuration (or None)
        extensions: allowed bill file extensions for scanning
    """

    def __init__(self, store: TrackingStore, config_provider: Callable[[], Optional[Configuration]], extensions: Optional[List[str]] = None):
        self.store = store
        self.config_provider = config_provider
        self.extensions = extensions
        self.last_files: List[TrackedFile] = []
        self.last_result: Optional[ReconcileResult] = None
        self._lock = threading.Lock()
        self._rerun_requested = False

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def refresh(self, if_busy: str = "drop") -> Optional[ReconcileResult]:
        """Run one reconciliation pass unless one is already running.

        Args:
            if_busy: "drop" ignores the request, "queue" asks the running
                pass to run once more before it returns

        Returns:
            ReconcileResult, or None when the request was dropped/queued
        """
        if if_busy not in BUSY_POLICIES:
            raise ValueError(f"if_busy must be one of {BUSY_POLICIES}")
        if not self._lock.acquire(blocking=False):
            if if_busy == "queue":
                self._rerun_requested = True
                logger.debug("Reconciliation busy, queued a re-run")
            else:
                logger.debug("Reconciliation busy, request dropped")
            return None
        try:
            result = self._reconcile()
            while self._rerun_requested:
                self._rerun_requested = False
                result = self._reconcile()
            return result
        finally:
            self._lock.release()

    def collect_files(self, config: Configuration) -> tuple:
        """Step 1: candidate file set from the selected subfolders."""
        errors = []
        selected = sorted(config.selected_subfolders)
        if any(_is_bare_name(s) for s in selected + list(config.ignored_subfolders)):
            structure = scan(config.root_path)
            errors.extend(structure.errors)
            subfolders = structure.subfolders
        else:
            subfolders = []
        paths = resolve_selected_paths(selected, subfolders)
        ignored_paths = set(resolve_selected_paths(config.ignored_subfolders, subfolders))
        paths = [p for p in paths if p not in ignored_paths]

        bills = scan_files(paths, self.extensions)
        errors.extend(bills.errors)
        files = filter_ignored(bills.files, config.ignored_files, ignored_paths)
        return files, errors

    def _reconcile(self) -> ReconcileResult:
        started = time.monotonic()
        result = ReconcileResult(files=[], started_at=datetime.now().isoformat(timespec="seconds"))
        config = self.config_provider()
        if config is None:
            logger.info("No configuration yet, nothing to reconcile")
            return self._finish(result, started)

        files, errors = self.collect_files(config)
        result.files = files
        result.errors.extend(errors)
        self.last_files = files

        if not config.gst_submitted_root_path:
            logger.debug("No GST submitted folder configured, tracking is manual only")
            return self._finish(result, started)
        if not files:
            logger.info("No bills scanned, skipping the GST pass")
            return self._finish(result, started)
        unreadable = [e.path for e in errors if isinstance(e, ScanError) and e.path]

        try:
            match_scan = scan_submitted_folder(config.gst_submitted_root_path, [f.name for f in files])
        except MatchError as e:
            logger.error("GST folder scan failed: %s", e)
            result.errors.append(e)
            return self._finish(result, started)
        result.errors.extend(match_scan.errors)
        result.gst_checked = True

        matches = latest_matches(match_scan.matches)
        files_by_name: Dict[str, List[TrackedFile]] = defaultdict(list)
        for f in files:
            files_by_name[f.name].append(f)

        records = self.store.all()
        updated_records = dict(records)

        for file_path in list(updated_records):
            name = file_path.replace("\\", "/").rsplit("/", 1)[-1]
            # only sent records revert; pending ones keep their user-entered bill month
            if name in matches or not updated_records[file_path].is_sent:
                continue
            # a folder that could not be read this pass is no evidence either way
            if any(is_within(file_path, folder) for folder in unreadable):
                continue
            del updated_records[file_path]
            result.removed.append(file_path)

        now = datetime.now().isoformat(timespec="seconds")
        for name, match in matches.items():
            for f in files_by_name.get(name, []):
                existing = updated_records.get(f.path)
                if existing is not None and existing.sent_month == match.submission_month:
                    continue
                fields = dict(
                    sent_month=match.submission_month,
                    bill_month=get_bill_month(f.created, f.modified),
                    sent_at=now,
                    mirrored_path=match.path,
                )
                updated_records[f.path] = existing.merged(**fields) if existing else TrackingRecord(**fields)
                result.updated.append(f.path)

        result.changed = len(result.removed) + len(result.updated)
        if result.changed:
            self.store.replace_all(updated_records)
            logger.info("Reconciled: %d updated, %d reverted to pending", len(result.updated), len(result.removed))
        return self._finish(result, started)

    def _finish(self, result: ReconcileResult, started: float) -> ReconcileResult:
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.last_result = result
        return result
