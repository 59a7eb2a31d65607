import json
import logging
import os
import tempfile
from typing import Dict, Optional

from bill_models import TrackingRecord
from config_loader import get_data_dir
from tracker_errors import PersistenceError

logger = logging.getLogger(__name__)

TRACKING_FILE_NAME = "bill_tracking.json"


def _get_tracking_path() -> str:
    """Read the data directory from the environment on each call (monkeypatch friendly)."""
    return os.path.join(get_data_dir(), TRACKING_FILE_NAME)


def write_json_atomic(path: str, payload: dict, operation: str):
    """Whole-document write: temp file in the same folder, then os.replace."""
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)
    except OSError as e:
        raise PersistenceError(path, operation, str(e))


def read_json(path: str, operation: str) -> Optional[dict]:
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PersistenceError(path, operation, str(e))


class TrackingStore:
    """Durable map from bill file path to TrackingRecord.

    The in-memory map is the working copy. Every mutation persists the whole
    document before returning; when that write fails the in-memory state is
    kept and PersistenceError is raised so the caller can retry save().
    """

    def __init__(self, path: str = None):
        self.path = path or _get_tracking_path()
        self._records: Dict[str, TrackingRecord] = {}
        self._loaded = False

    def load(self) -> Dict[str, TrackingRecord]:
        data = read_json(self.path, "load_tracking_records") or {}
        bills = data.get("bills", {})
        records = {}
        for file_path, raw in bills.items():
            try:
                records[file_path] = TrackingRecord.from_dict(raw)
            except (TypeError, ValueError) as e:
                raise PersistenceError(self.path, "load_tracking_records", f"bad record for {file_path}: {e}")
        self._records = records
        self._loaded = True
        logger.debug("Loaded %d tracking records from %s", len(records), self.path)
        return dict(records)

    def _ensure_loaded(self):
        if not self._loaded:
            self.load()

    def save(self, records: Optional[Dict[str, TrackingRecord]] = None):
        if records is not None:
            self._records = dict(records)
            self._loaded = True
        payload = {"bills": {p: r.to_dict() for p, r in sorted(self._records.items())}}
        write_json_atomic(self.path, payload, "save_tracking_records")

    def all(self) -> Dict[str, TrackingRecord]:
        self._ensure_loaded()
        return dict(self._records)

    def get(self, path: str) -> Optional[TrackingRecord]:
        self._ensure_loaded()
        return self._records.get(path)

    def status(self, path: str) -> str:
        record = self.get(path)
        return record.status if record else "pending"

    def upsert(self, path: str, **fields) -> TrackingRecord:
        """Merge fields into the existing record (or a new one) and persist."""
        self._ensure_loaded()
        existing = self._records.get(path) or TrackingRecord()
        record = existing.merged(**fields)
        self._records[path] = record
        self.save()
        return record

    def put(self, path: str, record: TrackingRecord):
        """Replace a record verbatim and persist."""
        self._ensure_loaded()
        self._records[path] = record
        self.save()

    def remove(self, path: str) -> Optional[TrackingRecord]:
        self._ensure_loaded()
        previous = self._records.pop(path, None)
        if previous is not None:
            self.save()
        return previous

    def write(self, path: str, record: Optional[TrackingRecord]):
        """put() a record, or remove() when record is None."""
        if record is None:
            self.remove(path)
        else:
            self.put(path, record)

    def replace_all(self, records: Dict[str, TrackingRecord]):
        """Single whole-document write used for batches."""
        self.save(records)

    def __len__(self):
        self._ensure_loaded()
        return len(self._records)
