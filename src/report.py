import json
import logging
import os
from datetime import date, datetime
from typing import Dict, List, Optional

import pandas as pd

from bill_models import TrackedFile, TrackingRecord
from month_utils import get_bill_month, is_overdue
from tracker_errors import PersistenceError

logger = logging.getLogger(__name__)

SMALL_FILE = 1024 * 1024
LARGE_FILE = 10 * 1024 * 1024

SORT_KEYS = ("name", "size", "modified", "bill_month", "sent_month", "status")


def _status(records: Dict[str, TrackingRecord], path: str) -> str:
    record = records.get(path)
    return record.status if record else "pending"


def _bill_month(records: Dict[str, TrackingRecord], f: TrackedFile) -> str:
    record = records.get(f.path)
    if record and record.bill_month:
        return record.bill_month
    return get_bill_month(f.created, f.modified)


def file_rows(files: List[TrackedFile], records: Dict[str, TrackingRecord], tags: Optional[Dict[str, List[str]]] = None) -> List[Dict]:
    tags = tags or {}
    rows = []
    for f in files:
        record = records.get(f.path)
        rows.append({
            "name": f.name,
            "path": f.path,
            "folder": f.folder_name,
            "extension": f.extension,
            "size": f.size,
            "created": f.created.isoformat(timespec="seconds"),
            "modified": f.modified.isoformat(timespec="seconds"),
            "status": _status(records, f.path),
            "bill_month": _bill_month(records, f),
            "sent_month": record.sent_month if record else None,
            "mirrored_path": record.mirrored_path if record else None,
            "tags": ", ".join(tags.get(f.path, [])),
        })
    return rows


def detailed_stats(files: List[TrackedFile], records: Dict[str, TrackingRecord], today: Optional[date] = None) -> Dict:
    stats = {
        "total": len(files),
        "sent": 0,
        "pending": 0,
        "overdue": 0,
        "by_type": {},
        "by_month": {},
        "file_size_distribution": {"small": 0, "medium": 0, "large": 0},
    }
    for f in files:
        bill_month = _bill_month(records, f)
        if _status(records, f.path) == "sent":
            stats["sent"] += 1
        else:
            stats["pending"] += 1
            if is_overdue(bill_month, today):
                stats["overdue"] += 1

        ext = f.extension or "unknown"
        stats["by_type"][ext] = stats["by_type"].get(ext, 0) + 1
        stats["by_month"][bill_month] = stats["by_month"].get(bill_month, 0) + 1

        if f.size < SMALL_FILE:
            stats["file_size_distribution"]["small"] += 1
        elif f.size < LARGE_FILE:
            stats["file_size_distribution"]["medium"] += 1
        else:
            stats["file_size_distribution"]["large"] += 1

    stats["percentage"] = round(stats["sent"] / stats["total"] * 100) if stats["total"] else 0
    return stats


def filter_files(
    files: List[TrackedFile],
    records: Dict[str, TrackingRecord],
    search: str = "",
    file_type: str = "all",
    status: str = "all",
    start: Optional[date] = None,
    end: Optional[date] = None,
    min_size: int = 0,
    max_size: Optional[int] = None,
    sort_by: str = "name",
    descending: bool = False,
) -> List[TrackedFile]:
    """Search, filter and sort scanned files the way the tracker table does."""
    if start and end and start > end:
        raise ValueError("Start date cannot be after end date")
    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of {SORT_KEYS}")

    needle = search.lower()
    result = []
    for f in files:
        if needle and needle not in f.name.lower() and needle not in f.folder_name.lower():
            continue
        if file_type != "all" and f.extension != file_type:
            continue
        if status != "all" and _status(records, f.path) != status:
            continue
        modified = f.modified.date()
        if start and end and not start <= modified <= end:
            continue
        if f.size < min_size or (max_size is not None and f.size > max_size):
            continue
        result.append(f)

    keys = {
        "name": lambda f: f.name.lower(),
        "size": lambda f: f.size,
        "modified": lambda f: f.modified,
        "bill_month": lambda f: _bill_month(records, f),
        "sent_month": lambda f: (records.get(f.path).sent_month if records.get(f.path) else None) or "",
        "status": lambda f: _status(records, f.path),
    }
    return sorted(result, key=keys[sort_by], reverse=descending)


def build_report(files: List[TrackedFile], records: Dict[str, TrackingRecord], tags: Optional[Dict[str, List[str]]] = None, today: Optional[date] = None) -> Dict:
    return {
        "files": file_rows(files, records, tags),
        "summary": detailed_stats(files, records, today),
        "exported_at": datetime.now().isoformat(timespec="seconds"),
    }


def export_report(report: Dict, destination: str) -> str:
    """Write a report as JSON, or as CSV when destination ends in .csv.

    Returns:
        str: the written path
    """
    try:
        os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)
        if destination.lower().endswith(".csv"):
            pd.DataFrame(report["files"]).to_csv(destination, index=False, encoding="utf-8")
        else:
            with open(destination, "w", encoding="utf-8") as f:
                json.dump(report, f, ensure_ascii=False, indent=2)
    except OSError as e:
        raise PersistenceError(destination, "export_report", str(e))
    logger.info("Exported report with %d files to %s", len(report["files"]), destination)
    return destination
