import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz.distance import JaroWinkler

from bill_models import GstMatch, MatchScan
from month_utils import month_key, month_name, month_number, split_month
from tracker_errors import MatchError, ScanError

logger = logging.getLogger(__name__)

_YEAR_FOLDER_RE = re.compile(r"^(\d{4})-(\d{2})$")
_SUBMISSION_RE = re.compile(
    r"^([A-Z]+)\s+(\d{4})\s+BILLS\s+SUBMITTED\s+IN\s+([A-Z]+)\s+(\d{4})$",
    re.IGNORECASE,
)


def financial_year_folder(sent_month: str) -> str:
    sent_year, sent_num = split_month(sent_month)
    fy_start = sent_year if sent_num >= 4 else sent_year - 1
    return f"{fy_start}-{(fy_start + 1) % 100:02d}"


def derive_folder_names(sent_month: str, bill_month: str) -> Tuple[str, str]:
    """Folder names that represent "bill_month bills submitted in sent_month".

    Returns:
        (year_folder, submission_folder) e.g. ("2025-26", "JUNE 2025 BILLS SUBMITTED IN JULY 2025")
    """
    if not sent_month or not bill_month:
        raise ValueError("sent_month and bill_month are required")
    sent_year, _ = split_month(sent_month)
    bill_year, _ = split_month(bill_month)
    submission_folder = f"{month_name(bill_month)} {bill_year} BILLS SUBMITTED IN {month_name(sent_month)} {sent_year}"
    return financial_year_folder(sent_month), submission_folder


def parse_submission_folder(submission_folder: str) -> Tuple[str, str]:
    """Inverse of the submission folder half of derive_folder_names.

    Returns:
        (sent_month, bill_month)
    """
    m = _SUBMISSION_RE.match(submission_folder.strip())
    if not m:
        raise ValueError(f"not a submission folder name: {submission_folder!r}")
    bill_name, bill_year, sent_name, sent_year = m.groups()
    bill = month_key(int(bill_year), month_number(bill_name))
    sent = month_key(int(sent_year), month_number(sent_name))
    return sent, bill


def parse_folder_names(year_folder: str, submission_folder: str) -> Tuple[str, str]:
    """Exact inverse of derive_folder_names; rejects a year folder that disagrees."""
    if not _YEAR_FOLDER_RE.match(year_folder.strip()):
        raise ValueError(f"not a financial year folder: {year_folder!r}")
    sent, bill = parse_submission_folder(submission_folder)
    expected = financial_year_folder(sent)
    if year_folder.strip() != expected:
        raise ValueError(f"year folder {year_folder!r} does not contain sent month {sent} (expected {expected!r})")
    return sent, bill


def _list_dirs(path: str) -> List[os.DirEntry]:
    return sorted((e for e in os.scandir(path) if e.is_dir()), key=lambda e: e.name)


def _iter_submission_folders(gst_root: str, errors: List[ScanError]):
    """Yield (submission_dir_path, sent_month, bill_month) under gst_root.

    Raises:
        MatchError: the root itself cannot be read
    """
    try:
        year_dirs = _list_dirs(gst_root)
    except OSError as e:
        raise MatchError(gst_root, "scan_gst_submitted_folder", str(e))

    for year_dir in year_dirs:
        if not _YEAR_FOLDER_RE.match(year_dir.name):
            continue
        try:
            submission_dirs = _list_dirs(year_dir.path)
        except OSError as e:
            logger.warning("Cannot read year folder %s: %s", year_dir.path, e)
            errors.append(ScanError(year_dir.path, "scan_gst_submitted_folder", str(e)))
            continue
        for sub in submission_dirs:
            try:
                sent, bill = parse_submission_folder(sub.name)
            except ValueError:
                logger.debug("Skipping folder outside naming scheme: %s", sub.path)
                continue
            if financial_year_folder(sent) != year_dir.name:
                logger.warning("Submission folder %s is filed under %s, expected %s", sub.name, year_dir.name, financial_year_folder(sent))
            yield sub.path, sent, bill


def scan_submitted_folder(gst_root: str, candidate_names: Iterable[str]) -> MatchScan:
    """Find candidate bills that already sit in the GST submitted tree.

    Args:
        gst_root: root of `<YYYY-YY>/<BILL MONTH> <year> BILLS SUBMITTED IN <SENT MONTH> <year>/`
        candidate_names: file names (or full paths, basenames are compared)

    Returns:
        MatchScan: one GstMatch per matching file found
    """
    if not gst_root or not os.path.isdir(gst_root):
        raise MatchError(gst_root, "scan_gst_submitted_folder", "GST submitted folder does not exist")

    wanted = {os.path.basename(n) for n in candidate_names}
    matches: List[GstMatch] = []
    errors: List[ScanError] = []
    if not wanted:
        return MatchScan(matches=matches, errors=errors)

    for sub_path, sent, bill in _iter_submission_folders(gst_root, errors):
        try:
            names = sorted(os.listdir(sub_path))
        except OSError as e:
            logger.warning("Cannot read submission folder %s: %s", sub_path, e)
            errors.append(ScanError(sub_path, "scan_gst_submitted_folder", str(e)))
            continue
        for name in names:
            if name in wanted:
                matches.append(GstMatch(file_name=name, submission_month=sent, bill_month=bill, path=os.path.join(sub_path, name)))

    logger.info("GST folder scan found %d matches for %d candidates", len(matches), len(wanted))
    return MatchScan(matches=matches, errors=errors)


def latest_matches(matches: List[GstMatch]) -> Dict[str, GstMatch]:
    """One match per file name; the latest submission month wins."""
    best: Dict[str, GstMatch] = {}
    for m in matches:
        current = best.get(m.file_name)
        if current is None or m.submission_month > current.submission_month:
            best[m.file_name] = m
    return best


def _similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.normalized_similarity(a.upper(), b.upper())


def find_orphans(gst_root: str, candidate_names: Iterable[str], min_similarity: float = 0.85) -> List[Dict]:
    """Submitted files that match no candidate, with the closest candidate name.

    A close suggestion usually means the bill was renamed after submission.
    """
    if not gst_root or not os.path.isdir(gst_root):
        raise MatchError(gst_root, "find_orphans", "GST submitted folder does not exist")

    candidates = sorted({os.path.basename(n) for n in candidate_names})
    errors: List[ScanError] = []
    orphans = []
    for sub_path, sent, bill in _iter_submission_folders(gst_root, errors):
        try:
            names = sorted(n for n in os.listdir(sub_path) if os.path.isfile(os.path.join(sub_path, n)))
        except OSError as e:
            logger.warning("Cannot read submission folder %s: %s", sub_path, e)
            continue
        for name in names:
            if name in candidates:
                continue
            suggestion: Optional[str] = None
            score = 0.0
            for cand in candidates:
                s = _similarity(name, cand)
                if s > score:
                    suggestion, score = cand, s
            orphans.append({
                "file_name": name,
                "path": os.path.join(sub_path, name),
                "submission_month": sent,
                "bill_month": bill,
                "suggestion": suggestion if score >= min_similarity else None,
                "similarity": round(score, 3),
            })
    return orphans


