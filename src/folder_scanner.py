"""
Read-only folder scanning for bill documents.

Every function here is a pure function of the paths it is given. A path
that cannot be read produces a ScanError in the result and an empty
contribution; the call as a whole never fails.
"""

import json
import logging
import os
from datetime import datetime
from typing import Iterable, List, Optional, Set

from bill_models import (
    BillsScan,
    FolderFiles,
    FolderStructure,
    SubfolderInfo,
    TrackedFile,
    TreeNode,
)
from config_loader import DEFAULTS
from tracker_errors import ScanError

logger = logging.getLogger(__name__)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _walk_tree(path: str, depth: int, subfolders: List[SubfolderInfo], errors: List[ScanError]) -> List[TreeNode]:
    try:
        entries = sorted(os.scandir(path), key=lambda e: e.name.lower())
    except OSError as e:
        logger.warning("Cannot read folder %s: %s", path, e)
        errors.append(ScanError(path, "scan_folder_structure", str(e)))
        return []

    nodes = []
    for entry in entries:
        if _is_hidden(entry.name):
            continue
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        if not is_dir:
            continue
        subfolders.append(SubfolderInfo(name=entry.name, path=entry.path, depth=depth))
        node = TreeNode(name=entry.name, path=entry.path)
        node.children = _walk_tree(entry.path, depth + 1, subfolders, errors)
        nodes.append(node)
    return nodes


def scan(root_path: str) -> FolderStructure:
    """Enumerate every nested subfolder of root_path.

    Returns:
        FolderStructure: flat subfolder list (depth-first order) and the tree
    """
    subfolders: List[SubfolderInfo] = []
    errors: List[ScanError] = []
    if not root_path or not os.path.isdir(root_path):
        logger.warning("Root folder is missing: %s", root_path)
        errors.append(ScanError(root_path, "scan_folder_structure", "folder does not exist"))
        return FolderStructure(subfolders=[], tree=[], errors=errors)
    tree = _walk_tree(root_path, 1, subfolders, errors)
    logger.debug("Scanned %s: %d subfolders", root_path, len(subfolders))
    return FolderStructure(subfolders=subfolders, tree=tree, errors=errors)


def _stat_file(path: str, folder_name: str, folder_path: str) -> TrackedFile:
    st = os.stat(path)
    name = os.path.basename(path)
    # st_birthtime exists on macOS/BSD; elsewhere fall back to ctime
    created_ts = getattr(st, "st_birthtime", None) or st.st_ctime
    return TrackedFile(
        path=path,
        name=name,
        extension=os.path.splitext(name)[1].lower(),
        size=st.st_size,
        created=datetime.fromtimestamp(created_ts),
        modified=datetime.fromtimestamp(st.st_mtime),
        folder_name=folder_name,
        folder_path=folder_path,
    )


def stat_file(path: str) -> TrackedFile:
    """Snapshot a single file outside of a folder scan. Raises OSError."""
    folder_path = os.path.dirname(path)
    return _stat_file(path, os.path.basename(folder_path), folder_path)


def _collect_files(folder_path: str, extensions: Set[str], errors: List[ScanError]) -> List[TrackedFile]:
    folder_name = os.path.basename(os.path.normpath(folder_path))
    files = []

    def on_error(err: OSError):
        logger.warning("Cannot read %s: %s", err.filename, err)
        errors.append(ScanError(err.filename or folder_path, "scan_bills", str(err)))

    for dirpath, dirnames, filenames in os.walk(folder_path, onerror=on_error):
        dirnames[:] = sorted(d for d in dirnames if not _is_hidden(d))
        for filename in sorted(filenames):
            if _is_hidden(filename):
                continue
            if os.path.splitext(filename)[1].lower() not in extensions:
                continue
            path = os.path.join(dirpath, filename)
            try:
                files.append(_stat_file(path, folder_name, folder_path))
            except OSError as e:
                logger.warning("Cannot stat %s: %s", path, e)
                errors.append(ScanError(path, "scan_bills", str(e)))
    return files


def scan_files(paths: Iterable[str], extensions: Optional[Iterable[str]] = None) -> BillsScan:
    """Collect bill files under each folder in paths.

    Args:
        paths: subfolder paths to scan (recursively)
        extensions: allowed extensions including the dot; defaults to config

    Returns:
        BillsScan: one FolderFiles per readable path plus per-path errors
    """
    allowed = {e.lower() for e in (extensions or DEFAULTS["scan"]["extensions"])}
    folders: List[FolderFiles] = []
    errors: List[ScanError] = []
    for path in paths:
        if not os.path.isdir(path):
            logger.warning("Subfolder is missing, treating as empty: %s", path)
            errors.append(ScanError(path, "scan_bills", "folder does not exist"))
            continue
        files = _collect_files(path, allowed, errors)
        folders.append(FolderFiles(folder_name=os.path.basename(os.path.normpath(path)), folder_path=path, files=files))
    return BillsScan(folders=folders, errors=errors)


def resolve_selected_paths(selected: Iterable[str], subfolders: List[SubfolderInfo]) -> List[str]:
    """Selections may be stored as full paths or bare folder names."""
    resolved = []
    for identifier in selected:
        if "/" in identifier or "\\" in identifier:
            resolved.append(identifier)
            continue
        found = next((sf for sf in subfolders if sf.name == identifier or sf.path == identifier), None)
        if found:
            resolved.append(found.path)
        else:
            logger.warning("Selected subfolder not found under root: %s", identifier)
    return resolved


def is_within(path: str, folder: str) -> bool:
    path = os.path.normpath(path)
    folder = os.path.normpath(folder)
    return path == folder or path.startswith(folder + os.sep)


def filter_ignored(files: List[TrackedFile], ignored_files: Set[str], ignored_subfolders: Set[str] = frozenset()) -> List[TrackedFile]:
    kept = []
    for f in files:
        if f.path in ignored_files or f.name in ignored_files:
            continue
        if any(is_within(f.path, sub) for sub in ignored_subfolders if sub):
            continue
        kept.append(f)
    return kept


def parse_manual_subfolders(text: str) -> List[str]:
    """Parse a newline separated list or a JSON array of subfolder paths."""
    if not text or not text.strip():
        raise ValueError("No subfolders provided")
    stripped = text.strip()
    if stripped.startswith("["):
        try:
            paths = json.loads(stripped)
        except json.JSONDecodeError:
            raise ValueError("Invalid format. Use newline-separated paths or valid JSON array")
        if not isinstance(paths, list):
            raise ValueError("Invalid format. Use newline-separated paths or valid JSON array")
        paths = [str(p).strip() for p in paths if str(p).strip()]
    else:
        paths = [line.strip() for line in stripped.splitlines() if line.strip()]
    if not paths:
        raise ValueError("No valid paths found")
    return paths
