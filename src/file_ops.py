import logging
import os
import shutil
from typing import Dict, Iterable, List, Tuple

from tracker_errors import TrackerError

logger = logging.getLogger(__name__)


def delete_files(paths: Iterable[str]) -> Tuple[List[str], List[TrackerError]]:
    """Delete bill files one by one; a failure does not stop the rest.

    Returns:
        (deleted_paths, errors)
    """
    deleted, errors = [], []
    for path in paths:
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("Could not delete %s: %s", path, e)
            errors.append(TrackerError(path, "delete_files", str(e)))
            continue
        deleted.append(path)
    return deleted, errors


def _unique_destination(dest_root: str, name: str) -> str:
    candidate = os.path.join(dest_root, name)
    stem, ext = os.path.splitext(name)
    n = 1
    while os.path.exists(candidate):
        candidate = os.path.join(dest_root, f"{stem} ({n}){ext}")
        n += 1
    return candidate


def move_files(paths: Iterable[str], dest_root: str) -> Tuple[Dict[str, str], List[TrackerError]]:
    """Move bill files into dest_root without overwriting existing files.

    Returns:
        (moved {old_path: new_path}, errors)
    """
    moved, errors = {}, []
    try:
        os.makedirs(dest_root, exist_ok=True)
    except OSError as e:
        return moved, [TrackerError(dest_root, "move_files", str(e))]
    for path in paths:
        destination = _unique_destination(dest_root, os.path.basename(path))
        try:
            shutil.move(path, destination)
        except OSError as e:
            logger.warning("Could not move %s: %s", path, e)
            errors.append(TrackerError(path, "move_files", str(e)))
            continue
        moved[path] = destination
    return moved, errors
