import logging
import os
import shutil

from tracker_errors import MirrorError

logger = logging.getLogger(__name__)


def copy_to_submitted_tree(src_path: str, gst_root: str, year_folder: str, submission_folder: str) -> str:
    """Place a copy of src_path under gst_root/year_folder/submission_folder.

    Returns:
        str: destination path of the copy

    Raises:
        MirrorError: the copy could not be made
    """
    if not gst_root:
        raise MirrorError(src_path, "copy_to_submitted_tree", "no GST submitted folder configured")
    dest_dir = os.path.join(gst_root, year_folder, submission_folder)
    dest = os.path.join(dest_dir, os.path.basename(src_path))
    try:
        os.makedirs(dest_dir, exist_ok=True)
        shutil.copy2(src_path, dest)
    except OSError as e:
        raise MirrorError(src_path, "copy_to_submitted_tree", str(e))
    logger.info("Mirrored %s -> %s", src_path, dest)
    return dest


def restore_mirror(src_path: str, mirrored_path: str) -> bool:
    """Re-create a mirrored copy at a known location. False if it already exists."""
    if os.path.exists(mirrored_path):
        return False
    try:
        os.makedirs(os.path.dirname(mirrored_path), exist_ok=True)
        shutil.copy2(src_path, mirrored_path)
    except OSError as e:
        raise MirrorError(src_path, "restore_mirror", str(e))
    logger.info("Restored mirror %s", mirrored_path)
    return True


def delete_from_submitted_tree(mirrored_path: str) -> bool:
    """Remove a mirrored copy. A copy that is already gone is not an error.

    Returns:
        bool: True if a file was removed
    """
    try:
        os.remove(mirrored_path)
    except FileNotFoundError:
        logger.debug("Mirror already gone: %s", mirrored_path)
        return False
    except OSError as e:
        raise MirrorError(mirrored_path, "delete_from_submitted_tree", str(e))

    submission_dir = os.path.dirname(mirrored_path)
    try:
        if not os.listdir(submission_dir):
            os.rmdir(submission_dir)
    except OSError as e:
        logger.debug("Left submission folder %s in place: %s", submission_dir, e)
    logger.info("Removed mirror %s", mirrored_path)
    return True
