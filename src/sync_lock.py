#!/usr/bin/env python
"""
Data directory lock.

Keeps two processes (e.g. a `watch` loop and a manual `mark-sent`) from
read-modify-writing the tracking document at the same time.
"""

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config_loader import get_data_dir

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = ".bill_tracker_lock.json"


class LockBusyError(RuntimeError):
    pass


class SyncLock:
    """JSON lock file with a timeout after which a stale lock is taken over."""

    def __init__(self, data_dir: str = None, timeout: int = 3600):
        """
        Args:
            data_dir: directory holding the lock file
            timeout: seconds after which an existing lock is considered stale
        """
        self.timeout = timeout
        self.lock_file = os.path.join(data_dir or get_data_dir(), LOCK_FILE_NAME)

    def acquire_lock(self, owner: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        """Take the lock.

        Args:
            owner: identifier of the holder (command name and pid)
            metadata: extra context stored with the lock

        Returns:
            bool: True if the lock was acquired
        """
        existing_lock = self._load_lock()

        if existing_lock:
            try:
                lock_time = datetime.fromisoformat(existing_lock.get("timestamp", ""))
            except ValueError:
                lock_time = datetime.min
            if datetime.now() - lock_time < timedelta(seconds=self.timeout):
                return False
            logger.warning("Lock held by %s timed out, taking over", existing_lock.get("owner"))
            self._remove_lock()

        lock_data = {
            "owner": owner,
            "pid": os.getpid(),
            "timestamp": datetime.now().isoformat(),
            "timeout": self.timeout,
            "metadata": metadata or {},
        }
        self._save_lock(lock_data)
        logger.debug("Lock acquired by %s", owner)
        return True

    def release_lock(self, owner: str) -> bool:
        existing_lock = self._load_lock()

        if not existing_lock:
            logger.warning("No lock to release for %s", owner)
            return False

        if existing_lock.get("owner") != owner:
            logger.error("Lock is owned by %s, not %s", existing_lock.get("owner"), owner)
            return False

        self._remove_lock()
        logger.debug("Lock released by %s", owner)
        return True

    def get_lock_info(self) -> Optional[Dict[str, Any]]:
        return self._load_lock()

    @contextmanager
    def held(self, owner: str, wait_seconds: float = 0.0, poll: float = 0.5):
        """Hold the lock for a block, optionally waiting for it first.

        Raises:
            LockBusyError: the lock stayed taken for wait_seconds
        """
        deadline = time.monotonic() + wait_seconds
        while not self.acquire_lock(owner):
            if time.monotonic() >= deadline:
                info = self.get_lock_info() or {}
                raise LockBusyError(f"tracker data is locked by {info.get('owner')} since {info.get('timestamp')}")
            time.sleep(poll)
        try:
            yield self
        finally:
            self.release_lock(owner)

    def _load_lock(self) -> Optional[Dict[str, Any]]:
        try:
            if os.path.exists(self.lock_file):
                with open(self.lock_file, "r", encoding="utf-8") as f:
                    return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        return None

    def _save_lock(self, lock_data: Dict[str, Any]):
        os.makedirs(os.path.dirname(self.lock_file), exist_ok=True)
        with open(self.lock_file, "w", encoding="utf-8") as f:
            json.dump(lock_data, f, ensure_ascii=False, indent=2)

    def _remove_lock(self):
        try:
            if os.path.exists(self.lock_file):
                os.remove(self.lock_file)
        except FileNotFoundError:
            pass
