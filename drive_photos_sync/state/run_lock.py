"""
Mutual-exclusion guard around a full sync run.

Cursor, ledger and failure counters are single-writer state, so two runs
must never overlap. The lock is an advisory ``flock`` on a file in the
state directory; the kernel drops it if the process dies.
"""
import fcntl
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from drive_photos_sync.exceptions import RunLockedError

logger = logging.getLogger(__name__)


class RunLock:
    """Exclusive, non-blocking lock held for the duration of one run."""

    def __init__(self, lock_file: Path):
        self.lock_file = Path(lock_file)
        self.lock_fd: Optional[TextIO] = None

    def acquire(self) -> None:
        """
        Take the lock or fail fast.

        Raises:
            RunLockedError: If another process holds the lock
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_fd = open(self.lock_file, 'a+')
        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (IOError, OSError):
            self.lock_fd.seek(0)
            holder = self.lock_fd.read().strip()
            self.lock_fd.close()
            self.lock_fd = None
            raise RunLockedError(
                f"Another sync run is in progress (lock: {self.lock_file})",
                lock_path=str(self.lock_file),
                holder=holder,
            )

        # Record the holder for debugging
        self.lock_fd.seek(0)
        self.lock_fd.truncate()
        self.lock_fd.write(f"{os.getpid()}\n{datetime.now().isoformat()}\n")
        self.lock_fd.flush()
        logger.debug(f"🔒 Sync lock acquired (PID: {os.getpid()})")

    def release(self) -> None:
        if not self.lock_fd:
            return
        try:
            self.lock_fd.seek(0)
            self.lock_fd.truncate()
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
        finally:
            self.lock_fd.close()
            self.lock_fd = None
        logger.debug("🔓 Sync lock released")

    def __enter__(self) -> 'RunLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
