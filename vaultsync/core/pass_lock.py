"""Machine-wide guard so two sync passes never write to the remote at once.

The web scheduler, ``vaultsync run-once`` and ``vaultsync purge-archives`` run
in different processes; all of them take this lock before their first remote
write.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import filelock

from vaultsync.core import config as config_module


class SyncBusyError(RuntimeError):
    """Another process holds the pass lock."""

    def __init__(self, lock_path: str):
        super().__init__(f"sync_busy: lock held at {lock_path}")
        self.lock_path = lock_path


@contextmanager
def pass_lock(path: Optional[Path] = None) -> Generator[None, None, None]:
    """Hold the pass lock for the duration of the block; never waits."""
    lock_path = Path(path or config_module.PASS_LOCK_PATH)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock = filelock.FileLock(str(lock_path))
    try:
        lock.acquire(timeout=0)
    except filelock.Timeout as e:
        raise SyncBusyError(str(lock_path)) from e
    try:
        yield
    finally:
        lock.release()
