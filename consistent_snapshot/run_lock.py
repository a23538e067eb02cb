"""Single-instance run lock so two snapshot runs never freeze the same mounts."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from filelock import FileLock, Timeout

from consistent_snapshot import config
from consistent_snapshot.exceptions import RunLockError


@contextmanager
def run_lock(lock_path: str, timeout: float = config.LOCK_TIMEOUT_SECONDS) -> Iterator[FileLock]:
    """
    Hold an exclusive lock for the duration of a run.

    Raises:
        RunLockError: If another process holds the lock after ``timeout`` seconds
    """
    lock = FileLock(lock_path)
    try:
        lock.acquire(timeout=timeout)
    except Timeout as exc:
        raise RunLockError(lock_path) from exc
    logging.debug("Acquired run lock %s", lock_path)
    try:
        yield lock
    finally:
        lock.release()
        logging.debug("Released run lock %s", lock_path)
