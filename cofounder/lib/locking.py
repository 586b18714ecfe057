"""
Lock management for cofounder.

Per-idea advisory locks serialize ledger read-then-append sequences and
transition attempts. With a home directory they are flock-based and hold
across processes; without one they fall back to process-local locks.
"""

import atexit
import fcntl
import logging
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


LOCK_POLL_SECONDS = 0.2

_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def _local_lock(key: str) -> threading.Lock:
    with _local_locks_guard:
        if key not in _local_locks:
            _local_locks[key] = threading.Lock()
        return _local_locks[key]


@contextmanager
def _acquire_file_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Lock files are never deleted: removing one lets two processes hold
    "exclusive" locks on different inodes with the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.time()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.time() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(LOCK_POLL_SECONDS)

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            fd.close()
        except (OSError, ValueError):
            pass

    atexit.register(cleanup)

    # Signal handlers can only be swapped from the main thread
    in_main = threading.current_thread() is threading.main_thread()
    if in_main:
        original_sigterm = signal.signal(signal.SIGTERM, lambda *_: sys.exit(1))
        original_sigint = signal.signal(signal.SIGINT, lambda *_: sys.exit(1))

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        if in_main:
            signal.signal(signal.SIGTERM, original_sigterm)
            signal.signal(signal.SIGINT, original_sigint)
        cleanup()


@contextmanager
def _acquire_local_lock(key: str, timeout: float, lock_name: str):
    lock = _local_lock(key)
    if not lock.acquire(timeout=timeout):
        raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
    try:
        yield
    finally:
        lock.release()


@contextmanager
def idea_lock(home: Optional[Path], idea_id: str, purpose: str, timeout: float = 60):
    """
    Acquire the per-idea lock for one purpose ("ledger" or "transition").

    Locks for different purposes are independent, so a transition attempt
    holding its lock can still take the ledger lock.
    """
    lock_name = f"{purpose} lock for {idea_id}"
    if home is None:
        cm = _acquire_local_lock(f"{idea_id}:{purpose}", timeout, lock_name)
    else:
        lock_file = home / "locks" / purpose / f"{idea_id}.lock"
        cm = _acquire_file_lock(lock_file, timeout, lock_name)

    with cm:
        logger.debug(f"[LOCK] Acquired {lock_name}")
        yield
