"""
Per-conversation locking.

One exclusive flock per conversation (task-<id>, project-<id>) so that
requests on the same conversation are applied strictly in order, while
different conversations run in parallel.
"""

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_POLL_INTERVAL = 0.1


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


class LockCancelled(Exception):
    """The caller cancelled while waiting for a lock."""
    pass


def task_lock_key(task_id: str) -> str:
    return f"task-{task_id}"


def project_lock_key(project_id: str) -> str:
    return f"project-{project_id}"


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str, cancel=None):
    """
    Internal helper to acquire a file lock.

    Lock files are never deleted: unlinking one while another process waits
    on it would let two holders lock different inodes under one path.
    `cancel` is anything with a `cancelled` flag; it is polled while waiting.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if cancel is not None and cancel.cancelled:
                    logger.info(f"[LOCK] Cancelled while waiting for {lock_name}")
                    raise LockCancelled(f"Cancelled while waiting for {lock_name}")
                if time.monotonic() - start > timeout:
                    raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
                time.sleep(LOCK_POLL_INTERVAL)

        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug(f"[LOCK] Acquired {lock_name}")
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug(f"[LOCK] Released {lock_name}")
    finally:
        fd.close()


@contextmanager
def conversation_lock(lock_dir: Path, key: str, timeout: float = 60, cancel=None):
    """
    Acquire the lock for one conversation, yield, release on exit.

    Raises:
        LockTimeout: If another request holds the lock past `timeout` seconds
        LockCancelled: If `cancel` fired while waiting
    """
    lock_file = Path(lock_dir) / f"{key}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for {key}", cancel):
        yield
