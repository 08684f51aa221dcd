"""
Advisory file locking for plan-file rewrites.

Targeted mutations read a whole plan file, patch a line and write it back.
Holding flock on the plan file for that cycle serialises cooperating etch
processes. Editors and other tools do not take the lock, so for them the
plan file remains last-writer-wins.
"""

import fcntl
import logging
import time
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10
POLL_INTERVAL = 0.1


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


@contextmanager
def file_lock(path: str | Path, timeout: float = DEFAULT_TIMEOUT):
    """
    Hold an exclusive flock on an existing file, yield, release on exit.

    The lock is taken on the file itself rather than a sidecar so plan
    directories stay free of lock files. Writers must rewrite the file in
    place (truncate + write), which Path.write_text does.

    Args:
        path: File to lock (must exist)
        timeout: Seconds to wait before raising LockTimeout
    """
    path = Path(path)
    fd = open(path, 'r')
    start = time.monotonic()

    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise LockTimeout(f"Could not lock {path.name} within {timeout}s")
                time.sleep(POLL_INTERVAL)

        logger.debug(f"Locked {path}")
        yield
    finally:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            fd.close()
