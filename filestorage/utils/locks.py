"""
Single-flight lock for batch jobs.

An advisory lock file, hard-linked into place with the owner pid already
written. It only coordinates workers that share a filesystem; it is not a
distributed lock.
"""
import errno
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from filestorage.logging_config import setup_logging
from filestorage.storage.exceptions import SyncAlreadyRunningError

logger = setup_logging()


def _owner_is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as exc:
        # EPERM means the process exists but belongs to someone else
        return exc.errno != errno.ESRCH
    return True


def _read_owner(lock_path: Path) -> int | None:
    try:
        return int(lock_path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _try_acquire(lock_path: Path, pid: int) -> bool:
    """Create the lock with the pid already inside, so readers never see it empty."""
    temp_path = lock_path.with_name(f".{lock_path.name}.{pid}.{uuid.uuid4().hex[:8]}")
    temp_path.write_text(str(pid), encoding="utf-8")
    try:
        os.link(temp_path, lock_path)
    except FileExistsError:
        return False
    finally:
        temp_path.unlink(missing_ok=True)
    return True


@contextmanager
def file_lock(
    lock_path: str | Path,
    timeout: float = 0,
    poll_interval: float = 0.2,
) -> Iterator[None]:
    """
    Hold an exclusive lock file for the duration of the block.

    A lock left behind by a dead process (or with unreadable contents) is
    treated as stale and removed.

    Args:
        lock_path: Lock file location
        timeout: Seconds to wait for a held lock (0 fails immediately)
        poll_interval: Seconds between attempts while waiting

    Raises:
        SyncAlreadyRunningError: If the lock is still held after timeout
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    pid = os.getpid()
    start = time.monotonic()

    while True:
        if _try_acquire(lock_path, pid):
            break

        owner = _read_owner(lock_path)
        if owner is None or not _owner_is_alive(owner):
            # another worker may have replaced the stale lock since it was read
            if _read_owner(lock_path) == owner:
                logger.warning(f"Removing stale lock {lock_path} (owner pid: {owner})")
                lock_path.unlink(missing_ok=True)
            continue
        if time.monotonic() - start >= timeout:
            raise SyncAlreadyRunningError(
                f"Lock {lock_path} is held by pid {owner}"
            )
        time.sleep(poll_interval)

    try:
        yield
    finally:
        if _read_owner(lock_path) == pid:
            lock_path.unlink(missing_ok=True)
        else:
            logger.warning(f"Lock {lock_path} was taken over by another process; leaving it in place")
