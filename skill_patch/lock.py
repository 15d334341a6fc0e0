"""File-based mutual exclusion between mutating operations."""

from __future__ import annotations

import contextlib
import json
import os
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from .constants import LOCK_FILE, LOCK_STALE_AFTER_S
from .errors import LockError
from .logger import get_logger

logger = get_logger(__name__)


def _lock_path(project_root: Path) -> Path:
    return project_root / LOCK_FILE


def _read_lock(lock_path: Path) -> tuple[int, float]:
    data = json.loads(lock_path.read_text(encoding="utf-8"))
    return int(data["pid"]), float(data["timestamp"])


def _is_process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


def _is_held(pid: int, timestamp: float, stale_after: float) -> bool:
    return time.time() - timestamp <= stale_after and _is_process_alive(pid)


def _create_lock_file(lock_path: Path) -> None:
    # O_EXCL makes creation atomic: it fails if another process got there first
    fd = os.open(str(lock_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL)
    try:
        os.write(fd, json.dumps({"pid": os.getpid(), "timestamp": time.time()}).encode())
    finally:
        os.close(fd)


def acquire_lock(project_root: Path, stale_after: float = LOCK_STALE_AFTER_S) -> Callable[[], None]:
    """Acquire the installation lock or fail fast. Returns a release function."""
    lock_path = _lock_path(project_root)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        _create_lock_file(lock_path)
        return lambda: release_lock(project_root)
    except FileExistsError:
        pass

    try:
        pid, timestamp = _read_lock(lock_path)
    except (OSError, ValueError, KeyError, TypeError):
        logger.warning("replacing unreadable lock file", path=str(lock_path))
    else:
        if _is_held(pid, timestamp, stale_after):
            started = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
            raise LockError(
                f"Operation in progress (pid {pid}, started {started}). If this is stale, delete {LOCK_FILE}"
            )
        logger.warning("replacing stale lock", pid=pid)

    with contextlib.suppress(FileNotFoundError):
        lock_path.unlink()

    try:
        _create_lock_file(lock_path)
    except FileExistsError as err:
        raise LockError("Lock contention: another process acquired the lock. Retry.") from err

    return lambda: release_lock(project_root)


def release_lock(project_root: Path) -> None:
    """Release the lock if it belongs to the current process."""
    lock_path = _lock_path(project_root)
    if not lock_path.exists():
        return
    try:
        pid, _ = _read_lock(lock_path)
    except (OSError, ValueError, KeyError, TypeError):
        # Corrupt lock file, nobody can own it
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()
        return
    if pid == os.getpid():
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()


def is_locked(project_root: Path, stale_after: float = LOCK_STALE_AFTER_S) -> bool:
    """Check whether a live, non-stale lock is held."""
    lock_path = _lock_path(project_root)
    if not lock_path.exists():
        return False
    try:
        pid, timestamp = _read_lock(lock_path)
    except (OSError, ValueError, KeyError, TypeError):
        return False
    return _is_held(pid, timestamp, stale_after)


@contextlib.contextmanager
def hold_lock(project_root: Path, stale_after: float = LOCK_STALE_AFTER_S) -> Iterator[None]:
    release = acquire_lock(project_root, stale_after)
    try:
        yield
    finally:
        release()
