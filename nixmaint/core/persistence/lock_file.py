"""
Lock file — advisory, pid-based mutual exclusion between processes.

One marker file per lock name, holding the pid of the process that
owns it. A marker whose pid no longer exists is stale and is reclaimed.

The marker is written to a private temp file first and hard-linked into
place, so it is never observed empty and two processes racing for the
same name cannot both win. Stale markers are re-checked and removed
while holding an flock on a per-name guard file, so a reclaimer can
never delete a marker another reclaimer has just created.
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
GUARD_SUFFIX = ".guard"

# Each attempt either publishes the marker or clears a stale one
_MAX_ATTEMPTS = 5

# An unreadable marker this young may belong to a writer without atomic publish
_UNREADABLE_GRACE_SECONDS = 10.0


class LockError(Exception):
    """Raised when a lock marker cannot be created or inspected."""


class AlreadyRunningError(LockError):
    """Another live process holds the lock."""

    def __init__(self, lock_name: str, pid: int):
        super().__init__(f"'{lock_name}' is already running (PID: {pid})")
        self.lock_name = lock_name
        self.pid = pid


@dataclass
class LockHandle:
    """Proof of ownership for an acquired lock."""

    name: str
    path: Path
    pid: int
    acquired_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    released: bool = False


def lock_path(lock_dir: Path, lock_name: str) -> Path:
    """Marker path for a lock name."""
    return lock_dir / f"{lock_name}{LOCK_SUFFIX}"


def pid_alive(pid: int) -> bool:
    """Probe whether a process exists (signal 0)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError as e:
        return e.errno != errno.ESRCH
    return True


def read_holder(path: Path) -> int | None:
    """Return the pid recorded in a marker, or None if unreadable."""
    try:
        raw = path.read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def acquire_lock(lock_dir: Path, lock_name: str, pid: int | None = None) -> LockHandle:
    """Create the marker for ``lock_name``.

    Args:
        lock_dir: Directory holding lock markers (created if missing).
        lock_name: Name of the protected workflow.
        pid: Pid to record (default: this process).

    Returns:
        LockHandle for release_lock().

    Raises:
        AlreadyRunningError: A live process holds the lock.
        LockError: The marker could not be created.
    """
    owner = pid if pid is not None else os.getpid()
    path = lock_path(lock_dir, lock_name)

    try:
        lock_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LockError(f"Cannot create lock directory {lock_dir}: {e}") from e

    for _ in range(_MAX_ATTEMPTS):
        if _publish_marker(path, owner):
            logger.debug("Lock '%s' acquired (PID: %d)", lock_name, owner)
            return LockHandle(name=lock_name, path=path, pid=owner)
        _reclaim_if_stale(path, lock_name)

    raise LockError(f"Could not acquire lock '{lock_name}' after {_MAX_ATTEMPTS} attempts")


def _publish_marker(path: Path, owner: int) -> bool:
    """Atomically create ``path`` holding ``owner``. False if it exists."""
    tmp = path.with_name(f"{path.name}.{owner}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        fd = os.open(str(tmp), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            os.write(fd, f"{owner}\n".encode("ascii"))
            os.fsync(fd)
        finally:
            os.close(fd)
        os.link(tmp, path)
    except FileExistsError:
        return False
    except OSError as e:
        raise LockError(f"Cannot create lock file {path}: {e}") from e
    finally:
        tmp.unlink(missing_ok=True)
    return True


def _reclaim_if_stale(path: Path, lock_name: str) -> None:
    """Remove ``path`` if its holder is dead, or raise AlreadyRunningError.

    The holder is re-read under the guard flock, so only a marker that
    is still stale at that moment is ever deleted.
    """
    guard = path.with_name(f"{path.name}{GUARD_SUFFIX}")
    try:
        fd = os.open(str(guard), os.O_CREAT | os.O_RDWR, 0o644)
    except OSError as e:
        raise LockError(f"Cannot open lock guard {guard}: {e}") from e

    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        holder = read_holder(path)
        if holder is not None and pid_alive(holder):
            raise AlreadyRunningError(lock_name, holder)
        if holder is None:
            age = _marker_age(path)
            if age is None:
                # Released meanwhile
                return
            if age < _UNREADABLE_GRACE_SECONDS:
                raise LockError(f"Lock file {path} is unreadable; another process may be starting")
        logger.warning("Removing stale lock file %s (PID: %s)", path, holder)
        path.unlink(missing_ok=True)
    finally:
        os.close(fd)


def _marker_age(path: Path) -> float | None:
    try:
        return time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return None
    except OSError as e:
        raise LockError(f"Cannot inspect lock file {path}: {e}") from e


def release_lock(handle: LockHandle) -> None:
    """Remove the marker if it still belongs to ``handle``.

    Safe to call more than once; only the first call has an effect.
    """
    if handle.released:
        return
    handle.released = True

    holder = read_holder(handle.path)
    if holder is not None and holder != handle.pid:
        logger.warning(
            "Lock file %s now held by PID %d, leaving it in place", handle.path, holder
        )
        return

    try:
        handle.path.unlink(missing_ok=True)
        logger.debug("Lock '%s' released", handle.name)
    except OSError as e:
        logger.error("Failed to remove lock file %s: %s", handle.path, e)
