"""Single-watcher lock for ``plugin-bridge run --watch``.

The lock is a small JSON file ``{"pid": ..., "createdAt": ...}``. It is written
to a temporary file first and hard-linked onto the lock path, so the lock never
exists without its content and a second link fails with EEXIST.

A lock whose owner process is gone is considered stale and is replaced once.
Recovery runs under an flock on ``watch.lock.guard`` and re-reads the lock
right before removing it, so a lock another process has just taken is never
deleted. Losing any of these races reports the lock as busy.

PID reuse by the OS can make a stale lock look alive. That window is accepted.
"""

from __future__ import annotations

import fcntl
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .debug_log import DebugLogger
from .exceptions import WatchLockError
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.watch_lock", PRIMARY_LOG_FILENAME)


def is_process_alive(pid: Optional[int]) -> bool:
    if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user.
        return True
    except OSError:
        return False


def parse_lock_pid(raw_text: str) -> Optional[int]:
    """PID recorded in a lock file. Accepts the JSON form and a bare number."""
    if not raw_text or not raw_text.strip():
        return None
    try:
        parsed = json.loads(raw_text)
    except ValueError:
        return None
    if isinstance(parsed, dict):
        pid = parsed.get("pid")
        return pid if isinstance(pid, int) and not isinstance(pid, bool) else None
    if isinstance(parsed, int) and not isinstance(parsed, bool):
        return parsed
    return None


def read_lock_pid(lock_path: Path) -> Optional[int]:
    try:
        return parse_lock_pid(lock_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError):
        return None


class WatchLock:
    """Handle for a held watch lock. Use :meth:`acquire` to obtain one."""

    def __init__(self, lock_path: Path, debug_log: DebugLogger, pid: int):
        self.lock_path = lock_path
        self.pid = pid
        self._debug_log = debug_log
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @classmethod
    def acquire(
        cls, lock_path: Path, debug_log: Optional[DebugLogger] = None
    ) -> Optional["WatchLock"]:
        """Try to take the lock without blocking.

        Returns None when a live process holds it. Raises WatchLockError only
        for unexpected filesystem errors.
        """
        debug_log = debug_log or DebugLogger(None)
        pid = os.getpid()

        try:
            created = _create_lock_file(lock_path, pid)
        except OSError as e:
            raise WatchLockError(f"Cannot create watch lock {lock_path}: {e}") from e

        if not created:
            existing_pid = read_lock_pid(lock_path)
            if is_process_alive(existing_pid):
                logger.info(f"Watch lock busy: {lock_path} (pid {existing_pid})")
                debug_log.event("watch-lock-busy", lockPath=str(lock_path), existingPid=existing_pid)
                return None

            try:
                created = _replace_stale_lock(lock_path, pid, existing_pid)
            except OSError as e:
                logger.warning(f"Stale watch lock recovery failed for {lock_path}: {e}")
                created = False

            if not created:
                # Another process took the lock first.
                debug_log.event("watch-lock-busy", lockPath=str(lock_path), existingPid=existing_pid)
                return None

            logger.info(f"Recovered stale watch lock {lock_path} (dead pid {existing_pid})")
            debug_log.event("watch-lock-recovered", lockPath=str(lock_path), existingPid=existing_pid)

        debug_log.event("watch-lock-acquired", lockPath=str(lock_path))
        return cls(lock_path, debug_log, pid)

    def release(self) -> None:
        """Remove the lock file if it still records this process. Safe to call twice."""
        if self._released:
            return
        self._released = True

        try:
            if read_lock_pid(self.lock_path) == self.pid:
                self.lock_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove watch lock {self.lock_path}: {e}")

        self._debug_log.event("watch-lock-released", lockPath=str(self.lock_path))

    def __enter__(self) -> "WatchLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _create_lock_file(lock_path: Path, pid: int) -> bool:
    """Publish the lock file with its content in one step. False if it already exists."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(
        {"pid": pid, "createdAt": datetime.now(timezone.utc).isoformat()},
        ensure_ascii=False,
    )
    tmp_path = lock_path.with_name(f".{lock_path.name}.{pid}.{os.urandom(4).hex()}.tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    try:
        os.link(tmp_path, lock_path)
    except FileExistsError:
        return False
    finally:
        tmp_path.unlink(missing_ok=True)
    return True


def _replace_stale_lock(lock_path: Path, pid: int, stale_pid: Optional[int]) -> bool:
    """Swap a stale lock for ours. False if the lock changed hands meanwhile."""
    guard_path = lock_path.with_name(lock_path.name + ".guard")
    with open(guard_path, "a", encoding="utf-8") as guard:
        fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
        try:
            if lock_path.exists():
                current_pid = read_lock_pid(lock_path)
                if current_pid != stale_pid or is_process_alive(current_pid):
                    return False
                lock_path.unlink(missing_ok=True)
            return _create_lock_file(lock_path, pid)
        finally:
            fcntl.flock(guard.fileno(), fcntl.LOCK_UN)
