"""Exclusive lock files with stale-lock reclaim."""

from __future__ import annotations

import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class LockHandle:
    target_path: str
    lock_path: str


class FileLockTimeoutError(TimeoutError):
    """Timeout while acquiring a file lock, with structured details."""

    def __init__(self, lock_path: str, timeout_seconds: float, attempts: int) -> None:
        self.error = {
            "code": "lock_timeout",
            "message": f"Timed out waiting for lock: {lock_path}",
            "lock_path": lock_path,
            "timeout_seconds": timeout_seconds,
            "attempts": attempts,
        }
        super().__init__(json.dumps(self.error))


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _read_lock_payload(lock_path: Path) -> dict[str, Any] | None:
    try:
        raw = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return raw if isinstance(raw, dict) else None


def _is_stale(lock_path: Path, stale_after_seconds: float) -> bool:
    payload = _read_lock_payload(lock_path)
    if not payload or not isinstance(payload.get("pid"), int):
        return True
    created = payload.get("created_at")
    age = time.time() - float(created) if isinstance(created, (int, float)) else stale_after_seconds + 1
    return not pid_alive(int(payload["pid"])) or age > stale_after_seconds


def acquire_file_lock(
    target_path: str | Path,
    timeout_seconds: float = 10,
    stale_after_seconds: float = 300,
) -> LockHandle:
    """Create ``<target>.lock`` exclusively, reclaiming it when its holder is gone."""
    lock_path = Path(f"{target_path}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    started = time.monotonic()
    attempt = 0
    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            if _is_stale(lock_path, stale_after_seconds):
                lock_path.unlink(missing_ok=True)
                continue
            if time.monotonic() - started >= timeout_seconds:
                raise FileLockTimeoutError(str(lock_path), timeout_seconds=timeout_seconds, attempts=attempt) from None
            attempt += 1
            time.sleep(min(0.5, 0.02 * attempt))
            continue
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump({"pid": os.getpid(), "created_at": time.time()}, handle)
        return LockHandle(target_path=str(target_path), lock_path=str(lock_path))


def release_file_lock(handle: LockHandle) -> None:
    Path(handle.lock_path).unlink(missing_ok=True)


@contextmanager
def file_lock(target_path: str | Path, timeout_seconds: float = 10) -> Iterator[LockHandle]:
    handle = acquire_file_lock(target_path, timeout_seconds=timeout_seconds)
    try:
        yield handle
    finally:
        release_file_lock(handle)
