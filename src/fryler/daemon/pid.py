"""PID file single-instance guard."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fryler.filelock import pid_alive

logger = logging.getLogger(__name__)


class PidFile:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def read(self) -> int | None:
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def write(self, pid: int | None = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid if pid is not None else os.getpid()), encoding="utf-8")

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def running_pid(self) -> int | None:
        """PID recorded in the file when that process is alive, else None."""
        pid = self.read()
        if pid is None or not pid_alive(pid):
            return None
        return pid

    def acquire(self) -> bool:
        """Claim the PID file for this process; False when another live process holds it.

        A file naming a dead process, or this process itself (a container
        restart reuses low PIDs), is treated as stale and replaced.
        """
        existing = self.read()
        if existing is not None and existing != os.getpid() and pid_alive(existing):
            return False
        if self.path.exists():
            logger.info("reclaiming stale pid file", extra={"path": str(self.path), "stale_pid": existing})
            self.remove()
        self.write()
        return True
