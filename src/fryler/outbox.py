"""File-based outbox for actions that must run outside the sandbox.

The sandboxed side writes one JSON file per action into a shared directory;
the host side drains the directory and dispatches each action once. A file is
always deleted after its dispatch attempt, so a failing action is dropped
rather than retried.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ACTION_SAY = "say"
ACTION_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"
DEFAULT_SETTLE_SECONDS = 0.05


@dataclass(slots=True)
class OutboxAction:
    type: str
    text: str
    created_at: str
    voice: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "text": self.text}
        if self.voice:
            payload["voice"] = self.voice
        payload["created_at"] = self.created_at
        return payload

    @classmethod
    def from_dict(cls, raw: Any) -> OutboxAction:
        if not isinstance(raw, dict):
            raise ValueError("outbox action must be a JSON object")
        action_type = raw.get("type")
        if not isinstance(action_type, str) or not action_type:
            raise ValueError("outbox action is missing its type")
        text = raw.get("text")
        voice = raw.get("voice")
        return cls(
            type=action_type,
            text=text if isinstance(text, str) else "",
            created_at=str(raw.get("created_at", "")),
            voice=voice if isinstance(voice, str) and voice else None,
        )


Dispatcher = Callable[[OutboxAction], None]


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def default_outbox_dir() -> Path:
    """Container: ~/.fryler/outbox. Host: ~/.fryler/data/outbox (the mounted volume)."""
    home = Path.home() / ".fryler"
    if os.getenv("FRYLER_CONTAINER") == "1":
        return home / "outbox"
    return home / "data" / "outbox"


class Outbox:
    """Producer and consumer operations on one outbox directory."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self.directory = Path(directory).expanduser() if directory is not None else default_outbox_dir()

    def write_action(self, action: OutboxAction) -> Path:
        """Write via a temporary name and rename, so readers never see a partial file."""
        self.directory.mkdir(parents=True, exist_ok=True)
        stem = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        temp_path = self.directory / f"{stem}{TEMP_SUFFIX}"
        final_path = self.directory / f"{stem}{ACTION_SUFFIX}"
        try:
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(action.to_dict(), handle, ensure_ascii=False)
            os.replace(temp_path, final_path)
        finally:
            if temp_path.exists():
                temp_path.unlink()
        return final_path

    def write_say_action(self, text: str, voice: str | None = None) -> Path:
        return self.write_action(OutboxAction(type=ACTION_SAY, text=text, voice=voice or None, created_at=_iso_now()))

    def pending_files(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return sorted(p for p in self.directory.iterdir() if p.is_file() and p.name.endswith(ACTION_SUFFIX))

    def process_pending_actions(self, dispatcher: Dispatcher) -> int:
        """Dispatch every visible action in filename order and delete each file afterwards."""
        self.directory.mkdir(parents=True, exist_ok=True)
        files = self.pending_files()
        for path in files:
            try:
                action = OutboxAction.from_dict(json.loads(path.read_text(encoding="utf-8")))
                dispatcher(action)
            except Exception as exc:  # noqa: BLE001
                logger.warning("outbox: failed to dispatch action", extra={"file": path.name, "error": str(exc)})
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("outbox: failed to delete action file", extra={"file": path.name, "error": str(exc)})
        if files:
            logger.debug("outbox: drained %s action(s)", len(files))
        return len(files)


def dispatch_action(action: OutboxAction, say_binary: str = "say") -> None:
    """Host-side dispatcher: speak ``say`` actions with the platform TTS utility."""
    if action.type != ACTION_SAY:
        logger.warning("outbox: unknown action type", extra={"action_type": action.type})
        return
    if not action.text.strip():
        logger.warning("outbox: say action has no text")
        return
    args = [say_binary]
    if action.voice:
        args.extend(["-v", action.voice])
    args.append(action.text)
    subprocess.run(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)


def make_dispatcher(say_binary: str = "say") -> Dispatcher:
    return lambda action: dispatch_action(action, say_binary=say_binary)


class _OutboxEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: OutboxWatcher) -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(str(getattr(event, "dest_path", "") or event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(str(event.src_path))


class OutboxWatcher:
    """Drain the outbox shortly after files appear.

    Notifications arriving within the settle window restart the delay, so a
    burst of writes produces one drain pass.
    """

    def __init__(self, outbox: Outbox, dispatcher: Dispatcher, settle_seconds: float = DEFAULT_SETTLE_SECONDS) -> None:
        self._outbox = outbox
        self._dispatcher = dispatcher
        self._settle_seconds = settle_seconds
        self._observer: Any | None = None
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._drain_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self, drain_on_start: bool = True) -> None:
        if self._observer is not None:
            return
        self._outbox.directory.mkdir(parents=True, exist_ok=True)
        observer = Observer()
        observer.schedule(_OutboxEventHandler(self), str(self._outbox.directory), recursive=False)
        observer.start()
        self._observer = observer
        logger.info("outbox: watching %s", self._outbox.directory)
        if drain_on_start:
            self.drain()

    def stop(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None
            logger.info("outbox: stopped watching %s", self._outbox.directory)

    def notify(self, path: str) -> None:
        if not path.endswith(ACTION_SUFFIX):
            return
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self._settle_seconds, self._on_settled)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _on_settled(self) -> None:
        with self._timer_lock:
            self._timer = None
        self.drain()

    def drain(self) -> int:
        with self._drain_lock:
            try:
                return self._outbox.process_pending_actions(self._dispatcher)
            except Exception:  # noqa: BLE001
                logger.exception("outbox: drain failed")
                return 0
