"""Heartbeat loop."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeartbeatStatus:
    running: bool
    interval_seconds: int
    busy: bool
    ticks_run: int
    ticks_skipped: int
    last_tick_at: float | None


class HeartbeatLoop:
    """Run heartbeat ticks in a background thread.

    A tick that fires while the previous one is still in flight is skipped,
    whether it came from the timer or from ``tick_once``.
    """

    def __init__(self, interval_seconds: int, tick_fn: Callable[[], Any]) -> None:
        self._interval_seconds = interval_seconds
        self._tick_fn = tick_fn
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._busy = threading.Lock()
        self._counters = threading.Lock()
        self._ticks_run = 0
        self._ticks_skipped = 0
        self._last_tick_at: float | None = None
        self.last_result: Any = None

    def tick_once(self) -> bool:
        """Run one tick now; False when another tick was already in flight.

        The tick function's return value is kept in ``last_result``.
        """
        if not self._busy.acquire(blocking=False):
            with self._counters:
                self._ticks_skipped += 1
            logger.warning("heartbeat tick skipped: previous tick still running")
            return False
        try:
            self._last_tick_at = time.time()
            self.last_result = None
            self.last_result = self._tick_fn()
        except Exception:  # noqa: BLE001
            logger.exception("heartbeat tick crashed unexpectedly")
        finally:
            with self._counters:
                self._ticks_run += 1
            self._busy.release()
        return True

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("heartbeat already running, ignoring start")
            return
        if self._interval_seconds <= 0:
            logger.info("heartbeat timer disabled (interval_seconds=%s)", self._interval_seconds)
            return
        self._stop.clear()

        def _runner() -> None:
            # First tick after one full interval.
            while not self._stop.wait(self._interval_seconds):
                self.tick_once()

        self._thread = threading.Thread(target=_runner, name="fryler-heartbeat", daemon=True)
        self._thread.start()
        logger.info("heartbeat started", extra={"interval_seconds": self._interval_seconds})

    def stop(self, timeout: float = 2.0) -> None:
        """Stop scheduling ticks. An in-flight tick is left to finish on its own."""
        self._stop.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("heartbeat stopped")

    def status(self) -> HeartbeatStatus:
        with self._counters:
            ticks_run = self._ticks_run
            ticks_skipped = self._ticks_skipped
        return HeartbeatStatus(
            running=bool(self._thread and self._thread.is_alive()),
            interval_seconds=self._interval_seconds,
            busy=self._busy.locked(),
            ticks_run=ticks_run,
            ticks_skipped=ticks_skipped,
            last_tick_at=self._last_tick_at,
        )
