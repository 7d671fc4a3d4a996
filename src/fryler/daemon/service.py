"""Daemon lifecycle: start, graceful shutdown, stop and status."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass
from types import FrameType, TracebackType

from fryler.app import AppContext
from fryler.config import AppConfig
from fryler.daemon.pid import PidFile
from fryler.diagnostics import memory_snapshot
from fryler.filelock import pid_alive
from fryler.logging_setup import configure_logging

logger = logging.getLogger(__name__)


class DaemonAlreadyRunningError(RuntimeError):
    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"fryler daemon is already running (PID {pid})")


@dataclass(slots=True)
class DaemonStatus:
    running: bool
    pid: int | None
    pid_path: str
    container_name: str
    container_image: str


class Daemon:
    """Foreground daemon process around one AppContext."""

    def __init__(self, context: AppContext, quiet: bool = False) -> None:
        self._context = context
        self._quiet = quiet
        self.pid_file = PidFile(context.config.paths.pid_path)
        self._stop_requested = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._running = False
        self._exit_code = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> int:
        """Run until a shutdown signal arrives; returns the process exit code."""
        if not self.pid_file.acquire():
            raise DaemonAlreadyRunningError(self.pid_file.read())

        config = self._context.config
        log_path = configure_logging(config.paths.log_dir, config.logging.level, quiet=self._quiet)
        logger.info("starting fryler daemon", extra={"pid": os.getpid(), "log_file": str(log_path)})
        self._install_handlers()
        self._running = True

        try:
            self._context.identity.init_identity_files()
            self._context.store.initialize()
            logger.info("database initialized", extra={"db_path": str(self._context.store.db_path)})
            logger.info(
                "identity files loaded",
                extra={
                    "soul_length": len(self._context.identity.read_soul()),
                    "memory_length": len(self._context.identity.read_memory()),
                },
            )
            self._context.heartbeat.start()
            logger.info("fryler daemon is running", extra={"pid": os.getpid()})
        except Exception:  # noqa: BLE001
            logger.exception("failed to start daemon")
            self.shutdown()
            return 1

        while not self._stop_requested.wait(1.0):
            pass
        self.shutdown()
        return self._exit_code

    def request_stop(self, exit_code: int = 0) -> None:
        if exit_code:
            self._exit_code = exit_code
        self._stop_requested.set()

    def shutdown(self) -> None:
        """Stop the heartbeat, close the store, remove the PID file. Safe to call twice."""
        with self._shutdown_lock:
            if not self._running:
                return
            self._running = False
        logger.info("shutting down fryler daemon")
        self._context.heartbeat.stop()
        self._context.store.close()
        logger.info("database closed")
        self.pid_file.remove()
        logger.info("fryler daemon shutdown complete")

    def _install_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._on_signal)
        signal.signal(signal.SIGINT, self._on_signal)
        sys.excepthook = self._on_fatal
        threading.excepthook = self._on_thread_fatal

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.info("received %s", signal.Signals(signum).name)
        self.request_stop()

    def _on_fatal(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        logger.critical("FATAL: uncaught exception", exc_info=(exc_type, exc, tb), extra=memory_snapshot())
        self._exit_code = 1
        self.shutdown()

    def _on_thread_fatal(self, args: threading.ExceptHookArgs) -> None:
        exc_info = (args.exc_type, args.exc_value, args.exc_traceback) if args.exc_value is not None else None
        thread_name = args.thread.name if args.thread is not None else "unknown"
        logger.critical("FATAL: uncaught exception in thread %s", thread_name, exc_info=exc_info, extra=memory_snapshot())
        self.request_stop(exit_code=1)


def start_daemon(context: AppContext, quiet: bool = False) -> int:
    return Daemon(context, quiet=quiet).start()


def stop_daemon(config: AppConfig, grace_seconds: float = 2.0) -> str:
    """SIGTERM the recorded daemon, then SIGKILL if it outlives the grace period.

    Returns one of ``not_running``, ``stale``, ``stopped`` or ``killed``.
    """
    pid_file = PidFile(config.paths.pid_path)
    pid = pid_file.read()
    if pid is None:
        return "not_running"
    if not pid_alive(pid):
        pid_file.remove()
        return "stale"

    logger.info("stopping fryler daemon", extra={"pid": pid})
    os.kill(pid, signal.SIGTERM)
    deadline = time.monotonic() + grace_seconds
    while time.monotonic() < deadline:
        if not pid_alive(pid):
            return "stopped"
        time.sleep(0.1)
    if not pid_alive(pid):
        return "stopped"
    logger.warning("daemon still running after SIGTERM, sending SIGKILL", extra={"pid": pid})
    os.kill(pid, signal.SIGKILL)
    pid_file.remove()
    return "killed"


def daemon_status(config: AppConfig) -> DaemonStatus:
    pid_file = PidFile(config.paths.pid_path)
    pid = pid_file.running_pid()
    return DaemonStatus(
        running=pid is not None,
        pid=pid,
        pid_path=str(pid_file.path),
        container_name=config.container.name,
        container_image=config.container.image,
    )
