from __future__ import annotations

import os
import signal
import sys
import threading
from pathlib import Path

import pytest

from fryler.app import build_context
from fryler.config import ensure_runtime_config, read_config_snapshot
from fryler.daemon.pid import PidFile
from fryler.daemon.service import Daemon, DaemonAlreadyRunningError, daemon_status, stop_daemon


@pytest.fixture()
def signals(monkeypatch) -> dict[int, object]:
    # Keep the test process's own handlers in place.
    installed: dict[int, object] = {}
    monkeypatch.setattr("fryler.daemon.service.signal.signal", lambda signum, handler: installed.setdefault(signum, handler))
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    return installed


@pytest.fixture()
def context(tmp_path: Path, monkeypatch, signals):
    monkeypatch.setenv("FRYLER_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("FRYLER_HEARTBEAT_INTERVAL", "3600")
    for name in ("FRYLER_IDENTITY_DIR", "FRYLER_OUTBOX_DIR", "FRYLER_CONTAINER"):
        monkeypatch.delenv(name, raising=False)
    snapshot = read_config_snapshot()
    return build_context(ensure_runtime_config(snapshot), snapshot)


def test_start_and_graceful_shutdown(context, signals) -> None:
    daemon = Daemon(context, quiet=True)
    started = threading.Event()
    original_start = context.heartbeat.start

    def start_heartbeat() -> None:
        original_start()
        started.set()
        daemon.request_stop()

    context.heartbeat.start = start_heartbeat  # type: ignore[method-assign]

    assert daemon.start() == 0

    assert started.is_set()
    assert set(signals) == {signal.SIGTERM, signal.SIGINT}
    assert context.identity.soul_path.exists()
    assert context.store.is_open is False
    assert context.heartbeat.status().running is False
    assert not Path(context.config.paths.pid_path).exists()
    assert (context.config.paths.log_dir / "fryler.log").exists()


def test_shutdown_is_idempotent(context) -> None:
    daemon = Daemon(context, quiet=True)
    context.heartbeat.start = lambda: daemon.request_stop()  # type: ignore[method-assign]
    daemon.start()
    daemon.shutdown()
    daemon.shutdown()
    assert daemon.running is False


def test_start_refuses_when_already_running(context) -> None:
    pid_file = PidFile(context.config.paths.pid_path)
    pid_file.path.parent.mkdir(parents=True, exist_ok=True)
    pid_file.path.write_text(str(os.getppid()), encoding="utf-8")

    with pytest.raises(DaemonAlreadyRunningError) as exc:
        Daemon(context, quiet=True).start()
    assert exc.value.pid == os.getppid()


def test_thread_crash_requests_fatal_exit(context) -> None:
    daemon = Daemon(context, quiet=True)

    def start_heartbeat() -> None:
        worker = threading.Thread(target=lambda: 1 / 0, name="crasher")
        worker.start()
        worker.join(5)

    context.heartbeat.start = start_heartbeat  # type: ignore[method-assign]

    assert daemon.start() == 1
    assert not Path(context.config.paths.pid_path).exists()


def test_status_and_stop_with_stale_pid(context) -> None:
    pid_file = PidFile(context.config.paths.pid_path)
    pid_file.path.parent.mkdir(parents=True, exist_ok=True)
    pid_file.path.write_text("999999999", encoding="utf-8")

    status = daemon_status(context.config)
    assert status.running is False
    assert status.pid is None

    assert stop_daemon(context.config) == "stale"
    assert not pid_file.path.exists()
    assert stop_daemon(context.config) == "not_running"
