"""Application entrypoint."""

from __future__ import annotations

import argparse
import sys

from fryler.app import build_context
from fryler.config import ensure_runtime_config, read_config_snapshot
from fryler.db.models import TASK_STATUSES
from fryler.interfaces.cli import execute_command
from fryler.logging_setup import configure_logging

# Commands that install their own console logging.
_DAEMON_COMMANDS = {"start", "restart"}


def _priority(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"priority must be an integer: {raw}") from exc
    if not 1 <= value <= 5:
        raise argparse.ArgumentTypeError(f"priority must be between 1 and 5: {raw}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fryler", description="fryler: autonomous AI assistant daemon")
    parser.add_argument("--config", default=None, help="Path to config.toml")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value, e.g. heartbeat.interval_seconds=30",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start the fryler daemon")
    start.add_argument("--quiet", action="store_true", help="Log to the file only")
    sub.add_parser("stop", help="Stop the fryler daemon")
    restart = sub.add_parser("restart", help="Restart the fryler daemon")
    restart.add_argument("--quiet", action="store_true", help="Log to the file only")
    sub.add_parser("status", help="Show daemon status")

    ask = sub.add_parser("ask", help="One-shot query to Claude")
    ask.add_argument("prompt", nargs="+")
    ask.add_argument("-s", "--session", default=None, help="Session ID to continue")
    ask.add_argument("--new", action="store_true", help="Start a fresh session")
    ask.add_argument("-m", "--model", default=None, help="Claude model override")
    ask.add_argument("--max-turns", type=int, default=None)

    chat = sub.add_parser("chat", help="Interactive REPL session")
    chat.add_argument("-s", "--session", default=None, help="Session ID to resume")
    chat.add_argument("--new", action="store_true", help="Start a fresh session")

    resume = sub.add_parser("resume", help="Resume a conversation session")
    resume.add_argument("session_id")

    sub.add_parser("sessions", help="List conversation sessions")

    task = sub.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="task_command", required=True)
    task_add = task_sub.add_parser("add", help="Create a new task")
    task_add.add_argument("title", nargs="+")
    task_add.add_argument("-p", "--priority", type=_priority, default=3)
    task_add.add_argument("--scheduled", default=None, help="Run at or after this ISO 8601 time")
    task_add.add_argument("-d", "--description", default=None)
    task_add.add_argument("--cwd", default=None, help="Working directory for the task")
    task_list = task_sub.add_parser("list", help="List tasks")
    task_list.add_argument("status", nargs="?", choices=TASK_STATUSES, default=None)
    task_cancel = task_sub.add_parser("cancel", help="Cancel a pending task")
    task_cancel.add_argument("task_id", type=int)

    sub.add_parser("heartbeat", help="Run one heartbeat tick in the foreground")

    logs = sub.add_parser("logs", help="Show daemon logs")
    logs.add_argument("-n", "--lines", type=int, default=50)

    sub.add_parser("login", help="Authenticate the Claude CLI")

    outbox = sub.add_parser("outbox", help="Process host-side outbox actions")
    outbox.add_argument("outbox_command", choices=["drain", "watch"])
    return parser


def _parse_overrides(pairs: list[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"Invalid --set value (expected KEY=VALUE): {pair}")
        overrides[key.strip()] = value
    return overrides


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    snapshot = read_config_snapshot(args.config, cli_overrides=_parse_overrides(args.overrides))
    if snapshot.effective_config is None:
        print("Config is invalid. Falling back to built-in defaults.", file=sys.stderr)
        for issue in snapshot.issues:
            print(f"- {issue}", file=sys.stderr)

    runtime_config = ensure_runtime_config(snapshot)
    if args.command not in _DAEMON_COMMANDS:
        configure_logging(runtime_config.paths.log_dir, runtime_config.logging.level, quiet=True)
    context = build_context(config=runtime_config, snapshot=snapshot)
    try:
        return execute_command(context, args)
    finally:
        context.store.close()


if __name__ == "__main__":
    sys.exit(main())
