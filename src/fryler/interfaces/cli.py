"""Command handlers for the fryler CLI."""

from __future__ import annotations

import argparse
import json
import logging
import time
from collections import deque
from dataclasses import asdict

from fryler.app import AppContext
from fryler.daemon.service import DaemonAlreadyRunningError, daemon_status, start_daemon, stop_daemon
from fryler.db.store import InvalidTaskError
from fryler.interfaces.repl import CHAT_TITLE_PREFIX, ChatRepl
from fryler.llm.client import AskOptions
from fryler.logging_setup import LOG_FILE_NAME
from fryler.outbox import OutboxWatcher, make_dispatcher
from fryler.tasks.directives import apply_directives
from fryler.tasks.parser import parse_response

logger = logging.getLogger(__name__)

CLI_TITLE_PREFIX = "[cli] "


def cmd_start(context: AppContext, args: argparse.Namespace) -> int:
    try:
        return start_daemon(context, quiet=bool(getattr(args, "quiet", False)))
    except DaemonAlreadyRunningError as exc:
        print(f"{exc}. Use 'fryler stop' first.")
        return 1


def cmd_stop(context: AppContext, args: argparse.Namespace) -> int:
    outcome = stop_daemon(context.config)
    messages = {
        "not_running": "fryler daemon is not running.",
        "stale": "fryler daemon PID file exists but process is not running. Cleaned up.",
        "stopped": "fryler daemon stopped.",
        "killed": "Daemon did not exit after SIGTERM; sent SIGKILL.",
    }
    print(messages[outcome])
    return 0


def cmd_restart(context: AppContext, args: argparse.Namespace) -> int:
    cmd_stop(context, args)
    time.sleep(1.0)
    return cmd_start(context, args)


def cmd_status(context: AppContext, args: argparse.Namespace) -> int:
    status = daemon_status(context.config)
    print("Daemon:")
    print(f"  Running: {'yes' if status.running else 'no'}")
    if status.pid:
        print(f"  PID:     {status.pid}")
    print("\nContainer:")
    print(f"  Name:    {status.container_name}")
    print(f"  Image:   {status.container_image}")
    snapshot = context.config_snapshot
    print("\nConfig:")
    print(f"  Path:    {snapshot.path}{'' if snapshot.exists else ' (defaults)'}")
    print(f"  Valid:   {'yes' if snapshot.valid else 'no'}")
    for issue in snapshot.issues:
        print(f"  - {issue}")
    return 0


def _resolve_session(context: AppContext, explicit: str | None, new: bool, title_prefix: str) -> str | None:
    """Explicit id, else the most recent session from the same surface, else None for a new one."""
    if explicit:
        return explicit
    if new:
        return None
    latest = context.store.find_latest_session(title_prefix)
    return latest.claude_session_id if latest else None


def cmd_ask(context: AppContext, args: argparse.Namespace) -> int:
    prompt = " ".join(args.prompt).strip()
    if not prompt:
        print("Usage: fryler ask <prompt>")
        return 1

    session_id = _resolve_session(context, args.session, args.new, CLI_TITLE_PREFIX)
    options = AskOptions(session_id=session_id, model=args.model, max_turns=args.max_turns)
    response = context.claude.ask(prompt, options)
    parsed = parse_response(response.result)
    print(parsed.clean_text)

    if response.session_id:
        if session_id and context.store.get_session(response.session_id) is not None:
            context.store.update_session(response.session_id)
        else:
            context.store.create_session(response.session_id, f"{CLI_TITLE_PREFIX}{prompt[:80]}")
    apply_directives(parsed, context.store, context.identity, context.outbox, source="cli-ask")
    return 1 if response.is_error else 0


def cmd_chat(context: AppContext, args: argparse.Namespace) -> int:
    session_id = _resolve_session(context, args.session, args.new, CHAT_TITLE_PREFIX)
    return ChatRepl(context, session_id=session_id).run()


def cmd_resume(context: AppContext, args: argparse.Namespace) -> int:
    return ChatRepl(context, session_id=args.session_id).run()


def cmd_sessions(context: AppContext, args: argparse.Namespace) -> int:
    sessions = context.store.list_sessions()
    if not sessions:
        print("No sessions found.")
        return 0
    print("Sessions:\n")
    for session in sessions:
        print(f"  {session.claude_session_id}")
        print(f"    Title:    {session.title or '(untitled)'}")
        print(f"    Messages: {session.message_count}")
        print(f"    Last:     {session.last_active_at}")
        print()
    return 0


def cmd_task(context: AppContext, args: argparse.Namespace) -> int:
    store = context.store
    if args.task_command == "add":
        title = " ".join(args.title).strip()
        try:
            task = store.create_task(
                title,
                description=args.description or "",
                priority=args.priority,
                scheduled_at=args.scheduled,
                cwd=args.cwd,
            )
        except InvalidTaskError as exc:
            print(f"Invalid task: {exc}")
            return 1
        print(f"Created task #{task.id}: {task.title} (priority: {task.priority})")
        return 0

    if args.task_command == "list":
        tasks = store.list_tasks(args.status)
        if not tasks:
            print(f"No {args.status} tasks." if args.status else "No tasks.")
            return 0
        print("Tasks:\n")
        for task in tasks:
            sched = f" (scheduled: {task.scheduled_at})" if task.scheduled_at else ""
            print(f"  #{task.id} [{task.status}] {task.title} (p{task.priority}){sched}")
            if task.result:
                preview = task.result if len(task.result) <= 100 else f"{task.result[:100]}..."
                print(f"    Result: {preview}")
        print()
        return 0

    if args.task_command == "cancel":
        ok = store.cancel_task(args.task_id)
        print(f"Cancelled task #{args.task_id}." if ok else f"Could not cancel task #{args.task_id} (not pending?).")
        return 0 if ok else 1

    print("Usage: fryler task add|list|cancel")
    return 1


def cmd_heartbeat(context: AppContext, args: argparse.Namespace) -> int:
    print("Triggering heartbeat...")
    if not context.heartbeat.tick_once():
        print("A heartbeat tick is already running; skipped.")
        return 1
    summary = context.heartbeat.last_result
    if summary is None:
        print("Heartbeat tick failed; see the log for details.")
        return 1
    print(json.dumps(asdict(summary), indent=2))
    print("Heartbeat complete.")
    return 0


def cmd_logs(context: AppContext, args: argparse.Namespace) -> int:
    log_file = context.config.paths.log_dir / LOG_FILE_NAME
    if not log_file.exists():
        print("No log file found. Has the daemon been started?")
        return 0
    with log_file.open(encoding="utf-8", errors="replace") as handle:
        for line in deque(handle, maxlen=max(1, args.lines)):
            print(line, end="")
    return 0


def cmd_login(context: AppContext, args: argparse.Namespace) -> int:
    print("Launching claude login...\n")
    exit_code = context.claude.login()
    if exit_code != 0:
        print(f"\nclaude login exited with code {exit_code}")
    return exit_code


def cmd_outbox(context: AppContext, args: argparse.Namespace) -> int:
    dispatcher = make_dispatcher(context.config.outbox.say_binary)
    if args.outbox_command == "drain":
        count = context.outbox.process_pending_actions(dispatcher)
        print(f"Processed {count} outbox action(s).")
        return 0

    watcher = OutboxWatcher(context.outbox, dispatcher, settle_seconds=context.config.outbox.settle_ms / 1000)
    watcher.start()
    print(f"Watching {context.outbox.directory}. Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nOutbox watcher stopped.")
    finally:
        watcher.stop()
    return 0


COMMANDS = {
    "start": cmd_start,
    "stop": cmd_stop,
    "restart": cmd_restart,
    "status": cmd_status,
    "ask": cmd_ask,
    "chat": cmd_chat,
    "resume": cmd_resume,
    "sessions": cmd_sessions,
    "task": cmd_task,
    "heartbeat": cmd_heartbeat,
    "logs": cmd_logs,
    "login": cmd_login,
    "outbox": cmd_outbox,
}


def execute_command(context: AppContext, args: argparse.Namespace) -> int:
    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        return 1
    try:
        return handler(context, args)
    except Exception as exc:  # noqa: BLE001
        logger.error("command failed", extra={"command": args.command, "error": str(exc)})
        print(f"Error: {exc}")
        return 1
