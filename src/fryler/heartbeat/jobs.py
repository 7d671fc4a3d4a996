"""Heartbeat job runner: execute every due task once."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from fryler.db.models import STATUS_ACTIVE, STATUS_COMPLETED, STATUS_FAILED, Task
from fryler.db.store import FrylerStore
from fryler.diagnostics import memory_snapshot
from fryler.llm.client import ClaudeResponse
from fryler.outbox import Outbox
from fryler.prompting.identity import IdentityFiles
from fryler.tasks.directives import apply_directives
from fryler.tasks.parser import parse_response

logger = logging.getLogger(__name__)


class TaskRunner(Protocol):
    def ask_for_task(self, task_description: str, context: str | None = None, cwd: str | None = None) -> ClaudeResponse: ...


@dataclass(slots=True)
class TickSummary:
    due: int = 0
    completed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    duration_ms: int = 0


def _run_task(task: Task, store: FrylerStore, client: TaskRunner, identity: IdentityFiles, outbox: Outbox) -> None:
    response = client.ask_for_task(task.prompt, task.title, task.cwd)
    logger.info(
        "task #%s claude response received",
        task.id,
        extra={
            "session_id": response.session_id,
            "cost_usd": response.cost_usd,
            "duration_ms": response.duration_ms,
            "is_error": response.is_error,
        },
    )
    parsed = parse_response(response.result)
    apply_directives(parsed, store, identity, outbox, source=f"task-{task.id}")
    store.update_task_status(task.id, STATUS_COMPLETED, parsed.clean_text)


def run_heartbeat_tick(store: FrylerStore, client: TaskRunner, identity: IdentityFiles, outbox: Outbox) -> TickSummary:
    """Process every due task sequentially; one task's failure never stops the rest."""
    started = time.monotonic()
    logger.info("heartbeat tick starting", extra=memory_snapshot())

    summary = TickSummary()
    due_tasks = store.get_due_tasks()
    summary.due = len(due_tasks)
    logger.info("found %s due task(s)", len(due_tasks))

    for task in due_tasks:
        try:
            if not store.update_task_status(task.id, STATUS_ACTIVE):
                # Cancelled since the due query.
                summary.skipped.append(task.id)
                continue
            logger.info("processing task #%s: %s", task.id, task.title)
            _run_task(task, store, client, identity, outbox)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or type(exc).__name__
            logger.error("task #%s failed: %s", task.id, message)
            store.update_task_status(task.id, STATUS_FAILED, message)
            summary.failed.append(task.id)
            continue
        summary.completed.append(task.id)
        logger.info("task #%s completed", task.id)

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "heartbeat tick complete",
        extra={"duration_ms": summary.duration_ms, "completed": len(summary.completed), "failed": len(summary.failed)},
    )
    return summary
