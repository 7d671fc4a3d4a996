"""Apply parsed directives to the stores, MEMORY.md and the outbox."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fryler.db.models import Memory, Task
from fryler.db.store import FrylerStore, InvalidTaskError
from fryler.outbox import Outbox
from fryler.prompting.identity import IdentityFiles
from fryler.tasks.parser import ParseResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppliedDirectives:
    memories: list[Memory] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    says: int = 0


def apply_directives(
    parsed: ParseResult,
    store: FrylerStore,
    identity: IdentityFiles,
    outbox: Outbox,
    source: str,
) -> AppliedDirectives:
    """Memories first, then sub-tasks, then say actions.

    Store and outbox errors propagate; the caller decides whether that fails
    the surrounding task.
    """
    applied = AppliedDirectives()
    for memory in parsed.memories:
        applied.memories.append(store.create_memory(memory.category, memory.content, source))
        identity.append_memory(memory.content)
        logger.info("memory saved", extra={"category": memory.category, "source": source})

    for task in parsed.tasks:
        try:
            created = store.create_task(
                task.title,
                description=task.description,
                priority=task.priority,
                scheduled_at=task.scheduled_at,
                cwd=task.cwd,
            )
        except InvalidTaskError as exc:
            logger.warning("task directive rejected", extra={"title": task.title, "error": str(exc), "source": source})
            continue
        applied.tasks.append(created)
        logger.info("task created", extra={"task_id": created.id, "title": created.title, "source": source})

    for say in parsed.says:
        outbox.write_say_action(say.text, say.voice)
        applied.says += 1
        logger.info("say action queued", extra={"voice": say.voice, "source": source})
    return applied
