"""Store records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TASK_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_COMPLETED, STATUS_FAILED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

# Target status -> statuses it may be entered from.
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    STATUS_ACTIVE: (STATUS_PENDING,),
    STATUS_COMPLETED: (STATUS_ACTIVE,),
    STATUS_FAILED: (STATUS_PENDING, STATUS_ACTIVE),
}


@dataclass(slots=True)
class Task:
    id: int
    title: str
    description: str
    status: str
    priority: int
    scheduled_at: str | None
    created_at: str
    updated_at: str
    completed_at: str | None
    result: str | None
    cwd: str | None

    @classmethod
    def from_row(cls, row: Any) -> Task:
        return cls(
            id=int(row["id"]),
            title=str(row["title"]),
            description=str(row["description"] or ""),
            status=str(row["status"]),
            priority=int(row["priority"]),
            scheduled_at=row["scheduled_at"],
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            completed_at=row["completed_at"],
            result=row["result"],
            cwd=row["cwd"],
        )

    @property
    def prompt(self) -> str:
        return self.description or self.title


@dataclass(slots=True)
class Memory:
    id: int
    category: str
    content: str
    source: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: Any) -> Memory:
        return cls(
            id=int(row["id"]),
            category=str(row["category"]),
            content=str(row["content"]),
            source=row["source"],
            created_at=str(row["created_at"]),
        )


@dataclass(slots=True)
class Session:
    id: int
    claude_session_id: str
    title: str | None
    started_at: str
    last_active_at: str
    message_count: int

    @classmethod
    def from_row(cls, row: Any) -> Session:
        return cls(
            id=int(row["id"]),
            claude_session_id=str(row["claude_session_id"]),
            title=row["title"],
            started_at=str(row["started_at"]),
            last_active_at=str(row["last_active_at"]),
            message_count=int(row["message_count"]),
        )
