"""SQLite-backed store for tasks, memories and sessions."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .models import (
    ALLOWED_TRANSITIONS,
    STATUS_ACTIVE,
    STATUS_FAILED,
    STATUS_PENDING,
    TASK_STATUSES,
    TERMINAL_STATUSES,
    Memory,
    Session,
    Task,
)

logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','active','completed','failed')),
    priority INTEGER NOT NULL DEFAULT 3 CHECK(priority BETWEEN 1 AND 5),
    scheduled_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    completed_at TEXT,
    result TEXT
);

CREATE TABLE IF NOT EXISTS memories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category TEXT NOT NULL,
    content TEXT NOT NULL,
    source TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claude_session_id TEXT NOT NULL UNIQUE,
    title TEXT,
    started_at TEXT NOT NULL DEFAULT (datetime('now')),
    last_active_at TEXT NOT NULL DEFAULT (datetime('now')),
    message_count INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_memories_category ON memories(category);
"""


class InvalidTaskError(ValueError):
    """Task input rejected before it reaches the database."""


class StoreClosedError(RuntimeError):
    """Operation attempted after close()."""


class FrylerStore:
    """Durable store shared by the heartbeat thread and the foreground thread."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._closed = False
        self._lock = threading.RLock()

    def initialize(self) -> FrylerStore:
        with self._lock:
            if self._conn is not None:
                return self
            self._closed = False
            if str(self.db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA busy_timeout=5000;")
            conn.executescript(_SCHEMA)
            self._ensure_column(conn, "tasks", "cwd", "cwd TEXT")
            conn.commit()
            self._conn = conn
            logger.debug("store: opened %s", self.db_path)
        return self

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
            logger.debug("store: closed %s", self.db_path)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @staticmethod
    def _ensure_column(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
        rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {str(row[1]) for row in rows}
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {ddl}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                if self._closed:
                    raise StoreClosedError(f"store is closed: {self.db_path}")
                self.initialize()
            assert self._conn is not None
            with self._conn:
                yield self._conn

    # Tasks

    def create_task(
        self,
        title: str,
        description: str = "",
        priority: int = 3,
        scheduled_at: str | None = None,
        cwd: str | None = None,
    ) -> Task:
        clean_title = title.strip() if isinstance(title, str) else ""
        if not clean_title:
            raise InvalidTaskError("task title cannot be empty")
        if isinstance(priority, bool) or not isinstance(priority, int) or not 1 <= priority <= 5:
            raise InvalidTaskError(f"task priority must be an integer between 1 and 5, got {priority!r}")
        scheduled = scheduled_at.strip() if isinstance(scheduled_at, str) and scheduled_at.strip() else None
        clean_cwd = cwd.strip() if isinstance(cwd, str) and cwd.strip() else None
        with self._transaction() as conn:
            if scheduled is not None and conn.execute("SELECT datetime(?)", (scheduled,)).fetchone()[0] is None:
                raise InvalidTaskError(f"scheduled_at is not a valid timestamp: {scheduled}")
            cursor = conn.execute(
                "INSERT INTO tasks(title, description, priority, scheduled_at, cwd) VALUES (?, ?, ?, ?, ?)",
                (clean_title, description or "", priority, scheduled, clean_cwd),
            )
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return Task.from_row(row)

    def get_task(self, task_id: int) -> Task | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return Task.from_row(row) if row else None

    def list_tasks(self, status: str | None = None) -> list[Task]:
        if status is not None and status not in TASK_STATUSES:
            raise ValueError(f"unknown task status: {status}")
        with self._transaction() as conn:
            if status:
                rows = conn.execute("SELECT * FROM tasks WHERE status = ? ORDER BY id", (status,)).fetchall()
            else:
                rows = conn.execute("SELECT * FROM tasks ORDER BY id").fetchall()
        return [Task.from_row(row) for row in rows]

    def update_task_status(self, task_id: int, status: str, result: str | None = None) -> bool:
        """Apply one legal status transition atomically; return False when it is not legal.

        Entering ``active`` clears any previous result. Entering a terminal status
        sets ``completed_at`` in the same statement.
        """
        sources = ALLOWED_TRANSITIONS.get(status)
        if sources is None:
            raise ValueError(f"cannot transition a task to status: {status}")
        placeholders = ",".join("?" for _ in sources)
        if status == STATUS_ACTIVE:
            new_result = "NULL"
        else:
            new_result = "COALESCE(?, result)"
        completed_at = "datetime('now')" if status in TERMINAL_STATUSES else "NULL"
        params: list[object] = [status]
        if status != STATUS_ACTIVE:
            params.append(result)
        params.extend([int(task_id), *sources])
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE tasks
                SET status = ?,
                    result = {new_result},
                    updated_at = datetime('now'),
                    completed_at = {completed_at}
                WHERE id = ? AND status IN ({placeholders})
                """,
                params,
            )
            changed = cursor.rowcount > 0
        if not changed:
            logger.warning("store: rejected task transition", extra={"task_id": task_id, "target_status": status})
        return changed

    def get_due_tasks(self) -> list[Task]:
        """Pending tasks with no schedule or a schedule at or before the engine's clock."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE status = ?
                  AND (scheduled_at IS NULL OR datetime(scheduled_at) <= datetime('now'))
                ORDER BY id
                """,
                (STATUS_PENDING,),
            ).fetchall()
        return [Task.from_row(row) for row in rows]

    def cancel_task(self, task_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks
                SET status = ?, updated_at = datetime('now'), completed_at = datetime('now')
                WHERE id = ? AND status = ?
                """,
                (STATUS_FAILED, int(task_id), STATUS_PENDING),
            )
            return cursor.rowcount > 0

    # Memories

    def create_memory(self, category: str, content: str, source: str | None = None) -> Memory:
        clean_category = category.strip() if isinstance(category, str) else ""
        clean_content = content.strip() if isinstance(content, str) else ""
        if not clean_category or not clean_content:
            raise ValueError("memory category and content cannot be empty")
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO memories(category, content, source) VALUES (?, ?, ?)",
                (clean_category, clean_content, source),
            )
            row = conn.execute("SELECT * FROM memories WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return Memory.from_row(row)

    def list_memories(self, category: str | None = None) -> list[Memory]:
        with self._transaction() as conn:
            if category:
                rows = conn.execute("SELECT * FROM memories WHERE category = ? ORDER BY id", (category,)).fetchall()
            else:
                rows = conn.execute("SELECT * FROM memories ORDER BY id").fetchall()
        return [Memory.from_row(row) for row in rows]

    def search_memories(self, query: str) -> list[Memory]:
        needle = query.strip()
        if not needle:
            return []
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM memories WHERE instr(lower(content), lower(?)) > 0 ORDER BY id",
                (needle,),
            ).fetchall()
        return [Memory.from_row(row) for row in rows]

    # Sessions

    def create_session(self, claude_session_id: str, title: str | None = None) -> Session:
        """Insert a session row; an already-tracked id returns the existing row."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO sessions(claude_session_id, title) VALUES (?, ?)",
                (claude_session_id, title),
            )
            row = conn.execute(
                "SELECT * FROM sessions WHERE claude_session_id = ?",
                (claude_session_id,),
            ).fetchone()
        return Session.from_row(row)

    def get_session(self, claude_session_id: str) -> Session | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE claude_session_id = ?",
                (claude_session_id,),
            ).fetchone()
        return Session.from_row(row) if row else None

    def update_session(self, claude_session_id: str, message_count: int | None = None) -> bool:
        with self._transaction() as conn:
            if message_count is None:
                cursor = conn.execute(
                    "UPDATE sessions SET last_active_at = datetime('now') WHERE claude_session_id = ?",
                    (claude_session_id,),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE sessions
                    SET last_active_at = datetime('now'),
                        message_count = MAX(message_count, ?)
                    WHERE claude_session_id = ?
                    """,
                    (int(message_count), claude_session_id),
                )
            return cursor.rowcount > 0

    def list_sessions(self) -> list[Session]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM sessions ORDER BY last_active_at DESC, id DESC").fetchall()
        return [Session.from_row(row) for row in rows]

    def find_latest_session(self, title_prefix: str) -> Session | None:
        for session in self.list_sessions():
            if session.title and session.title.startswith(title_prefix):
                return session
        return None
