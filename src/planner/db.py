"""
SQLite storage for the planner services.

``Database`` hands out connections through ``connect()`` (one unit of
work per ``with`` block: commit on success, rollback on error) and
applies the versioned schema migrations in ``MIGRATIONS`` once, at
start-up, through ``migrate()``.  Request paths never alter the schema.

Timestamps are stored as fixed-width UTC strings so that comparing the
stored text compares the instants.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

_DT_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# PUBLIC_INTERFACE
def to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_DT_FORMAT)


# PUBLIC_INTERFACE
def from_db(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    return datetime.strptime(value, _DT_FORMAT).replace(tzinfo=timezone.utc)


MIGRATIONS: List[Tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS task_lists (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#8B5CF6',
            icon TEXT,
            description TEXT,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (user_id, name)
        );

        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            completed INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            scheduled_date TEXT,
            priority TEXT NOT NULL DEFAULT 'MEDIUM',
            original_input TEXT,
            clean_title TEXT,
            task_list_id TEXT NOT NULL REFERENCES task_lists(id),
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS tags (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            type TEXT NOT NULL,
            color TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS task_tags (
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            value TEXT NOT NULL,
            display_text TEXT NOT NULL,
            icon_name TEXT,
            created_at TEXT NOT NULL,
            PRIMARY KEY (task_id, tag_id)
        );

        CREATE TABLE IF NOT EXISTS calendars (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#3B82F6',
            description TEXT,
            is_visible INTEGER NOT NULL DEFAULT 1,
            is_default INTEGER NOT NULL DEFAULT 0,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (user_id, name)
        );

        CREATE TABLE IF NOT EXISTS events (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            start_at TEXT NOT NULL,
            end_at TEXT NOT NULL,
            all_day INTEGER NOT NULL DEFAULT 0,
            location TEXT,
            notes TEXT,
            recurrence TEXT,
            calendar_id TEXT NOT NULL REFERENCES calendars(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS attachments (
            id TEXT PRIMARY KEY,
            file_name TEXT NOT NULL,
            file_url TEXT NOT NULL,
            file_type TEXT NOT NULL,
            file_size INTEGER NOT NULL,
            task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL
        );
        """,
    ),
    (
        2,
        """
        ALTER TABLE tasks ADD COLUMN status TEXT NOT NULL DEFAULT 'NOT_STARTED';
        UPDATE tasks SET status = 'DONE' WHERE completed = 1;
        """,
    ),
    (
        3,
        """
        ALTER TABLE attachments ADD COLUMN thumbnail_url TEXT;
        """,
    ),
    (
        4,
        """
        CREATE INDEX IF NOT EXISTS idx_tasks_user_id ON tasks(user_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_task_list_id ON tasks(task_list_id);
        CREATE INDEX IF NOT EXISTS idx_tasks_user_completed ON tasks(user_id, completed);
        CREATE INDEX IF NOT EXISTS idx_tasks_scheduled_date ON tasks(scheduled_date);
        CREATE INDEX IF NOT EXISTS idx_task_lists_user_id ON task_lists(user_id);
        CREATE INDEX IF NOT EXISTS idx_task_tags_tag_id ON task_tags(tag_id);
        CREATE INDEX IF NOT EXISTS idx_calendars_user_id ON calendars(user_id);
        CREATE INDEX IF NOT EXISTS idx_events_user_id ON events(user_id);
        CREATE INDEX IF NOT EXISTS idx_events_calendar_id ON events(calendar_id);
        CREATE INDEX IF NOT EXISTS idx_events_user_range ON events(user_id, start_at, end_at);
        CREATE INDEX IF NOT EXISTS idx_attachments_task_id ON attachments(task_id);
        """,
    ),
]


# PUBLIC_INTERFACE
class Database:
    """
    Connection factory and migration runner for one SQLite file.

    Every ``with db.connect() as conn`` block is one atomic unit of work.
    Use ``transaction()`` when a read must stay consistent with the writes
    that follow it (bulk pre-checks, merges, reassignment).
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path

    @property
    def path(self) -> str:
        return self._db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connect() as conn:
            # Take the write lock before the first read.
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def current_version(self) -> int:
        with self.connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY)")
            row = conn.execute("SELECT MAX(version) AS version FROM schema_migrations").fetchone()
            return int(row["version"]) if row and row["version"] is not None else 0

    # PUBLIC_INTERFACE
    def migrate(self) -> int:
        """Apply pending migrations in order and return the resulting schema version."""
        current = self.current_version()
        with self.connect() as conn:
            for version, sql in MIGRATIONS:
                if version <= current:
                    continue
                logger.info("Applying schema migration %s to %s", version, self._db_path)
                conn.executescript(
                    f"BEGIN;\n{sql}\nINSERT INTO schema_migrations (version) VALUES ({int(version)});\nCOMMIT;"
                )
                current = version
        return current
