"""SQLite database helpers for the entity and history schema."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import sqlite3
from typing import Iterable

from .config import DEFAULT_DB_PATH

DDL_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS entities (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        title TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('file', 'folder')),
        parent_id TEXT,
        content TEXT NOT NULL DEFAULT '{"content": []}',
        content_text TEXT NOT NULL DEFAULT '',
        organized INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entities_owner_parent ON entities(owner_id, parent_id)",
    "CREATE INDEX IF NOT EXISTS idx_entities_owner_updated ON entities(owner_id, updated_at DESC)",
    # One live sibling per (parent, kind, title ignoring ASCII case); concurrent creators collide here.
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_live_child
    ON entities(owner_id, COALESCE(parent_id, ''), kind, title COLLATE NOCASE)
    WHERE deleted = 0
    """,
    """
    CREATE TABLE IF NOT EXISTS history_items (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        title TEXT NOT NULL,
        action TEXT NOT NULL CHECK (action IN ('created', 'updated')),
        old_content TEXT,
        old_content_text TEXT NOT NULL DEFAULT '',
        new_content TEXT,
        new_content_text TEXT NOT NULL DEFAULT '',
        path TEXT NOT NULL,
        timestamp TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_history_owner_entity ON history_items(owner_id, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_owner_ts ON history_items(owner_id, timestamp DESC)",
)


class DatabaseService:
    """Manage SQLite connections and schema initialization."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Return a sqlite3 connection with the proper data directory created."""
        self._ensure_directory()
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self, statements: Iterable[str] | None = None) -> Path:
        """Create all schema artifacts required by the organizer."""
        conn = self.connect()
        try:
            with conn:  # Transactional apply of DDL
                for statement in statements or DDL_STATEMENTS:
                    conn.execute(statement)
        finally:
            conn.close()
        return self.db_path


def init_database(db_path: str | Path | None = None) -> Path:
    """Convenience wrapper used at application startup."""
    return DatabaseService(db_path).initialize()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO string so lexical order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "DatabaseService",
    "init_database",
    "DDL_STATEMENTS",
    "utc_now",
    "to_db_timestamp",
    "from_db_timestamp",
]
