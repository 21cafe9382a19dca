"""Entity datastore: files and folders persisted in SQLite."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ..models.content import Document
from ..models.entity import Entity, EntityKind
from .database import DatabaseService, from_db_timestamp, to_db_timestamp, utc_now
from .errors import EntityExistsError, EntityNotFoundError, PersistenceError

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, owner_id, title, kind, parent_id, content, content_text, "
    "organized, deleted, metadata, created_at, updated_at"
)


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        kind=row["kind"],
        parent_id=row["parent_id"],
        content=Document.model_validate_json(row["content"]),
        content_text=row["content_text"],
        organized=bool(row["organized"]),
        deleted=bool(row["deleted"]),
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


class EntityStore:
    """Owner-scoped CRUD over the ``entities`` table.

    Every public method is a coroutine that runs the blocking sqlite call in a
    worker thread, so datastore access is a suspension point for the organizer.
    """

    def __init__(self, db_service: DatabaseService | None = None):
        self._db = db_service or DatabaseService()

    async def find_child(
        self,
        owner_id: str,
        parent_id: Optional[str],
        kind: EntityKind,
        title: str,
    ) -> Optional[Entity]:
        """Find a live child by title, exact match first then case-insensitive."""
        return await asyncio.to_thread(self._find_child, owner_id, parent_id, kind, title)

    async def insert(
        self,
        owner_id: str,
        title: str,
        kind: EntityKind,
        parent_id: Optional[str] = None,
        *,
        content: Optional[Document] = None,
        content_text: str = "",
        organized: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Entity:
        return await asyncio.to_thread(
            self._insert,
            owner_id,
            title,
            kind,
            parent_id,
            content or Document(),
            content_text,
            organized,
            metadata or {},
        )

    async def update_content(
        self,
        owner_id: str,
        entity_id: str,
        content: Document,
        content_text: str,
        *,
        organized: Optional[bool] = None,
    ) -> Entity:
        return await asyncio.to_thread(
            self._update_content, owner_id, entity_id, content, content_text, organized
        )

    async def update_metadata(
        self, owner_id: str, entity_id: str, metadata: Dict[str, Any]
    ) -> Entity:
        return await asyncio.to_thread(self._update_metadata, owner_id, entity_id, metadata)

    async def soft_delete(self, owner_id: str, entity_id: str) -> None:
        await asyncio.to_thread(self._soft_delete, owner_id, entity_id)

    async def get(
        self, owner_id: str, entity_id: str, *, include_deleted: bool = False
    ) -> Optional[Entity]:
        """Select by id, scoped to the owner."""
        return await asyncio.to_thread(self._get, owner_id, entity_id, include_deleted)

    async def list_entities(
        self,
        owner_id: str,
        *,
        organized: Optional[bool] = None,
        include_deleted: bool = False,
    ) -> List[Entity]:
        return await asyncio.to_thread(self._list, owner_id, organized, include_deleted)

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _find_child(
        self,
        owner_id: str,
        parent_id: Optional[str],
        kind: str,
        title: str,
    ) -> Optional[Entity]:
        conn = self._db.connect()
        try:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM entities
                WHERE owner_id = ? AND parent_id IS ? AND kind = ? AND title = ?
                  AND deleted = 0
                ORDER BY created_at
                LIMIT 1
                """,
                (owner_id, parent_id, kind, title),
            ).fetchone()
            if row is not None:
                return _row_to_entity(row)

            # SQLite NOCASE only folds ASCII, so compare siblings in Python.
            wanted = title.casefold()
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM entities
                WHERE owner_id = ? AND parent_id IS ? AND kind = ? AND deleted = 0
                ORDER BY created_at
                """,
                (owner_id, parent_id, kind),
            ).fetchall()
            for candidate in rows:
                if candidate["title"].casefold() == wanted:
                    return _row_to_entity(candidate)
            return None
        finally:
            conn.close()

    def _insert(
        self,
        owner_id: str,
        title: str,
        kind: str,
        parent_id: Optional[str],
        content: Document,
        content_text: str,
        organized: bool,
        metadata: Dict[str, Any],
    ) -> Entity:
        entity_id = str(uuid4())
        now = to_db_timestamp(utc_now())
        conn = self._db.connect()
        try:
            with conn:
                conn.execute(
                    f"""
                    INSERT INTO entities ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                    """,
                    (
                        entity_id,
                        owner_id,
                        title,
                        kind,
                        parent_id,
                        content.model_dump_json(),
                        content_text,
                        int(organized),
                        json.dumps(metadata),
                        now,
                        now,
                    ),
                )
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise EntityExistsError(
                f"{kind.capitalize()} '{title}' already exists",
                details={"owner_id": owner_id, "parent_id": parent_id, "kind": kind},
            ) from exc
        except sqlite3.Error as exc:
            logger.error(f"Failed to insert {kind} '{title}' for {owner_id}: {exc}")
            raise PersistenceError(f"Failed to create {kind} '{title}'") from exc
        finally:
            conn.close()

        logger.info(f"Created {kind} '{title}' ({entity_id}) for user {owner_id}")
        return _row_to_entity(row)

    def _update_content(
        self,
        owner_id: str,
        entity_id: str,
        content: Document,
        content_text: str,
        organized: Optional[bool],
    ) -> Entity:
        now = to_db_timestamp(utc_now())
        conn = self._db.connect()
        try:
            with conn:
                if organized is None:
                    cursor = conn.execute(
                        """
                        UPDATE entities
                        SET content = ?, content_text = ?, updated_at = ?
                        WHERE owner_id = ? AND id = ? AND deleted = 0
                        """,
                        (content.model_dump_json(), content_text, now, owner_id, entity_id),
                    )
                else:
                    cursor = conn.execute(
                        """
                        UPDATE entities
                        SET content = ?, content_text = ?, organized = ?, updated_at = ?
                        WHERE owner_id = ? AND id = ? AND deleted = 0
                        """,
                        (
                            content.model_dump_json(),
                            content_text,
                            int(organized),
                            now,
                            owner_id,
                            entity_id,
                        ),
                    )
                if cursor.rowcount == 0:
                    raise PersistenceError(
                        f"Entity {entity_id} not found for update",
                        details={"owner_id": owner_id, "entity_id": entity_id},
                    )
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error(f"Failed to update entity {entity_id}: {exc}")
            raise PersistenceError(f"Failed to update entity {entity_id}") from exc
        finally:
            conn.close()
        return _row_to_entity(row)

    def _update_metadata(
        self, owner_id: str, entity_id: str, metadata: Dict[str, Any]
    ) -> Entity:
        conn = self._db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE entities SET metadata = ? WHERE owner_id = ? AND id = ?",
                    (json.dumps(metadata), owner_id, entity_id),
                )
                if cursor.rowcount == 0:
                    raise EntityNotFoundError(f"Entity {entity_id} not found")
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to update metadata for {entity_id}") from exc
        finally:
            conn.close()
        return _row_to_entity(row)

    def _soft_delete(self, owner_id: str, entity_id: str) -> None:
        now = to_db_timestamp(utc_now())
        conn = self._db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE entities SET deleted = 1, updated_at = ? WHERE owner_id = ? AND id = ?",
                    (now, owner_id, entity_id),
                )
                if cursor.rowcount == 0:
                    raise EntityNotFoundError(f"Entity {entity_id} not found")
        except sqlite3.Error as exc:
            logger.error(f"Failed to delete entity {entity_id}: {exc}")
            raise PersistenceError(f"Failed to delete entity {entity_id}") from exc
        finally:
            conn.close()
        logger.info(f"Soft-deleted entity {entity_id} for user {owner_id}")

    def _get(
        self, owner_id: str, entity_id: str, include_deleted: bool
    ) -> Optional[Entity]:
        conn = self._db.connect()
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM entities WHERE owner_id = ? AND id = ?",
                (owner_id, entity_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None or (row["deleted"] and not include_deleted):
            return None
        return _row_to_entity(row)

    def _list(
        self, owner_id: str, organized: Optional[bool], include_deleted: bool
    ) -> List[Entity]:
        query = f"SELECT {_COLUMNS} FROM entities WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if not include_deleted:
            query += " AND deleted = 0"
        if organized is not None:
            query += " AND organized = ?"
            params.append(int(organized))
        query += " ORDER BY created_at"

        conn = self._db.connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_entity(row) for row in rows]


__all__ = ["EntityStore"]
