"""Bounded organizer history and the revert service."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
import sqlite3
from typing import Callable, List, Optional

from ..models.content import Document
from ..models.history import HistoryItem, HistoryStats, RevertPreview, RevertResult
from .config import AppConfig, get_config
from .content_processor import document_to_text
from .database import DatabaseService, from_db_timestamp, to_db_timestamp, utc_now
from .entity_store import EntityStore
from .errors import EntityNotFoundError, PersistenceError, RevertError
from .notifications import NotificationChannel

logger = logging.getLogger(__name__)


def _dump(document: Optional[Document]) -> Optional[str]:
    return document.model_dump_json() if document is not None else None


def _load(raw: Optional[str]) -> Optional[Document]:
    return Document.model_validate_json(raw) if raw else None


def _row_to_item(row: sqlite3.Row) -> HistoryItem:
    return HistoryItem(
        id=row["id"],
        owner_id=row["owner_id"],
        entity_id=row["entity_id"],
        title=row["title"],
        action=row["action"],
        old_content=_load(row["old_content"]),
        old_content_text=row["old_content_text"],
        new_content=_load(row["new_content"]),
        new_content_text=row["new_content_text"],
        path=row["path"],
        timestamp=from_db_timestamp(row["timestamp"]),
    )


class HistoryStore:
    """One live item per entity, newest ``max_items`` kept within ``max_age``."""

    def __init__(
        self,
        db_service: DatabaseService | None = None,
        *,
        max_items: Optional[int] = None,
        max_age: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[AppConfig] = None,
    ):
        config = config or get_config()
        self._db = db_service or DatabaseService()
        self.max_items = max_items or config.max_history_items
        self.max_age = max_age or timedelta(days=config.max_history_age_days)
        self._clock = clock or utc_now

    async def add(self, item: HistoryItem) -> HistoryItem:
        """Insert ``item``, replacing any earlier item for the same entity."""
        await asyncio.to_thread(self._add, item)
        return item

    async def list(self, owner_id: str) -> List[HistoryItem]:
        """Live items for the owner, newest first."""
        return await asyncio.to_thread(self._list, owner_id)

    async def get(self, owner_id: str, item_id: str) -> Optional[HistoryItem]:
        """The owner's item, or None once removed or older than ``max_age``."""
        return await asyncio.to_thread(self._get, owner_id, item_id)

    async def exists(self, item_id: str) -> bool:
        """Whether an item with this id is live for any owner."""
        return await asyncio.to_thread(self._exists, item_id)

    async def remove(self, owner_id: str, item_id: str) -> bool:
        return await asyncio.to_thread(self._remove, owner_id, item_id)

    async def clear(self, owner_id: str) -> int:
        return await asyncio.to_thread(self._clear, owner_id)

    async def stats(self, owner_id: str) -> HistoryStats:
        items = await self.list(owner_id)
        return HistoryStats(
            total=len(items),
            created=sum(1 for item in items if item.action == "created"),
            updated=sum(1 for item in items if item.action == "updated"),
            oldest=items[-1].timestamp if items else None,
            newest=items[0].timestamp if items else None,
        )

    # ------------------------------------------------------------------

    def _add(self, item: HistoryItem) -> None:
        conn = self._db.connect()
        try:
            with conn:
                conn.execute(
                    "DELETE FROM history_items WHERE owner_id = ? AND entity_id = ?",
                    (item.owner_id, item.entity_id),
                )
                conn.execute(
                    """
                    INSERT INTO history_items
                    (id, owner_id, entity_id, title, action, old_content, old_content_text,
                     new_content, new_content_text, path, timestamp)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        item.id,
                        item.owner_id,
                        item.entity_id,
                        item.title,
                        item.action,
                        _dump(item.old_content),
                        item.old_content_text,
                        _dump(item.new_content),
                        item.new_content_text,
                        item.path,
                        to_db_timestamp(item.timestamp),
                    ),
                )
                self._prune(conn, item.owner_id)
        except sqlite3.Error as exc:
            logger.error(f"Failed to record history for {item.entity_id}: {exc}")
            raise PersistenceError(f"Failed to record history for {item.title}") from exc
        finally:
            conn.close()

    def _cutoff(self) -> str:
        return to_db_timestamp(self._clock() - self.max_age)

    def _prune(self, conn: sqlite3.Connection, owner_id: str) -> None:
        cutoff = self._cutoff()
        expired = conn.execute(
            "DELETE FROM history_items WHERE owner_id = ? AND timestamp < ?",
            (owner_id, cutoff),
        ).rowcount
        overflow = conn.execute(
            """
            DELETE FROM history_items
            WHERE owner_id = ? AND id NOT IN (
                SELECT id FROM history_items WHERE owner_id = ?
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
            )
            """,
            (owner_id, owner_id, self.max_items),
        ).rowcount
        if expired or overflow:
            logger.debug(
                f"Pruned history for {owner_id}: {expired} expired, {overflow} over limit"
            )

    def _list(self, owner_id: str) -> List[HistoryItem]:
        cutoff = self._cutoff()
        conn = self._db.connect()
        try:
            rows = conn.execute(
                """
                SELECT * FROM history_items
                WHERE owner_id = ? AND timestamp >= ?
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
                """,
                (owner_id, cutoff, self.max_items),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]

    def _get(self, owner_id: str, item_id: str) -> Optional[HistoryItem]:
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT * FROM history_items WHERE owner_id = ? AND id = ? AND timestamp >= ?",
                (owner_id, item_id, self._cutoff()),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_item(row) if row is not None else None

    def _exists(self, item_id: str) -> bool:
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT 1 FROM history_items WHERE id = ? AND timestamp >= ?",
                (item_id, self._cutoff()),
            ).fetchone()
        finally:
            conn.close()
        return row is not None

    def _remove(self, owner_id: str, item_id: str) -> bool:
        conn = self._db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM history_items WHERE owner_id = ? AND id = ?",
                    (owner_id, item_id),
                )
        finally:
            conn.close()
        return cursor.rowcount > 0

    def _clear(self, owner_id: str) -> int:
        conn = self._db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM history_items WHERE owner_id = ?", (owner_id,)
                )
        finally:
            conn.close()
        return cursor.rowcount


class RevertService:
    """Undo organizer mutations recorded in the history store."""

    def __init__(
        self,
        store: EntityStore,
        history: HistoryStore,
        notifications: Optional[NotificationChannel] = None,
    ):
        self._store = store
        self._history = history
        self._notifications = notifications or NotificationChannel()

    async def revert(self, owner_id: str, item_id: str) -> RevertResult:
        """
        Revert one history item.

        A creation is undone by soft-deleting the file; an update restores the
        old snapshot and records a new ``updated`` item so the revert itself
        can be undone. Reverting an item that is no longer live is a no-op.

        Raises:
            RevertError: If the entity is missing, not owned, or the write fails.
        """
        item = await self._history.get(owner_id, item_id)
        if item is None:
            if await self._history.exists(item_id):
                raise RevertError(
                    "History item belongs to another user", details={"item_id": item_id}
                )
            logger.info(f"History item {item_id} already reverted or expired")
            return RevertResult(status="noop", entity_id="", title="")

        entity = await self._store.get(owner_id, item.entity_id, include_deleted=True)
        if entity is None:
            raise RevertError(
                f"Cannot revert '{item.title}': file not found",
                details={"entity_id": item.entity_id},
            )

        try:
            if item.action == "created":
                if not entity.deleted:
                    await self._store.soft_delete(owner_id, entity.id)
                await self._history.remove(owner_id, item.id)
                self._notifications.publish(
                    "file_deleted",
                    owner_id,
                    {"entity_id": entity.id, "title": entity.title, "path": item.path},
                )
                logger.info(f"Reverted creation of '{entity.title}' for {owner_id}")
                return RevertResult(status="deleted", entity_id=entity.id, title=entity.title)

            if entity.deleted:
                raise RevertError(f"Cannot revert '{item.title}': file was deleted")

            restored_content = item.old_content or Document()
            restored_text = item.old_content_text or document_to_text(restored_content)
            await self._store.update_content(owner_id, entity.id, restored_content, restored_text)
            await self._history.remove(owner_id, item.id)
            followup = await self._history.add(
                HistoryItem(
                    owner_id=owner_id,
                    entity_id=entity.id,
                    title=entity.title,
                    action="updated",
                    old_content=entity.content,
                    old_content_text=entity.content_text,
                    new_content=restored_content,
                    new_content_text=restored_text,
                    path=item.path,
                    timestamp=utc_now(),
                )
            )
        except (PersistenceError, EntityNotFoundError) as exc:
            logger.error(f"Revert of {item.id} failed: {exc}")
            raise RevertError(f"Failed to revert '{item.title}': {exc}") from exc

        self._notifications.publish(
            "file_reverted",
            owner_id,
            {"entity_id": entity.id, "title": entity.title, "path": item.path},
        )
        logger.info(f"Reverted update of '{entity.title}' for {owner_id}")
        return RevertResult(
            status="reverted",
            entity_id=entity.id,
            title=entity.title,
            history_item_id=followup.id,
        )

    @staticmethod
    def preview(item: HistoryItem) -> RevertPreview:
        if item.action == "created":
            return RevertPreview(
                action="Delete File",
                description=f'This will delete "{item.title}" which was created by auto-organization.',
                warning="This action cannot be undone. The file and its content will be removed.",
            )
        delta = len(item.old_content_text) - len(item.new_content_text)
        if delta < 0:
            change = f"remove {-delta} characters"
        elif delta > 0:
            change = f"add {delta} characters"
        else:
            change = "keep the same length"
        return RevertPreview(
            action="Restore Previous Version",
            description=f'This will restore "{item.title}" to its state before auto-organization.',
            warning=f"Restoring will {change} in this file.",
        )


__all__ = ["HistoryStore", "RevertService"]
