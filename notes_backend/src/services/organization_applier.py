"""Concurrent per-destination application of routed chunks."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from ..models.content import Document
from ..models.history import HistoryItem
from ..models.organization import AppliedChange, ApplyResult, ChunkFailure, OrganizationChunk
from .block_metadata import mark_organized
from .content_processor import document_to_text
from .database import utc_now
from .entity_store import EntityStore
from .errors import ChunkValidationError, OrganizerError, PersistenceError
from .history import HistoryStore
from .notifications import NotificationChannel
from .path_resolver import PathResolver
from .paths import normalize_path
from .smart_merge import SmartMergeEngine

logger = logging.getLogger(__name__)

RULES_METADATA_KEY = "organization_rules"


def validate_chunk(chunk: OrganizationChunk) -> OrganizationChunk:
    """Normalize the target path and reject empty content."""
    if not chunk.content or not chunk.content.strip():
        raise ChunkValidationError(
            "Chunk content is empty", details={"target_path": chunk.target_path}
        )
    try:
        target = normalize_path(chunk.target_path)
    except ValueError as exc:
        raise ChunkValidationError(
            f"Invalid target path '{chunk.target_path}': {exc}",
            details={"target_path": chunk.target_path},
        ) from exc
    return chunk.model_copy(update={"target_path": target})


class OrganizationApplier:
    """Resolve, merge, persist and record every chunk of an organize pass.

    Chunks run as independent tasks. A failing chunk is logged and reported
    without cancelling its siblings. Chunks that land on the same file are
    serialized on a per-destination lock and each re-reads the file under the
    lock, so neither overwrites the other.
    """

    def __init__(
        self,
        store: EntityStore,
        resolver: PathResolver,
        merge_engine: SmartMergeEngine,
        history: HistoryStore,
        notifications: Optional[NotificationChannel] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._merge = merge_engine
        self._history = history
        self._notifications = notifications or NotificationChannel()
        # (owner, entity) -> [lock, holders + waiters]; dropped when unused.
        self._locks: Dict[Tuple[str, str], List] = {}

    @asynccontextmanager
    async def _destination_lock(self, owner_id: str, entity_id: str) -> AsyncIterator[None]:
        key = (owner_id, entity_id)
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    async def apply(
        self,
        owner_id: str,
        chunks: Sequence[OrganizationChunk],
        *,
        source_id: Optional[str] = None,
    ) -> ApplyResult:
        """Apply chunks concurrently and report per-chunk outcomes.

        ``source_id`` names the note being organized; chunks resolving to it
        are rejected so a note is never merged into itself.
        """
        tasks = [
            self._apply_chunk(owner_id, index, chunk, source_id)
            for index, chunk in enumerate(chunks)
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        result = ApplyResult()
        for index, (chunk, outcome) in enumerate(zip(chunks, outcomes)):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                message = outcome.message if isinstance(outcome, OrganizerError) else str(outcome)
                if isinstance(outcome, OrganizerError):
                    logger.warning(
                        f"Chunk {index} for {chunk.target_path} failed: {message}"
                    )
                else:
                    logger.error(
                        f"Unexpected failure applying chunk {index} to {chunk.target_path}",
                        exc_info=outcome,
                    )
                result.failed.append(
                    ChunkFailure(
                        chunk_index=index,
                        target_path=chunk.target_path,
                        error_type=type(outcome).__name__,
                        message=message,
                    )
                )
            elif outcome.action == "created":
                result.created.append(outcome)
            else:
                result.updated.append(outcome)

        if result.created:
            self._notifications.publish(
                "files_created", owner_id, {"files": [c.model_dump() for c in result.created]}
            )
        if result.updated:
            self._notifications.publish(
                "files_updated", owner_id, {"files": [c.model_dump() for c in result.updated]}
            )
        if result.failed:
            self._notifications.publish(
                "organization_error",
                owner_id,
                {"failures": [f.model_dump() for f in result.failed]},
            )

        logger.info(
            f"Applied {len(chunks)} chunk(s) for {owner_id}: "
            f"{len(result.created)} created, {len(result.updated)} updated, "
            f"{len(result.failed)} failed"
        )
        return result

    async def _apply_chunk(
        self,
        owner_id: str,
        index: int,
        chunk: OrganizationChunk,
        source_id: Optional[str],
    ) -> AppliedChange:
        chunk = validate_chunk(chunk)
        resolution = await self._resolver.ensure_path_entity(owner_id, chunk.target_path)
        if source_id is not None and resolution.entity.id == source_id:
            raise ChunkValidationError(
                f"Chunk targets the note being organized: {chunk.target_path}",
                details={"target_path": chunk.target_path, "entity_id": source_id},
            )

        async with self._destination_lock(owner_id, resolution.entity.id):
            current = await self._store.get(owner_id, resolution.entity.id)
            if current is None:
                raise PersistenceError(
                    f"Destination {chunk.target_path} disappeared before it could be written"
                )

            outcome = await self._merge.merge(
                current.content.content,
                chunk.content,
                owner_id=owner_id,
                title=current.title,
                rules=current.metadata.get(RULES_METADATA_KEY),
            )
            nodes = mark_organized(outcome.nodes, owner_id, only_ids=outcome.fresh_ids)
            document = Document(content=nodes)
            text = document_to_text(document)
            await self._store.update_content(
                owner_id, current.id, document, text, organized=True
            )

            action = "created" if resolution.was_created else "updated"
            await self._history.add(
                HistoryItem(
                    owner_id=owner_id,
                    entity_id=current.id,
                    title=current.title,
                    action=action,
                    old_content=None if resolution.was_created else current.content,
                    old_content_text="" if resolution.was_created else current.content_text,
                    new_content=document,
                    new_content_text=text,
                    path=chunk.target_path,
                    timestamp=utc_now(),
                )
            )

        logger.debug(f"Chunk {index} {action} {chunk.target_path} via {outcome.strategy} merge")
        return AppliedChange(
            chunk_index=index,
            entity_id=current.id,
            title=current.title,
            path=chunk.target_path,
            action=action,
            strategy=outcome.strategy,
        )


__all__ = ["OrganizationApplier", "validate_chunk", "RULES_METADATA_KEY"]
