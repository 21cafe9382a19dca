"""Optimistic organization state with deferred authoritative reconciliation.

The manager is a small state machine (idle, organizing, error). Completing a
pass publishes the applier's result immediately, then schedules a consistency
check that re-reads the entity store and publishes a plain diff against the
previous snapshot. The store is authoritative; this view is advisory.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from ..models.entity import Entity
from ..models.events import CacheEvent, CacheState, OrganizationState
from ..models.organization import ApplyResult
from .database import utc_now
from .errors import InvalidStateTransition
from .notifications import ListenerRegistry

logger = logging.getLogger(__name__)

EntityFetcher = Callable[[], Awaitable[List[Entity]]]


class OrganizationCacheManager:
    """Per-owner organization cache and consistency loop."""

    def __init__(
        self,
        fetcher: EntityFetcher,
        *,
        consistency_delay: float = 0.5,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._fetcher = fetcher
        self._delay = consistency_delay
        self._clock = clock or utc_now
        self._listeners: ListenerRegistry[CacheEvent] = ListenerRegistry("cache")
        self._state = CacheState.IDLE
        self._version = 0
        self._last_error: Optional[str] = None
        self._snapshot: Dict[str, datetime] = {}
        # entity id -> "created" | "updated" | "deleted", cleared by refresh
        self._pending: Dict[str, str] = {}
        self._last_refresh: Optional[datetime] = None
        self._check_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def version(self) -> int:
        return self._version

    def is_stale(self, version: int) -> bool:
        """True when a newer pass has started since ``version`` was read."""
        return version != self._version

    def subscribe(self, listener: Callable[[CacheEvent], Any]) -> Callable[[], None]:
        return self._listeners.subscribe(listener)

    def get_state(self) -> OrganizationState:
        return OrganizationState(
            state=self._state,
            version=self._version,
            last_error=self._last_error,
            pending_updates=len(self._pending),
            tracked_entities=len(self._snapshot),
            last_refresh=self._last_refresh,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_organization(self) -> int:
        if self._state == CacheState.ORGANIZING:
            raise InvalidStateTransition("An organization pass is already running")
        self._state = CacheState.ORGANIZING
        self._last_error = None
        self._version += 1
        self._emit("immediate", {"status": "organizing_started"})
        return self._version

    def complete_organization(self, result: ApplyResult) -> int:
        """Publish the optimistic result and schedule the consistency check.

        Must be called from a running event loop.
        """
        if self._state != CacheState.ORGANIZING:
            raise InvalidStateTransition(
                f"Cannot complete organization from state {self._state.value}"
            )
        for change in result.created + result.updated:
            self._pending[change.entity_id] = change.action
        self._state = CacheState.IDLE
        self._version += 1
        self._emit(
            "immediate",
            {
                "status": "organizing_completed",
                "created": [c.model_dump() for c in result.created],
                "updated": [c.model_dump() for c in result.updated],
                "failed": [f.model_dump() for f in result.failed],
            },
        )
        self._schedule_consistency_check()
        return self._version

    def fail_organization(self, error: BaseException | str) -> int:
        message = error.args[0] if isinstance(error, BaseException) and error.args else str(error)
        self._state = CacheState.ERROR
        self._last_error = str(message)
        self._version += 1
        self._emit("error", {"message": self._last_error})
        return self._version

    def optimistic_update(
        self, action: Literal["created", "updated", "deleted"], entities: List[Dict[str, Any]]
    ) -> None:
        """Publish changes made outside a pass, then reconcile against the store.

        Each entry in ``entities`` needs an ``entity_id``. Must be called from a
        running event loop.
        """
        for entity in entities:
            self._pending[entity["entity_id"]] = action
        self._emit(
            "immediate", {"status": "optimistic", "action": action, "entities": entities}
        )
        self._schedule_consistency_check()

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    async def refresh(self) -> Dict[str, Any]:
        """Re-read authoritative entities and emit the diff as ``refresh``."""
        entities = await self._fetcher()
        current = {entity.id: entity.updated_at for entity in entities if not entity.deleted}
        previous = self._snapshot
        diff = {
            "added": sorted(set(current) - set(previous)),
            "removed": sorted(set(previous) - set(current)),
            "changed": sorted(
                entity_id
                for entity_id in set(current) & set(previous)
                if current[entity_id] != previous[entity_id]
            ),
            "entities": [
                entity.model_dump(mode="json", exclude={"content"})
                for entity in entities
                if not entity.deleted
            ],
        }
        self._snapshot = current
        self._pending.clear()
        self._last_refresh = self._clock()
        self._emit("refresh", diff)
        return diff

    def _schedule_consistency_check(self) -> None:
        if self._check_task is not None and not self._check_task.done():
            self._check_task.cancel()
        self._check_task = asyncio.get_running_loop().create_task(self._consistency_check())

    async def _consistency_check(self) -> None:
        await asyncio.sleep(self._delay)
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"Consistency check failed: {e}")
            self._emit("error", {"message": f"Consistency check failed: {e}"})

    async def drain(self) -> None:
        """Wait for a scheduled consistency check to finish."""
        task = self._check_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        if self._check_task is not None and not self._check_task.done():
            self._check_task.cancel()
            await self.drain()
        self._listeners.clear()

    def _emit(self, kind: str, payload: Dict[str, Any]) -> None:
        event = CacheEvent(
            kind=kind, payload=payload, timestamp=self._clock(), version=self._version
        )
        self._listeners.emit(event)


__all__ = ["OrganizationCacheManager", "EntityFetcher"]
