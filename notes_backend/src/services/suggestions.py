"""Bounded, background-refreshed cache of destination suggestions."""

from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from ..models.organization import RoutingSuggestion
from .database import utc_now

logger = logging.getLogger(__name__)

SuggestionLoader = Callable[[], Awaitable[List[RoutingSuggestion]]]


class CachedSuggestions(BaseModel):
    entity_id: str
    suggestions: List[RoutingSuggestion]
    saved_at: datetime


class SuggestionCache:
    """Keyed by the note's entity id; oldest entries are evicted first.

    A hit is returned immediately and a refresh is started in the background;
    a miss is computed inline.
    """

    def __init__(self, max_items: int = 5) -> None:
        self.max_items = max_items
        self._entries: Dict[str, CachedSuggestions] = {}
        self._refreshing: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def get(self, entity_id: str) -> Optional[CachedSuggestions]:
        return self._entries.get(entity_id)

    def put(self, entity_id: str, suggestions: List[RoutingSuggestion]) -> CachedSuggestions:
        entry = CachedSuggestions(
            entity_id=entity_id, suggestions=suggestions, saved_at=utc_now()
        )
        self._entries[entity_id] = entry
        if len(self._entries) > self.max_items:
            ordered = sorted(self._entries.values(), key=lambda e: e.saved_at)
            for stale in ordered[: len(self._entries) - self.max_items]:
                del self._entries[stale.entity_id]
        return entry

    def invalidate(self, entity_id: str) -> None:
        self._entries.pop(entity_id, None)

    async def get_or_load(
        self, entity_id: str, loader: SuggestionLoader
    ) -> List[RoutingSuggestion]:
        cached = self._entries.get(entity_id)
        if cached is not None:
            self._refresh_in_background(entity_id, loader)
            return cached.suggestions
        suggestions = await loader()
        self.put(entity_id, suggestions)
        return suggestions

    def _refresh_in_background(self, entity_id: str, loader: SuggestionLoader) -> None:
        if entity_id in self._refreshing:
            return
        self._refreshing.add(entity_id)

        async def refresh() -> None:
            try:
                self.put(entity_id, await loader())
            except Exception as e:
                logger.warning(f"Background suggestion refresh for {entity_id} failed: {e}")
            finally:
                self._refreshing.discard(entity_id)

        task = asyncio.get_running_loop().create_task(refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for background refreshes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["SuggestionCache", "CachedSuggestions"]
