"""In-process notification fan-out to presentation layers."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from ..models.events import Notification, NotificationType
from .database import utc_now

logger = logging.getLogger(__name__)

E = TypeVar("E")


class ListenerRegistry(Generic[E]):
    """Synchronous fan-out where a failing listener never blocks the rest."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: Dict[int, Callable[[E], Any]] = {}
        self._next_key = 0

    def subscribe(self, listener: Callable[[E], Any]) -> Callable[[], None]:
        key = self._next_key
        self._next_key += 1
        self._listeners[key] = listener

        def unsubscribe() -> None:
            self._listeners.pop(key, None)

        return unsubscribe

    def emit(self, event: E) -> int:
        """Deliver to every listener; returns how many succeeded."""
        delivered = 0
        for listener in list(self._listeners.values()):
            try:
                listener(event)
                delivered += 1
            except Exception as e:
                logger.exception(f"{self._name} listener failed: {e}")
        return delivered

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)


class NotificationChannel:
    """Broadcasts created/updated lists, errors and revert outcomes."""

    def __init__(self) -> None:
        self._registry: ListenerRegistry[Notification] = ListenerRegistry("notification")
        self.history: List[Notification] = []
        self.keep_last = 50

    def subscribe(self, listener: Callable[[Notification], Any]) -> Callable[[], None]:
        return self._registry.subscribe(listener)

    def publish(
        self,
        type: NotificationType,
        owner_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            type=type, owner_id=owner_id, data=data or {}, timestamp=utc_now()
        )
        self.history.append(notification)
        del self.history[: -self.keep_last]
        self._registry.emit(notification)
        return notification

    def recent(self, owner_id: str) -> List[Notification]:
        return [n for n in self.history if n.owner_id == owner_id]


__all__ = ["ListenerRegistry", "NotificationChannel"]
