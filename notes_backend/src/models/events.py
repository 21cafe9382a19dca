"""Event payloads broadcast to presentation layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class CacheState(str, Enum):
    IDLE = "idle"
    ORGANIZING = "organizing"
    ERROR = "error"


class CacheEvent(BaseModel):
    kind: Literal["immediate", "refresh", "error"]
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    version: int = Field(..., ge=0)


class OrganizationState(BaseModel):
    """Snapshot of a cache manager for status endpoints."""

    state: CacheState
    version: int
    last_error: Optional[str] = None
    pending_updates: int = 0
    tracked_entities: int = 0
    last_refresh: Optional[datetime] = None


NotificationType = Literal[
    "files_created",
    "files_updated",
    "file_deleted",
    "file_reverted",
    "organization_error",
]


class Notification(BaseModel):
    type: NotificationType
    owner_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
