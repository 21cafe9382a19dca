"""Pydantic models for organizer history and revert."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .content import Document


class HistoryItem(BaseModel):
    """Before/after snapshot of one organizer mutation."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    owner_id: str
    entity_id: str
    title: str
    action: Literal["created", "updated"]
    old_content: Optional[Document] = None
    old_content_text: str = ""
    new_content: Optional[Document] = None
    new_content_text: str = ""
    path: str
    timestamp: datetime


class HistoryListResponse(BaseModel):
    items: List[HistoryItem]
    total: int


class HistoryStats(BaseModel):
    total: int
    created: int
    updated: int
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class RevertResult(BaseModel):
    status: Literal["deleted", "reverted", "noop"]
    entity_id: str
    title: str
    history_item_id: Optional[str] = Field(
        None, description="Synthetic item recorded when an update is reverted"
    )


class RevertPreview(BaseModel):
    action: str
    description: str
    warning: str
