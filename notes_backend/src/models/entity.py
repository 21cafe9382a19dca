"""Pydantic models for files, folders and the destination tree."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .content import Document

EntityKind = Literal["file", "folder"]


class Entity(BaseModel):
    """A file or folder owned by a single user."""

    id: str
    owner_id: str
    title: str = Field(..., min_length=1, max_length=256)
    kind: EntityKind
    parent_id: Optional[str] = None
    content: Document = Field(default_factory=Document)
    content_text: str = ""
    organized: bool = False
    deleted: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class NoteCreate(BaseModel):
    """Request payload to create a plain note at the root."""

    title: str = Field(..., min_length=1, max_length=256)
    body: str = Field("", max_length=1_048_576)
    organization_rules: Optional[str] = Field(None, max_length=4000)


class FileTreeNode(BaseModel):
    """Entity positioned in the destination tree with its materialized path."""

    id: str
    title: str
    kind: EntityKind
    path: str
    parent_id: Optional[str] = None
    children: List[FileTreeNode] = Field(default_factory=list)


class FileTreeResponse(BaseModel):
    nodes: List[FileTreeNode]
    serialized: str
