"""Pydantic models for routing, refinement and apply results."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .content import ContentNode
from .entity import Entity


class Refinement(BaseModel):
    """A proposed rewrite of one source paragraph."""

    model_config = ConfigDict(populate_by_name=True)

    paragraph_id: str = Field(..., alias="paragraphId", min_length=1)
    original_content: str = Field("", alias="originalContent")
    refined_content: str = Field("", alias="refinedContent")


class LineEdit(BaseModel):
    """A source paragraph as it currently reads in the note."""

    model_config = ConfigDict(populate_by_name=True)

    paragraph_id: str = Field(..., alias="paragraphId", min_length=1)
    content: str


class RefinementResult(BaseModel):
    refined_text: str
    errors: List[str] = Field(default_factory=list)


class OrganizationChunk(BaseModel):
    """One piece of routed content and the file it should land in."""

    model_config = ConfigDict(populate_by_name=True)

    target_path: str = Field(..., alias="targetFilePath", max_length=1024)
    content: str
    relevance: Optional[float] = Field(None, ge=0.0, le=1.0)
    source_ids: List[str] = Field(default_factory=list, alias="paragraphIds")
    refinements: List[Refinement] = Field(default_factory=list)


class RoutingSuggestion(BaseModel):
    """Candidate destination returned in suggestion-only mode."""

    model_config = ConfigDict(populate_by_name=True)

    target_path: str = Field(..., alias="targetFilePath", min_length=1)
    relevance: float = Field(0.0, ge=0.0, le=1.0)


class RoutingPlan(BaseModel):
    chunks: List[OrganizationChunk]
    used_default: bool = False
    model: Optional[str] = None


class PathResolution(BaseModel):
    entity: Entity
    was_created: bool


class MergeOutcome(BaseModel):
    """Reassembled destination content produced by the merge engine."""

    nodes: List[ContentNode]
    strategy: Literal["smart", "append", "direct"]
    window_size: int = 0
    fresh_ids: List[str] = Field(default_factory=list)


class AppliedChange(BaseModel):
    chunk_index: int
    entity_id: str
    title: str
    path: str
    action: Literal["created", "updated"]
    strategy: Literal["smart", "append", "direct"]


class ChunkFailure(BaseModel):
    chunk_index: int
    target_path: str
    error_type: str
    message: str


class ApplyResult(BaseModel):
    created: List[AppliedChange] = Field(default_factory=list)
    updated: List[AppliedChange] = Field(default_factory=list)
    failed: List[ChunkFailure] = Field(default_factory=list)


class ApplyRequest(BaseModel):
    chunks: List[OrganizationChunk] = Field(..., min_length=1, max_length=50)


class OrganizeRequest(BaseModel):
    rules: Optional[str] = Field(None, max_length=4000)


class OrganizeReport(BaseModel):
    """Outcome of one organize pass; always returned even on partial failure."""

    source_id: str
    created: List[AppliedChange] = Field(default_factory=list)
    updated: List[AppliedChange] = Field(default_factory=list)
    failed: List[ChunkFailure] = Field(default_factory=list)
    routed_chunks: int = 0
    used_default_route: bool = False
    skipped: bool = False
    refinement_errors: List[str] = Field(default_factory=list)
    cache_version: int = 0
