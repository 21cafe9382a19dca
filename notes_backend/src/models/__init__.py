"""Pydantic models for data validation and serialization."""

from .content import (
    BlockMetadata,
    Blockquote,
    BulletList,
    CodeBlock,
    ContentNode,
    Document,
    Heading,
    ListItem,
    NodeAttrs,
    OrderedList,
    Paragraph,
    TextRun,
)
from .entity import Entity, FileTreeNode, FileTreeResponse, NoteCreate
from .events import CacheEvent, CacheState, Notification, OrganizationState
from .history import HistoryItem, HistoryListResponse, HistoryStats, RevertPreview, RevertResult
from .organization import (
    AppliedChange,
    ApplyRequest,
    ApplyResult,
    ChunkFailure,
    LineEdit,
    MergeOutcome,
    OrganizationChunk,
    OrganizeReport,
    OrganizeRequest,
    PathResolution,
    Refinement,
    RefinementResult,
    RoutingPlan,
    RoutingSuggestion,
)

__all__ = [
    "TextRun",
    "BlockMetadata",
    "NodeAttrs",
    "Paragraph",
    "Heading",
    "ListItem",
    "BulletList",
    "OrderedList",
    "Blockquote",
    "CodeBlock",
    "ContentNode",
    "Document",
    "Entity",
    "NoteCreate",
    "FileTreeNode",
    "FileTreeResponse",
    "CacheEvent",
    "CacheState",
    "Notification",
    "OrganizationState",
    "HistoryItem",
    "HistoryListResponse",
    "HistoryStats",
    "RevertPreview",
    "RevertResult",
    "AppliedChange",
    "ApplyRequest",
    "ApplyResult",
    "ChunkFailure",
    "LineEdit",
    "MergeOutcome",
    "OrganizationChunk",
    "OrganizeReport",
    "OrganizeRequest",
    "PathResolution",
    "Refinement",
    "RefinementResult",
    "RoutingPlan",
    "RoutingSuggestion",
]
