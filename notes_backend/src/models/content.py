"""Pydantic models for the block-structured note document."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Mark = Literal["bold", "italic"]


class TextRun(BaseModel):
    """A span of inline text sharing the same marks."""

    text: str = ""
    marks: List[Mark] = Field(default_factory=list)


class BlockMetadata(BaseModel):
    """Provenance stamped on every block by the organizer."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    is_organized: bool = False
    last_updated: datetime
    organization_status: Literal["no", "yes"] = "no"


class NodeAttrs(BaseModel):
    """Block attributes; unknown keys from editors are preserved."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    metadata: Optional[BlockMetadata] = None


class _Block(BaseModel):
    attrs: NodeAttrs = Field(default_factory=NodeAttrs)


class Paragraph(_Block):
    type: Literal["paragraph"] = "paragraph"
    content: List[TextRun] = Field(default_factory=list)


class Heading(_Block):
    type: Literal["heading"] = "heading"
    level: int = Field(1, ge=1, le=3)
    content: List[TextRun] = Field(default_factory=list)


class ListItem(BaseModel):
    content: List[TextRun] = Field(default_factory=list)


class BulletList(_Block):
    type: Literal["bullet_list"] = "bullet_list"
    items: List[ListItem] = Field(default_factory=list)


class OrderedList(_Block):
    type: Literal["ordered_list"] = "ordered_list"
    start: int = Field(1, ge=0)
    items: List[ListItem] = Field(default_factory=list)


class Blockquote(_Block):
    type: Literal["blockquote"] = "blockquote"
    content: List[TextRun] = Field(default_factory=list)


class CodeBlock(_Block):
    type: Literal["code_block"] = "code_block"
    language: Optional[str] = None
    text: str = ""


ContentNode = Annotated[
    Union[Paragraph, Heading, BulletList, OrderedList, Blockquote, CodeBlock],
    Field(discriminator="type"),
]


class Document(BaseModel):
    """Ordered sequence of content blocks."""

    content: List[ContentNode] = Field(default_factory=list)
