"""Block identity and provenance stamping."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set
from uuid import uuid4

from ..models.content import BlockMetadata, ContentNode


def _now() -> datetime:
    return datetime.now(timezone.utc)


def block_id(node: ContentNode) -> Optional[str]:
    """Stable id of a block, read from attrs or its metadata."""
    if node.attrs.id:
        return node.attrs.id
    if node.attrs.metadata is not None:
        return node.attrs.metadata.id
    return None


def new_block_id(owner_id: str, node_type: str, taken: Set[str]) -> str:
    while True:
        candidate = f"{owner_id}-{node_type}-{uuid4().hex[:12]}"
        if candidate not in taken:
            return candidate


def ensure_metadata(
    nodes: Sequence[ContentNode],
    owner_id: str,
    *,
    now: Optional[datetime] = None,
    force_timestamp: bool = False,
    reserved_ids: Iterable[str] = (),
) -> List[ContentNode]:
    """
    Return copies of ``nodes`` that all carry an id and block metadata.

    Existing ids and metadata fields are kept, so a second call returns equal
    nodes. A missing or duplicated id is replaced with a fresh owner-scoped id
    that collides with nothing in ``nodes`` or ``reserved_ids``. Defaults for
    new metadata are ``is_organized=False``, status ``"no"`` and
    ``last_updated=now``; ``force_timestamp`` resets ``last_updated`` on every
    block.
    """
    stamp = now or _now()
    taken: Set[str] = set(reserved_ids)
    taken.update(filter(None, (block_id(node) for node in nodes)))
    assigned: Set[str] = set()
    result: List[ContentNode] = []

    for node in nodes:
        existing = node.attrs.metadata
        node_id = block_id(node)
        if not node_id or node_id in assigned:
            node_id = new_block_id(owner_id, node.type, taken)
            taken.add(node_id)
        assigned.add(node_id)

        if existing is None:
            metadata = BlockMetadata(
                id=node_id,
                is_organized=False,
                last_updated=stamp,
                organization_status="no",
            )
        elif existing.id == node_id and not force_timestamp:
            metadata = existing
        else:
            update = {"id": node_id}
            if force_timestamp:
                update["last_updated"] = stamp
            metadata = existing.model_copy(update=update)

        if node.attrs.id == node_id and metadata is existing:
            result.append(node)
            continue
        attrs = node.attrs.model_copy(update={"id": node_id, "metadata": metadata})
        result.append(node.model_copy(update={"attrs": attrs}))

    return result


def mark_organized(
    nodes: Sequence[ContentNode],
    owner_id: str,
    *,
    now: Optional[datetime] = None,
    only_ids: Optional[Iterable[str]] = None,
) -> List[ContentNode]:
    """
    Stamp blocks as organized: ``is_organized=True``, status ``"yes"`` and
    ``last_updated=now``. When ``only_ids`` is given, other blocks are returned
    unchanged.
    """
    stamp = now or _now()
    stamped = ensure_metadata(nodes, owner_id, now=stamp)
    targets = set(only_ids) if only_ids is not None else None
    result: List[ContentNode] = []

    for original, node in zip(nodes, stamped):
        if targets is not None and block_id(node) not in targets:
            result.append(original)
            continue
        metadata = node.attrs.metadata.model_copy(
            update={
                "is_organized": True,
                "organization_status": "yes",
                "last_updated": stamp,
            }
        )
        attrs = node.attrs.model_copy(update={"metadata": metadata})
        result.append(node.model_copy(update={"attrs": attrs}))

    return result


def unorganized_blocks(nodes: Sequence[ContentNode]) -> List[ContentNode]:
    """Blocks whose metadata is missing or not yet organized."""
    return [
        node
        for node in nodes
        if node.attrs.metadata is None or not node.attrs.metadata.is_organized
    ]


__all__ = [
    "block_id",
    "new_block_id",
    "ensure_metadata",
    "mark_organized",
    "unorganized_blocks",
]
