"""Destination tree construction and prompt serialization."""

from __future__ import annotations

from collections import defaultdict
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..models.entity import Entity, FileTreeNode

logger = logging.getLogger(__name__)


def _has_valid_ancestors(entity: Entity, by_id: Dict[str, Entity]) -> bool:
    seen: Set[str] = {entity.id}
    parent_id = entity.parent_id
    while parent_id is not None:
        if parent_id in seen:
            return False
        parent = by_id.get(parent_id)
        if parent is None:
            return False
        seen.add(parent_id)
        parent_id = parent.parent_id
    return True


def filter_valid_ancestors(entities: Iterable[Entity]) -> List[Entity]:
    """Drop entities whose parent chain is cyclic or points at a missing parent."""
    candidates = [entity for entity in entities if not entity.deleted]
    by_id = {entity.id: entity for entity in candidates}
    valid = []
    for entity in candidates:
        if _has_valid_ancestors(entity, by_id):
            valid.append(entity)
        else:
            logger.warning(f"Skipping entity {entity.id} ('{entity.title}') with broken ancestry")
    return valid


def _sort_key(entity: Entity) -> tuple:
    return (0 if entity.kind == "folder" else 1, entity.title.casefold(), entity.title, entity.id)


def build_tree(entities: Iterable[Entity]) -> List[FileTreeNode]:
    """Group entities by parent and compute each node's ``/A/B/C`` path."""
    children: Dict[Optional[str], List[Entity]] = defaultdict(list)
    for entity in filter_valid_ancestors(entities):
        children[entity.parent_id].append(entity)

    def build(parent_id: Optional[str], parent_path: str) -> List[FileTreeNode]:
        nodes = []
        for entity in sorted(children.get(parent_id, []), key=_sort_key):
            path = f"{parent_path}/{entity.title}"
            nodes.append(
                FileTreeNode(
                    id=entity.id,
                    title=entity.title,
                    kind=entity.kind,
                    path=path,
                    parent_id=entity.parent_id,
                    children=build(entity.id, path),
                )
            )
        return nodes

    return build(None, "")


def serialize_tree(nodes: Sequence[FileTreeNode], depth: int = 0) -> str:
    """Indented ``[DIR]``/``[FILE]`` listing, folders first then alphabetical."""
    lines: List[str] = []
    ordered = sorted(
        nodes, key=lambda n: (0 if n.kind == "folder" else 1, n.title.casefold(), n.title)
    )
    for node in ordered:
        label = "[DIR]" if node.kind == "folder" else "[FILE]"
        lines.append(f"{'  ' * depth}{label} {node.title}")
        if node.children:
            lines.append(serialize_tree(node.children, depth + 1))
    return "\n".join(lines)


def walk_tree(nodes: Sequence[FileTreeNode]) -> Iterable[FileTreeNode]:
    for node in nodes:
        yield node
        yield from walk_tree(node.children)


def find_node(nodes: Sequence[FileTreeNode], path: str) -> Optional[FileTreeNode]:
    """Case-insensitive lookup of a node by materialized path."""
    wanted = path.casefold()
    for node in walk_tree(nodes):
        if node.path.casefold() == wanted:
            return node
    return None


def folder_paths(nodes: Sequence[FileTreeNode]) -> Set[str]:
    """Casefolded paths of every folder, for rejecting folder destinations."""
    return {node.path.casefold() for node in walk_tree(nodes) if node.kind == "folder"}


__all__ = [
    "build_tree",
    "serialize_tree",
    "filter_valid_ancestors",
    "walk_tree",
    "find_node",
    "folder_paths",
]
