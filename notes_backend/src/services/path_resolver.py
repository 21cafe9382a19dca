"""Materialize the folder/file chain for a destination path."""

from __future__ import annotations

import logging

from ..models.organization import PathResolution
from .entity_store import EntityStore
from .errors import EntityExistsError, PathResolutionError
from .paths import split_path

logger = logging.getLogger(__name__)


class PathResolver:
    """Look up or create every segment of ``/Folder/.../File``."""

    def __init__(self, store: EntityStore):
        self._store = store

    async def ensure_path_entity(self, owner_id: str, path: str) -> PathResolution:
        """
        Walk the path from the root, creating missing folders and the file.

        ``was_created`` is true only when the terminal file was inserted by
        this call. A concurrent creator winning the insert race is treated as
        the found case.
        """
        try:
            segments = split_path(path)
        except ValueError as exc:
            raise PathResolutionError(f"Invalid destination path '{path}': {exc}") from exc

        parent_id = None
        entity = None
        was_created = False
        last_index = len(segments) - 1

        for index, title in enumerate(segments):
            kind = "file" if index == last_index else "folder"
            entity = await self._store.find_child(owner_id, parent_id, kind, title)
            created = False
            if entity is None:
                try:
                    entity = await self._store.insert(
                        owner_id, title, kind, parent_id, organized=True
                    )
                    created = True
                except EntityExistsError:
                    logger.debug(f"{kind} '{title}' appeared concurrently, re-reading")
                    entity = await self._store.find_child(owner_id, parent_id, kind, title)
                    if entity is None:
                        raise PathResolutionError(
                            f"Could not resolve segment '{title}' of '{path}'",
                            details={"owner_id": owner_id, "segment": title},
                        )
            if index == last_index:
                was_created = created
            parent_id = entity.id

        return PathResolution(entity=entity, was_created=was_created)


__all__ = ["PathResolver"]
