"""Unit tests for the entity store and destination path resolution."""

import asyncio

import pytest

from notes_backend.src.services.database import DatabaseService
from notes_backend.src.services.entity_store import EntityStore
from notes_backend.src.services.errors import EntityExistsError, PathResolutionError
from notes_backend.src.services.path_resolver import PathResolver
from notes_backend.src.services.paths import normalize_path, parent_path, validate_destination_path


@pytest.fixture
def store(tmp_path):
    db = DatabaseService(db_path=tmp_path / "organizer.db")
    db.initialize()
    return EntityStore(db)


@pytest.fixture
def resolver(store):
    return PathResolver(store)


class TestPaths:
    """Tests for path normalization and validation."""

    def test_normalize(self) -> None:
        """Paths are normalized and parents derived."""
        assert normalize_path(" Projects // Notes ") == "/Projects/Notes"
        assert parent_path("/Projects/Notes") == "/Projects"
        assert parent_path("/Notes") is None

    @pytest.mark.parametrize("path", ["", "/", "/a/../b", "/bad|name", "/" + "x" * 101])
    def test_invalid(self, path) -> None:
        """Empty, relative, illegal and oversized paths are invalid."""
        valid, message = validate_destination_path(path)
        assert valid is False
        assert message


class TestEntityStore:
    """Tests for EntityStore lookups and deletes."""

    @pytest.mark.asyncio
    async def test_find_child_exact_then_case_insensitive(self, store) -> None:
        """Children are found by exact then case-insensitive title."""
        folder = await store.insert("u1", "Projects", "folder")

        assert (await store.find_child("u1", None, "folder", "Projects")).id == folder.id
        assert (await store.find_child("u1", None, "folder", "projects")).id == folder.id
        assert await store.find_child("u1", None, "file", "Projects") is None
        assert await store.find_child("u2", None, "folder", "Projects") is None

    @pytest.mark.asyncio
    async def test_duplicate_live_sibling_rejected(self, store) -> None:
        """Two live siblings cannot share a title."""
        await store.insert("u1", "Notes", "file")
        with pytest.raises(EntityExistsError):
            await store.insert("u1", "Notes", "file")

    @pytest.mark.asyncio
    async def test_get_is_owner_scoped(self, store) -> None:
        """Another owner cannot read the entity."""
        note = await store.insert("u1", "Notes", "file")
        assert await store.get("u2", note.id) is None
        assert (await store.get("u1", note.id)).title == "Notes"

    @pytest.mark.asyncio
    async def test_soft_delete_hides_entity(self, store) -> None:
        """Soft-deleted entities are hidden and free their name."""
        note = await store.insert("u1", "Notes", "file")
        await store.soft_delete("u1", note.id)

        assert await store.get("u1", note.id) is None
        assert (await store.get("u1", note.id, include_deleted=True)).deleted is True
        assert await store.list_entities("u1") == []
        # Name is free again once deleted.
        await store.insert("u1", "Notes", "file")


class TestEnsurePathEntity:
    """Tests for PathResolver.ensure_path_entity()."""

    @pytest.mark.asyncio
    async def test_creates_chain(self, resolver, store) -> None:
        """Missing folders and the file are created."""
        result = await resolver.ensure_path_entity("u1", "/Projects/Work/Notes")

        assert result.was_created is True
        assert result.entity.kind == "file"
        assert result.entity.organized is True
        folders = [e for e in await store.list_entities("u1") if e.kind == "folder"]
        assert sorted(f.title for f in folders) == ["Projects", "Work"]

    @pytest.mark.asyncio
    async def test_same_path_twice_returns_same_entity(self, resolver) -> None:
        """Resolving again finds the existing file."""
        first = await resolver.ensure_path_entity("u1", "/Projects/Notes")
        second = await resolver.ensure_path_entity("u1", "/Projects/Notes")

        assert first.entity.id == second.entity.id
        assert second.was_created is False

    @pytest.mark.asyncio
    async def test_case_insensitive_match_reuses_entity(self, resolver) -> None:
        """A differently cased path reuses the file."""
        first = await resolver.ensure_path_entity("u1", "/Projects/Notes")
        second = await resolver.ensure_path_entity("u1", "/projects/NOTES")

        assert second.entity.id == first.entity.id
        assert second.was_created is False

    @pytest.mark.asyncio
    async def test_same_title_under_new_folder_is_new_file(self, resolver) -> None:
        """The same title under another folder is a different file."""
        await resolver.ensure_path_entity("u1", "/Projects/Notes")
        result = await resolver.ensure_path_entity("u1", "/Projects/Other/Notes")
        assert result.was_created is True

    @pytest.mark.asyncio
    async def test_concurrent_resolution_tolerates_races(self, resolver, store) -> None:
        """Concurrent resolution creates the file once."""
        results = await asyncio.gather(
            *[resolver.ensure_path_entity("u1", "/Projects/Notes") for _ in range(5)]
        )

        assert len({r.entity.id for r in results}) == 1
        assert sum(1 for r in results if r.was_created) == 1
        assert len(await store.list_entities("u1")) == 2

    @pytest.mark.asyncio
    async def test_invalid_path(self, resolver) -> None:
        """An invalid path raises PathResolutionError."""
        with pytest.raises(PathResolutionError):
            await resolver.ensure_path_entity("u1", "/../etc")
