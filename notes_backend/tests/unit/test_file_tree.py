"""Unit tests for destination tree building and serialization."""

from datetime import datetime, timezone

from notes_backend.src.models.entity import Entity
from notes_backend.src.services.file_tree import (
    build_tree,
    filter_valid_ancestors,
    find_node,
    folder_paths,
    serialize_tree,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _entity(entity_id, title, kind="file", parent_id=None, deleted=False) -> Entity:
    return Entity(
        id=entity_id,
        owner_id="u1",
        title=title,
        kind=kind,
        parent_id=parent_id,
        deleted=deleted,
        created_at=NOW,
        updated_at=NOW,
    )


def _sample():
    return [
        _entity("f-notes", "Notes", parent_id="d-projects"),
        _entity("d-projects", "Projects", kind="folder"),
        _entity("f-zeta", "zeta"),
        _entity("f-alpha", "Alpha"),
        _entity("d-archive", "Archive", kind="folder"),
        _entity("f-old", "Old", parent_id="d-archive", deleted=True),
    ]


class TestBuildTree:
    """Tests for build_tree() and its lookups."""

    def test_paths_and_grouping(self) -> None:
        """Children nest under folders and lookups ignore case."""
        tree = build_tree(_sample())

        projects = find_node(tree, "/Projects")
        assert projects is not None
        assert [child.path for child in projects.children] == ["/Projects/Notes"]
        assert find_node(tree, "/projects/notes").id == "f-notes"
        assert find_node(tree, "/Archive/Old") is None

    def test_folders_first_then_alphabetical(self) -> None:
        """Folders sort before files, each case-insensitively."""
        tree = build_tree(_sample())
        assert [node.title for node in tree] == ["Archive", "Projects", "Alpha", "zeta"]

    def test_cycles_and_orphans_are_excluded(self) -> None:
        """Entities without a valid ancestor chain are dropped."""
        entities = [
            _entity("a", "A", kind="folder", parent_id="b"),
            _entity("b", "B", kind="folder", parent_id="a"),
            _entity("c", "Orphan", parent_id="missing"),
            _entity("d", "Fine"),
        ]
        assert [e.id for e in filter_valid_ancestors(entities)] == ["d"]
        assert [n.id for n in build_tree(entities)] == ["d"]

    def test_folder_paths(self) -> None:
        """folder_paths() lists casefolded folder paths."""
        assert folder_paths(build_tree(_sample())) == {"/projects", "/archive"}


class TestSerializeTree:
    """Tests for serialize_tree()."""

    def test_indented_listing(self) -> None:
        """The listing is indented two spaces per level."""
        text = serialize_tree(build_tree(_sample()))
        assert text == (
            "[DIR] Archive\n"
            "[DIR] Projects\n"
            "  [FILE] Notes\n"
            "[FILE] Alpha\n"
            "[FILE] zeta"
        )

    def test_empty_tree(self) -> None:
        """An empty tree serializes to an empty string."""
        assert serialize_tree([]) == ""
