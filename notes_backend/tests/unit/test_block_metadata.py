"""Unit tests for block id and provenance stamping."""

from datetime import datetime, timedelta, timezone

from notes_backend.src.models.content import (
    BlockMetadata,
    Heading,
    NodeAttrs,
    Paragraph,
    TextRun,
)
from notes_backend.src.services.block_metadata import (
    block_id,
    ensure_metadata,
    mark_organized,
    unorganized_blocks,
)

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


def _para(text: str, **attrs) -> Paragraph:
    return Paragraph(content=[TextRun(text=text)], attrs=NodeAttrs(**attrs))


class TestEnsureMetadata:
    """Tests for ensure_metadata()."""

    def test_assigns_ids_and_defaults(self) -> None:
        """Missing metadata gets an owner-scoped id and unorganized defaults."""
        nodes = ensure_metadata([_para("one"), Heading(content=[TextRun(text="two")])], "u1", now=NOW)

        for node in nodes:
            meta = node.attrs.metadata
            assert meta is not None
            assert node.attrs.id == meta.id
            assert meta.id.startswith("u1-")
            assert meta.is_organized is False
            assert meta.organization_status == "no"
            assert meta.last_updated == NOW
        assert nodes[1].attrs.id.startswith("u1-heading-")

    def test_is_idempotent(self) -> None:
        """Stamping twice changes nothing."""
        first = ensure_metadata([_para("a"), _para("b")], "u1", now=NOW)
        second = ensure_metadata(first, "u1", now=NOW + timedelta(hours=5))

        assert [block_id(n) for n in first] == [block_id(n) for n in second]
        assert first == second

    def test_keeps_existing_fields(self) -> None:
        """Existing metadata fields and extra keys win over defaults."""
        earlier = NOW - timedelta(days=3)
        meta = BlockMetadata(
            id="keep-me",
            is_organized=True,
            last_updated=earlier,
            organization_status="yes",
            source="editor",
        )
        [node] = ensure_metadata([_para("x", metadata=meta)], "u1", now=NOW)

        assert node.attrs.id == "keep-me"
        assert node.attrs.metadata.last_updated == earlier
        assert node.attrs.metadata.is_organized is True
        assert node.attrs.metadata.model_extra["source"] == "editor"

    def test_force_timestamp_resets_last_updated(self) -> None:
        """force_timestamp refreshes last_updated but keeps the id."""
        stamped = ensure_metadata([_para("x")], "u1", now=NOW - timedelta(days=2))
        [node] = ensure_metadata(stamped, "u1", now=NOW, force_timestamp=True)

        assert node.attrs.metadata.last_updated == NOW
        assert node.attrs.id == stamped[0].attrs.id

    def test_duplicate_ids_are_reissued(self) -> None:
        """A repeated id on a later block gets a new one."""
        nodes = ensure_metadata([_para("a", id="dup"), _para("b", id="dup")], "u1", now=NOW)

        ids = [block_id(n) for n in nodes]
        assert ids[0] == "dup"
        assert ids[1] != "dup"
        assert len(set(ids)) == 2

    def test_generated_ids_avoid_reserved(self) -> None:
        """Generated ids skip reserved ids."""
        nodes = ensure_metadata([_para("a")], "u1", now=NOW, reserved_ids={"x"})
        assert block_id(nodes[0]) != "x"

    def test_does_not_mutate_input(self) -> None:
        """The input nodes are left as they were."""
        original = _para("a")
        ensure_metadata([original], "u1", now=NOW)
        assert original.attrs.metadata is None
        assert original.attrs.id is None


class TestMarkOrganized:
    """Tests for mark_organized() and unorganized_blocks()."""

    def test_forces_organized_state(self) -> None:
        """Blocks are marked organized and stamped now."""
        nodes = mark_organized([_para("a")], "u1", now=NOW)
        meta = nodes[0].attrs.metadata

        assert meta.is_organized is True
        assert meta.organization_status == "yes"
        assert meta.last_updated == NOW

    def test_only_ids_leaves_other_blocks_untouched(self) -> None:
        """Blocks outside only_ids are returned as the same objects."""
        stamped = ensure_metadata([_para("a"), _para("b")], "u1", now=NOW - timedelta(days=1))
        target = block_id(stamped[0])

        result = mark_organized(stamped, "u1", now=NOW, only_ids=[target])

        assert result[0].attrs.metadata.is_organized is True
        assert result[1] is stamped[1]

    def test_unorganized_blocks(self) -> None:
        """Only blocks still unorganized are returned."""
        stamped = ensure_metadata([_para("a"), _para("b")], "u1", now=NOW)
        marked = mark_organized(stamped, "u1", now=NOW, only_ids=[block_id(stamped[1])])

        pending = unorganized_blocks(marked)
        assert [block_id(n) for n in pending] == [block_id(stamped[0])]
