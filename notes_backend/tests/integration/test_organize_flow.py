"""End-to-end organize passes against a real SQLite store with a mocked model."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from notes_backend.src.models.events import CacheState
from notes_backend.src.services.block_metadata import block_id
from notes_backend.src.services.config import AppConfig
from notes_backend.src.services.errors import (
    CompletionError,
    EntityNotFoundError,
    PersistenceError,
    RoutingFailure,
)
from notes_backend.src.services.organization_applier import RULES_METADATA_KEY
from notes_backend.src.services.organizer import OrganizationService
from notes_backend.src.services.prompt_loader import PromptLoader


def _config(tmp_path, **overrides):
    values = {
        "database_path": tmp_path / "organizer.db",
        "routing_models": ["model-a"],
        "consistency_delay_seconds": 0,
    }
    values.update(overrides)
    return AppConfig(**values)


def _build_service(tmp_path, completion, **overrides):
    service = OrganizationService(
        _config(tmp_path, **overrides),
        completion=completion,
        prompts=PromptLoader(tmp_path / "no-prompts"),
    )
    service.db.initialize()
    return service


@pytest.fixture
def completion() -> MagicMock:
    """Completion client mock; each test scripts its replies."""
    mock = MagicMock()
    mock.complete = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def service(tmp_path: Path, completion: MagicMock):
    """Organization service over a fresh database, closed after the test."""
    service = _build_service(tmp_path, completion)
    yield service
    await service.close()


async def _destination(service, owner_id, *titles):
    """Create an organized, empty folder chain ending in a file."""
    parent_id = None
    entity = None
    for index, title in enumerate(titles):
        kind = "file" if index == len(titles) - 1 else "folder"
        entity = await service.store.insert(owner_id, title, kind, parent_id, organized=True)
        parent_id = entity.id
    return entity


def _organized(entity):
    return {
        block_id(node): node.attrs.metadata.is_organized for node in entity.content.content
    }


class TestOrganizeNote:
    """Tests for OrganizationService.organize_note()."""

    @pytest.mark.asyncio
    async def test_routes_into_existing_empty_file(self, service, completion) -> None:
        """Content routed to an existing empty file is an update, recorded and marked."""
        notes = await _destination(service, "u1", "Projects", "Notes")
        note = await service.create_note("u1", "Daily", "Call Bob")
        paragraph_id = block_id(note.content.content[0])
        completion.complete.return_value = json.dumps(
            [
                {
                    "targetFilePath": "/Projects/Notes",
                    "content": "Call Bob",
                    "paragraphIds": [paragraph_id],
                }
            ]
        )

        report = await service.organize_note("u1", note.id)

        assert report.created == []
        assert [change.entity_id for change in report.updated] == [notes.id]
        assert report.failed == []
        # Empty destination merges directly, so only the routing call is made.
        assert completion.complete.await_count == 1

        destination = await service.store.get("u1", notes.id)
        assert "Call Bob" in destination.content_text

        history = await service.list_history("u1")
        assert [item.action for item in history] == ["updated"]
        assert history[0].entity_id == notes.id

        source = await service.store.get("u1", note.id)
        assert _organized(source) == {paragraph_id: True}
        assert source.content_text == "Call Bob"

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, service, completion) -> None:
        """Once every block is organized another pass does no work."""
        await _destination(service, "u1", "Notes")
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Notes", "content": "Call Bob"}]'

        await service.organize_note("u1", note.id)
        report = await service.organize_note("u1", note.id)

        assert report.created == [] and report.updated == []
        assert completion.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_chunk_routed_to_source_note_is_rejected(self, service, completion) -> None:
        """Routing a block back into its own note leaves the note untouched."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.side_effect = [
            '[{"targetFilePath": "/Daily", "content": "Call Bob"}]',
            "Totally different merged text",
        ]

        report = await service.organize_note("u1", note.id)

        assert report.updated == [] and report.created == []
        assert len(report.failed) == 1
        assert report.failed[0].error_type == "ChunkValidationError"
        assert completion.complete.await_count == 1

        source = await service.store.get("u1", note.id)
        assert source.content_text == "Call Bob"
        assert source.organized is False
        assert not any(_organized(source).values())
        assert await service.list_history("u1") == []

    @pytest.mark.asyncio
    async def test_partial_failure_leaves_failed_blocks_unorganized(
        self, service, completion, monkeypatch
    ) -> None:
        """Blocks whose chunk failed stay unorganized for the next pass."""
        note = await service.create_note("u1", "Daily", "Ship release\n\nMystery item")
        first, second = (block_id(node) for node in note.content.content)
        completion.complete.return_value = json.dumps(
            [
                {"targetFilePath": "/Work/Tasks", "content": "Ship release", "paragraphIds": [first]},
                {"targetFilePath": "/Broken", "content": "Mystery item", "paragraphIds": [second]},
            ]
        )
        resolver = service.applier._resolver
        original = resolver.ensure_path_entity

        async def flaky(owner_id, path):
            if path == "/Broken":
                raise PersistenceError("disk full")
            return await original(owner_id, path)

        monkeypatch.setattr(resolver, "ensure_path_entity", flaky)

        report = await service.organize_note("u1", note.id)

        assert [change.path for change in report.created] == ["/Work/Tasks"]
        assert len(report.failed) == 1
        source = await service.store.get("u1", note.id)
        assert _organized(source) == {first: True, second: False}

    @pytest.mark.asyncio
    async def test_default_route_when_routing_fails(self, service, completion) -> None:
        """A failed routing call sends the content to /Inbox."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.side_effect = CompletionError("API error: 503")

        report = await service.organize_note("u1", note.id)

        assert report.used_default_route is True
        assert [change.path for change in report.created] == ["/Inbox"]
        source = await service.store.get("u1", note.id)
        assert all(_organized(source).values())

    @pytest.mark.asyncio
    async def test_routing_failure_without_default(self, tmp_path, completion) -> None:
        """Without a default route the pass fails and nothing is marked."""
        service = _build_service(tmp_path, completion, default_route_path="")
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.side_effect = CompletionError("API error: 503")

        with pytest.raises(RoutingFailure):
            await service.organize_note("u1", note.id)

        session = service.session("u1")
        assert session.cache.state == CacheState.ERROR
        assert session.busy is False
        source = await service.store.get("u1", note.id)
        assert not any(_organized(source).values())
        assert service.notifications.recent("u1")[-1].type == "organization_error"
        await service.close()

    @pytest.mark.asyncio
    async def test_concurrent_pass_is_skipped(self, service, completion) -> None:
        """A pass while another holds the owner's token is skipped."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        service.session("u1").try_acquire()

        report = await service.organize_note("u1", note.id)

        assert report.skipped is True
        completion.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_note(self, service) -> None:
        """A missing note raises and releases the token."""
        with pytest.raises(EntityNotFoundError):
            await service.organize_note("u1", "missing")
        assert service.session("u1").busy is False

    @pytest.mark.asyncio
    async def test_consistency_check_reports_new_files(self, service, completion) -> None:
        """The follow-up refresh lists the files the pass created."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Calls", "content": "Call Bob"}]'
        events = []
        service.session("u1").cache.subscribe(events.append)

        report = await service.organize_note("u1", note.id)
        await service.session("u1").cache.drain()

        assert [event.kind for event in events] == ["immediate", "immediate", "refresh"]
        assert report.created[0].entity_id in events[-1].payload["added"]


class TestRules:
    """Tests for per-file organization rules."""

    @pytest.mark.asyncio
    async def test_rules_reach_routing_prompt(self, service, completion) -> None:
        """Stored rules are used when the note is organized."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Calls", "content": "Call Bob"}]'

        updated = await service.set_rules("u1", note.id, "  Calls go under /Calls  ")
        await service.organize_note("u1", note.id)

        assert updated.metadata[RULES_METADATA_KEY] == "Calls go under /Calls"
        assert "Calls go under /Calls" in completion.complete.call_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_blank_rules_clear(self, service) -> None:
        """Blank rules remove the stored value."""
        note = await service.create_note("u1", "Daily", "Call Bob", rules="Old rule")

        updated = await service.set_rules("u1", note.id, "   ")

        assert RULES_METADATA_KEY not in updated.metadata
        stored = await service.store.get("u1", note.id)
        assert RULES_METADATA_KEY not in stored.metadata

    @pytest.mark.asyncio
    async def test_other_owner_cannot_set_rules(self, service) -> None:
        """Rules are owner scoped."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        with pytest.raises(EntityNotFoundError):
            await service.set_rules("u2", note.id, "Mine now")


class TestRevertFlow:
    """Tests for reverting organizer changes through the service."""

    @pytest.mark.asyncio
    async def test_revert_update_restores_empty_destination(self, service, completion) -> None:
        """Reverting an update restores the destination's previous content."""
        notes = await _destination(service, "u1", "Notes")
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Notes", "content": "Call Bob"}]'
        await service.organize_note("u1", note.id)
        item = (await service.list_history("u1"))[0]

        preview = await service.preview_revert("u1", item.id)
        result = await service.revert("u1", item.id)

        assert preview.action == "Restore Previous Version"
        assert result.status == "reverted"
        assert (await service.store.get("u1", notes.id)).content_text == ""

    @pytest.mark.asyncio
    async def test_revert_creation_then_noop(self, service, completion) -> None:
        """Reverting a creation deletes the file and a repeat does nothing."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Calls", "content": "Call Bob"}]'
        report = await service.organize_note("u1", note.id)
        item = (await service.list_history("u1"))[0]

        first = await service.revert("u1", item.id)
        second = await service.revert("u1", item.id)

        assert first.status == "deleted"
        assert second.status == "noop"
        assert await service.store.get("u1", report.created[0].entity_id) is None

    @pytest.mark.asyncio
    async def test_revert_publishes_optimistic_delete(self, service, completion) -> None:
        """A revert is pushed to the owner's cache and then reconciled."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Calls", "content": "Call Bob"}]'
        report = await service.organize_note("u1", note.id)
        cache = service.session("u1").cache
        await cache.drain()
        events = []
        cache.subscribe(events.append)
        item = (await service.list_history("u1"))[0]

        await service.revert("u1", item.id)
        await cache.drain()

        created_id = report.created[0].entity_id
        assert events[0].payload["status"] == "optimistic"
        assert events[0].payload["action"] == "deleted"
        assert events[0].payload["entities"][0]["entity_id"] == created_id
        assert events[-1].kind == "refresh"
        assert created_id in events[-1].payload["removed"]


class TestRewriteNote:
    """Tests for OrganizationService.rewrite_note()."""

    @pytest.mark.asyncio
    async def test_rewrite_is_recorded_and_revertible(self, service, completion) -> None:
        """A rewrite replaces the note and can be reverted."""
        note = await service.create_note("u1", "Daily", "call bob about the the report")
        completion.complete.return_value = "Call Bob about the report"

        rewritten = await service.rewrite_note("u1", note.id)

        assert rewritten.content_text == "Call Bob about the report"
        assert all(_organized(rewritten).values())
        item = (await service.list_history("u1"))[0]
        assert item.path == "/Daily"

        await service.revert("u1", item.id)
        restored = await service.store.get("u1", note.id)
        assert restored.content_text == "call bob about the the report"


class TestSuggestions:
    """Tests for OrganizationService.suggest_destinations()."""

    @pytest.mark.asyncio
    async def test_cached_after_first_call(self, service, completion) -> None:
        """The second call is served from cache while a refresh runs behind it."""
        note = await service.create_note("u1", "Daily", "Call Bob")
        completion.complete.return_value = '[{"targetFilePath": "/Calls", "relevance": 0.8}]'

        first = await service.suggest_destinations("u1", note.id)
        second = await service.suggest_destinations("u1", note.id)
        await service.suggestions.drain()

        assert [s.target_path for s in first] == ["/Calls"]
        assert second == first
        assert completion.complete.await_count == 2
