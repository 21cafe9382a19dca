"""Organize pass orchestration.

One pass takes the unorganized blocks of a note, routes them, applies the
resulting chunks to their destination files and marks the routed blocks as
organized in the source note. Each owner has a session holding a reentrancy
token and the owner's cache manager, so only one pass runs per owner.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from ..models.content import ContentNode, Document
from ..models.entity import Entity, FileTreeNode
from ..models.history import HistoryItem, RevertPreview, RevertResult
from ..models.organization import (
    ApplyResult,
    LineEdit,
    OrganizationChunk,
    OrganizeReport,
    RoutingSuggestion,
)
from .block_metadata import block_id, ensure_metadata, mark_organized, unorganized_blocks
from .cache_manager import OrganizationCacheManager
from .completion import CompletionClient
from .config import AppConfig, get_config
from .content_processor import (
    QualityGate,
    apply_refinements,
    document_to_text,
    is_empty_node,
    node_to_markdown,
    text_to_document,
)
from .database import DatabaseService, utc_now
from .entity_store import EntityStore
from .errors import CompletionError, EntityNotFoundError, RevertError
from .file_tree import build_tree
from .history import HistoryStore, RevertService
from .notifications import NotificationChannel
from .organization_applier import RULES_METADATA_KEY, OrganizationApplier
from .path_resolver import PathResolver
from .prompt_loader import PromptLoader
from .routing import RoutingPlanner
from .smart_merge import SmartMergeEngine
from .suggestions import SuggestionCache

logger = logging.getLogger(__name__)


class OrganizerSession:
    """Per-owner pass token and cache state."""

    def __init__(self, owner_id: str, cache: OrganizationCacheManager):
        self.owner_id = owner_id
        self.cache = cache
        self._token: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> Optional[str]:
        if self._token is not None:
            return None
        self._token = uuid4().hex
        return self._token

    def release(self, token: str) -> None:
        if self._token == token:
            self._token = None


class OrganizationService:
    """Composition root for the organizer services."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        db_service: Optional[DatabaseService] = None,
        completion: Optional[CompletionClient] = None,
        prompts: Optional[PromptLoader] = None,
        merge_engine: Optional[SmartMergeEngine] = None,
    ):
        self.config = config or get_config()
        self.db = db_service or DatabaseService(self.config.database_path)
        self.completion = completion or CompletionClient(config=self.config)
        self.prompts = prompts or PromptLoader(self.config.prompts_dir)
        self.notifications = NotificationChannel()
        self.store = EntityStore(self.db)
        self.history = HistoryStore(self.db, config=self.config)
        self.planner = RoutingPlanner(self.completion, self.prompts, self.config)
        self.merge_engine = merge_engine or SmartMergeEngine(
            self.completion, self.prompts, self.config
        )
        self.applier = OrganizationApplier(
            self.store,
            PathResolver(self.store),
            self.merge_engine,
            self.history,
            self.notifications,
        )
        self.reverter = RevertService(self.store, self.history, self.notifications)
        self.suggestions = SuggestionCache(self.config.suggestion_cache_size)
        self.quality_gate = QualityGate.from_config(self.config)
        self._sessions: Dict[str, OrganizerSession] = {}

    def session(self, owner_id: str) -> OrganizerSession:
        session = self._sessions.get(owner_id)
        if session is None:

            async def fetch() -> List[Entity]:
                return await self.store.list_entities(owner_id)

            cache = OrganizationCacheManager(
                fetch, consistency_delay=self.config.consistency_delay_seconds
            )
            session = OrganizerSession(owner_id, cache)
            self._sessions[owner_id] = session
        return session

    # ------------------------------------------------------------------
    # Notes and tree
    # ------------------------------------------------------------------

    async def create_note(
        self, owner_id: str, title: str, body: str, *, rules: Optional[str] = None
    ) -> Entity:
        """Create an unorganized note at the root with stamped blocks."""
        nodes = ensure_metadata(text_to_document(body).content, owner_id)
        document = Document(content=nodes)
        metadata = {RULES_METADATA_KEY: rules} if rules else {}
        return await self.store.insert(
            owner_id,
            title,
            "file",
            content=document,
            content_text=document_to_text(document),
            metadata=metadata,
        )

    async def get_tree(self, owner_id: str, *, exclude_id: Optional[str] = None) -> List[FileTreeNode]:
        entities = await self.store.list_entities(owner_id, organized=True)
        return build_tree(entity for entity in entities if entity.id != exclude_id)

    async def entity_path(self, owner_id: str, entity: Entity) -> str:
        titles = [entity.title]
        seen = {entity.id}
        parent_id = entity.parent_id
        while parent_id is not None and parent_id not in seen:
            seen.add(parent_id)
            parent = await self.store.get(owner_id, parent_id)
            if parent is None:
                break
            titles.append(parent.title)
            parent_id = parent.parent_id
        return "/" + "/".join(reversed(titles))

    async def set_rules(self, owner_id: str, entity_id: str, rules: Optional[str]) -> Entity:
        """Store or clear the file's organization rules.

        The rules are passed to routing when the file is organized and to the
        merge prompt when content lands in it.
        """
        entity = await self._load_note(owner_id, entity_id)
        metadata = dict(entity.metadata)
        if rules and rules.strip():
            metadata[RULES_METADATA_KEY] = rules.strip()
        else:
            metadata.pop(RULES_METADATA_KEY, None)
        updated = await self.store.update_metadata(owner_id, entity.id, metadata)
        self.suggestions.invalidate(entity.id)
        return updated

    async def _load_note(self, owner_id: str, note_id: str) -> Entity:
        note = await self.store.get(owner_id, note_id)
        if note is None:
            raise EntityNotFoundError(
                f"Note {note_id} not found", details={"note_id": note_id}
            )
        return note

    # ------------------------------------------------------------------
    # Organize pass
    # ------------------------------------------------------------------

    async def organize_note(
        self, owner_id: str, note_id: str, *, rules: Optional[str] = None
    ) -> OrganizeReport:
        """Route and apply the note's unorganized blocks.

        Returns a partial-success report. A pass already running for the owner
        yields ``skipped=True``.

        Raises:
            EntityNotFoundError: If the note does not exist for this owner.
            RoutingFailure: If routing failed and no default route is configured.
        """
        session = self.session(owner_id)
        token = session.try_acquire()
        if token is None:
            logger.info(f"Organize pass for {owner_id} skipped: another pass is running")
            return OrganizeReport(
                source_id=note_id, skipped=True, cache_version=session.cache.version
            )

        try:
            note = await self._load_note(owner_id, note_id)
            nodes = ensure_metadata(note.content.content, owner_id)
            if nodes != note.content.content:
                note = await self.store.update_content(
                    owner_id, note.id, Document(content=nodes), note.content_text
                )

            pending = [node for node in unorganized_blocks(nodes) if not is_empty_node(node)]
            if not pending:
                return OrganizeReport(source_id=note.id, cache_version=session.cache.version)

            session.cache.start_organization()
            try:
                report = await self._run_pass(owner_id, note, pending, rules)
            except Exception as exc:
                session.cache.fail_organization(exc)
                self.notifications.publish(
                    "organization_error", owner_id, {"note_id": note.id, "message": str(exc)}
                )
                raise
            report.cache_version = session.cache.complete_organization(
                ApplyResult(created=report.created, updated=report.updated, failed=report.failed)
            )
            return report
        finally:
            session.release(token)

    async def _run_pass(
        self,
        owner_id: str,
        note: Entity,
        pending: List[ContentNode],
        rules: Optional[str],
    ) -> OrganizeReport:
        tree = await self.get_tree(owner_id, exclude_id=note.id)
        edits = [
            LineEdit(paragraph_id=block_id(node), content=node_to_markdown(node))
            for node in pending
        ]
        content_text = "\n\n".join(edit.content for edit in edits)
        plan = await self.planner.plan(
            note.title,
            content_text,
            tree,
            rules=rules or note.metadata.get(RULES_METADATA_KEY),
            paragraphs=edits,
        )

        refinement_errors: List[str] = []
        chunks = [self._refine(chunk, edits, refinement_errors) for chunk in plan.chunks]
        result = await self.applier.apply(owner_id, chunks, source_id=note.id)

        routed = self._routed_ids(chunks, result, edits)
        if routed:
            # Re-read: the note may have been edited while routing ran.
            current = await self.store.get(owner_id, note.id) or note
            stamped = mark_organized(current.content.content, owner_id, only_ids=routed)
            await self.store.update_content(
                owner_id, note.id, Document(content=stamped), current.content_text
            )

        logger.info(
            f"Organize pass for note {note.id}: {len(chunks)} chunk(s), "
            f"{len(routed)} block(s) marked organized"
        )
        return OrganizeReport(
            source_id=note.id,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            routed_chunks=len(chunks),
            used_default_route=plan.used_default,
            refinement_errors=refinement_errors,
        )

    def _refine(
        self, chunk: OrganizationChunk, edits: Sequence[LineEdit], errors: List[str]
    ) -> OrganizationChunk:
        if not chunk.refinements:
            return chunk
        wanted = set(chunk.source_ids) or {r.paragraph_id for r in chunk.refinements}
        relevant = [edit for edit in edits if edit.paragraph_id in wanted]
        result = apply_refinements(
            chunk.content, chunk.refinements, relevant, gate=self.quality_gate
        )
        errors.extend(result.errors)
        if not result.refined_text.strip():
            return chunk
        return chunk.model_copy(update={"content": result.refined_text})

    @staticmethod
    def _routed_ids(
        chunks: Sequence[OrganizationChunk], result: ApplyResult, edits: Sequence[LineEdit]
    ) -> set[str]:
        known = {edit.paragraph_id for edit in edits}
        routed: set[str] = set()
        for change in result.created + result.updated:
            chunk = chunks[change.chunk_index]
            if chunk.source_ids:
                routed.update(pid for pid in chunk.source_ids if pid in known)
            else:
                return known
        return routed

    async def apply_chunks(
        self, owner_id: str, chunks: Sequence[OrganizationChunk]
    ) -> ApplyResult:
        """Apply caller-provided chunks, bypassing routing."""
        return await self.applier.apply(owner_id, chunks)

    # ------------------------------------------------------------------
    # Whole-note rewrite
    # ------------------------------------------------------------------

    async def rewrite_note(
        self, owner_id: str, note_id: str, *, rules: Optional[str] = None
    ) -> Entity:
        """Rewrite a note in place as concise notes; recorded for revert.

        Raises:
            CompletionError: If the merge model could not produce a rewrite.
        """
        note = await self._load_note(owner_id, note_id)
        text = note.content_text or document_to_text(note.content)
        if not text.strip():
            return note
        prompt = self.prompts.load(
            "organizer/rewrite.md",
            {
                "title": note.title,
                "content": text,
                "rules": rules or note.metadata.get(RULES_METADATA_KEY),
            },
        )
        rewritten = await self.completion.complete(prompt, self.config.merge_model)
        nodes = mark_organized(text_to_document(rewritten).content, owner_id)
        if not nodes:
            raise CompletionError("Rewrite produced no content", details={"note_id": note_id})
        document = Document(content=nodes)
        new_text = document_to_text(document)
        updated = await self.store.update_content(owner_id, note.id, document, new_text)
        await self.history.add(
            HistoryItem(
                owner_id=owner_id,
                entity_id=note.id,
                title=note.title,
                action="updated",
                old_content=note.content,
                old_content_text=note.content_text,
                new_content=document,
                new_content_text=new_text,
                path=await self.entity_path(owner_id, note),
                timestamp=utc_now(),
            )
        )
        self.notifications.publish(
            "files_updated", owner_id, {"files": [{"entity_id": note.id, "title": note.title}]}
        )
        return updated

    # ------------------------------------------------------------------
    # Suggestions, history, revert
    # ------------------------------------------------------------------

    async def suggest_destinations(self, owner_id: str, note_id: str) -> List[RoutingSuggestion]:
        note = await self._load_note(owner_id, note_id)

        async def load() -> List[RoutingSuggestion]:
            tree = await self.get_tree(owner_id, exclude_id=note.id)
            text = note.content_text or document_to_text(note.content)
            return await self.planner.suggest(note.title, text, tree)

        return await self.suggestions.get_or_load(note.id, load)

    async def list_history(self, owner_id: str) -> List[HistoryItem]:
        return await self.history.list(owner_id)

    async def preview_revert(self, owner_id: str, item_id: str) -> RevertPreview:
        item = await self.history.get(owner_id, item_id)
        if item is None:
            raise RevertError(f"History item {item_id} not found", details={"item_id": item_id})
        return self.reverter.preview(item)

    async def revert(self, owner_id: str, item_id: str) -> RevertResult:
        result = await self.reverter.revert(owner_id, item_id)
        if result.status != "noop":
            self.suggestions.invalidate(result.entity_id)
            self.session(owner_id).cache.optimistic_update(
                "deleted" if result.status == "deleted" else "updated",
                [{"entity_id": result.entity_id, "title": result.title}],
            )
        return result

    async def close(self) -> None:
        for session in self._sessions.values():
            await session.cache.close()
        await self.suggestions.drain()


_service: Optional[OrganizationService] = None


def get_organization_service() -> OrganizationService:
    """Return the process-wide organization service."""
    global _service
    if _service is None:
        _service = OrganizationService()
    return _service


__all__ = [
    "OrganizationService",
    "OrganizerSession",
    "get_organization_service",
]
