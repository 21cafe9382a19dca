"""Routing planner: ask the completion service where content belongs."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from pydantic import ValidationError

from ..models.entity import FileTreeNode
from ..models.organization import LineEdit, OrganizationChunk, RoutingPlan, RoutingSuggestion
from .completion import CompletionClient, parse_json_response
from .config import AppConfig, get_config
from .errors import ChunkValidationError, CompletionError, CompletionParseError, RoutingFailure
from .file_tree import serialize_tree, walk_tree
from .organization_applier import validate_chunk
from .paths import normalize_path
from .prompt_loader import PromptLoader, PromptLoaderError

logger = logging.getLogger(__name__)

PAGE_CONTEXT_CHARS = 1200

T = TypeVar("T")


def _response_items(payload: Any) -> List[Any]:
    """Accept a bare JSON array, an object wrapping one, or a single object."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("chunks", "results", "suggestions", "items"):
            if isinstance(payload.get(key), list):
                return payload[key]
        return [payload]
    raise CompletionParseError("Expected a JSON array of destinations")


class RoutingPlanner:
    """Map note content to destination file paths."""

    def __init__(
        self,
        completion: CompletionClient,
        prompts: Optional[PromptLoader] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self._completion = completion
        self._prompts = prompts or PromptLoader()
        self._config = config or get_config()

    async def plan(
        self,
        title: str,
        content_text: str,
        tree: Sequence[FileTreeNode],
        *,
        rules: Optional[str] = None,
        paragraphs: Optional[Sequence[LineEdit]] = None,
    ) -> RoutingPlan:
        """Route content to chunks, falling back through model profiles.

        Raises:
            RoutingFailure: When every profile failed and no default route is configured.
        """
        if not content_text or not content_text.strip():
            return RoutingPlan(chunks=[])

        paragraphs = list(paragraphs or [])
        if not paragraphs:
            paragraphs = [LineEdit(paragraph_id="content", content=content_text)]

        prompt = self._render(
            "organizer/route.md",
            {
                "title": title or "Untitled",
                "page_context": content_text[:PAGE_CONTEXT_CHARS],
                "tree": serialize_tree(tree),
                "rules": rules,
                "paragraphs": paragraphs,
            },
        )
        blocked = self._folder_only_paths(tree)

        def parse(raw: str) -> List[OrganizationChunk]:
            chunks = self._parse_chunks(raw, blocked)
            if not chunks:
                raise CompletionParseError("No valid chunks in routing response")
            return chunks

        if prompt is not None:
            result = await self._attempt_profiles(prompt, parse)
            if result is not None:
                chunks, model = result
                logger.info(f"Routed content from '{title}' into {len(chunks)} chunk(s) via {model}")
                return RoutingPlan(chunks=chunks, used_default=False, model=model)

        default_path = self._config.default_route_path
        if not default_path:
            raise RoutingFailure(
                "All routing model profiles failed and no default route is configured",
                details={"models": list(self._config.routing_models)},
            )
        logger.warning(f"Routing failed for '{title}', using default route {default_path}")
        fallback = OrganizationChunk(
            target_path=default_path,
            content=content_text,
            source_ids=[paragraph.paragraph_id for paragraph in paragraphs],
        )
        return RoutingPlan(chunks=[fallback], used_default=True)

    async def suggest(
        self,
        title: str,
        content_text: str,
        tree: Sequence[FileTreeNode],
    ) -> List[RoutingSuggestion]:
        """Suggestion-only mode: ranked destinations, empty when every profile fails."""
        limit = self._config.suggestion_limit
        prompt = self._render(
            "organizer/suggest.md",
            {
                "title": title or "Untitled",
                "page_context": content_text[:PAGE_CONTEXT_CHARS],
                "tree": serialize_tree(tree),
                "limit": limit,
            },
        )
        if prompt is None:
            return []
        blocked = self._folder_only_paths(tree)

        def parse(raw: str) -> List[RoutingSuggestion]:
            suggestions = self._parse_suggestions(raw, blocked)
            if not suggestions:
                raise CompletionParseError("No valid suggestions in response")
            return suggestions

        result = await self._attempt_profiles(prompt, parse)
        if result is None:
            return []
        suggestions, _ = result
        suggestions.sort(key=lambda s: s.relevance, reverse=True)
        return suggestions[:limit]

    # ------------------------------------------------------------------

    def _render(self, template: str, context: dict) -> Optional[str]:
        try:
            return self._prompts.load(template, context)
        except PromptLoaderError as e:
            logger.error(f"Could not render {template}: {e}")
            return None

    async def _attempt_profiles(
        self, prompt: str, parse: Callable[[str], T]
    ) -> Optional[tuple[T, str]]:
        for model in self._config.routing_models:
            try:
                raw = await self._completion.complete(prompt, model)
                return parse(raw), model
            except CompletionParseError as e:
                logger.warning(f"Unusable routing response from {model}: {e.message}")
            except CompletionError as e:
                logger.warning(f"Routing call to {model} failed: {e.message}")
        return None

    @staticmethod
    def _folder_only_paths(tree: Sequence[FileTreeNode]) -> set[str]:
        folders = set()
        files = set()
        for node in walk_tree(tree):
            (folders if node.kind == "folder" else files).add(node.path.casefold())
        return folders - files

    def _parse_chunks(self, raw: str, blocked: set[str]) -> List[OrganizationChunk]:
        chunks: List[OrganizationChunk] = []
        for item in _response_items(parse_json_response(raw)):
            if not isinstance(item, dict):
                logger.warning(f"Dropping non-object routing item: {item!r:.80}")
                continue
            try:
                chunk = validate_chunk(OrganizationChunk.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping malformed routing chunk: {e}")
                continue
            except ChunkValidationError as e:
                logger.warning(f"Dropping routing chunk: {e.message}")
                continue
            if chunk.target_path.casefold() in blocked:
                logger.warning(f"Dropping chunk routed to folder {chunk.target_path}")
                continue
            chunks.append(chunk)
        return chunks

    def _parse_suggestions(self, raw: str, blocked: set[str]) -> List[RoutingSuggestion]:
        suggestions: List[RoutingSuggestion] = []
        seen: set[str] = set()
        for item in _response_items(parse_json_response(raw)):
            if not isinstance(item, dict):
                continue
            try:
                suggestion = RoutingSuggestion.model_validate(item)
                target = normalize_path(suggestion.target_path)
            except (ValidationError, ValueError) as e:
                logger.debug(f"Dropping malformed suggestion: {e}")
                continue
            key = target.casefold()
            if key in blocked or key in seen:
                continue
            seen.add(key)
            suggestions.append(suggestion.model_copy(update={"target_path": target}))
        return suggestions


__all__ = ["RoutingPlanner", "PAGE_CONTEXT_CHARS"]
