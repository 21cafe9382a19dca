"""Boundary-aware merge of new content into a destination file.

Only the contiguous run of blocks last updated today (local calendar date) is
offered to the model, capped at ``merge_context_blocks``. Everything after that
run is carried over as the same objects and is never sent to the model. Any
failure degrades to appending the new content after the existing blocks.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from ..models.content import ContentNode, Paragraph
from ..models.organization import MergeOutcome
from .block_metadata import block_id, ensure_metadata
from .completion import CompletionClient, parse_json_response, strip_code_fences
from .config import AppConfig, get_config
from .content_processor import document_to_text, is_empty_node, text_to_document
from .errors import CompletionError, MergeFailure
from .prompt_loader import PromptLoader, PromptLoaderError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_date(value: datetime) -> date:
    """Calendar date of a timestamp in the server's local timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone().date()


def split_today_boundary(
    nodes: Sequence[ContentNode], today: date
) -> Tuple[List[ContentNode], List[ContentNode]]:
    """Split into the leading run of today's blocks and the untouched rest.

    The scan stops at the first block without metadata or dated another day,
    even if later blocks are dated today.
    """
    boundary = 0
    for node in nodes:
        metadata = node.attrs.metadata
        if metadata is None or local_date(metadata.last_updated) != today:
            break
        boundary += 1
    return list(nodes[:boundary]), list(nodes[boundary:])


def _extract_merged_text(raw: str) -> str:
    cleaned = strip_code_fences(raw)
    if cleaned.startswith("{"):
        try:
            payload = parse_json_response(cleaned)
        except CompletionError:
            return cleaned
        if isinstance(payload, dict):
            for key in ("content", "merged", "mergedContent"):
                if isinstance(payload.get(key), str):
                    return payload[key].strip()
    return cleaned


class SmartMergeEngine:
    """Integrate new text into a destination's existing blocks."""

    def __init__(
        self,
        completion: CompletionClient,
        prompts: Optional[PromptLoader] = None,
        config: Optional[AppConfig] = None,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._completion = completion
        self._prompts = prompts or PromptLoader()
        self._config = config or get_config()
        self._clock = clock or _utc_now

    def today(self) -> date:
        return local_date(self._clock())

    async def merge(
        self,
        existing: Sequence[ContentNode],
        new_text: str,
        *,
        owner_id: str,
        title: Optional[str] = None,
        rules: Optional[str] = None,
    ) -> MergeOutcome:
        now = self._clock()
        existing = list(existing)
        new_nodes = text_to_document(new_text).content
        if not new_nodes:
            return MergeOutcome(nodes=existing, strategy="direct")

        if all(is_empty_node(node) for node in existing):
            fresh = ensure_metadata(new_nodes, owner_id, now=now)
            return MergeOutcome(
                nodes=fresh,
                strategy="direct",
                fresh_ids=[block_id(node) for node in fresh],
            )

        today_nodes, remainder = split_today_boundary(existing, local_date(now))
        limit = self._config.merge_context_blocks
        window = today_nodes[:limit]
        untouched = today_nodes[limit:] + remainder
        reserved = [node_id for node_id in map(block_id, untouched) if node_id]

        if not any(not is_empty_node(node) for node in window):
            fresh = ensure_metadata(new_nodes, owner_id, now=now, reserved_ids=reserved)
            return self._reassemble(fresh, window, untouched, owner_id, now, "direct")

        try:
            merged_text = await self._call_merge(window, new_text, title=title, rules=rules)
            merged_nodes = text_to_document(merged_text).content
            if not merged_nodes:
                raise MergeFailure("Merge response contained no content")
        except (MergeFailure, CompletionError, PromptLoaderError) as exc:
            logger.warning(
                f"Smart merge into '{title or 'untitled'}' failed, appending instead: {exc}"
            )
            return self._append(existing, new_nodes, owner_id, now)

        fresh = ensure_metadata(merged_nodes, owner_id, now=now, reserved_ids=reserved)
        return self._reassemble(fresh, [], untouched, owner_id, now, "smart", len(window))

    def _reassemble(
        self,
        fresh: List[ContentNode],
        kept_window: List[ContentNode],
        untouched: List[ContentNode],
        owner_id: str,
        now: datetime,
        strategy: str,
        window_size: int = 0,
    ) -> MergeOutcome:
        head = fresh + kept_window
        fresh_ids = [block_id(node) for node in fresh]
        if untouched:
            taken = {block_id(node) for node in head + untouched}
            spacer = ensure_metadata(
                [Paragraph()], owner_id, now=now, reserved_ids=filter(None, taken)
            )
            head = head + spacer
            fresh_ids.append(block_id(spacer[0]))
        return MergeOutcome(
            nodes=head + untouched,
            strategy=strategy,
            window_size=window_size,
            fresh_ids=fresh_ids,
        )

    def _append(
        self,
        existing: List[ContentNode],
        new_nodes: List[ContentNode],
        owner_id: str,
        now: datetime,
    ) -> MergeOutcome:
        reserved = [node_id for node_id in map(block_id, existing) if node_id]
        fresh = ensure_metadata(new_nodes, owner_id, now=now, reserved_ids=reserved)
        return MergeOutcome(
            nodes=existing + fresh,
            strategy="append",
            fresh_ids=[block_id(node) for node in fresh],
        )

    async def _call_merge(
        self,
        window: Sequence[ContentNode],
        new_text: str,
        *,
        title: Optional[str],
        rules: Optional[str],
    ) -> str:
        prompt = self._prompts.load(
            "organizer/merge.md",
            {
                "title": title,
                "rules": rules,
                "existing": document_to_text(window),
                "new_content": new_text,
            },
        )
        raw = await self._completion.complete(prompt, self._config.merge_model)
        merged = _extract_merged_text(raw)
        if not merged:
            raise MergeFailure("Empty merge response")
        return merged


__all__ = ["SmartMergeEngine", "split_today_boundary", "local_date"]
