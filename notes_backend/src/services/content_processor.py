"""Conversion between the block document and markdown-like text.

The parser is intentionally small: headings (``#`` to ``###``), bullet and
ordered lists, blockquotes, fenced code blocks and blank-line separated
paragraphs, with ``**bold**`` and ``*italic*`` inline marks. Identical input
always yields an identical document.

Refinement validation also lives here: model-proposed rewrites of source
paragraphs only replace the original text after passing the quality gate.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from ..models.content import (
    Blockquote,
    BulletList,
    CodeBlock,
    ContentNode,
    Document,
    Heading,
    ListItem,
    OrderedList,
    Paragraph,
    TextRun,
)
from ..models.organization import LineEdit, Refinement, RefinementResult

logger = logging.getLogger(__name__)

HEADING_PATTERN = re.compile(r"^(#{1,3})\s+(.*)$")
BULLET_PATTERN = re.compile(r"^[-*]\s+(.*)$")
ORDERED_PATTERN = re.compile(r"^(\d+)[.)]\s+(.*)$")
QUOTE_PATTERN = re.compile(r"^>\s?(.*)$")
FENCE_PATTERN = re.compile(r"^```\s*([\w+#.-]*)\s*$")
INLINE_PATTERN = re.compile(r"\*\*(\S(?:.*?\S)?)\*\*|\*(\S(?:.*?\S)?)\*")


# ---------------------------------------------------------------------------
# Text -> document
# ---------------------------------------------------------------------------


def parse_inline(text: str) -> List[TextRun]:
    """Split a line into runs, turning ``**x**`` and ``*x*`` into marks."""
    runs: List[TextRun] = []
    position = 0
    for match in INLINE_PATTERN.finditer(text):
        if match.start() > position:
            runs.append(TextRun(text=text[position : match.start()]))
        if match.group(1) is not None:
            runs.append(TextRun(text=match.group(1), marks=["bold"]))
        else:
            runs.append(TextRun(text=match.group(2), marks=["italic"]))
        position = match.end()
    if position < len(text):
        runs.append(TextRun(text=text[position:]))
    return runs


def _collect(lines: List[str], start: int, pattern: re.Pattern[str]) -> tuple[list[re.Match[str]], int]:
    matches = []
    index = start
    while index < len(lines):
        match = pattern.match(lines[index].strip())
        if match is None:
            break
        matches.append(match)
        index += 1
    return matches, index


def text_to_document(text: str) -> Document:
    """Segment markdown-like text into blocks."""
    lines = (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")
    blocks: List[ContentNode] = []
    paragraph: List[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            blocks.append(Paragraph(content=parse_inline("\n".join(paragraph))))
            paragraph.clear()

    index = 0
    while index < len(lines):
        stripped = lines[index].strip()

        fence = FENCE_PATTERN.match(stripped)
        if fence:
            flush_paragraph()
            body: List[str] = []
            index += 1
            while index < len(lines) and lines[index].strip() != "```":
                body.append(lines[index])
                index += 1
            index += 1  # closing fence (or end of input)
            blocks.append(CodeBlock(language=fence.group(1) or None, text="\n".join(body)))
            continue

        if not stripped:
            flush_paragraph()
            index += 1
            continue

        heading = HEADING_PATTERN.match(stripped)
        if heading:
            flush_paragraph()
            blocks.append(
                Heading(level=len(heading.group(1)), content=parse_inline(heading.group(2).strip()))
            )
            index += 1
            continue

        if BULLET_PATTERN.match(stripped):
            flush_paragraph()
            matches, index = _collect(lines, index, BULLET_PATTERN)
            blocks.append(
                BulletList(items=[ListItem(content=parse_inline(m.group(1))) for m in matches])
            )
            continue

        if ORDERED_PATTERN.match(stripped):
            flush_paragraph()
            matches, index = _collect(lines, index, ORDERED_PATTERN)
            blocks.append(
                OrderedList(
                    start=int(matches[0].group(1)),
                    items=[ListItem(content=parse_inline(m.group(2))) for m in matches],
                )
            )
            continue

        if QUOTE_PATTERN.match(stripped):
            flush_paragraph()
            matches, index = _collect(lines, index, QUOTE_PATTERN)
            blocks.append(
                Blockquote(content=parse_inline("\n".join(m.group(1) for m in matches)))
            )
            continue

        paragraph.append(stripped)
        index += 1

    flush_paragraph()
    return Document(content=blocks)


# ---------------------------------------------------------------------------
# Document -> text
# ---------------------------------------------------------------------------


def _render_runs(runs: Iterable[TextRun]) -> str:
    parts = []
    for run in runs:
        text = run.text
        if not text:
            continue
        if "bold" in run.marks and "italic" in run.marks:
            text = f"***{text}***"
        elif "bold" in run.marks:
            text = f"**{text}**"
        elif "italic" in run.marks:
            text = f"*{text}*"
        parts.append(text)
    return "".join(parts)


def _plain_runs(runs: Iterable[TextRun]) -> str:
    return "".join(run.text for run in runs)


def node_text(node: ContentNode) -> str:
    """Plain text of a block, without markup."""
    if isinstance(node, CodeBlock):
        return node.text
    if isinstance(node, (BulletList, OrderedList)):
        return "\n".join(_plain_runs(item.content) for item in node.items)
    return _plain_runs(node.content)


def is_empty_node(node: ContentNode) -> bool:
    return not node_text(node).strip()


def node_to_markdown(node: ContentNode) -> str:
    if isinstance(node, Heading):
        return f"{'#' * node.level} {_render_runs(node.content)}"
    if isinstance(node, BulletList):
        return "\n".join(f"- {_render_runs(item.content)}" for item in node.items)
    if isinstance(node, OrderedList):
        return "\n".join(
            f"{node.start + offset}. {_render_runs(item.content)}"
            for offset, item in enumerate(node.items)
        )
    if isinstance(node, Blockquote):
        return "\n".join(f"> {line}" for line in _render_runs(node.content).split("\n"))
    if isinstance(node, CodeBlock):
        return f"```{node.language or ''}\n{node.text}\n```"
    return _render_runs(node.content)


def document_to_text(document: Union[Document, Sequence[ContentNode]]) -> str:
    """Render blocks back to text, one blank line between non-empty blocks."""
    nodes = document.content if isinstance(document, Document) else document
    return "\n\n".join(node_to_markdown(node) for node in nodes if not is_empty_node(node))


# ---------------------------------------------------------------------------
# Refinements
# ---------------------------------------------------------------------------


class GateVerdict(BaseModel):
    passed: bool
    reason: str = ""
    similarity: float = 0.0
    length_ratio: float = 0.0


class QualityGate(BaseModel):
    """Heuristic check that a rewrite still says what the original said."""

    model_config = ConfigDict(frozen=True)

    min_similarity: float = Field(0.4, ge=0.0, le=1.0)
    min_length_ratio: float = Field(0.3, gt=0.0)
    max_length_ratio: float = Field(3.0, gt=0.0)

    @classmethod
    def from_config(cls, config) -> "QualityGate":
        return cls(
            min_similarity=config.quality_min_similarity,
            min_length_ratio=config.quality_min_length_ratio,
            max_length_ratio=config.quality_max_length_ratio,
        )

    @staticmethod
    def similarity(original: str, refined: str) -> float:
        original_tokens = original.lower().split()
        refined_tokens = refined.lower().split()
        longest = max(len(original_tokens), len(refined_tokens))
        if longest == 0:
            return 0.0
        refined_set = set(refined_tokens)
        shared = sum(1 for token in original_tokens if token in refined_set)
        return shared / longest

    def check(self, original: str, refined: str) -> GateVerdict:
        if not refined or not refined.strip():
            return GateVerdict(passed=False, reason="refined content is empty")
        if not original or not original.strip():
            return GateVerdict(passed=False, reason="original content is empty")

        similarity = self.similarity(original, refined)
        ratio = len(refined.strip()) / len(original.strip())
        if similarity < self.min_similarity:
            return GateVerdict(
                passed=False,
                reason=f"similarity {similarity:.2f} below {self.min_similarity}",
                similarity=similarity,
                length_ratio=ratio,
            )
        if ratio < self.min_length_ratio or ratio > self.max_length_ratio:
            return GateVerdict(
                passed=False,
                reason=(
                    f"length ratio {ratio:.2f} outside "
                    f"[{self.min_length_ratio}, {self.max_length_ratio}]"
                ),
                similarity=similarity,
                length_ratio=ratio,
            )
        return GateVerdict(passed=True, similarity=similarity, length_ratio=ratio)


def apply_refinements(
    original_text: str,
    refinements: Sequence[Refinement],
    edits: Sequence[LineEdit],
    *,
    gate: Optional[QualityGate] = None,
) -> RefinementResult:
    """
    Substitute validated refinements into the edited paragraphs.

    The result is the edits' content in edit order, each replaced by its
    refinement when one passed the gate, joined by a blank line. With no edits
    the original text is returned untouched.
    """
    gate = gate or QualityGate()
    edits_by_id = {edit.paragraph_id: edit for edit in edits}
    accepted: dict[str, str] = {}
    errors: List[str] = []

    for refinement in refinements:
        paragraph_id = refinement.paragraph_id
        edit = edits_by_id.get(paragraph_id)
        if edit is None:
            errors.append(f"Paragraph {paragraph_id} not found in edits")
            continue

        source = refinement.original_content
        if edit.content != refinement.original_content:
            errors.append(
                f"Content mismatch for paragraph {paragraph_id}; using current paragraph text"
            )
            source = edit.content

        verdict = gate.check(source, refinement.refined_content)
        if not verdict.passed:
            errors.append(f"Refinement for paragraph {paragraph_id} rejected: {verdict.reason}")
            continue
        accepted[paragraph_id] = refinement.refined_content

    if errors:
        logger.debug(f"Refinement validation produced {len(errors)} error(s)")

    if not edits:
        return RefinementResult(refined_text=original_text, errors=errors)

    parts = [accepted.get(edit.paragraph_id, edit.content) for edit in edits]
    return RefinementResult(refined_text="\n\n".join(parts), errors=errors)


__all__ = [
    "parse_inline",
    "text_to_document",
    "document_to_text",
    "node_text",
    "node_to_markdown",
    "is_empty_node",
    "QualityGate",
    "GateVerdict",
    "apply_refinements",
]
