"""Jinja2-based prompt template loader for the organizer.

Templates are read from the ``prompts/`` directory next to the package when it
exists, so they can be edited without restarting the server. Inline fallback
prompts cover every template the organizer uses.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

logger = logging.getLogger(__name__)

# notes_backend/src/services/prompt_loader.py -> notes_backend/prompts/
DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

INLINE_PROMPTS: Dict[str, str] = {
    "organizer/route.md": """You are an intelligent content router for personal notes.
Route every paragraph to one or more existing [FILE]s, or to a new [FILE] inside an existing [DIR].
You MUST NOT route to a [DIR]. Prefer existing files; only create a new file when nothing fits.
Content may be duplicated to several files when it is relevant to each of them.

PAGE TITLE: "{{ title }}"
{% if rules %}
ORGANIZATION RULES:
{{ rules }}
{% endif %}
FULL PAGE CONTENT (for topical context):
\"\"\"
{{ page_context }}
\"\"\"

CURRENT FILE TREE:
{{ tree or '(empty - create files at the root)' }}

UNORGANIZED PARAGRAPHS (to route):
{% for paragraph in paragraphs %}[{{ paragraph.paragraph_id }}] {{ paragraph.content }}
{% endfor %}
TASK:
1. Decide which file each paragraph belongs in, given the tree and page context.
2. Group paragraphs that share a destination. Never drop key information the user wrote.
3. For each destination return:
   {"targetFilePath": "/Path/To/File", "relevance": 0.0-1.0, "content": "text to place there",
    "paragraphIds": ["ids of the source paragraphs"],
    "refinements": [{"paragraphId": "...", "originalContent": "...", "refinedContent": "..."}]}
   "refinements" is optional and only for light clean-up of a paragraph's wording.
4. Respond ONLY with a JSON array (no markdown fences, no extra prose).
""",
    "organizer/suggest.md": """Suggest where this personal note belongs.

PAGE TITLE: "{{ title }}"

CONTENT:
\"\"\"
{{ page_context }}
\"\"\"

CURRENT FILE TREE:
{{ tree or '(empty)' }}

Return up to {{ limit }} existing or new [FILE] paths, never a [DIR], ranked by relevance.
Respond ONLY with a JSON array: [{"targetFilePath": "/Path/To/File", "relevance": 0.0-1.0}]
""",
    "organizer/merge.md": """You maintain the personal notes file "{{ title or 'Untitled' }}".
{% if rules %}
ORGANIZATION RULES FOR THIS FILE:
{{ rules }}
{% endif %}
TODAY'S EXISTING NOTES IN THIS FILE:
\"\"\"
{{ existing }}
\"\"\"

NEW CONTENT TO INTEGRATE:
\"\"\"
{{ new_content }}
\"\"\"

TASK:
Merge the new content into today's notes as concise personal notes in the author's voice.
Remove duplication, keep every fact, date and action item.
Drop any new content that is clearly irrelevant to this file instead of including it.
Use simple markdown (headings, bullets, **bold**, *italic*). Never output HTML.

Respond ONLY with the merged notes as markdown (no JSON, no code fences).
""",
    "organizer/rewrite.md": """You are rewriting ONE personal note. Keep EVERY key detail, but remove redundancy and fluff.

PAGE TITLE (for context, do NOT repeat it in your output): "{{ title }}"
{% if rules %}
ORGANIZATION RULES:
{{ rules }}
{% endif %}
ORIGINAL NOTE:
\"\"\"
{{ content }}
\"\"\"

Rewrite the note as clear, concise personal notes in the author's voice. Do NOT omit any
important facts, dates, ideas or action items. Use simple markdown if helpful, never HTML.

Respond ONLY with the rewritten note (markdown, no JSON, no code fences).
""",
}


class PromptLoaderError(Exception):
    """Raised when a prompt cannot be loaded."""

    pass


class PromptLoader:
    """Load and render Jinja2 prompt templates.

    Example:
        >>> loader = PromptLoader()
        >>> prompt = loader.load("organizer/merge.md", {"title": "Groceries"})
    """

    def __init__(self, prompts_dir: Optional[Path] = None) -> None:
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,  # Prompts are markdown, not HTML
                auto_reload=True,
                keep_trailing_newline=True,
            )
            logger.debug(
                "PromptLoader initialized with filesystem templates",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None
            logger.debug(
                "Prompts directory not found, using inline prompts",
                extra={"prompts_dir": str(self.prompts_dir)},
            )

    def load(self, path: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Load and render a prompt template.

        Raises:
            PromptLoaderError: If the template cannot be loaded or rendered.
        """
        context = context or {}

        if self.env is not None:
            try:
                template = self.env.get_template(path)
                return template.render(**context)
            except jinja2.TemplateNotFound:
                logger.debug(
                    "Template not found in filesystem, trying inline fallback",
                    extra={"path": path},
                )
            except jinja2.TemplateError as e:
                logger.error(
                    "Failed to render template",
                    extra={"path": path, "error": str(e)},
                )
                raise PromptLoaderError(f"Failed to render template {path}: {e}") from e

        return self._get_inline_prompt(path, context)

    def _get_inline_prompt(self, path: str, context: Dict[str, Any]) -> str:
        template_str = INLINE_PROMPTS.get(path)
        if template_str is None:
            logger.warning(
                "No inline fallback for prompt path",
                extra={"path": path, "available": list(INLINE_PROMPTS.keys())},
            )
            raise PromptLoaderError(
                f"Prompt not found: {path}. "
                f"Available inline prompts: {list(INLINE_PROMPTS.keys())}"
            )

        try:
            return jinja2.Template(template_str).render(**context)
        except jinja2.TemplateError as e:
            logger.error(
                "Failed to render inline template",
                extra={"path": path, "error": str(e)},
            )
            raise PromptLoaderError(f"Failed to render inline template {path}: {e}") from e

    def list_available(self) -> Dict[str, list[str]]:
        """List prompt templates from the filesystem and the inline set."""
        result: Dict[str, list[str]] = {
            "filesystem": [],
            "inline": sorted(INLINE_PROMPTS.keys()),
        }
        if self.prompts_dir.is_dir():
            for md_file in self.prompts_dir.rglob("*.md"):
                result["filesystem"].append(md_file.relative_to(self.prompts_dir).as_posix())
        return result


__all__ = ["PromptLoader", "PromptLoaderError", "DEFAULT_PROMPTS_DIR", "INLINE_PROMPTS"]
