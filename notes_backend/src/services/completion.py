"""Client for the OpenAI-compatible chat completion service."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import httpx

from .config import AppConfig, get_config
from .errors import CompletionError, CompletionParseError

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^\s*```[\w-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if the whole reply is fenced."""
    if not text:
        return ""
    match = FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_json_response(text: str) -> Any:
    """Parse a model reply as JSON after stripping code fences.

    Falls back to the outermost ``[...]`` or ``{...}`` span when the model
    wrapped its JSON in prose.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise CompletionParseError("Empty response from model")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("[", "]"), ("{", "}")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                continue
    raise CompletionParseError(
        "Model response is not valid JSON", details={"preview": cleaned[:200]}
    )


class CompletionClient:
    """Send single-prompt requests to the completion service."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        config = config or get_config()
        self.api_key = api_key if api_key is not None else config.completion_api_key
        self.base_url = (base_url or config.completion_base_url).rstrip("/")
        self.timeout = timeout or config.completion_timeout_seconds

    async def complete(
        self,
        prompt: str,
        model: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 4000,
        temperature: float = 0.2,
    ) -> str:
        """Return the text of the first choice.

        Raises:
            CompletionError: On missing key, HTTP error, timeout or empty reply.
        """
        if not self.api_key:
            raise CompletionError("Completion API key not configured")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "X-Title": "Notes Organizer",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": model,
                        "messages": messages,
                        "max_tokens": max_tokens,
                        "temperature": temperature,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Completion API error from {model}: {e.response.status_code}")
            raise CompletionError(
                f"API error: {e.response.status_code}", details={"model": model}
            ) from e
        except httpx.TimeoutException as e:
            raise CompletionError("Request timeout", details={"model": model}) from e
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion call failed: {e}", details={"model": model}) from e
        except ValueError as e:
            raise CompletionParseError(
                "Completion service returned invalid JSON", details={"model": model}
            ) from e

        content = _first_choice_text(data, model)
        if not content.strip():
            raise CompletionError("Empty response from model", details={"model": model})
        return content


def _first_choice_text(data: Any, model: str) -> str:
    """Text of the first choice; list-form content parts are joined."""
    if not isinstance(data, dict):
        raise CompletionParseError(
            "Completion response is not a JSON object", details={"model": model}
        )
    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise CompletionParseError("Malformed choices in response", details={"model": model})
    if not choices:
        raise CompletionError("No response from model", details={"model": model})
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise CompletionParseError("Malformed choice in response", details={"model": model})

    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text") or ""
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    raise CompletionParseError("Malformed message content", details={"model": model})


__all__ = ["CompletionClient", "strip_code_fences", "parse_json_response"]
