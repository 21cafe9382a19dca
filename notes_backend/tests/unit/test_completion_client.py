"""Unit tests for the completion client and response helpers."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from notes_backend.src.services.config import AppConfig
from notes_backend.src.services.completion import (
    CompletionClient,
    parse_json_response,
    strip_code_fences,
)
from notes_backend.src.services.errors import CompletionError, CompletionParseError

ASYNC_CLIENT = "notes_backend.src.services.completion.httpx.AsyncClient"


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(database_path=tmp_path / "organizer.db")


@pytest.fixture
def client(config: AppConfig) -> CompletionClient:
    """Client with a fixed key and base URL."""
    return CompletionClient(
        api_key="test-key", base_url="https://example.test/v1", timeout=5, config=config
    )


def _mock_response(payload):
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


class TestHelpers:
    """Tests for the reply parsing helpers."""

    def test_strip_code_fences(self) -> None:
        """A fenced reply is unwrapped and plain text is left alone."""
        assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'
        assert strip_code_fences("plain text") == "plain text"

    def test_parse_json_response_with_prose(self) -> None:
        """JSON wrapped in prose is still found."""
        assert parse_json_response('Here you go: [{"a": 1}] thanks') == [{"a": 1}]

    def test_parse_json_response_rejects_garbage(self) -> None:
        """Text without JSON raises CompletionParseError."""
        with pytest.raises(CompletionParseError):
            parse_json_response("not json at all")


class TestComplete:
    """Tests for CompletionClient.complete()."""

    @pytest.mark.asyncio
    async def test_returns_first_choice(self, client) -> None:
        """The first choice's text is returned and the request is well formed."""
        with patch(ASYNC_CLIENT) as mock_client:
            post = AsyncMock(
                return_value=_mock_response(
                    {"choices": [{"message": {"role": "assistant", "content": "hello"}}]}
                )
            )
            mock_client.return_value.__aenter__.return_value.post = post

            text = await client.complete("prompt", "model-a")

        assert text == "hello"
        kwargs = post.call_args.kwargs
        assert post.call_args.args[0] == "https://example.test/v1/chat/completions"
        assert kwargs["json"]["model"] == "model-a"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_joins_content_parts(self, client) -> None:
        """List-form content is joined from its text parts."""
        payload = {
            "choices": [
                {
                    "message": {
                        "content": [
                            {"type": "text", "text": "Call "},
                            {"type": "image_url", "image_url": {"url": "x"}},
                            {"type": "text", "text": "Bob"},
                        ]
                    }
                }
            ]
        }
        with patch(ASYNC_CLIENT) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_mock_response(payload)
            )
            text = await client.complete("prompt", "model-a")

        assert text == "Call Bob"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            ["oops"],
            {"choices": "nope"},
            {"choices": ["not an object"]},
            {"choices": [{"message": "text"}]},
            {"choices": [{"message": {"content": 42}}]},
        ],
    )
    async def test_malformed_body_raises_parse_error(self, client, payload) -> None:
        """A body of the wrong shape raises CompletionParseError, not AttributeError."""
        with patch(ASYNC_CLIENT) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_mock_response(payload)
            )
            with pytest.raises(CompletionParseError):
                await client.complete("prompt", "model-a")

    @pytest.mark.asyncio
    async def test_http_error_raises_completion_error(self, client) -> None:
        """An HTTP error status is reported with its code."""
        request = httpx.Request("POST", "https://example.test/v1/chat/completions")
        error_response = httpx.Response(503, request=request)
        response = MagicMock()
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("boom", request=request, response=error_response)
        )
        with patch(ASYNC_CLIENT) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=response)

            with pytest.raises(CompletionError) as exc_info:
                await client.complete("prompt", "model-a")

        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_raises_completion_error(self, client) -> None:
        """A timeout becomes CompletionError."""
        with patch(ASYNC_CLIENT) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ReadTimeout("slow")
            )
            with pytest.raises(CompletionError, match="timeout"):
                await client.complete("prompt", "model-a")

    @pytest.mark.asyncio
    async def test_empty_choices(self, client) -> None:
        """No choices means no response."""
        with patch(ASYNC_CLIENT) as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                return_value=_mock_response({"choices": []})
            )
            with pytest.raises(CompletionError):
                await client.complete("prompt", "model-a")

    @pytest.mark.asyncio
    async def test_missing_key_fails_fast(self, config) -> None:
        """Without an API key no request is attempted."""
        client = CompletionClient(api_key="", config=config)
        with pytest.raises(CompletionError, match="not configured"):
            await client.complete("prompt", "model-a")
