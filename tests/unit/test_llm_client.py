# tests/unit/test_llm_client.py
"""Tests for OllamaClient health checks, completion, streaming and retry."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from ollama import ResponseError
from tenacity import wait_none

from inflight.llm import OllamaClient
from inflight.llm.retry import is_retryable

MODEL = "qwen2.5:7b-instruct"


def _client() -> OllamaClient:
    return OllamaClient(base_url="http://localhost:11434", model=MODEL)


def _response(content: str, done: bool = True, total_duration: int | None = None):
    return SimpleNamespace(
        message=SimpleNamespace(content=content),
        model=MODEL,
        done=done,
        total_duration=total_duration,
    )


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_server_up(self):
        client = _client()

        with patch.object(client.client, "list", new_callable=AsyncMock) as mock_list:
            mock_list.return_value = SimpleNamespace(models=[SimpleNamespace(model=MODEL)])

            assert await client.health_check() is True
            mock_list.assert_called_once()

    @pytest.mark.asyncio
    async def test_model_missing_still_healthy(self):
        """The model can be pulled on demand."""
        client = _client()

        with patch.object(client.client, "list", new_callable=AsyncMock) as mock_list:
            mock_list.return_value = SimpleNamespace(models=[SimpleNamespace(model="llama3:8b")])

            assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_server_down(self):
        client = _client()

        with patch.object(client.client, "list", new_callable=AsyncMock) as mock_list:
            mock_list.side_effect = ConnectionError("Connection refused")

            assert await client.health_check() is False


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_content_and_duration(self):
        client = _client()

        with patch.object(client.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = _response('{"goal": {}}', total_duration=42_000_000)

            result = await client.complete([{"role": "user", "content": "Hi"}])

        assert result.content == '{"goal": {}}'
        assert result.model == MODEL
        assert result.duration_ms == 42
        assert mock_chat.call_args.kwargs["stream"] is False

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        client = _client()

        with patch.object(OllamaClient.complete.retry, "wait", wait_none()):
            with patch.object(client.client, "chat", new_callable=AsyncMock) as mock_chat:
                mock_chat.side_effect = [
                    ResponseError("Service unavailable", status_code=503),
                    _response("ok"),
                ]

                result = await client.complete([{"role": "user", "content": "Hi"}])

        assert result.content == "ok"
        assert mock_chat.call_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self):
        client = _client()

        with patch.object(client.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.side_effect = ResponseError("model not found", status_code=404)

            with pytest.raises(ResponseError):
                await client.complete([{"role": "user", "content": "Hi"}])

        assert mock_chat.call_count == 1


class TestStream:
    @pytest.mark.asyncio
    async def test_yields_chunks_then_done(self):
        client = _client()

        async def upstream():
            yield _response("Hel", done=False)
            yield _response("", done=False)
            yield _response("lo", done=False)
            yield _response("", done=True, total_duration=7_000_000)

        with patch.object(client.client, "chat", new_callable=AsyncMock) as mock_chat:
            mock_chat.return_value = upstream()

            chunks = [c async for c in client.stream([{"role": "user", "content": "Hi"}])]

        assert [c.content for c in chunks] == ["Hel", "lo", ""]
        assert chunks[-1].done is True
        assert chunks[-1].duration_ms == 7
        assert chunks[-1].model == MODEL


class TestIsRetryable:
    def test_connection_errors(self):
        assert is_retryable(ConnectionError("refused"))
        assert is_retryable(httpx.ConnectError("refused"))

    def test_status_codes(self):
        assert is_retryable(ResponseError("busy", status_code=503))
        assert is_retryable(ResponseError("slow down", status_code=429))
        assert not is_retryable(ResponseError("bad request", status_code=400))

    def test_other_errors(self):
        assert not is_retryable(ValueError("nope"))
