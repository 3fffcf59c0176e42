# inflight/llm/client.py
"""Ollama client with health checks, single-shot and streaming completion."""

import logging
import time
from typing import AsyncIterator

import httpx
from ollama import AsyncClient

from .retry import ollama_retry
from .types import CompletionChunk, CompletionResult

logger = logging.getLogger(__name__)


def _ns_to_ms(value: int | None) -> int | None:
    return value // 1_000_000 if value else None


class OllamaClient:
    """
    Async Ollama client implementing CompletionClient.

    Handles:
    - Health checks (server + model availability)
    - Single-shot completion (regeneration jobs)
    - Streaming completion (chat jobs)
    """

    def __init__(self, base_url: str, model: str, timeout: int = 300):
        """
        Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (e.g., "http://localhost:11434")
            model: Model name (e.g., "qwen2.5:7b-instruct")
            timeout: Request timeout in seconds (generous for model loading)
        """
        self.base_url = base_url
        self.model = model
        self.client = AsyncClient(host=base_url, timeout=httpx.Timeout(timeout))

    async def health_check(self) -> bool:
        """
        Check Ollama server health and model availability.

        Returns:
            True if the server is reachable (the model can be pulled on demand),
            False if the server is down or unreachable.
        """
        try:
            response = await self.client.list()
            available = [m.model or "" for m in response.models]

            model_base = self.model.split(":")[0]
            if not any(model_base in m or self.model == m for m in available):
                logger.warning(
                    f"Model {self.model} not found in available models. "
                    f"It can be pulled on demand during generation."
                )
            return True

        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    @ollama_retry
    async def complete(self, messages: list[dict]) -> CompletionResult:
        """
        Generate one full response.

        Args:
            messages: Chat messages in format [{"role": "user", "content": "..."}]

        Returns:
            CompletionResult with the response text and timing

        Raises:
            ResponseError: On API errors (retry decorator handles transient errors)
        """
        logger.info(f"Completing with model={self.model}, messages={len(messages)}")
        start = time.monotonic()
        response = await self.client.chat(model=self.model, messages=messages, stream=False)
        content = response.message.content or ""
        duration_ms = _ns_to_ms(response.total_duration) or int(
            (time.monotonic() - start) * 1000
        )
        logger.info(f"Completed {len(content)} chars in {duration_ms}ms")
        return CompletionResult(content=content, model=response.model or self.model, duration_ms=duration_ms)

    @ollama_retry
    async def _open_stream(self, messages: list[dict]):
        return await self.client.chat(model=self.model, messages=messages, stream=True)

    async def stream(self, messages: list[dict]) -> AsyncIterator[CompletionChunk]:
        """
        Stream a response chunk by chunk.

        Only opening the stream is retried; a stream that fails midway
        raises to the caller.

        Yields:
            CompletionChunk per upstream chunk; the last has done=True
        """
        logger.info(f"Streaming with model={self.model}, messages={len(messages)}")
        start = time.monotonic()
        total = 0
        async for chunk in await self._open_stream(messages):
            content = (chunk.message.content or "") if chunk.message else ""
            total += len(content)
            if chunk.done:
                duration_ms = _ns_to_ms(chunk.total_duration) or int(
                    (time.monotonic() - start) * 1000
                )
                logger.info(f"Streamed {total} chars in {duration_ms}ms")
                yield CompletionChunk(
                    content=content,
                    done=True,
                    model=chunk.model or self.model,
                    duration_ms=duration_ms,
                )
                return
            if content:
                yield CompletionChunk(content=content)
