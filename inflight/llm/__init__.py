# inflight/llm/__init__.py
"""LLM integration module with the Ollama client, retry logic and collaborator defaults."""

from .client import OllamaClient
from .prompts import DefaultPromptBuilder, JsonResponseParser, extract_json
from .retry import ollama_retry
from .types import (
    CompletionChunk,
    CompletionClient,
    CompletionResult,
    PromptBuilder,
    ResponseParser,
)

__all__ = [
    "OllamaClient",
    "ollama_retry",
    "CompletionClient",
    "CompletionChunk",
    "CompletionResult",
    "PromptBuilder",
    "ResponseParser",
    "DefaultPromptBuilder",
    "JsonResponseParser",
    "extract_json",
]
