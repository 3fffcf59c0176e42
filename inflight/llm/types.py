# inflight/llm/types.py
"""Normalized completion types and collaborator interfaces."""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

from inflight.models.inputs import JobInput
from inflight.models.jobs import JobType


@dataclass
class CompletionResult:
    """A single (non-streamed) upstream response."""

    content: str
    model: str
    duration_ms: int | None = None


@dataclass
class CompletionChunk:
    """One unit of streamed upstream output."""

    content: str = ""
    done: bool = False
    model: str | None = None
    duration_ms: int | None = None  # set on the final chunk only


class CompletionClient(Protocol):
    """Upstream AI completion service."""

    model: str

    async def complete(self, messages: list[dict]) -> CompletionResult:
        """Return one full response for the given chat messages."""
        ...

    def stream(self, messages: list[dict]) -> AsyncIterator[CompletionChunk]:
        """Yield content chunks; the last chunk has done=True."""
        ...


class PromptBuilder(Protocol):
    """Turns validated job input into chat messages."""

    def build(self, job_type: JobType, job_input: JobInput) -> list[dict]:
        ...


class ResponseParser(Protocol):
    """Turns raw upstream text into a job result payload."""

    def parse(self, job_type: JobType, raw_output: str) -> Any:
        ...
