# inflight/llm/retry.py
"""
Tenacity retry policy for upstream Ollama calls.

Only failures that say nothing about the request itself are retried:
the server was unreachable, dropped the connection, or answered with a
transient status. Everything else reaches the job as its error.
"""

import logging

import httpx
from ollama import ResponseError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# Raised before any response body arrived
CONNECTION_ERRORS = (ConnectionError, httpx.ConnectError, httpx.RemoteProtocolError)

# Overloaded, rate limited, or a proxy in front of Ollama timing out
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable(exception: BaseException) -> bool:
    """True for connection failures and ResponseErrors with a transient status."""
    if isinstance(exception, CONNECTION_ERRORS):
        return True
    if isinstance(exception, ResponseError):
        return exception.status_code in RETRYABLE_STATUSES
    return False


# Job timeouts bound the total; backoff stays short so a retry fits inside one
ollama_retry = retry(
    stop=stop_after_attempt(MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_retryable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
