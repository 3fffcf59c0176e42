# inflight/models/retry.py
"""Retry logic for SQLite storage calls with exponential backoff."""

import logging

import aiosqlite
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from inflight.errors import StorageError

logger = logging.getLogger(__name__)


def _raise_storage_error(retry_state: RetryCallState) -> None:
    """Convert the last storage exception into StorageError once retries run out."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    raise StorageError(
        f"Storage operation failed after {retry_state.attempt_number} attempts: {exc}"
    ) from exc


# Transient SQLite failures (database locked, disk I/O) are retried; anything
# else (constraint errors, ValueError, conflicts) propagates immediately.
storage_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    retry=retry_if_exception_type(aiosqlite.OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    retry_error_callback=_raise_storage_error,
)
