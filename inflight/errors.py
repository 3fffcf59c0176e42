# inflight/errors.py
"""
Exception hierarchy for inflight.

Store and executor code raises these; the tool and HTTP layers translate
them into ToolError / JSON error responses.
"""


class InflightError(Exception):
    """Base class for all inflight errors."""


class JobNotFoundError(InflightError):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobConflictError(InflightError):
    """Raised when an operation conflicts with the job's or item's current state."""


class JobInputError(InflightError):
    """Raised when job input is rejected before a job is created."""


class StorageError(InflightError):
    """Raised when the persistence substrate keeps failing after retries."""
