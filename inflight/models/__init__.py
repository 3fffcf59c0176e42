# inflight/models/__init__.py
"""
Data models for inflight.

Provides the job record, job store implementations, input validation and
Pydantic response models.
"""

from inflight.models.jobs import (
    InMemoryJobStore,
    JobRecord,
    JobState,
    JobType,
    generate_job_id,
    utc_now,
)
from inflight.models.responses import (
    ActiveOperationResponse,
    ActiveOperationsResponse,
    BusyResponse,
    CreateJobResponse,
    DeleteJobResponse,
    JobResponse,
    ListJobsResponse,
    StreamResponse,
)
from inflight.models.store import JobStore

__all__ = [
    # Response models
    "CreateJobResponse",
    "JobResponse",
    "ListJobsResponse",
    "DeleteJobResponse",
    "StreamResponse",
    "ActiveOperationResponse",
    "ActiveOperationsResponse",
    "BusyResponse",
    # Job tracking
    "JobState",
    "JobType",
    "JobRecord",
    "JobStore",
    "InMemoryJobStore",
    "generate_job_id",
    "utc_now",
]
