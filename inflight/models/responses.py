# inflight/models/responses.py
"""
Pydantic response models for tool and HTTP outputs.

All tools return structured responses using these models for consistency.
"""

from typing import Any

from pydantic import BaseModel, Field

from inflight.models.jobs import JobRecord


class JobResponse(BaseModel):
    """Full view of one job."""

    job_id: str = Field(description="Unique job identifier")
    type: str = Field(description="Job type tag")
    status: str = Field(description="queued/running/completed/failed")
    target_id: str | None = Field(default=None, description="Domain entity the job mutates")
    created_at: str = Field(description="Creation timestamp (ISO format)")
    started_at: str | None = Field(default=None)
    completed_at: str | None = Field(default=None)
    result: Any = Field(default=None, description="Result payload if completed")
    error: str | None = Field(default=None, description="Error message if failed")
    stale: bool = Field(
        default=False,
        description="True if the job exceeded its maximum running time and is likely orphaned",
    )

    @classmethod
    def from_record(cls, record: JobRecord, max_running_seconds: float | None = None) -> "JobResponse":
        return cls(
            job_id=record.job_id,
            type=record.job_type.value,
            status=record.state.value,
            target_id=record.target_id,
            created_at=record.created_at.isoformat(),
            started_at=record.started_at.isoformat() if record.started_at else None,
            completed_at=record.completed_at.isoformat() if record.completed_at else None,
            result=record.result,
            error=record.error,
            stale=(
                record.is_stale(max_running_seconds)
                if max_running_seconds is not None
                else False
            ),
        )


class CreateJobResponse(BaseModel):
    """Response from create_job."""

    job_id: str = Field(description="Unique job identifier for tracking")
    type: str = Field(description="Job type tag")
    status: str = Field(description="Job status right after creation")
    created_at: str = Field(description="Creation timestamp (ISO format)")
    next_steps: str = Field(
        default="Use get_job with job_id to monitor progress",
        description="Instructions for monitoring job progress",
    )


class ListJobsResponse(BaseModel):
    """Response from list_jobs."""

    jobs: list[JobResponse] = Field(default_factory=list)
    total: int = Field(description="Total number of jobs returned")


class DeleteJobResponse(BaseModel):
    """Response from delete_job."""

    job_id: str
    success: bool


class StreamResponse(BaseModel):
    """Latest partial output of a job."""

    job_id: str
    thread_id: str | None = None
    content: str = ""
    status: str = Field(description="streaming/complete/error, or 'none' if no entry")
    seq: int = 0
    updated_at: str | None = None
    job_status: str | None = Field(
        default=None, description="Authoritative job status from the job store"
    )


class ActiveOperationResponse(BaseModel):
    item_type: str
    item_id: str
    job_id: str
    started_at: str


class ActiveOperationsResponse(BaseModel):
    """Response from list_active_operations."""

    operations: list[ActiveOperationResponse] = Field(default_factory=list)
    total: int


class BusyResponse(BaseModel):
    """Response from is_busy."""

    item_type: str
    item_id: str
    busy: bool
    job_id: str | None = None
