# inflight/api/app.py
"""
HTTP API over the shared services.

Routes:
    POST   /api/jobs                  create and start a job
    GET    /api/jobs                  list jobs (?type=&status=)
    GET    /api/jobs/{job_id}         job status / result / error
    DELETE /api/jobs/{job_id}         dismiss a finished job
    GET    /api/jobs/{job_id}/partial latest partial output (JSON)
    GET    /api/jobs/{job_id}/stream  resume the job's output as SSE
    GET    /api/operations/active     live active operations (?item_type=&item_id=)
"""

import contextlib
import json
import logging
from typing import AsyncIterator

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from inflight.background.lifecycle import ServerLifecycle
from inflight.errors import (
    InflightError,
    JobConflictError,
    JobInputError,
    JobNotFoundError,
    StorageError,
)
from inflight.models.inputs import parse_job_type
from inflight.models.responses import (
    ActiveOperationResponse,
    ActiveOperationsResponse,
    CreateJobResponse,
    DeleteJobResponse,
    JobResponse,
    ListJobsResponse,
    StreamResponse,
)
from inflight.streaming.protocol import SSE_HEADERS, resume_stream
from inflight.tools.list_jobs import parse_job_state
from inflight.validation.sanitize import parse_item_type, sanitize_item_id, sanitize_job_id

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[InflightError], int] = {
    JobInputError: 400,
    JobNotFoundError: 404,
    JobConflictError: 409,
    StorageError: 503,
}


def _lifecycle(request: Request) -> ServerLifecycle:
    return request.app.state.lifecycle


async def inflight_error(request: Request, exc: Exception) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=status)


async def create_job(request: Request) -> JSONResponse:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise JobInputError("Request body must be JSON")
    if not isinstance(body, dict):
        raise JobInputError("Request body must be a JSON object")

    target_id = body.get("target_id", body.get("targetId"))
    if target_id is not None:
        target_id = sanitize_item_id(str(target_id))

    record = await _lifecycle(request).executor.submit(
        body.get("type", ""),
        body.get("input"),
        target_id=target_id,
        reject_if_busy=bool(body.get("reject_if_busy", False)),
    )
    response = CreateJobResponse(
        job_id=record.job_id,
        type=record.job_type.value,
        status=record.state.value,
        created_at=record.created_at.isoformat(),
        next_steps=f"Poll GET /api/jobs/{record.job_id} or stream GET /api/jobs/{record.job_id}/stream",
    )
    return JSONResponse(response.model_dump(), status_code=201)


async def list_jobs(request: Request) -> JSONResponse:
    lifecycle = _lifecycle(request)
    job_type = request.query_params.get("type")
    status = request.query_params.get("status")
    records = await lifecycle.job_store.list_all(
        job_type=parse_job_type(job_type) if job_type else None,
        state=parse_job_state(status) if status else None,
    )
    max_running = lifecycle.config.jobs.max_running_seconds
    jobs = [JobResponse.from_record(r, max_running) for r in records]
    return JSONResponse(ListJobsResponse(jobs=jobs, total=len(jobs)).model_dump())


async def get_job(request: Request) -> JSONResponse:
    lifecycle = _lifecycle(request)
    job_id = sanitize_job_id(request.path_params["job_id"])
    record = await lifecycle.job_store.get(job_id)
    if record is None:
        raise JobNotFoundError(job_id)
    response = JobResponse.from_record(record, lifecycle.config.jobs.max_running_seconds)
    return JSONResponse(response.model_dump())


async def delete_job(request: Request) -> JSONResponse:
    job_id = sanitize_job_id(request.path_params["job_id"])
    if not await _lifecycle(request).job_store.delete(job_id):
        raise JobNotFoundError(job_id)
    return JSONResponse(DeleteJobResponse(job_id=job_id, success=True).model_dump())


async def get_partial(request: Request) -> JSONResponse:
    lifecycle = _lifecycle(request)
    job_id = sanitize_job_id(request.path_params["job_id"])
    record = await lifecycle.job_store.get(job_id)
    entry = await lifecycle.stream_store.get(job_id, refresh=True)
    if record is None and entry is None:
        raise JobNotFoundError(job_id)

    job_status = record.state.value if record else None
    if entry is None:
        response = StreamResponse(job_id=job_id, status="none", job_status=job_status)
    else:
        response = StreamResponse(
            job_id=job_id,
            thread_id=entry.thread_id,
            content=entry.content,
            status=entry.status.value,
            seq=entry.seq,
            updated_at=entry.updated_at.isoformat() if entry.updated_at else None,
            job_status=job_status,
        )
    return JSONResponse(response.model_dump())


async def stream_job(request: Request) -> StreamingResponse:
    lifecycle = _lifecycle(request)
    job_id = sanitize_job_id(request.path_params["job_id"])
    if await lifecycle.job_store.get(job_id) is None:
        raise JobNotFoundError(job_id)

    logger.info(f"Resuming stream for job {job_id}")
    frames = resume_stream(
        lifecycle.stream_store,
        lifecycle.job_store,
        job_id,
        poll_interval=lifecycle.config.streams.poll_interval,
        max_idle=lifecycle.config.jobs.max_running_seconds,
    )
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)


async def active_operations(request: Request) -> JSONResponse:
    item_type = request.query_params.get("item_type")
    item_id = request.query_params.get("item_id")
    entries = await _lifecycle(request).operations.get_entries(
        parse_item_type(item_type) if item_type else None,
        sanitize_item_id(item_id) if item_id else None,
    )
    items = [
        ActiveOperationResponse(
            item_type=e.item_type.value,
            item_id=e.item_id,
            job_id=e.job_id,
            started_at=e.started_at.isoformat(),
        )
        for e in entries
    ]
    return JSONResponse(ActiveOperationsResponse(operations=items, total=len(items)).model_dump())


def create_app(lifecycle: ServerLifecycle, manage_lifecycle: bool = True) -> Starlette:
    """
    Build the ASGI app.

    Args:
        lifecycle: Shared services (stores, executor)
        manage_lifecycle: Run lifecycle startup/shutdown in the app's lifespan
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if manage_lifecycle:
            await lifecycle.startup()
        try:
            yield
        finally:
            if manage_lifecycle:
                await lifecycle.shutdown()

    routes = [
        Route("/api/jobs", create_job, methods=["POST"]),
        Route("/api/jobs", list_jobs, methods=["GET"]),
        Route("/api/jobs/{job_id}", get_job, methods=["GET"]),
        Route("/api/jobs/{job_id}", delete_job, methods=["DELETE"]),
        Route("/api/jobs/{job_id}/partial", get_partial, methods=["GET"]),
        Route("/api/jobs/{job_id}/stream", stream_job, methods=["GET"]),
        Route("/api/operations/active", active_operations, methods=["GET"]),
    ]
    app = Starlette(
        routes=routes,
        exception_handlers={InflightError: inflight_error},
        lifespan=lifespan,
    )
    app.state.lifecycle = lifecycle
    return app
