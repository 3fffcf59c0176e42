# inflight/operations/manager.py
"""
Client operations manager.

A process-wide cache merging server-confirmed job state with locally
started (optimistic) operations. Consumers read one immutable snapshot that
is replaced wholesale on every change, so reference equality is a valid
change check.

Flow for a background job:
    1. start_background_job() marks the operation active locally
    2. POST /api/jobs creates the job on the server
    3. The job is polled until completed/failed (or the poll times out)
    4. Completion callbacks run; the operation is cleaned up after a delay

start() runs purely local work the same way (no server job), and abort()
drops an operation locally without cancelling anything on the server.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping
from uuid import uuid4

from inflight.models.jobs import JobType, utc_now
from inflight.operations.active_operations import JOB_ITEM_TYPES, ItemType
from inflight.operations.api_client import OperationsApi

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0
MAX_POLL_SECONDS = 120.0
COMPLETE_CLEANUP_DELAY = 1.0
FAILED_CLEANUP_DELAY = 5.0
ABORTED_CLEANUP_DELAY = 0.1

_ITEM_JOB_TYPES: dict[ItemType, JobType] = {v: k for k, v in JOB_ITEM_TYPES.items()}

OnComplete = Callable[[Any], Awaitable[None] | None]
OnError = Callable[[Exception], Awaitable[None] | None]
LocalWork = Callable[[], Awaitable[Any]]
CompletionHandler = Callable[[Any, str], Awaitable[None] | None]
Listener = Callable[[], None]


class OperationStatus(Enum):
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ClientOperation:
    """In-memory mirror of one tracked job."""

    id: str
    job_type: JobType
    status: OperationStatus
    started_at: datetime
    target_id: str | None = None
    job_id: str | None = None  # None until the server confirms
    result: Any = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is OperationStatus.IN_PROGRESS


@dataclass(frozen=True, eq=False)
class ClientOperationSnapshot:
    """
    Immutable view of all tracked operations.

    Attributes:
        operations: Per job type, operation id -> ClientOperation
        active_targets: Per job type, target ids with an in-progress operation
    """

    operations: Mapping[JobType, Mapping[str, ClientOperation]]
    active_targets: Mapping[JobType, frozenset[str]]

    def of_type(self, job_type: JobType) -> Mapping[str, ClientOperation]:
        return self.operations[job_type]

    def active_ids(self, job_type: JobType) -> frozenset[str]:
        return self.active_targets[job_type]


def _build_snapshot(operations: dict[str, ClientOperation]) -> ClientOperationSnapshot:
    by_type: dict[JobType, dict[str, ClientOperation]] = {t: {} for t in JobType}
    active: dict[JobType, set[str]] = {t: set() for t in JobType}
    for op_id, op in operations.items():
        by_type[op.job_type][op_id] = op
        if op.is_active:
            active[op.job_type].add(op.target_id or op_id)

    return ClientOperationSnapshot(
        operations=MappingProxyType(
            {t: MappingProxyType(ops) for t, ops in by_type.items()}
        ),
        active_targets=MappingProxyType({t: frozenset(ids) for t, ids in active.items()}),
    )


def operation_id(job_type: JobType, target_id: str) -> str:
    return f"{job_type.value}:{target_id}"


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class ClientOperationsManager:
    """
    Snapshot cache of in-flight operations.

    One instance per client process; construct it once and pass it to
    every consumer.
    """

    def __init__(
        self,
        api: OperationsApi,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_seconds: float = MAX_POLL_SECONDS,
        complete_cleanup_delay: float = COMPLETE_CLEANUP_DELAY,
        failed_cleanup_delay: float = FAILED_CLEANUP_DELAY,
        aborted_cleanup_delay: float = ABORTED_CLEANUP_DELAY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._api = api
        self._poll_interval = poll_interval
        self._max_poll_seconds = max_poll_seconds
        self._complete_cleanup_delay = complete_cleanup_delay
        self._failed_cleanup_delay = failed_cleanup_delay
        self._aborted_cleanup_delay = aborted_cleanup_delay
        self._clock = clock

        self._operations: dict[str, ClientOperation] = {}
        self._snapshot = _build_snapshot(self._operations)
        self._listeners: list[Listener] = []
        self._polls: dict[str, asyncio.Task] = {}  # job_id -> polling task
        self._local_tasks: dict[str, asyncio.Task] = {}  # op_id -> start() work
        self._cleanups: dict[str, asyncio.TimerHandle] = {}
        self._completion_handlers: dict[JobType, CompletionHandler] = {}
        self._initialized = False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> ClientOperationSnapshot:
        """Current snapshot; the same object until something changes."""
        return self._snapshot

    def get(self, op_id: str) -> ClientOperation | None:
        return self._operations.get(op_id)

    def is_active(self, op_id: str) -> bool:
        op = self._operations.get(op_id)
        return op is not None and op.is_active

    def has_active_of_type(self, job_type: JobType) -> bool:
        return bool(self._snapshot.active_targets[job_type])

    def is_active_for_target(self, job_type: JobType, target_id: str) -> bool:
        return target_id in self._snapshot.active_targets[job_type]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def register_completion_handler(self, job_type: JobType, handler: CompletionHandler) -> None:
        """
        Register a handler for jobs that finish without a caller callback
        (e.g. jobs recovered by initialize()). Receives (result, target_id).
        """
        self._completion_handlers[job_type] = handler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Seed local state from the server, once.

        Picks up active operations and queued/running jobs started before
        this process (or page) existed, and polls each to completion.
        """
        if self._initialized:
            return
        self._initialized = True

        try:
            entries = await self._api.list_active_operations()
            jobs = await self._api.list_jobs(status="queued")
            jobs += await self._api.list_jobs(status="running")
        except Exception as e:
            logger.warning(f"Failed to check for active jobs: {e}")
            return

        recovered = 0
        for job in jobs:
            job_type = JobType(job["type"])
            target_id = job.get("target_id") or job["job_id"]
            if self._track(job_type, target_id, job["job_id"]):
                recovered += 1

        for entry in entries:
            job_type = _ITEM_JOB_TYPES[ItemType(entry["item_type"])]
            if self._track(job_type, entry["item_id"], entry["job_id"]):
                recovered += 1

        if recovered:
            logger.info(f"Found {recovered} active operation(s) on init")
            self._changed()

    def _track(self, job_type: JobType, target_id: str, job_id: str) -> bool:
        op_id = operation_id(job_type, target_id)
        if op_id in self._operations or job_id in self._polls:
            return False
        self._operations[op_id] = ClientOperation(
            id=op_id,
            job_type=job_type,
            status=OperationStatus.IN_PROGRESS,
            started_at=self._clock(),
            target_id=target_id,
            job_id=job_id,
        )
        self._start_polling(job_id, op_id)
        return True

    async def close(self) -> None:
        """Cancel every pending task and cleanup."""
        for handle in self._cleanups.values():
            handle.cancel()
        self._cleanups.clear()
        tasks = list(self._polls.values()) + list(self._local_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._polls.clear()
        self._local_tasks.clear()

    # ------------------------------------------------------------------
    # Starting jobs
    # ------------------------------------------------------------------

    async def start_background_job(
        self,
        job_type: JobType,
        target_id: str,
        input: dict[str, Any],
        on_complete: OnComplete | None = None,
        on_error: OnError | None = None,
    ) -> str | None:
        """
        Start a server-side job, marking it active locally right away.

        Returns:
            The operation id, or None if the server rejected the request
            (the optimistic entry is removed in that case)
        """
        op_id = operation_id(job_type, target_id)
        previous = self._operations.get(op_id)
        if previous is not None and previous.job_id is not None:
            self._stop_polling(previous.job_id)
        self._stop_local(op_id)
        self._cancel_cleanup(op_id)

        optimistic = ClientOperation(
            id=op_id,
            job_type=job_type,
            status=OperationStatus.IN_PROGRESS,
            started_at=self._clock(),
            target_id=target_id,
        )
        self._operations[op_id] = optimistic
        self._changed()

        try:
            job = await self._api.create_job(job_type.value, input, target_id=target_id)
            job_id = job["job_id"]
        except Exception as e:
            logger.error(f"Failed to start background job {op_id}: {e}")
            if self._operations.get(op_id) is optimistic:
                del self._operations[op_id]
                self._changed()
            if on_error is not None:
                await self._safe_callback("on_error", on_error, e)
            return None

        logger.info(f"Created background job {job_id} for {op_id}")
        if self._operations.get(op_id) is optimistic:
            self._operations[op_id] = replace(optimistic, job_id=job_id)
            self._changed()
        elif on_complete is None and on_error is None:
            logger.debug(f"Operation {op_id} was superseded; not polling job {job_id}")
            return op_id

        # A superseded job still reports to its own callbacks, never to the newer op
        self._start_polling(job_id, op_id, on_complete, on_error)
        return op_id

    def start(
        self,
        job_type: JobType,
        executor: LocalWork,
        target_id: str | None = None,
        on_complete: OnComplete | None = None,
        on_error: OnError | None = None,
        op_id: str | None = None,
    ) -> str:
        """
        Run local work as a tracked operation, marking it active right away.

        An operation already tracked under the same id is aborted first.
        Must be called from a running event loop.

        Args:
            job_type: Operation type (keys the snapshot)
            executor: Zero-argument coroutine function doing the work
            target_id: Item the work is for; a random id is used if omitted
            on_complete: Called with the executor's return value
            on_error: Called with the exception the executor raised
            op_id: Explicit operation id

        Returns:
            The operation id
        """
        op_id = op_id or operation_id(job_type, target_id or uuid4().hex)
        if op_id in self._operations:
            self.abort(op_id)
        self._cancel_cleanup(op_id)

        self._operations[op_id] = ClientOperation(
            id=op_id,
            job_type=job_type,
            status=OperationStatus.IN_PROGRESS,
            started_at=self._clock(),
            target_id=target_id,
        )
        self._changed()

        task = asyncio.get_running_loop().create_task(
            self._run_local(op_id, executor, on_complete, on_error)
        )
        self._local_tasks[op_id] = task

        def forget(done: asyncio.Task) -> None:
            if self._local_tasks.get(op_id) is done:
                del self._local_tasks[op_id]

        task.add_done_callback(forget)
        return op_id

    def abort(self, op_id: str) -> bool:
        """
        Abort an operation on this side only.

        Cancels work started by start(), or stops polling a background job;
        a server-side job keeps running. The aborted entry is cleaned up
        shortly after.

        Returns:
            False if no operation is tracked under op_id
        """
        op = self._operations.get(op_id)
        if op is None:
            return False

        self._stop_local(op_id)
        if op.job_id is not None:
            self._stop_polling(op.job_id)
        self._update(op_id, status=OperationStatus.ABORTED)
        logger.info(f"Aborted operation {op_id}")
        self._schedule_cleanup(op_id, self._aborted_cleanup_delay)
        return True

    async def _run_local(
        self,
        op_id: str,
        executor: LocalWork,
        on_complete: OnComplete | None,
        on_error: OnError | None,
    ) -> None:
        task = asyncio.current_task()
        try:
            result = await executor()
        except asyncio.CancelledError:
            logger.debug(f"Operation {op_id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Operation {op_id} failed: {e}")
            await self._fail(op_id, self._owned_by_task(op_id, task), e, on_error)
            return

        logger.info(f"Operation {op_id} completed")
        await self._complete(op_id, self._owned_by_task(op_id, task), result, on_complete)

    def _owned_by_task(self, op_id: str, task: asyncio.Task | None) -> bool:
        return self._local_tasks.get(op_id) is task and self.is_active(op_id)

    def _stop_local(self, op_id: str) -> None:
        task = self._local_tasks.pop(op_id, None)
        if task is not None:
            task.cancel()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _start_polling(
        self,
        job_id: str,
        op_id: str,
        on_complete: OnComplete | None = None,
        on_error: OnError | None = None,
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._poll(job_id, op_id, on_complete, on_error)
        )
        self._polls[job_id] = task

        def forget(done: asyncio.Task) -> None:
            if self._polls.get(job_id) is done:
                del self._polls[job_id]

        task.add_done_callback(forget)

    def _stop_polling(self, job_id: str) -> None:
        task = self._polls.pop(job_id, None)
        if task is not None:
            task.cancel()

    async def _poll(
        self,
        job_id: str,
        op_id: str,
        on_complete: OnComplete | None,
        on_error: OnError | None,
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()

        while True:
            try:
                job = await self._api.get_job(job_id)
            except Exception as e:
                # Transient; keep polling
                logger.warning(f"Error polling job {job_id}: {e}")
            else:
                owned = self._owned_by_job(op_id, job_id)
                if job is None:
                    logger.warning(f"Job {job_id} not found")
                    await self._fail(op_id, owned, "Job not found", on_error)
                    return

                status = job.get("status")
                if status == "completed":
                    logger.info(f"Job {job_id} completed")
                    await self._complete(op_id, owned, job.get("result"), on_complete)
                    return
                if status == "failed":
                    logger.error(f"Job {job_id} failed: {job.get('error')}")
                    await self._fail(op_id, owned, job.get("error") or "Job failed", on_error)
                    return
                logger.debug(f"Job {job_id} status: {status}")

            if loop.time() - started > self._max_poll_seconds:
                logger.warning(f"Job {job_id} polling timed out")
                owned = self._owned_by_job(op_id, job_id)
                await self._fail(op_id, owned, "Operation timed out", on_error)
                return

            await asyncio.sleep(self._poll_interval)

    def _owned_by_job(self, op_id: str, job_id: str) -> bool:
        op = self._operations.get(op_id)
        return op is not None and op.is_active and op.job_id == job_id

    async def _complete(
        self, op_id: str, owned: bool, result: Any, on_complete: OnComplete | None
    ) -> None:
        """
        Finish an operation successfully.

        When the operation id has since been taken over by a newer run
        (owned=False), only the caller's own callback sees the result.
        """
        op = self._update(op_id, status=OperationStatus.COMPLETE, result=result) if owned else None

        if on_complete is not None:
            await self._safe_callback("on_complete", on_complete, result)
        elif op is not None and op.target_id is not None:
            handler = self._completion_handlers.get(op.job_type)
            if handler is not None:
                await self._safe_callback("completion handler", handler, result, op.target_id)

        if owned:
            self._schedule_cleanup(op_id, self._complete_cleanup_delay)

    async def _fail(
        self, op_id: str, owned: bool, error: str | Exception, on_error: OnError | None
    ) -> None:
        if owned:
            self._update(op_id, status=OperationStatus.FAILED, error=str(error))
        if on_error is not None:
            exc = error if isinstance(error, Exception) else RuntimeError(error)
            await self._safe_callback("on_error", on_error, exc)
        if owned:
            self._schedule_cleanup(op_id, self._failed_cleanup_delay)

    async def _safe_callback(self, name: str, callback: Callable[..., Any], *args: Any) -> None:
        try:
            await _call(callback, *args)
        except Exception as e:
            logger.error(f"{name} callback failed: {e}")

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def _update(self, op_id: str, **changes: Any) -> ClientOperation | None:
        op = self._operations.get(op_id)
        if op is None:
            return None
        op = replace(op, **changes)
        self._operations[op_id] = op
        self._changed()
        return op

    def _schedule_cleanup(self, op_id: str, delay: float) -> None:
        self._cancel_cleanup(op_id)
        expected = self._operations.get(op_id)
        self._cleanups[op_id] = asyncio.get_running_loop().call_later(
            delay, self._cleanup, op_id, expected
        )

    def _cancel_cleanup(self, op_id: str) -> None:
        handle = self._cleanups.pop(op_id, None)
        if handle is not None:
            handle.cancel()

    def _cleanup(self, op_id: str, expected: ClientOperation | None) -> None:
        self._cleanups.pop(op_id, None)
        # A newer operation on the same id must survive
        if expected is not None and self._operations.get(op_id) is expected:
            del self._operations[op_id]
            self._changed()
            logger.debug(f"Cleaned up operation {op_id}")

    def _changed(self) -> None:
        self._snapshot = _build_snapshot(self._operations)
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.debug(f"Operations listener failed: {e}")
