# inflight/background/executor.py
"""
Background job executor.

Each submitted job runs as its own asyncio task that drives the upstream
completion call, writes partial output to the active-stream store, and
finishes with exactly one terminal write to the job store. A job's failure
is recorded in its own record and never escapes the task.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from inflight.config.schema import JobsConfig, StreamsConfig
from inflight.errors import JobConflictError
from inflight.llm.prompts import DefaultPromptBuilder, JsonResponseParser
from inflight.llm.types import CompletionClient, PromptBuilder, ResponseParser
from inflight.models.inputs import ChatMessageInput, JobInput, parse_job_type, validate_job_input
from inflight.models.jobs import JobRecord, JobType
from inflight.models.store import JobStore
from inflight.operations.active_operations import (
    JOB_ITEM_TYPES,
    ActiveOperationEntry,
    ActiveOperationIndex,
    ItemType,
)
from inflight.streams.active_stream import ActiveStreamEntry, ActiveStreamStore, StreamStatus
from inflight.validation.sanitize import sanitize_item_id

logger = logging.getLogger(__name__)

FinishedCallback = Callable[[JobRecord], Awaitable[None] | None]

SHUTDOWN_ERROR = "Server shutdown during processing"


class JobExecutor:
    """
    Fire-and-forget job runner.

    Features:
        - submit() returns as soon as the job is registered as running
        - Per-job timeout (jobs.timeout_seconds)
        - Throttled partial-output writes for streaming jobs
        - Best-effort stream/index writes (failures are logged, never fatal)
        - Running tasks are cancelled on shutdown and marked failed
    """

    def __init__(
        self,
        job_store: JobStore,
        stream_store: ActiveStreamStore,
        operations: ActiveOperationIndex,
        client: CompletionClient,
        prompt_builder: PromptBuilder | None = None,
        response_parser: ResponseParser | None = None,
        jobs_config: JobsConfig | None = None,
        streams_config: StreamsConfig | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            job_store: Authoritative job records
            stream_store: Partial output for streaming jobs
            operations: Busy index for jobs tied to a domain entity
            client: Upstream completion client
            prompt_builder: Builds messages from job input (default builder if None)
            response_parser: Parses regeneration output (JSON parser if None)
            jobs_config: Timeout and retention settings
            streams_config: Flush interval for partial output
        """
        self._job_store = job_store
        self._stream_store = stream_store
        self._operations = operations
        self._client = client
        self._prompt_builder = prompt_builder or DefaultPromptBuilder()
        self._response_parser = response_parser or JsonResponseParser()
        self._jobs_config = jobs_config or JobsConfig()
        self._streams_config = streams_config or StreamsConfig()
        self._tasks: dict[str, asyncio.Task] = {}
        self._finished_callbacks: list[FinishedCallback] = []

        logger.info(
            f"Initialized JobExecutor (timeout={self._jobs_config.timeout_seconds}s, "
            f"flush_interval={self._streams_config.flush_interval}s)"
        )

    @property
    def running_job_ids(self) -> list[str]:
        """Ids of jobs whose task is still running in this process."""
        return list(self._tasks)

    def on_finished(self, callback: FinishedCallback) -> None:
        """Register a callback receiving each job's terminal record."""
        self._finished_callbacks.append(callback)

    async def submit(
        self,
        job_type: JobType | str,
        input: dict[str, Any] | None,
        target_id: str | None = None,
        item_type: ItemType | None = None,
        reject_if_busy: bool = False,
    ) -> JobRecord:
        """
        Validate, register and start a job.

        Args:
            job_type: Job type (enum or tag)
            input: Raw input payload
            target_id: Domain entity the job mutates (chat jobs default to
                their thread id)
            item_type: Override for the busy-index item type
            reject_if_busy: Raise instead of superseding a live operation on
                the same item

        Returns:
            The job record, already in running state

        Raises:
            JobInputError: If the job type or input is invalid (no job is created)
            JobConflictError: If reject_if_busy and the item is busy
        """
        job_type = parse_job_type(job_type)
        job_input = validate_job_input(job_type, input)

        if target_id is None and isinstance(job_input, ChatMessageInput):
            # The thread id becomes the busy-index key
            target_id = sanitize_item_id(job_input.thread_id)
        item_type = item_type or JOB_ITEM_TYPES[job_type]

        if reject_if_busy and target_id is not None:
            if await self._operations.is_busy(item_type, target_id):
                raise JobConflictError(
                    f"{item_type.value} {target_id} already has an operation in progress"
                )

        record = await self._job_store.create(
            job_type,
            input=job_input.model_dump(by_alias=True),
            target_id=target_id,
            retention=(self._jobs_config.retention_seconds, self._jobs_config.max_jobs),
        )
        job_id = record.job_id

        if target_id is not None:
            await self._best_effort(
                job_id,
                "register active operation",
                self._operations.add_entry(
                    ActiveOperationEntry(item_type=item_type, item_id=target_id, job_id=job_id)
                ),
            )

        await self._job_store.set_running(job_id)
        record = await self._job_store.get(job_id)

        task = asyncio.create_task(self._run(job_id, job_type, job_input))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))

        logger.info(f"[Job {job_id}] Started {job_type.value} (target={target_id})")
        return record

    async def _run(self, job_id: str, job_type: JobType, job_input: JobInput) -> None:
        """
        Run one job to a terminal state.

        Handles CancelledError (shutdown) by marking the job failed and
        re-raising; every other exception becomes the job's error.
        """
        timeout = self._jobs_config.timeout_seconds
        try:
            if job_type is JobType.CHAT_MESSAGE:
                work = self._run_chat(job_id, job_input)
            else:
                work = self._run_regeneration(job_id, job_type, job_input)
            result = await asyncio.wait_for(work, timeout=timeout)

        except asyncio.CancelledError:
            logger.warning(f"[Job {job_id}] Interrupted by shutdown")
            await self._finish_failed(job_id, SHUTDOWN_ERROR)
            raise

        except asyncio.TimeoutError:
            error_msg = f"Upstream call timed out after {timeout:g}s"
            logger.error(f"[Job {job_id}] {error_msg}")
            await self._finish_failed(job_id, error_msg)

        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.error(f"[Job {job_id}] Failed: {error_msg}")
            await self._finish_failed(job_id, error_msg)

        else:
            await self._finish_completed(job_id, result)

    async def _run_regeneration(
        self, job_id: str, job_type: JobType, job_input: JobInput
    ) -> Any:
        messages = self._prompt_builder.build(job_type, job_input)
        logger.info(f"[Job {job_id}] Sending prompt ({len(messages)} messages)")
        response = await self._client.complete(messages)
        logger.info(f"[Job {job_id}] Upstream complete: {response.duration_ms}ms")
        return self._response_parser.parse(job_type, response.content)

    async def _run_chat(self, job_id: str, job_input: ChatMessageInput) -> dict[str, Any]:
        """
        Stream a chat reply, flushing the accumulated content to the
        active-stream store at most every flush_interval seconds (and once
        at the end).
        """
        loop = asyncio.get_running_loop()
        flush_interval = self._streams_config.flush_interval
        thread_id = job_input.thread_id
        messages = self._prompt_builder.build(JobType.CHAT_MESSAGE, job_input)

        content = ""
        model = None
        duration_ms = None
        last_flush: float | None = None

        async for chunk in self._client.stream(messages):
            content += chunk.content
            if chunk.done:
                model = chunk.model
                duration_ms = chunk.duration_ms
                break
            if chunk.content and (last_flush is None or loop.time() - last_flush >= flush_interval):
                await self._write_stream(job_id, thread_id, content)
                last_flush = loop.time()

        await self._write_stream(job_id, thread_id, content)
        logger.info(f"[Job {job_id}] Chat response completed: {len(content)} chars")
        return {
            "threadId": thread_id,
            "content": content,
            "model": model or self._client.model,
            "durationMs": duration_ms,
        }

    async def _write_stream(self, job_id: str, thread_id: str | None, content: str) -> None:
        await self._best_effort(
            job_id,
            "write partial output",
            self._stream_store.set(
                ActiveStreamEntry(job_id=job_id, content=content, thread_id=thread_id)
            ),
        )

    async def _finish_completed(self, job_id: str, result: Any) -> None:
        try:
            await self._job_store.set_completed(job_id, result)
        except Exception as e:
            logger.error(f"[Job {job_id}] Could not record completion: {e}")
        await self._cleanup(job_id, StreamStatus.COMPLETE)
        logger.info(f"[Job {job_id}] Completed successfully")

    async def _finish_failed(self, job_id: str, error: str) -> None:
        try:
            await self._job_store.set_failed(job_id, error)
        except Exception as e:
            logger.error(f"[Job {job_id}] Could not record failure: {e}")
        await self._cleanup(job_id, StreamStatus.ERROR)

    async def _cleanup(self, job_id: str, stream_status: StreamStatus) -> None:
        await self._best_effort(
            job_id, "remove active operation", self._operations.remove_by_job_id(job_id)
        )
        await self._best_effort(
            job_id, "mark stream entry", self._stream_store.mark(job_id, stream_status)
        )
        await self._notify_finished(job_id)

    async def _notify_finished(self, job_id: str) -> None:
        if not self._finished_callbacks:
            return
        try:
            record = await self._job_store.get(job_id)
        except Exception as e:
            logger.warning(f"[Job {job_id}] Could not load terminal record: {e}")
            return
        if record is None:
            return
        for callback in list(self._finished_callbacks):
            try:
                outcome = callback(record)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"[Job {job_id}] Finished callback failed: {e}")

    async def _best_effort(self, job_id: str, what: str, operation: Awaitable[Any]) -> Any:
        """Await a bookkeeping write; log and swallow its failure."""
        try:
            return await operation
        except Exception as e:
            logger.warning(f"[Job {job_id}] Failed to {what}: {e}")
            return None

    async def wait(self, job_id: str, timeout: float | None = None) -> JobRecord | None:
        """
        Wait for a job's task in this process, then return its record.

        Returns immediately if the job is not running here.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return await self._job_store.get(job_id)

    async def drain(self) -> None:
        """Wait for every running job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Cancel running jobs and wait for them to record their failure.

        Each cancelled job is marked failed with "Server shutdown during processing".
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info(f"Cancelling {len(tasks)} running job(s)...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job executor stopped")
