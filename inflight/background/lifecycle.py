# inflight/background/lifecycle.py
"""
Server lifecycle management.

Builds the shared service objects once per process (stores, index,
executor, change bus) and coordinates startup (schema + crash recovery)
and shutdown.
"""

import asyncio
import logging

from inflight.background.executor import JobExecutor
from inflight.config.schema import InflightConfig
from inflight.llm.client import OllamaClient
from inflight.llm.types import CompletionClient
from inflight.models.jobs import JobRecord, JobType
from inflight.models.sqlite_store import SQLiteJobStore
from inflight.operations.active_operations import ActiveOperationIndex
from inflight.operations.sync import ChangeBus, SyncEvent
from inflight.streams.active_stream import ActiveStreamStore

logger = logging.getLogger(__name__)


def sync_event_for(record: JobRecord) -> SyncEvent:
    """Change event other surfaces should see when a job finishes."""
    if record.job_type is JobType.CHAT_MESSAGE:
        return SyncEvent.thread_data_changed(record.target_id)
    return SyncEvent.focus_data_changed()


class ServerLifecycle:
    """
    Server lifecycle coordinator.

    Manages:
        - Database initialization and crash recovery on startup
        - Construction of the shared stores and job executor
        - Publishing a change event whenever a job finishes
        - Graceful shutdown
    """

    def __init__(
        self,
        db_path: str,
        config: InflightConfig | None = None,
        client: CompletionClient | None = None,
    ) -> None:
        """
        Initialize server lifecycle manager.

        Args:
            db_path: Path to SQLite database file
            config: Optional InflightConfig (defaults if None)
            client: Optional completion client (OllamaClient from config if None)
        """
        self._config = config or InflightConfig()
        self._job_store = SQLiteJobStore(db_path)
        self._stream_store = ActiveStreamStore(
            db_path, ttl_seconds=self._config.streams.ttl_seconds
        )
        self._operations = ActiveOperationIndex(
            db_path, ttl_seconds=self._config.operations.ttl_seconds
        )
        self._client = client or OllamaClient(
            base_url=self._config.ollama.base_url,
            model=self._config.ollama.model,
            timeout=self._config.ollama.timeout,
        )
        self._executor = JobExecutor(
            self._job_store,
            self._stream_store,
            self._operations,
            self._client,
            jobs_config=self._config.jobs,
            streams_config=self._config.streams,
        )
        self._bus = ChangeBus()
        self._executor.on_finished(self._publish_finished)
        self._shutdown_task: asyncio.Task | None = None
        logger.info(f"Created ServerLifecycle with db_path={db_path}")

    @property
    def config(self) -> InflightConfig:
        return self._config

    @property
    def job_store(self) -> SQLiteJobStore:
        return self._job_store

    @property
    def stream_store(self) -> ActiveStreamStore:
        return self._stream_store

    @property
    def operations(self) -> ActiveOperationIndex:
        return self._operations

    @property
    def executor(self) -> JobExecutor:
        return self._executor

    @property
    def bus(self) -> ChangeBus:
        """In-process change events (job finished -> focus/thread data changed)."""
        return self._bus

    def _publish_finished(self, record: JobRecord) -> None:
        self._bus.publish(sync_event_for(record))

    async def startup(self) -> None:
        """
        Start the server lifecycle.

        Steps:
            1. Initialize database schema
            2. Crash recovery: queued/running jobs past max_running_seconds -> failed
            3. Sweep orphaned and expired stream entries
            4. Check upstream health (warning only)
        """
        logger.info("Starting server lifecycle...")

        max_running = self._config.jobs.max_running_seconds
        await self._job_store.initialize(max_running_seconds=max_running)
        await self._stream_store.prune(max_streaming_seconds=max_running)

        health_check = getattr(self._client, "health_check", None)
        if health_check is not None and not await health_check():
            logger.warning("Upstream completion service unreachable; jobs will fail until it is up")

        logger.info("Server lifecycle started")

    async def shutdown(self) -> None:
        """
        Shut down the server lifecycle gracefully.

        Steps:
            1. Cancel running jobs (marked failed "Server shutdown during processing")
            2. Cancel stream cleanup timers
            3. Close database (WAL checkpoint)

        Runs once; later or concurrent calls wait for the same shutdown.
        """
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self) -> None:
        logger.info("Shutting down server lifecycle...")
        await self._executor.shutdown()
        await self._stream_store.close()
        await self._job_store.close()
        logger.info("Server lifecycle shutdown complete")
