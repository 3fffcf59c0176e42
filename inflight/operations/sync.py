# inflight/operations/sync.py
"""
Cross-surface synchronization events with per-frame coalescing.

Any surface that persisted new state publishes a "something changed" event;
subscribers receive at most one notification per frame carrying only the
most recent event. Event sources are attached while at least one listener
exists and detached when the last one leaves.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

logger = logging.getLogger(__name__)

FOCUS_DATA_CHANGED = "focus-data-changed"
THREAD_DATA_CHANGED = "thread-data-changed"

DEFAULT_FRAME_INTERVAL = 1 / 60


@dataclass(frozen=True)
class SyncEvent:
    type: Literal["focus-data-changed", "thread-data-changed"]
    thread_id: str | None = None

    @classmethod
    def focus_data_changed(cls) -> "SyncEvent":
        return cls(FOCUS_DATA_CHANGED)

    @classmethod
    def thread_data_changed(cls, thread_id: str | None = None) -> "SyncEvent":
        return cls(THREAD_DATA_CHANGED, thread_id)


SyncListener = Callable[[SyncEvent], None]
Emit = Callable[[SyncEvent], None]


class EventSource(Protocol):
    """Something that can feed events into the service while attached."""

    def attach(self, emit: Emit) -> Callable[[], None]:
        """Start forwarding events to `emit`; returns a detach function."""
        ...


class ChangeBus:
    """In-process event source: publish() fans out to attached emitters."""

    def __init__(self) -> None:
        self._emitters: list[Emit] = []

    @property
    def attached_count(self) -> int:
        return len(self._emitters)

    def attach(self, emit: Emit) -> Callable[[], None]:
        self._emitters.append(emit)

        def detach() -> None:
            if emit in self._emitters:
                self._emitters.remove(emit)

        return detach

    def publish(self, event: SyncEvent) -> None:
        for emit in list(self._emitters):
            emit(event)


class SynchronizationService:
    """
    Coalescing event fan-out.

    Events arriving within one frame collapse into a single delivery of the
    latest event; intermediate events are dropped, not queued.
    """

    def __init__(
        self,
        sources: list[EventSource] | None = None,
        frame_interval: float = DEFAULT_FRAME_INTERVAL,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._sources = list(sources or [])
        self._frame_interval = frame_interval
        self._loop = loop
        self._listeners: list[SyncListener] = []
        self._detachers: list[Callable[[], None]] = []
        self._pending_event: SyncEvent | None = None
        self._handle: asyncio.TimerHandle | None = None

    @property
    def is_listening(self) -> bool:
        return bool(self._detachers)

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        """
        Add a listener; the first listener attaches the event sources.

        Returns:
            Synchronous unsubscribe function; removing the last listener
            detaches the sources and cancels any pending delivery
        """
        self._listeners.append(listener)
        self._start()

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
            if not self._listeners:
                self._stop()

        return unsubscribe

    def _start(self) -> None:
        if self.is_listening:
            return
        self._detachers = [source.attach(self._enqueue) for source in self._sources]
        logger.debug(f"Synchronization attached to {len(self._detachers)} source(s)")

    def _stop(self) -> None:
        for detach in self._detachers:
            detach()
        self._detachers = []
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending_event = None
        logger.debug("Synchronization detached")

    def _enqueue(self, event: SyncEvent) -> None:
        if not self._listeners:
            return

        self._pending_event = event
        if self._handle is None:
            loop = self._loop or asyncio.get_running_loop()
            self._handle = loop.call_later(self._frame_interval, self._flush)

    def _flush(self) -> None:
        self._handle = None
        event = self._pending_event
        self._pending_event = None
        if event is None:
            return

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Synchronization listener failed: {e}")
