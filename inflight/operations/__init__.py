# inflight/operations/__init__.py
"""
Busy-state tracking.

Exports:
    - ActiveOperationIndex: Server-side TTL-bounded index of busy items
    - ClientOperationsManager: Client-side snapshot cache with optimistic updates
    - SynchronizationService / ChangeBus: Coalesced "something changed" events
"""

from inflight.operations.active_operations import (
    JOB_ITEM_TYPES,
    ActiveOperationEntry,
    ActiveOperationIndex,
    ItemType,
)
from inflight.operations.api_client import HttpOperationsApi, OperationsApi
from inflight.operations.manager import (
    ClientOperation,
    ClientOperationSnapshot,
    ClientOperationsManager,
    OperationStatus,
)
from inflight.operations.sync import ChangeBus, EventSource, SyncEvent, SynchronizationService

__all__ = [
    "JOB_ITEM_TYPES",
    "ActiveOperationEntry",
    "ActiveOperationIndex",
    "ItemType",
    "HttpOperationsApi",
    "OperationsApi",
    "ClientOperation",
    "ClientOperationSnapshot",
    "ClientOperationsManager",
    "OperationStatus",
    "ChangeBus",
    "EventSource",
    "SyncEvent",
    "SynchronizationService",
]
