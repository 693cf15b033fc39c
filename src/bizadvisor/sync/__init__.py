"""Synchronization of the offline queue and server-side context updates."""

from bizadvisor.sync.backoff import backoff_delay, retry_delays
from bizadvisor.sync.coordinator import SyncCoordinator
from bizadvisor.sync.cursor import SyncCursorStore
from bizadvisor.sync.endpoint import HttpSyncEndpoint, SyncEndpoint
from bizadvisor.sync.mock_endpoint import MockSyncEndpoint
from bizadvisor.sync.models import (
    ServerUpdate,
    SyncErrorSummary,
    SyncState,
    SyncStatus,
    UploadResult,
)

__all__ = [
    "HttpSyncEndpoint",
    "MockSyncEndpoint",
    "ServerUpdate",
    "SyncCoordinator",
    "SyncCursorStore",
    "SyncEndpoint",
    "SyncErrorSummary",
    "SyncState",
    "SyncStatus",
    "UploadResult",
    "backoff_delay",
    "retry_delays",
]
