"""Sync module - keeps the local handover dataset in step with the sheet."""

from .store import LocalStore
from .queue import OfflineQueue
from .merge import MergeEngine
from .sheets_client import SheetsClient
from .retry import RetryConfig, QueueBackoff, calculate_delay
from .orchestrator import SyncOrchestrator, SyncReport, SyncState
from .protocols import (
    LocalStoreProtocol,
    MergeEngineProtocol,
    OfflineQueueProtocol,
    RemoteClientProtocol,
    TriggerSource,
)

__all__ = [
    "LocalStore",
    "OfflineQueue",
    "MergeEngine",
    "SheetsClient",
    "RetryConfig",
    "QueueBackoff",
    "calculate_delay",
    "SyncOrchestrator",
    "SyncReport",
    "SyncState",
    "LocalStoreProtocol",
    "MergeEngineProtocol",
    "OfflineQueueProtocol",
    "RemoteClientProtocol",
    "TriggerSource",
]
