"""Protocol types for SyncOrchestrator dependencies.

Defines the interfaces that SyncOrchestrator requires from its collaborators,
so in-memory fakes can stand in for SQLite and HTTP in tests.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from ..models import QueueItem, SyncMetadata


@runtime_checkable
class LocalStoreProtocol(Protocol):
    """Interface for persisting the dataset and sync metadata."""

    def read(self) -> dict: ...

    def write(self, data: dict) -> None: ...

    def read_metadata(self) -> SyncMetadata: ...

    def write_metadata(self, metadata: SyncMetadata) -> None: ...


@runtime_checkable
class OfflineQueueProtocol(Protocol):
    """Interface for the durable queue of deferred operations."""

    def enqueue(self, operation: str, payload: dict) -> QueueItem: ...

    def list(self) -> list[QueueItem]: ...

    def remove(self, item_id: str) -> bool: ...

    def bump_retry(self, item_id: str) -> Optional[QueueItem]: ...

    def size(self) -> int: ...


@runtime_checkable
class RemoteClientProtocol(Protocol):
    """Interface for pushing to and pulling from the remote sheet."""

    @property
    def is_configured(self) -> bool: ...

    def push(self, data: dict) -> dict: ...

    def pull(self) -> dict: ...

    def save_data(self, payload: dict) -> dict: ...


@runtime_checkable
class MergeEngineProtocol(Protocol):
    """Interface for reconciling local and incoming snapshots."""

    def merge(self, local: dict, remote: Optional[dict]) -> dict: ...

    def merge_imported(self, existing: dict, imported: Optional[dict]) -> dict: ...


@runtime_checkable
class TriggerSource(Protocol):
    """Anything that emits trigger signals (network poller, process signal, timer).

    Signals are the ``TRIGGER_*`` names from the orchestrator module.
    """

    def start(self, emit: Callable[[str], None]) -> None: ...

    def stop(self) -> None: ...


# fn(message, level) where level is "info", "success", "warning" or "error"
Notifier = Callable[[str, str], None]
