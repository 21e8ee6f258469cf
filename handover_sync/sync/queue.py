"""Offline queue for remote operations deferred while the endpoint is unreachable."""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from ..config import MAX_QUEUE_SIZE
from ..models import OperationType, QueueItem
from .store import QUEUE_KEY, LocalStore

__all__ = ["OfflineQueue"]

logger = logging.getLogger(__name__)


class OfflineQueue:
    """Durable queue of deferred operations, persisted as a JSON list in the store.

    A missing or corrupt persisted queue reads as empty. Items come back in
    enqueue order.
    """

    def __init__(self, store: LocalStore, max_size: int = MAX_QUEUE_SIZE):
        """Initialize the offline queue.

        Args:
            store: Local store holding the queue blob
            max_size: Maximum number of items to keep
        """
        self.store = store
        self.max_size = max_size
        self._lock = threading.Lock()

    def _load(self) -> list[QueueItem]:
        try:
            raw = self.store.get_value(QUEUE_KEY, [])
        except ValueError as e:
            logger.warning(f"Offline queue is corrupt ({e}), treating as empty")
            return []

        if not isinstance(raw, list):
            logger.warning("Offline queue is not a list, treating as empty")
            return []

        items = []
        for entry in raw:
            try:
                items.append(QueueItem.from_dict(entry))
            except ValueError as e:
                logger.warning(f"Skipping malformed queue item: {e}")
        return items

    def _save(self, items: list[QueueItem]) -> None:
        self.store.set_value(QUEUE_KEY, [item.to_dict() for item in items])

    def enqueue(self, operation: str, payload: dict) -> QueueItem:
        """Add an operation to the queue.

        Args:
            operation: An ``OperationType`` value
            payload: Dataset snapshot or partial data for the operation

        Returns:
            The created QueueItem
        """
        item = QueueItem(
            id=uuid.uuid4().hex,
            operation=OperationType(operation).value,
            payload=payload,
            enqueued_at=datetime.now(timezone.utc),
        )

        with self._lock:
            items = self._load()
            items.append(item)
            # Make room by dropping the oldest items
            if len(items) > self.max_size:
                dropped = len(items) - self.max_size
                items = items[dropped:]
                logger.warning(f"Queue full, removed {dropped} oldest items")
            self._save(items)

        logger.info(f"Queued {item.operation} operation {item.id}")
        return item

    def list(self) -> list[QueueItem]:
        """Get all pending items, oldest first."""
        with self._lock:
            return self._load()

    def get(self, item_id: str) -> Optional[QueueItem]:
        for item in self.list():
            if item.id == item_id:
                return item
        return None

    def remove(self, item_id: str) -> bool:
        """Remove an item. Removing an unknown id is a no-op.

        Returns:
            True if an item was removed
        """
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                return False
            self._save(remaining)
            return True

    def bump_retry(self, item_id: str) -> Optional[QueueItem]:
        """Increment the retry count of an item.

        Returns:
            The updated item, or None if no item has that id
        """
        with self._lock:
            items = self._load()
            for item in items:
                if item.id == item_id:
                    item.retry_count += 1
                    self._save(items)
                    return item
        return None

    def remove_failed(self, max_retries: int) -> int:
        """Remove items that have reached max retries.

        Returns:
            Number of items removed
        """
        with self._lock:
            items = self._load()
            remaining = [item for item in items if item.retry_count < max_retries]
            count = len(items) - len(remaining)
            if count > 0:
                self._save(remaining)
                logger.warning(f"Removed {count} items that exceeded max retries")
            return count

    def size(self) -> int:
        return len(self.list())

    def is_empty(self) -> bool:
        return self.size() == 0

    def clear(self) -> int:
        """Clear all items from the queue."""
        with self._lock:
            count = len(self._load())
            self._save([])
            return count
