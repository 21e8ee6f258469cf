"""Tests for offline queue."""

import tempfile
from pathlib import Path

import pytest

from handover_sync.models import OperationType
from handover_sync.sync.queue import OfflineQueue
from handover_sync.sync.store import QUEUE_KEY, LocalStore

PUSH = OperationType.PUSH_TO_REMOTE.value
SAVE = OperationType.SAVE_TO_SERVER.value


class TestOfflineQueue:
    """Tests for OfflineQueue."""

    def setup_method(self):
        """Set up test fixtures."""
        # Use temp file for each test
        self.temp_dir = tempfile.mkdtemp()
        self.store = LocalStore(db_path=Path(self.temp_dir) / "test_queue.db")
        self.queue = OfflineQueue(self.store, max_size=100)

    def teardown_method(self):
        """Clean up."""
        self.store.close()

    def test_enqueue_returns_item(self):
        """Test enqueueing creates an item with a fresh id and no retries."""
        item = self.queue.enqueue(PUSH, {"towers": {}})

        assert item.id
        assert item.operation == PUSH
        assert item.payload == {"towers": {}}
        assert item.retry_count == 0
        assert item.enqueued_at.tzinfo is not None
        assert self.queue.size() == 1

    def test_enqueue_accepts_enum(self):
        """Test the operation may be passed as an OperationType."""
        item = self.queue.enqueue(OperationType.SAVE_TO_SERVER, {"flat": "A-101"})

        assert item.operation == SAVE

    def test_enqueue_rejects_unknown_operation(self):
        """Test only known operation types can be queued."""
        with pytest.raises(ValueError):
            self.queue.enqueue("delete_everything", {})

    def test_ids_are_unique(self):
        """Test no two items share an id."""
        ids = {self.queue.enqueue(PUSH, {}).id for _ in range(20)}

        assert len(ids) == 20

    def test_list_returns_enqueue_order(self):
        """Test that list returns items in FIFO order."""
        first = self.queue.enqueue(SAVE, {"order": 1})
        second = self.queue.enqueue(SAVE, {"order": 2})

        items = self.queue.list()

        assert [i.id for i in items] == [first.id, second.id]
        assert items[0].payload == {"order": 1}

    def test_items_survive_reopen(self):
        """Test the queue is durable across store instances."""
        item = self.queue.enqueue(PUSH, {"towers": {}})
        self.store.close()

        reopened = OfflineQueue(LocalStore(db_path=self.store.db_path))

        assert [i.id for i in reopened.list()] == [item.id]

    def test_remove(self):
        """Test removing an item by id."""
        item = self.queue.enqueue(PUSH, {})

        assert self.queue.remove(item.id) is True
        assert self.queue.is_empty()

    def test_remove_is_idempotent(self):
        """Test removing an unknown id is a no-op."""
        self.queue.enqueue(PUSH, {})

        assert self.queue.remove("no-such-id") is False
        assert self.queue.size() == 1

    def test_bump_retry(self):
        """Test incrementing retry count."""
        item = self.queue.enqueue(PUSH, {})

        updated = self.queue.bump_retry(item.id)
        updated = self.queue.bump_retry(item.id)

        assert updated.retry_count == 2
        assert self.queue.get(item.id).retry_count == 2

    def test_bump_retry_unknown_id(self):
        """Test bumping an unknown id returns None."""
        assert self.queue.bump_retry("missing") is None

    def test_remove_failed(self):
        """Test removing items that reached max retries."""
        failing = self.queue.enqueue(PUSH, {})
        healthy = self.queue.enqueue(SAVE, {})
        for _ in range(3):
            self.queue.bump_retry(failing.id)

        removed = self.queue.remove_failed(max_retries=3)

        assert removed == 1
        assert [i.id for i in self.queue.list()] == [healthy.id]

    def test_max_size_enforcement(self):
        """Test that queue keeps only the newest items when full."""
        queue = OfflineQueue(self.store, max_size=3)
        items = [queue.enqueue(SAVE, {"i": i}) for i in range(5)]

        assert queue.size() == 3
        assert [i.id for i in queue.list()] == [i.id for i in items[2:]]

    def test_clear(self):
        """Test clearing the queue."""
        self.queue.enqueue(PUSH, {})
        self.queue.enqueue(PUSH, {})

        assert self.queue.clear() == 2
        assert self.queue.is_empty()

    def test_corrupt_blob_reads_as_empty(self):
        """Test a corrupt persisted queue is treated as empty."""
        self.store.set_raw(QUEUE_KEY, "[{oops")

        assert self.queue.list() == []

    def test_non_list_blob_reads_as_empty(self):
        """Test a persisted queue that is not a list is treated as empty."""
        self.store.set_value(QUEUE_KEY, {"id": 1})

        assert self.queue.list() == []

    def test_enqueue_after_corruption_recovers(self):
        """Test enqueueing over a corrupt queue replaces it with a valid one."""
        self.store.set_raw(QUEUE_KEY, "garbage")

        item = self.queue.enqueue(PUSH, {})

        assert [i.id for i in self.queue.list()] == [item.id]

    def test_malformed_entries_are_skipped(self):
        """Test entries missing required fields are dropped, others kept."""
        self.store.set_value(
            QUEUE_KEY,
            [
                {"type": PUSH, "timestamp": "2026-03-01T10:00:00Z"},
                {"id": "ok", "type": SAVE, "data": {}, "timestamp": "2026-03-01T10:00:00Z", "retries": 1},
                {"id": "bad-retries", "type": SAVE, "timestamp": "2026-03-01T10:00:00Z", "retries": -1},
            ],
        )

        items = self.queue.list()

        assert [i.id for i in items] == ["ok"]
        assert items[0].retry_count == 1

    def test_reads_items_written_by_browser_app(self):
        """Test numeric ids and Z timestamps from the browser queue are accepted."""
        self.store.set_value(
            QUEUE_KEY,
            [{"id": 1709287200000.123, "type": PUSH, "data": {}, "timestamp": "2026-03-01T10:00:00.000Z", "retries": 0}],
        )

        items = self.queue.list()

        assert len(items) == 1
        assert self.queue.remove(items[0].id) is True
