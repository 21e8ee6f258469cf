"""Local key-value store for the dataset, offline queue and sync metadata."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from ..config import Config
from ..errors import StoreCorruptError
from ..models import SyncMetadata, empty_dataset, normalize_dataset, parse_timestamp

__all__ = [
    "LocalStore",
    "DATA_KEY",
    "QUEUE_KEY",
    "LAST_SYNC_KEY",
    "LAST_IMPORT_KEY",
    "ENDPOINT_KEY",
    "CONFIG_KEY",
]

logger = logging.getLogger(__name__)

DATA_KEY = "hot_process_data"
QUEUE_KEY = "sync_queue"
LAST_SYNC_KEY = "last_sync_time"
LAST_IMPORT_KEY = "last_import_time"
ENDPOINT_KEY = "google_script_url"
CONFIG_KEY = "sync_config"

_MISSING = object()


class LocalStore:
    """SQLite-backed key-value store.

    Every value is JSON-serialized under a fixed string key. Each write is a
    single transaction, so readers never see a partially written value.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Defaults to data dir.
        """
        if db_path is None:
            db_path = Config.get_data_dir() / "handover_sync.db"

        self.db_path = db_path
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor."""
        conn = self._get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # Raw key-value access

    def get_raw(self, key: str) -> Optional[str]:
        """Get the serialized value stored under ``key``, or None."""
        with self._cursor() as cursor:
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set_raw(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, now),
            )

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get a JSON value.

        Raises:
            ValueError: If the stored value is not valid JSON
        """
        raw = self.get_raw(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_value(self, key: str, value: Any) -> None:
        self.set_raw(key, json.dumps(value))

    def delete(self, key: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    # Dataset

    def read(self) -> dict:
        """Return the persisted dataset, or an empty dataset if none is stored.

        Raises:
            StoreCorruptError: If a stored dataset cannot be decoded
        """
        try:
            data = self.get_value(DATA_KEY, _MISSING)
        except ValueError as e:
            raise StoreCorruptError(f"Stored dataset is not valid JSON: {e}") from e

        if data is _MISSING:
            return empty_dataset()
        if not isinstance(data, dict):
            raise StoreCorruptError(
                f"Stored dataset has unexpected type {type(data).__name__}"
            )
        return normalize_dataset(data)

    def write(self, data: dict) -> None:
        """Persist a dataset, completing its shape first."""
        self.set_value(DATA_KEY, normalize_dataset(data))

    # Sync metadata

    def read_metadata(self) -> SyncMetadata:
        return SyncMetadata(
            last_sync=self._get_timestamp(LAST_SYNC_KEY),
            last_import=self._get_timestamp(LAST_IMPORT_KEY),
        )

    def write_metadata(self, metadata: SyncMetadata) -> None:
        self._set_timestamp(LAST_SYNC_KEY, metadata.last_sync)
        self._set_timestamp(LAST_IMPORT_KEY, metadata.last_import)

    def _get_timestamp(self, key: str) -> Optional[datetime]:
        try:
            value = self.get_value(key)
        except ValueError:
            logger.warning(f"Discarding malformed timestamp under {key}")
            return None
        return parse_timestamp(value)

    def _set_timestamp(self, key: str, value: Optional[datetime]) -> None:
        if value is None:
            self.delete(key)
        else:
            self.set_value(key, value.isoformat())

    # Endpoint and config

    def get_endpoint(self) -> str:
        try:
            endpoint = self.get_value(ENDPOINT_KEY, "")
        except ValueError:
            # Older installs stored the bare URL without JSON quoting
            endpoint = self.get_raw(ENDPOINT_KEY) or ""
        return endpoint if isinstance(endpoint, str) else ""

    def set_endpoint(self, url: str) -> None:
        self.set_value(ENDPOINT_KEY, url.strip())

    def read_config(self) -> dict:
        """Return the stored config overrides, or ``{}`` if absent or malformed."""
        try:
            config = self.get_value(CONFIG_KEY, {})
        except ValueError as e:
            logger.warning(f"Stored config is malformed ({e}), using defaults")
            return {}
        if not isinstance(config, dict):
            logger.warning("Stored config is not an object, using defaults")
            return {}
        return config

    def write_config(self, config: dict) -> None:
        self.set_value(CONFIG_KEY, config)

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
