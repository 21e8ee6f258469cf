"""Data model for the handover dataset, the offline queue and sync metadata."""

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

__all__ = [
    "GROUPS",
    "STAGES",
    "OperationType",
    "QueueItem",
    "SyncMetadata",
    "empty_dataset",
    "normalize_dataset",
    "count_units",
    "iter_units",
    "parse_timestamp",
]

logger = logging.getLogger(__name__)

# Towers tracked by the app. Fixed; never created or removed at runtime.
GROUPS = ("A", "B", "C")

# Stage keys as stored in a unit record, in lifecycle order.
STAGES = ("keyHandover", "snagging", "firstVisit", "handover", "interiors")


class OperationType(str, Enum):
    """Deferred remote operations stored in the offline queue."""

    PUSH_TO_REMOTE = "sync_to_sheets"
    SAVE_TO_SERVER = "save_data"


def empty_dataset() -> dict:
    """Return a complete dataset with every tower and no flats."""
    return {"towers": {group: {"flats": {}} for group in GROUPS}}


def normalize_dataset(data: Optional[dict]) -> dict:
    """Return a deep copy of ``data`` shaped as a complete dataset.

    Missing towers get an empty ``flats`` map, non-dict values are replaced and
    towers outside ``GROUPS`` are dropped.
    """
    result = empty_dataset()
    if not isinstance(data, dict):
        return result

    towers = data.get("towers")
    if not isinstance(towers, dict):
        return result

    for group in GROUPS:
        tower = towers.get(group)
        if not isinstance(tower, dict):
            continue
        flats = tower.get("flats")
        if isinstance(flats, dict):
            result["towers"][group]["flats"] = copy.deepcopy(flats)
    return result


def iter_units(data: dict):
    """Yield ``(group, unit_id, record)`` for every flat, tower by tower."""
    towers = data.get("towers", {})
    for group in GROUPS:
        flats = towers.get(group, {}).get("flats", {})
        for unit_id, record in flats.items():
            yield group, unit_id, record


def count_units(data: dict) -> int:
    return sum(1 for _ in iter_units(data))


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    if not value or not isinstance(value, str):
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Ignoring malformed timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class QueueItem:
    """A deferred remote operation in the offline queue."""

    id: str
    operation: str
    payload: dict
    enqueued_at: datetime
    retry_count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "QueueItem":
        """Create from the persisted representation.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        try:
            item_id = data["id"]
            operation = data["type"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"Queue item missing field: {e}") from e

        retries = data.get("retries", 0)
        if not isinstance(retries, int) or retries < 0:
            raise ValueError(f"Invalid retry count: {retries!r}")

        enqueued_at = parse_timestamp(data.get("timestamp"))
        if enqueued_at is None:
            raise ValueError("Queue item has no valid timestamp")

        return cls(
            id=str(item_id),
            operation=str(operation),
            payload=data.get("data") or {},
            enqueued_at=enqueued_at,
            retry_count=retries,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.operation,
            "data": self.payload,
            "timestamp": self.enqueued_at.isoformat(),
            "retries": self.retry_count,
        }


@dataclass
class SyncMetadata:
    """Timestamps of the last successful sync and import."""

    last_sync: Optional[datetime] = None
    last_import: Optional[datetime] = None
