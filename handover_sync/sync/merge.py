"""Reconciliation of the local dataset with remote and imported snapshots."""

import copy
import logging
from typing import Optional

from ..models import GROUPS, normalize_dataset

__all__ = ["MergeEngine"]

logger = logging.getLogger(__name__)


class MergeEngine:
    """Remote-wins, per-tower shallow overlay of flat maps.

    For every tower present in the incoming snapshot, its flats are laid over
    the local flats. A flat present on both sides takes the incoming record
    wholesale; flats present on one side only survive. Towers missing from
    the snapshot are left alone. Neither input is mutated.
    """

    def merge(self, local: dict, remote: Optional[dict]) -> dict:
        """Merge a pulled remote snapshot into the local dataset."""
        return self._overlay(local, remote)

    def merge_imported(self, existing: dict, imported: Optional[dict]) -> dict:
        """Merge a manually imported snapshot; the import always wins."""
        return self._overlay(existing, imported)

    @staticmethod
    def _overlay(base: dict, incoming: Optional[dict]) -> dict:
        merged = normalize_dataset(base)
        if not isinstance(incoming, dict):
            return merged

        towers = incoming.get("towers")
        if not isinstance(towers, dict):
            return merged

        for group, tower in towers.items():
            if group not in GROUPS:
                logger.debug(f"Ignoring unknown tower {group!r} in snapshot")
                continue
            if not isinstance(tower, dict):
                continue
            flats = tower.get("flats")
            if not isinstance(flats, dict):
                continue
            merged["towers"][group]["flats"].update(copy.deepcopy(flats))

        return merged
