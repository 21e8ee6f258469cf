"""Client for the Google Apps Script web app in front of the handover sheet."""

import logging
from datetime import datetime, timezone
from typing import Optional

import requests

from .http_client import BaseApiClient

__all__ = ["SheetsClient"]

logger = logging.getLogger(__name__)


class SheetsClient(BaseApiClient):
    """Pushes the dataset to, and pulls it from, the spreadsheet endpoint.

    With no endpoint configured every call is a successful no-op and no
    network I/O happens.
    """

    def __init__(
        self,
        endpoint_url: str = "",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(timeout=timeout, session=session)
        self.endpoint_url = (endpoint_url or "").strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint_url)

    def set_endpoint(self, url: str) -> None:
        self.endpoint_url = (url or "").strip()

    def push(self, data: dict) -> dict:
        """Send the full dataset to the sheet.

        Returns:
            The endpoint's acknowledgement

        Raises:
            TransportError: If the request fails or the status is not 2xx
        """
        if not self.is_configured:
            logger.debug("No endpoint configured, skipping push")
            return {}

        ack = self._request("POST", self.endpoint_url, data=self._envelope("sync_data", data))
        logger.info(f"Pushed dataset to sheet: {ack}")
        return ack

    def pull(self) -> dict:
        """Fetch the sheet's view of the dataset.

        Returns:
            A body shaped like ``{"towers": {<group>: {"flats": {...}}}}``

        Raises:
            TransportError: If the request fails or the status is not 2xx
            ParseError: If the body is not JSON
        """
        if not self.is_configured:
            logger.debug("No endpoint configured, skipping pull")
            return {}

        return self._request(
            "GET",
            self.endpoint_url,
            params={"action": "get_data", "type": "all"},
        )

    def save_data(self, payload: dict) -> dict:
        """Send a partial record update deferred through the offline queue."""
        if not self.is_configured:
            logger.debug("No endpoint configured, skipping save")
            return {}

        return self._request("POST", self.endpoint_url, data=self._envelope("save_data", payload))

    @staticmethod
    def _envelope(action: str, data: dict) -> dict:
        return {
            "action": action,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
