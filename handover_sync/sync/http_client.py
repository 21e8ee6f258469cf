"""Base HTTP client for the spreadsheet web app and import source."""

import logging
from typing import Optional

import requests

from ..errors import ParseError, TransportError

__all__ = ["BaseApiClient"]

logger = logging.getLogger(__name__)


class BaseApiClient:
    """Base HTTP client.

    Handles:
    - Session management
    - Timeouts
    - Error classification into TransportError / ParseError

    Requests are attempted once. Deciding whether to retry belongs to the
    caller (the sync orchestrator queues failed pushes).
    """

    USER_AGENT = "Handover-Sync/1.0.0"

    def __init__(
        self,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """Initialize base API client.

        Args:
            timeout: Request timeout in seconds
            session: Optional requests session (for dependency injection/testing)
        """
        self.timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None  # Track if we created the session

    def _get_headers(self) -> dict:
        return {
            "Accept": "application/json",
            "User-Agent": self.USER_AGENT,
        }

    def _send(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> requests.Response:
        """Send a request and return the successful response.

        Raises:
            TransportError: On connection failure, timeout or non-2xx status
        """
        kwargs: dict = {"timeout": self.timeout, "headers": self._get_headers()}
        if params:
            kwargs["params"] = params
        if data is not None:
            kwargs["json"] = data

        try:
            response = self._session.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.ConnectionError as e:
            raise TransportError("Cannot connect to remote endpoint") from e
        except requests.exceptions.Timeout as e:
            raise TransportError("Request timed out") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code
            raise TransportError(f"HTTP {status}", status_code=status) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
    ) -> dict:
        """Make a request and decode the JSON body.

        Returns:
            Response data as dict (empty dict for an empty body)

        Raises:
            TransportError: For transport failures
            ParseError: If the body is not JSON
        """
        response = self._send(method, url, params=params, data=data)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Response from {url} is not valid JSON") from e

    def _get_text(self, url: str, params: Optional[dict] = None) -> str:
        return self._send("GET", url, params=params).text

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "BaseApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
