"""Import of handover records from a published Google Sheet.

The sheet is read through the Google Visualization (gviz) JSON endpoint,
which wraps its JSON body in a JavaScript callback::

    /*O_o*/
    google.visualization.Query.setResponse({"version":"0.6",...});

Columns are read positionally: tower, flat number, key handover date and the
person who handed the keys over.
"""

import json
import logging
import re
from datetime import datetime

from .errors import ParseError
from .sync.http_client import BaseApiClient
from .models import GROUPS, empty_dataset

__all__ = [
    "SheetImporter",
    "extract_sheet_id",
    "parse_gviz_response",
    "rows_to_dataset",
    "GVIZ_URL",
    "GVIZ_VERSION",
]

logger = logging.getLogger(__name__)

GVIZ_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq"

# Response format version this parser understands
GVIZ_VERSION = "0.6"

_SHEET_ID_PATTERNS = [
    re.compile(r"/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"id=([a-zA-Z0-9_-]+)"),
    re.compile(r"key=([a-zA-Z0-9_-]+)"),
]

_GVIZ_WRAPPER = re.compile(
    r"\A(?:/\*O_o\*/\s*)?google\.visualization\.Query\.setResponse\((?P<body>.*)\);?\s*\Z",
    re.DOTALL,
)

_GVIZ_DATE = re.compile(r"\ADate\((\d+),(\d+),(\d+)(?:,(\d+),(\d+),(\d+))?\)\Z")


def extract_sheet_id(url: str) -> str:
    """Pull the spreadsheet id out of a sharing or export URL.

    Raises:
        ParseError: If no id can be found
    """
    for pattern in _SHEET_ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    raise ParseError("Invalid Google Sheets URL")


def parse_gviz_response(text: str) -> dict:
    """Unwrap and decode a gviz JSON response.

    Raises:
        ParseError: On an unexpected prefix, invalid JSON, a different
            response version or an error status
    """
    match = _GVIZ_WRAPPER.match(text.strip())
    if not match:
        raise ParseError("Unexpected gviz response prefix")

    try:
        payload = json.loads(match.group("body"))
    except ValueError as e:
        raise ParseError(f"gviz response is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError("gviz response is not an object")

    version = payload.get("version")
    if version is not None and version != GVIZ_VERSION:
        raise ParseError(f"Unsupported gviz response version {version!r}")

    if payload.get("status") == "error":
        messages = [
            e.get("detailed_message") or e.get("message") or e.get("reason", "")
            for e in payload.get("errors", [])
            if isinstance(e, dict)
        ]
        raise ParseError(f"Sheet query failed: {'; '.join(messages) or 'unknown error'}")

    table = payload.get("table")
    if not isinstance(table, dict) or not isinstance(table.get("rows"), list):
        raise ParseError("gviz response has no table rows")
    return payload


def _cell_value(cells: list, index: int):
    if index >= len(cells):
        return None
    cell = cells[index]
    if not isinstance(cell, dict):
        return None
    return cell.get("v")


def _as_text(value) -> str:
    if value is None:
        return ""
    # Numeric cells come back as floats: 101 -> 101.0
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _as_date(value) -> str:
    """Convert gviz ``Date(y,m,d)`` literals (0-based month) to ISO strings."""
    text = _as_text(value)
    match = _GVIZ_DATE.match(text)
    if not match:
        return text
    parts = [int(p) if p is not None else 0 for p in match.groups()]
    year, month, day, hour, minute, second = parts
    try:
        parsed = datetime(year, month + 1, day, hour, minute, second)
    except ValueError:
        return text
    if match.group(4) is None:
        return parsed.date().isoformat()
    return parsed.isoformat()


def rows_to_dataset(payload: dict) -> dict:
    """Build a dataset from gviz rows.

    Rows without a tower or flat, or naming an unknown tower, are skipped.
    """
    data = empty_dataset()
    skipped = 0
    for row in payload["table"]["rows"]:
        cells = row.get("c") if isinstance(row, dict) else None
        if not isinstance(cells, list):
            skipped += 1
            continue

        tower = _as_text(_cell_value(cells, 0))
        flat = _as_text(_cell_value(cells, 1))
        if not tower or not flat or tower not in GROUPS:
            skipped += 1
            continue

        flat_id = f"{tower}-{flat}"
        data["towers"][tower]["flats"][flat_id] = {
            "keyHandover": {
                "date": _as_date(_cell_value(cells, 2)),
                "person": _as_text(_cell_value(cells, 3)),
                "status": "completed",
            }
        }

    if skipped:
        logger.info(f"Skipped {skipped} sheet rows without a known tower and flat")
    return data


class SheetImporter(BaseApiClient):
    """Fetches a published sheet and converts it to a dataset."""

    def fetch(self, sheet_url: str) -> dict:
        """Fetch a sheet by its URL.

        Raises:
            ParseError: If the URL or the response cannot be parsed
            TransportError: If the sheet cannot be fetched
        """
        sheet_id = extract_sheet_id(sheet_url)
        text = self._get_text(GVIZ_URL.format(sheet_id=sheet_id), params={"tqx": "out:json"})
        data = rows_to_dataset(parse_gviz_response(text))
        logger.info(f"Fetched sheet {sheet_id}")
        return data
