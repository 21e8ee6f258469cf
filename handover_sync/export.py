"""Export of the handover dataset as JSON, CSV or an Excel workbook."""

import csv
import io
import json
import logging
from typing import Union

from openpyxl import Workbook
from openpyxl.styles import Font

from .errors import UnsupportedFormatError
from .models import STAGES, iter_units

__all__ = ["export_data", "to_json", "to_csv", "to_xlsx", "SUPPORTED_FORMATS"]

logger = logging.getLogger(__name__)

CSV_HEADER = ["Tower", "Flat", "Key_Handover", "Snagging", "First_Visit", "Handover", "Move_In"]

XLSX_HEADER = [
    "Tower",
    "Flat",
    "Key Handover",
    "Snagging",
    "First Visit",
    "Handover",
    "Move-in",
    "Last Updated",
]
XLSX_SHEET_TITLE = "HOT Process Data"

SUPPORTED_FORMATS = ("json", "csv", "excel", "xlsx")


def export_data(data: dict, fmt: str = "json") -> Union[str, bytes]:
    """Render the dataset in the requested format.

    Returns:
        ``str`` for json and csv, ``bytes`` for excel/xlsx

    Raises:
        UnsupportedFormatError: For any other format
    """
    fmt = (fmt or "").lower()
    if fmt == "json":
        return to_json(data)
    if fmt == "csv":
        return to_csv(data)
    if fmt in ("excel", "xlsx"):
        return to_xlsx(data)
    raise UnsupportedFormatError(fmt)


def to_json(data: dict) -> str:
    return json.dumps(data, indent=2)


def _flat_number(unit_id: str) -> str:
    """``"A-101"`` -> ``"101"``; ids without a dash are returned unchanged."""
    _, sep, number = unit_id.partition("-")
    return number if sep else unit_id


def _stage_done(record: dict, stage: str) -> bool:
    """Whether a unit has reached a stage.

    Move-in is tracked under ``interiors.moveInClearance``. Other stages count
    as reached when present, unless they carry an explicit ``completed`` flag.
    """
    value = record.get(stage)
    if stage == "interiors":
        return bool(isinstance(value, dict) and value.get("moveInClearance"))
    if isinstance(value, dict) and "completed" in value:
        return bool(value["completed"])
    return bool(value)


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def to_csv(data: dict) -> str:
    """One row per flat with Yes/No flags for each stage."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for group, unit_id, record in iter_units(data):
        record = record if isinstance(record, dict) else {}
        flags = [_yes_no(_stage_done(record, stage)) for stage in STAGES]
        writer.writerow([group, _flat_number(unit_id)] + flags)
    return buffer.getvalue()


def _field(record: dict, stage: str, name: str):
    """A stage sub-field as a cell value; nested structures become JSON text."""
    value = record.get(stage)
    if not isinstance(value, dict):
        return ""
    field = value.get(name)
    if field is None or field == "":
        return ""
    if isinstance(field, (dict, list)):
        return json.dumps(field)
    if isinstance(field, (str, int, float, bool)):
        return field
    return str(field)


def to_xlsx(data: dict) -> bytes:
    """Workbook with the date each stage was reached and a last-updated column."""
    wb = Workbook()
    ws = wb.active
    ws.title = XLSX_SHEET_TITLE

    ws.append(XLSX_HEADER)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A2"

    rows = 0
    for group, unit_id, record in iter_units(data):
        record = record if isinstance(record, dict) else {}
        ws.append(
            [
                group,
                _flat_number(unit_id),
                _field(record, "keyHandover", "date"),
                _field(record, "snagging", "endDate"),
                _field(record, "firstVisit", "visitDate"),
                _field(record, "handover", "date"),
                _field(record, "interiors", "moveInDate"),
                _field(record, "keyHandover", "timestamp"),
            ]
        )
        rows += 1

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.debug(f"Exported {rows} flats to workbook")
    return buffer.getvalue()
