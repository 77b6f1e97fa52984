"""
Audit export as CSV or XLSX.
"""
import csv
import io
from datetime import date
from typing import Any, Dict, Optional

from openpyxl import Workbook
from openpyxl.styles import Font

from app.core.errors import ValidationFailed
from app.utils import today


EXPORT_COLUMNS = [
    ("type", "Type"),
    ("timestamp", "Timestamp"),
    ("user", "User"),
    ("action", "Action"),
    ("target", "Target"),
    ("status", "Status"),
    ("details", "Details"),
    ("ip_address", "IP Address"),
    ("user_agent", "User Agent"),
]

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def export_filename(fmt: str, on: Optional[date] = None) -> str:
    return f"audit-export-{(on or today()).isoformat()}.{fmt}"


def _cell(entry: Dict[str, Any], key: str) -> Any:
    value = entry.get(key)
    if key == "timestamp" and value is not None:
        return value.isoformat(sep=" ", timespec="seconds")
    return value if value is not None else ""


def to_csv(entries: list[Dict[str, Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([title for _, title in EXPORT_COLUMNS])
    for entry in entries:
        writer.writerow([_cell(entry, key) for key, _ in EXPORT_COLUMNS])
    return buffer.getvalue().encode("utf-8")


def to_xlsx(entries: list[Dict[str, Any]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Audit"
    sheet.append([title for _, title in EXPORT_COLUMNS])
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for entry in entries:
        sheet.append([_cell(entry, key) for key, _ in EXPORT_COLUMNS])
    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render(entries: list[Dict[str, Any]], fmt: str) -> tuple[bytes, str, str]:
    """Return (content, media type, attachment filename)."""
    fmt = (fmt or "csv").lower()
    if fmt == "csv":
        content = to_csv(entries)
    elif fmt == "xlsx":
        content = to_xlsx(entries)
    else:
        raise ValidationFailed("Unsupported export format, use csv or xlsx", field="format")
    return content, MEDIA_TYPES[fmt], export_filename(fmt)
