from __future__ import annotations

import io
import os
from typing import Any, Dict, Iterable, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from ..logging import get_logger
from .constants import SheetSpec


LOG = get_logger("inventory-export")

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _fill_sheet(ws: Worksheet, sheet: SheetSpec, rows: Iterable[Dict[str, Any]]) -> int:
    ws.append([label for _, label in sheet.columns])
    count = 0
    for row in rows:
        ws.append([row.get(column) for column, _ in sheet.columns])
        count += 1
    return count


def build_workbook(
    sheet: SheetSpec,
    rows: Iterable[Dict[str, Any]],
    *,
    existing_path: Optional[str] = None,
) -> Workbook:
    """Write rows into a sheet named after `sheet.title`.

    With existing_path the workbook is loaded, any sheet of the same name is
    replaced and the fresh sheet is moved to the front; other sheets stay.
    """
    if existing_path:
        wb = load_workbook(existing_path)
        if sheet.title in wb.sheetnames:
            wb.remove(wb[sheet.title])
        ws = wb.create_sheet(sheet.title, 0)
        wb.active = 0
    else:
        wb = Workbook()
        ws = wb.active
        ws.title = sheet.title
    count = _fill_sheet(ws, sheet, rows)
    LOG.info("Prepared %s sheet with %d row(s)", sheet.title, count)
    return wb


def workbook_bytes(sheet: SheetSpec, rows: Iterable[Dict[str, Any]]) -> bytes:
    buf = io.BytesIO()
    build_workbook(sheet, rows).save(buf)
    return buf.getvalue()


def export_to_file(sheet: SheetSpec, rows: Iterable[Dict[str, Any]], path: str, *, append: bool = False) -> str:
    """Save a new workbook, or replace the sheet inside an existing one when append is set."""
    existing = path if append and os.path.isfile(path) else None
    if append and existing is None:
        LOG.warning("No workbook at %s to append to; creating a new one", path)
    wb = build_workbook(sheet, rows, existing_path=existing)
    folder = os.path.dirname(os.path.abspath(path))
    os.makedirs(folder, exist_ok=True)
    wb.save(path)
    LOG.info("Wrote %s", path)
    return path
