from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

SETTING_EXCHANGE_RATE = "exchange_rate"
DEFAULT_EXCHANGE_RATE = 1.0

SEARCH_LIMIT = 20
FINAL_PREVIEW_LIMIT = 5
CHAT_ROW_LIMIT = 100


@dataclass(frozen=True)
class SheetSpec:
    """One user-facing sheet: its table, default ordering and export columns."""

    key: str
    table: str
    order_by: str
    title: str
    columns: Tuple[Tuple[str, str], ...]  # (column, label)


SHEET_BASE = SheetSpec(
    key="base",
    table="base_items",
    order_by="created_on",
    title="Base",
    columns=(
        ("name", "Name"),
        ("brand", "Brand"),
        ("carrying", "Carrying"),
        ("created_on", "Created On"),
    ),
)

SHEET_BILLS = SheetSpec(
    key="bills",
    table="bills",
    order_by="created_on",
    title="Bills",
    columns=(
        ("bill_no", "Bill No"),
        ("vendor_name", "Vendor Name"),
        ("created_on", "Created On"),
        ("exchange_rate", "Exchange Rate"),
        ("total_price", "Total Price"),
    ),
)

SHEET_PURCHASES = SheetSpec(
    key="purchases",
    table="purchases",
    order_by="created_on",
    title="Purchases",
    columns=(
        ("name", "Name"),
        ("price", "Price"),
        ("quantity", "Quantity"),
        ("ppp", "PPP"),
        ("wsp", "WSP"),
        ("rp", "RP"),
        ("bill_no", "Bill No"),
        ("created_on", "Created On"),
    ),
)

SHEET_FINAL = SheetSpec(
    key="final",
    table="final_entries",
    order_by="last_changed_on",
    title="Final",
    columns=(
        ("name", "Name"),
        ("brand", "Brand"),
        ("last_changed_on", "Last Changed"),
        ("bill_no", "Bill No"),
        ("quantity", "Quantity"),
        ("price", "Price"),
        ("carrying", "Carrying"),
        ("wsp", "WSP"),
        ("rp", "RP"),
        ("ppp", "PPP"),
    ),
)

SHEET_ITEMS = SheetSpec(
    key="items",
    table="items",
    order_by="created_at",
    title="Items",
    columns=(
        ("name", "Name"),
        ("brand", "Brand"),
        ("quality", "Quality"),
        ("ch_price", "CH Price"),
        ("ppp", "PPP"),
        ("retail_price", "Retail Price"),
        ("ws_price", "WS Price"),
        ("quantity", "Quantity"),
    ),
)

SHEETS: Dict[str, SheetSpec] = {
    sheet.key: sheet for sheet in (SHEET_BASE, SHEET_BILLS, SHEET_PURCHASES, SHEET_FINAL, SHEET_ITEMS)
}
DEFAULT_SHEET = SHEET_FINAL.key

# Tables a chat query may read from.
DATA_TABLES: Tuple[str, ...] = tuple(sheet.table for sheet in SHEETS.values())


def sheet_for(key: str | None) -> SheetSpec:
    """Resolve a sheet key; unknown or empty keys fall back to the final sheet."""
    return SHEETS.get((key or "").strip().lower(), SHEETS[DEFAULT_SHEET])
