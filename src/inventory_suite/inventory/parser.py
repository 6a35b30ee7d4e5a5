from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from ..domain.models import BaseItemInput, BillInput, FinalEdit, ItemInput, PurchaseInput
from ..domain.pricing import normalize_date_iso, today_iso
from ..logging import get_logger


LOG = get_logger("inventory-parser")

_MISSING = object()


class PayloadValidationError(ValueError):
    pass


def _require_object(payload: Any) -> Dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise PayloadValidationError("Request body must be a JSON object")
    return payload


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _number(value: Any, field: str, *, default: float = 0.0) -> float:
    """Coerce JSON numbers and numeric strings; blank/None become default.

    Only finite values pass: inf, nan and overflowing literals like 1e999 raise.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        raise PayloadValidationError(f"{field} must be a number")
    if isinstance(value, str):
        if not value.strip():
            return default
        value = value.strip().replace(",", ".")
    elif not isinstance(value, (int, float)):
        raise PayloadValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (ValueError, OverflowError):
        raise PayloadValidationError(f"{field} must be a number") from None
    if not math.isfinite(number):
        raise PayloadValidationError(f"{field} must be a finite number")
    return number


def _optional_number(value: Any, field: str) -> Optional[float]:
    """Like _number but "" and None mean "no value" (NULL)."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _number(value, field)


def _merged(payload: Mapping[str, Any], existing: Optional[Mapping[str, Any]], key: str) -> Any:
    if key in payload:
        return payload[key]
    if existing is not None:
        return existing.get(key)
    return _MISSING


def parse_base_item(payload: Any, existing: Optional[Mapping[str, Any]] = None) -> BaseItemInput:
    """Validate a base item body; on update, absent keys keep their stored value."""
    data = _require_object(payload)
    name = _text(data.get("name")) or (_text(existing.get("name")) if existing else "")
    if not name:
        raise PayloadValidationError("name is required")
    brand = _merged(data, existing, "brand")
    carrying = _merged(data, existing, "carrying")
    return BaseItemInput(
        name=name,
        brand=_text(None if brand is _MISSING else brand),
        carrying=_number(None if carrying is _MISSING else carrying, "carrying"),
    )


def parse_exchange_rate(value: Any) -> float:
    try:
        rate = _number(value, "exchange_rate", default=0.0)
    except PayloadValidationError:
        rate = 0.0
    if rate <= 0:
        raise PayloadValidationError("exchange_rate must be a positive number")
    return rate


def _parse_bill_date(value: Any) -> str:
    raw = _text(value)
    if not raw:
        return today_iso()
    iso = normalize_date_iso(raw)
    if iso is None:
        raise PayloadValidationError(f"created_on is not a valid date: {raw}")
    return iso


def parse_bill(payload: Any, existing: Optional[Mapping[str, Any]] = None, *, default_rate: float = 1.0) -> BillInput:
    """Validate a bill header.

    - vendor_name is required (kept from the stored bill on update when blank)
    - created_on defaults to today and is normalized to YYYY-MM-DD
    - exchange_rate defaults to default_rate on create and must be positive
    """
    data = _require_object(payload)
    vendor = _text(data.get("vendor_name")) or (_text(existing.get("vendor_name")) if existing else "")
    if not vendor:
        raise PayloadValidationError("Vendor Name is required")

    if _text(data.get("created_on")):
        created_on = _parse_bill_date(data["created_on"])
    elif existing is not None:
        created_on = existing["created_on"]
    else:
        created_on = today_iso()

    raw_rate = data.get("exchange_rate")
    if raw_rate is None or (isinstance(raw_rate, str) and not raw_rate.strip()):
        rate = float(existing["exchange_rate"]) if existing is not None else float(default_rate)
    else:
        rate = parse_exchange_rate(raw_rate)
    return BillInput(vendor_name=vendor, created_on=created_on, exchange_rate=rate)


def parse_purchase(payload: Any, existing: Optional[Mapping[str, Any]] = None) -> PurchaseInput:
    """Validate a bill line; "" clears wsp/rp, absent keys keep stored values."""
    data = _require_object(payload)
    name = _text(data.get("name")) or (_text(existing.get("name")) if existing else "")
    if not name:
        raise PayloadValidationError("Name is required")

    price = _merged(data, existing, "price")
    quantity = _merged(data, existing, "quantity")
    wsp = _merged(data, existing, "wsp")
    rp = _merged(data, existing, "rp")
    return PurchaseInput(
        name=name,
        price=_number(None if price is _MISSING else price, "price"),
        quantity=_number(None if quantity is _MISSING else quantity, "quantity"),
        wsp=_optional_number(None if wsp is _MISSING else wsp, "wsp"),
        rp=_optional_number(None if rp is _MISSING else rp, "rp"),
    )


def parse_item(payload: Any, existing: Optional[Mapping[str, Any]] = None) -> ItemInput:
    """Validate a catalog item.

    ppp/retail_price/ws_price stay None unless the caller sends them, so the
    service derives them from ch_price. On update a changed ch_price also
    re-derives ppp unless ppp itself is part of the body.
    """
    data = _require_object(payload)
    name = _text(data.get("name")) or (_text(existing.get("name")) if existing else "")
    if not name:
        raise PayloadValidationError("Item name is required")

    def _keep(key: str) -> Any:
        value = _merged(data, existing, key)
        return None if value is _MISSING else value

    quantity = _number(_keep("quantity"), "quantity")
    item = ItemInput(
        name=name,
        brand=_text(_keep("brand")),
        quality=_text(_keep("quality")),
        ch_price=_number(_keep("ch_price"), "ch_price"),
        quantity=int(quantity),
        ppp=_optional_number(data.get("ppp"), "ppp"),
        retail_price=_optional_number(_keep("retail_price"), "retail_price"),
        ws_price=_optional_number(_keep("ws_price"), "ws_price"),
    )
    LOG.debug("Parsed item payload for %r (ppp given: %s)", item.name, item.ppp is not None)
    return item


def parse_final_edit(payload: Any, existing: Mapping[str, Any]) -> FinalEdit:
    data = _require_object(payload)
    wsp = data["wsp"] if "wsp" in data else existing.get("wsp")
    rp = data["rp"] if "rp" in data else existing.get("rp")
    return FinalEdit(wsp=_optional_number(wsp, "wsp"), rp=_optional_number(rp, "rp"))
