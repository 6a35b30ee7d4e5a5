import re
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

from ..logging import get_logger

_LOG = get_logger("pricing")

PPP_DECIMALS = 4


def _as_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def effective_rate(exchange_rate: Any) -> float:
    """Return a usable exchange rate; missing, zero or negative rates count as 1."""
    rate = _as_float(exchange_rate)
    return rate if rate > 0 else 1.0


def compute_ppp(price: Any, exchange_rate: Any, carrying: Any = 0) -> float:
    """Price per piece: ``price × exchange_rate + carrying``."""
    value = _as_float(price) * effective_rate(exchange_rate) + _as_float(carrying)
    return round(value, PPP_DECIMALS)


def bill_total(rows: Iterable[Mapping[str, Any]]) -> float:
    """Sum of quantity × ppp over purchase rows."""
    total = sum(_as_float(row["quantity"]) * _as_float(row["ppp"]) for row in rows)
    return round(total, PPP_DECIMALS)


def normalize_date_iso(value: Optional[str]) -> Optional[str]:
    """Normalize common date strings to ISO YYYY-MM-DD.

    Supports:
    - YYYY-MM-DD passthrough (a trailing time part is dropped)
    - DD-MM-YYYY, DD/MM/YYYY, DD.MM.YYYY and two-digit years (20xx below 70)
    Returns None for anything that is not a real calendar date.
    """
    if not value:
        return None
    v = str(value).strip()
    if not v:
        return None
    m = re.fullmatch(r"(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?", v)
    if m:
        y, mth, d = m.groups()
    else:
        m = re.fullmatch(r"(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})", v)
        if not m:
            return None
        d, mth, y = m.groups()
        if len(y) == 2:
            y = ("20" + y) if int(y) < 70 else ("19" + y)
    try:
        return date(int(y), int(mth), int(d)).isoformat()
    except ValueError:
        _LOG.debug("Rejected impossible date %r", value)
        return None


def today_iso() -> str:
    return date.today().isoformat()


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")
