from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class BaseItemInput:
    name: str
    brand: str
    carrying: float


@dataclass
class BillInput:
    vendor_name: str
    created_on: str          # YYYY-MM-DD
    exchange_rate: float     # > 0


@dataclass
class PurchaseInput:
    name: str
    price: float
    quantity: float
    wsp: Optional[float]
    rp: Optional[float]


@dataclass
class ItemInput:
    """Catalog row; ppp/retail/ws are None when they should be derived."""

    name: str
    brand: str
    quality: str
    ch_price: float
    quantity: int
    ppp: Optional[float] = None
    retail_price: Optional[float] = None
    ws_price: Optional[float] = None


@dataclass
class FinalEdit:
    wsp: Optional[float]
    rp: Optional[float]
