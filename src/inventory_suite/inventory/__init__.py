"""SQLite-backed inventory: bills, purchases and derived price records.

Modules:
- db: DB location, schema and read helpers
- parser: JSON payload validation into typed inputs
- service: write operations and their price cascades
- chat: natural language questions answered with guarded SELECTs
- export: Excel workbooks per sheet
"""

from .db import InventoryDatabase
from .service import InventoryService
from .chat import SqlChat
from .frontend.app import create_app

__all__ = [
    "InventoryDatabase",
    "InventoryService",
    "SqlChat",
    "create_app",
]
