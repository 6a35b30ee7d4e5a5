from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..config import load_db_path
from ..logging import get_logger
from .constants import (
    DEFAULT_EXCHANGE_RATE,
    FINAL_PREVIEW_LIMIT,
    SEARCH_LIMIT,
    SETTING_EXCHANGE_RATE,
    SheetSpec,
)


LOG = get_logger("inventory-db")


class RecordNotFound(LookupError):
    """Raised when a row addressed by id or name does not exist."""


class DuplicateRecord(ValueError):
    """Raised when a write would violate a uniqueness rule."""


SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS settings (
  key    TEXT PRIMARY KEY,
  value  REAL
);
INSERT OR IGNORE INTO settings (key, value) VALUES ('{SETTING_EXCHANGE_RATE}', {DEFAULT_EXCHANGE_RATE});

-- 1) Catalog items priced with the global exchange rate
CREATE TABLE IF NOT EXISTS items (
  id            INTEGER PRIMARY KEY AUTOINCREMENT,
  name          TEXT NOT NULL,
  brand         TEXT,
  quality       TEXT,
  ch_price      REAL DEFAULT 0,
  ppp           REAL,
  retail_price  REAL,
  ws_price      REAL,
  quantity      INTEGER DEFAULT 0,
  created_at    TEXT DEFAULT (datetime('now'))
);

-- 2) Base metadata per product name (brand + carrying surcharge)
CREATE TABLE IF NOT EXISTS base_items (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  name        TEXT NOT NULL COLLATE NOCASE UNIQUE,
  brand       TEXT DEFAULT '',
  carrying    REAL DEFAULT 0,
  created_on  TEXT DEFAULT (datetime('now'))
);

-- 3) Bill headers
CREATE TABLE IF NOT EXISTS bills (
  bill_no        INTEGER PRIMARY KEY AUTOINCREMENT,
  vendor_name    TEXT NOT NULL,
  created_on     TEXT NOT NULL,        -- YYYY-MM-DD
  exchange_rate  REAL NOT NULL DEFAULT 1 CHECK(exchange_rate > 0),
  total_price    REAL NOT NULL DEFAULT 0,
  created_at     TEXT DEFAULT (datetime('now'))
);

-- 4) Bill lines
CREATE TABLE IF NOT EXISTS purchases (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  bill_no     INTEGER NOT NULL REFERENCES bills(bill_no) ON DELETE CASCADE,
  name        TEXT NOT NULL COLLATE NOCASE,
  price       REAL NOT NULL DEFAULT 0,
  quantity    REAL NOT NULL DEFAULT 0,
  wsp         REAL,
  rp          REAL,
  ppp         REAL NOT NULL DEFAULT 0,
  created_on  TEXT NOT NULL,
  created_at  TEXT DEFAULT (datetime('now'))
);

-- 5) Latest purchase-derived record per name
CREATE TABLE IF NOT EXISTS final_entries (
  name             TEXT PRIMARY KEY COLLATE NOCASE,
  brand            TEXT DEFAULT '',
  last_changed_on  TEXT,
  bill_no          INTEGER,            -- NULL after a manual WSP/RP edit
  quantity         REAL DEFAULT 0,
  price            REAL DEFAULT 0,
  carrying         REAL DEFAULT 0,
  wsp              REAL,
  rp               REAL,
  ppp              REAL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_items_name          ON items(name);
CREATE INDEX IF NOT EXISTS idx_purchases_bill      ON purchases(bill_no);
CREATE INDEX IF NOT EXISTS idx_purchases_name_date ON purchases(name, created_on);
CREATE INDEX IF NOT EXISTS idx_bills_created_on    ON bills(created_on);
"""


class InventoryDatabase:
    """SQLite-backed inventory database.

    - Places the DB under `<repo-root>/var/inventory/inventory.sqlite3` unless
      an explicit path (or INVENTORY_DB_PATH) is given.
    - Ensures schema on first use.
    - Provides context-managed connections; `transaction()` commits or rolls back.
    """

    def __init__(self, db_path: Optional[str] = None, *, root_dir: Optional[str] = None) -> None:
        self.db_path = os.path.abspath(db_path) if db_path else load_db_path(root_dir or os.getcwd())
        folder = os.path.dirname(self.db_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        LOG.info("Inventory DB path: %s", self.db_path)
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connect() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    @contextmanager
    def connect_readonly(self) -> Iterator[sqlite3.Connection]:
        """Open the database in SQLite read-only mode with query_only enforced."""
        uri = f"{Path(os.path.abspath(self.db_path)).as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA query_only = ON;")
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                # Non-fatal; continue with schema creation
                pass
            LOG.info("Ensuring inventory DB schema is present...")
            self._migrate_base_items_brand_type(conn)
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.info("Inventory DB schema ensured.")

    def _migrate_base_items_brand_type(self, conn: sqlite3.Connection) -> None:
        """Older databases stored the brand as `brand_type`; copy it into `brand`."""
        cur = conn.cursor()
        cur.execute("PRAGMA table_info(base_items);")
        columns = [row[1] for row in cur.fetchall()]
        if not columns or "brand_type" not in columns or "brand" in columns:
            return
        LOG.info("Migrating base_items.brand_type into base_items.brand")
        try:
            cur.execute("ALTER TABLE base_items ADD COLUMN brand TEXT DEFAULT '';")
            cur.execute("UPDATE base_items SET brand = COALESCE(brand_type, '');")
            conn.commit()
        except sqlite3.DatabaseError:
            LOG.exception("Failed to migrate base_items brand column; rolling back changes")
            conn.rollback()
            raise

    # --------------- Row helpers ---------------
    @staticmethod
    def _rows_to_dicts(rows: Sequence[sqlite3.Row]) -> List[Dict[str, Any]]:
        return [dict(row) for row in rows]

    @staticmethod
    def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        return dict(row) if row is not None else None

    def _all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            return self._rows_to_dicts(conn.execute(sql, params).fetchall())

    def _one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            return self._row_to_dict(conn.execute(sql, params).fetchone())

    # --------------- Settings ---------------
    @staticmethod
    def read_exchange_rate(conn: sqlite3.Connection) -> float:
        row = conn.execute("SELECT value FROM settings WHERE key = ?;", (SETTING_EXCHANGE_RATE,)).fetchone()
        if row is None or row["value"] is None:
            return DEFAULT_EXCHANGE_RATE
        return float(row["value"])

    def fetch_exchange_rate(self) -> float:
        with self.connect() as conn:
            return self.read_exchange_rate(conn)

    # --------------- Items ---------------
    def fetch_items(self) -> List[Dict[str, Any]]:
        return self._all("SELECT * FROM items ORDER BY created_at DESC, id DESC;")

    def search_items(self, query: str) -> List[Dict[str, Any]]:
        return self._all(
            "SELECT * FROM items WHERE name LIKE ? ORDER BY created_at DESC, id DESC LIMIT ?;",
            (f"%{query}%", SEARCH_LIMIT),
        )

    def fetch_item(self, item_id: int) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM items WHERE id = ?;", (int(item_id),))

    # --------------- Base items ---------------
    def fetch_base_items(self) -> List[Dict[str, Any]]:
        return self._all("SELECT * FROM base_items ORDER BY created_on DESC, id DESC;")

    def search_base_items(self, query: str) -> List[Dict[str, Any]]:
        return self._all(
            "SELECT * FROM base_items WHERE name LIKE ? ORDER BY created_on DESC, id DESC LIMIT ?;",
            (f"%{query}%", SEARCH_LIMIT),
        )

    def search_brands(self, query: str) -> List[str]:
        rows = self._all(
            """
            SELECT DISTINCT brand FROM base_items
            WHERE brand LIKE ? AND TRIM(COALESCE(brand, '')) <> ''
            ORDER BY brand COLLATE NOCASE ASC
            LIMIT ?;
            """,
            (f"%{query}%", SEARCH_LIMIT),
        )
        return [row["brand"] for row in rows]

    def fetch_base_item(self, base_id: int) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM base_items WHERE id = ?;", (int(base_id),))

    def fetch_base_item_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM base_items WHERE name = ?;", (name.strip(),))

    # --------------- Bills & purchases ---------------
    def fetch_bills(self) -> List[Dict[str, Any]]:
        return self._all("SELECT * FROM bills ORDER BY created_on DESC, bill_no DESC;")

    def search_bills(
        self,
        *,
        vendor_name: Optional[str] = None,
        created_on: Optional[str] = None,
        name: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Bills filtered by vendor/date substrings and purchased item name."""
        where_clauses: List[str] = []
        params: List[Any] = []
        if vendor_name:
            where_clauses.append("vendor_name LIKE ?")
            params.append(f"%{vendor_name}%")
        if created_on:
            where_clauses.append("created_on LIKE ?")
            params.append(f"%{created_on}%")
        if name:
            where_clauses.append("bill_no IN (SELECT DISTINCT bill_no FROM purchases WHERE name LIKE ?)")
            params.append(f"%{name}%")
        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        return self._all(f"SELECT * FROM bills {where_sql} ORDER BY created_on DESC, bill_no DESC;", params)

    def fetch_bill(self, bill_no: int) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM bills WHERE bill_no = ?;", (int(bill_no),))

    def fetch_purchases(self) -> List[Dict[str, Any]]:
        return self._all("SELECT * FROM purchases ORDER BY created_on DESC, id DESC;")

    def search_purchases(self, query: str) -> List[Dict[str, Any]]:
        return self._all(
            "SELECT * FROM purchases WHERE name LIKE ? ORDER BY created_on DESC, id DESC LIMIT ?;",
            (f"%{query}%", SEARCH_LIMIT),
        )

    def fetch_purchase(self, purchase_id: int) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM purchases WHERE id = ?;", (int(purchase_id),))

    # --------------- Final entries ---------------
    def fetch_final_entries(self, *, name: Optional[str] = None, fetch_all: bool = False) -> List[Dict[str, Any]]:
        """Final entries newest first; only the latest few unless fetch_all."""
        params: List[Any] = []
        where_sql = ""
        if name:
            where_sql = "WHERE name LIKE ?"
            params.append(f"%{name}%")
        limit_sql = ""
        if not fetch_all:
            limit_sql = "LIMIT ?"
            params.append(FINAL_PREVIEW_LIMIT)
        return self._all(
            f"SELECT * FROM final_entries {where_sql} ORDER BY last_changed_on DESC, name ASC {limit_sql};",
            params,
        )

    def fetch_final_names(self) -> List[str]:
        rows = self._all("SELECT name FROM final_entries ORDER BY name ASC;")
        return [row["name"] for row in rows]

    def fetch_final_entry(self, name: str) -> Optional[Dict[str, Any]]:
        return self._one("SELECT * FROM final_entries WHERE name = ?;", (name.strip(),))

    # --------------- Sheets ---------------
    def fetch_sheet_rows(self, sheet: SheetSpec) -> List[Dict[str, Any]]:
        """All rows of a sheet's table in its default order (newest first)."""
        return self._all(f"SELECT * FROM {sheet.table} ORDER BY {sheet.order_by} DESC, rowid DESC;")
