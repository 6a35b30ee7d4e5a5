from __future__ import annotations

import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..domain.models import BaseItemInput, ItemInput, PurchaseInput
from ..domain.pricing import bill_total, compute_ppp, now_iso
from ..logging import get_logger
from .constants import SETTING_EXCHANGE_RATE
from .db import DuplicateRecord, InventoryDatabase, RecordNotFound
from .parser import (
    parse_base_item,
    parse_bill,
    parse_exchange_rate,
    parse_final_edit,
    parse_item,
    parse_purchase,
)


LOG = get_logger("inventory-service")


def _row(conn: sqlite3.Connection, sql: str, params: Iterable[Any]) -> Optional[Dict[str, Any]]:
    row = conn.execute(sql, tuple(params)).fetchone()
    return dict(row) if row is not None else None


class InventoryService:
    """Write operations and the cascades that keep derived prices consistent.

    Every public method runs in a single transaction: ppp recomputation, bill
    totals and final-entry refreshes either all land or none do.
    """

    def __init__(self, db: Optional[InventoryDatabase] = None) -> None:
        self.db = db or InventoryDatabase()

    # --------------- Shared cascade helpers ---------------
    @staticmethod
    def _base_meta(conn: sqlite3.Connection, name: str) -> Tuple[str, float]:
        """Return (brand, carrying) for a name; unknown names have no surcharge."""
        row = conn.execute("SELECT brand, carrying FROM base_items WHERE name = ?;", (name,)).fetchone()
        if row is None:
            return "", 0.0
        return (row["brand"] or ""), float(row["carrying"] or 0)

    def _recompute_bill_total(self, conn: sqlite3.Connection, bill_no: int) -> float:
        rows = conn.execute("SELECT quantity, ppp FROM purchases WHERE bill_no = ?;", (bill_no,)).fetchall()
        total = bill_total(rows)
        conn.execute("UPDATE bills SET total_price = ? WHERE bill_no = ?;", (total, bill_no))
        LOG.debug("Recomputed bill #%s total=%s over %d line(s)", bill_no, total, len(rows))
        return total

    def _refresh_final(self, conn: sqlite3.Connection, name: str) -> None:
        """Mirror the most recent purchase of name into final_entries (or drop it)."""
        latest = _row(
            conn,
            "SELECT * FROM purchases WHERE name = ? ORDER BY created_on DESC, id DESC LIMIT 1;",
            (name,),
        )
        if latest is None:
            conn.execute("DELETE FROM final_entries WHERE name = ?;", (name,))
            LOG.info("Final entry for %r removed (no purchases left)", name)
            return
        brand, carrying = self._base_meta(conn, name)
        conn.execute(
            """
            INSERT INTO final_entries (name, brand, last_changed_on, bill_no, quantity, price, carrying, wsp, rp, ppp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                brand = excluded.brand,
                last_changed_on = excluded.last_changed_on,
                bill_no = excluded.bill_no,
                quantity = excluded.quantity,
                price = excluded.price,
                carrying = excluded.carrying,
                wsp = excluded.wsp,
                rp = excluded.rp,
                ppp = excluded.ppp;
            """,
            (
                latest["name"],
                brand,
                latest["created_on"],
                latest["bill_no"],
                latest["quantity"],
                latest["price"],
                carrying,
                latest["wsp"],
                latest["rp"],
                latest["ppp"],
            ),
        )
        LOG.debug("Final entry for %r refreshed from purchase #%s", name, latest["id"])

    def _recompute_for_name(self, conn: sqlite3.Connection, name: str) -> None:
        """Re-derive ppp for every purchase and item of a name after its base data changed."""
        _, carrying = self._base_meta(conn, name)
        rows = conn.execute(
            """
            SELECT p.id, p.bill_no, p.price, b.exchange_rate
            FROM purchases p JOIN bills b ON b.bill_no = p.bill_no
            WHERE p.name = ?;
            """,
            (name,),
        ).fetchall()
        bills = set()
        for r in rows:
            conn.execute(
                "UPDATE purchases SET ppp = ? WHERE id = ?;",
                (compute_ppp(r["price"], r["exchange_rate"], carrying), r["id"]),
            )
            bills.add(r["bill_no"])
        for bill_no in sorted(bills):
            self._recompute_bill_total(conn, bill_no)

        rate = self.db.read_exchange_rate(conn)
        for item in conn.execute("SELECT id, ch_price FROM items WHERE name = ? COLLATE NOCASE;", (name,)).fetchall():
            conn.execute(
                "UPDATE items SET ppp = ? WHERE id = ?;",
                (compute_ppp(item["ch_price"], rate, carrying), item["id"]),
            )
        self._refresh_final(conn, name)
        LOG.info("Recomputed prices for %r: %d purchase(s) across %d bill(s)", name, len(rows), len(bills))

    # --------------- Exchange rate ---------------
    def get_exchange_rate(self) -> float:
        return self.db.fetch_exchange_rate()

    def set_exchange_rate(self, value: Any) -> float:
        """Persist the global rate and re-derive ppp for every catalog item."""
        rate = parse_exchange_rate(value)
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value;
                """,
                (SETTING_EXCHANGE_RATE, rate),
            )
            items = conn.execute("SELECT id, name, ch_price FROM items;").fetchall()
            for item in items:
                _, carrying = self._base_meta(conn, item["name"])
                conn.execute(
                    "UPDATE items SET ppp = ? WHERE id = ?;",
                    (compute_ppp(item["ch_price"], rate, carrying), item["id"]),
                )
        LOG.info("Exchange rate set to %s; recomputed %d item(s)", rate, len(items))
        return rate

    # --------------- Items ---------------
    def _item_values(self, conn: sqlite3.Connection, item: ItemInput) -> Dict[str, Any]:
        rate = self.db.read_exchange_rate(conn)
        _, carrying = self._base_meta(conn, item.name)
        derived = compute_ppp(item.ch_price, rate, carrying)
        converted = compute_ppp(item.ch_price, rate)
        return {
            "name": item.name,
            "brand": item.brand,
            "quality": item.quality,
            "ch_price": item.ch_price,
            "ppp": derived if item.ppp is None else item.ppp,
            "retail_price": converted if item.retail_price is None else item.retail_price,
            "ws_price": converted if item.ws_price is None else item.ws_price,
            "quantity": item.quantity,
        }

    def create_item(self, payload: Any) -> Dict[str, Any]:
        item = parse_item(payload)
        with self.db.transaction() as conn:
            values = self._item_values(conn, item)
            cur = conn.execute(
                """
                INSERT INTO items (name, brand, quality, ch_price, ppp, retail_price, ws_price, quantity)
                VALUES (:name, :brand, :quality, :ch_price, :ppp, :retail_price, :ws_price, :quantity);
                """,
                values,
            )
            created = _row(conn, "SELECT * FROM items WHERE id = ?;", (cur.lastrowid,))
        LOG.info("Created item #%s %r", created["id"], created["name"])
        return created

    def update_item(self, item_id: int, payload: Any) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            existing = _row(conn, "SELECT * FROM items WHERE id = ?;", (item_id,))
            if existing is None:
                raise RecordNotFound("Item not found")
            values = self._item_values(conn, parse_item(payload, existing))
            conn.execute(
                """
                UPDATE items
                SET name = :name, brand = :brand, quality = :quality, ch_price = :ch_price,
                    ppp = :ppp, retail_price = :retail_price, ws_price = :ws_price, quantity = :quantity
                WHERE id = :id;
                """,
                {**values, "id": item_id},
            )
            updated = _row(conn, "SELECT * FROM items WHERE id = ?;", (item_id,))
        LOG.info("Updated item #%s", item_id)
        return updated

    def delete_item(self, item_id: int) -> None:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM items WHERE id = ?;", (item_id,))
            if cur.rowcount == 0:
                raise RecordNotFound("Item not found")
        LOG.info("Deleted item #%s", item_id)

    # --------------- Base items ---------------
    def create_base_item(self, payload: Any) -> Dict[str, Any]:
        base = parse_base_item(payload)
        with self.db.transaction() as conn:
            try:
                cur = conn.execute(
                    "INSERT INTO base_items (name, brand, carrying) VALUES (?, ?, ?);",
                    (base.name, base.brand, base.carrying),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateRecord(f"Base item {base.name!r} already exists") from exc
            # Existing purchases of this name now carry the surcharge
            self._recompute_for_name(conn, base.name)
            created = _row(conn, "SELECT * FROM base_items WHERE id = ?;", (cur.lastrowid,))
        LOG.info("Created base item %r (carrying=%s)", base.name, base.carrying)
        return created

    def _lookup_base(self, conn: sqlite3.Connection, key: Any) -> Dict[str, Any]:
        if isinstance(key, int):
            row = _row(conn, "SELECT * FROM base_items WHERE id = ?;", (key,))
        else:
            row = _row(conn, "SELECT * FROM base_items WHERE name = ?;", (str(key).strip(),))
        if row is None:
            raise RecordNotFound("not found")
        return row

    def update_base_item(self, key: Any, payload: Any) -> Dict[str, Any]:
        """Update by id (int) or name (str) and cascade into prices of the name(s)."""
        with self.db.transaction() as conn:
            existing = self._lookup_base(conn, key)
            base: BaseItemInput = parse_base_item(payload, existing)
            try:
                conn.execute(
                    "UPDATE base_items SET name = ?, brand = ?, carrying = ? WHERE id = ?;",
                    (base.name, base.brand, base.carrying, existing["id"]),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateRecord(f"Base item {base.name!r} already exists") from exc
            changed = (
                base.name.lower() != str(existing["name"]).lower()
                or base.brand != (existing["brand"] or "")
                or base.carrying != float(existing["carrying"] or 0)
            )
            if changed:
                for name in {existing["name"], base.name}:
                    self._recompute_for_name(conn, name)
            updated = _row(conn, "SELECT * FROM base_items WHERE id = ?;", (existing["id"],))
        LOG.info("Updated base item #%s %r (cascade=%s)", existing["id"], base.name, changed)
        return updated

    def delete_base_item(self, key: Any) -> None:
        """Remove the metadata and re-derive the name's prices without its carrying."""
        with self.db.transaction() as conn:
            existing = self._lookup_base(conn, key)
            conn.execute("DELETE FROM base_items WHERE id = ?;", (existing["id"],))
            self._recompute_for_name(conn, existing["name"])
        LOG.info("Deleted base item #%s %r", existing["id"], existing["name"])

    # --------------- Bills ---------------
    def _require_bill(self, conn: sqlite3.Connection, bill_no: int) -> Dict[str, Any]:
        bill = _row(conn, "SELECT * FROM bills WHERE bill_no = ?;", (bill_no,))
        if bill is None:
            raise RecordNotFound("Bill not found")
        return bill

    def create_bill(self, payload: Any) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            bill = parse_bill(payload, default_rate=self.db.read_exchange_rate(conn))
            cur = conn.execute(
                "INSERT INTO bills (vendor_name, created_on, exchange_rate, total_price) VALUES (?, ?, ?, 0);",
                (bill.vendor_name, bill.created_on, bill.exchange_rate),
            )
            created = _row(conn, "SELECT * FROM bills WHERE bill_no = ?;", (cur.lastrowid,))
        LOG.info("Created bill #%s vendor=%r on %s rate=%s", created["bill_no"], bill.vendor_name, bill.created_on, bill.exchange_rate)
        return created

    def bill_detail(self, bill_no: int) -> Dict[str, Any]:
        """Bill header with its lines and a freshly recomputed total."""
        with self.db.transaction() as conn:
            bill = self._require_bill(conn, bill_no)
            items = [
                dict(r)
                for r in conn.execute("SELECT * FROM purchases WHERE bill_no = ? ORDER BY id ASC;", (bill_no,)).fetchall()
            ]
            total = self._recompute_bill_total(conn, bill_no)
        return {**bill, "total_price": total, "items": items}

    def update_bill(self, bill_no: int, payload: Any) -> Dict[str, Any]:
        """Update the header; a new rate re-derives every line's ppp, a new date moves every line."""
        with self.db.transaction() as conn:
            existing = self._require_bill(conn, bill_no)
            bill = parse_bill(payload, existing)
            conn.execute(
                "UPDATE bills SET vendor_name = ?, created_on = ?, exchange_rate = ? WHERE bill_no = ?;",
                (bill.vendor_name, bill.created_on, bill.exchange_rate, bill_no),
            )
            rate_changed = bill.exchange_rate != float(existing["exchange_rate"])
            date_changed = bill.created_on != existing["created_on"]
            if rate_changed or date_changed:
                lines = conn.execute("SELECT id, name, price, ppp FROM purchases WHERE bill_no = ?;", (bill_no,)).fetchall()
                for line in lines:
                    ppp = line["ppp"]
                    if rate_changed:
                        _, carrying = self._base_meta(conn, line["name"])
                        ppp = compute_ppp(line["price"], bill.exchange_rate, carrying)
                    conn.execute(
                        "UPDATE purchases SET ppp = ?, created_on = ? WHERE id = ?;",
                        (ppp, bill.created_on, line["id"]),
                    )
                for name in {line["name"].lower(): line["name"] for line in lines}.values():
                    self._refresh_final(conn, name)
                LOG.info(
                    "Bill #%s cascade: %d line(s) updated (rate_changed=%s, date_changed=%s)",
                    bill_no, len(lines), rate_changed, date_changed,
                )
            total = self._recompute_bill_total(conn, bill_no)
            updated = _row(conn, "SELECT * FROM bills WHERE bill_no = ?;", (bill_no,))
        return {**updated, "total_price": total}

    def delete_bill(self, bill_no: int) -> List[str]:
        """Delete a bill and its lines; return the names whose final entries were refreshed."""
        with self.db.transaction() as conn:
            self._require_bill(conn, bill_no)
            names = [
                r["name"]
                for r in conn.execute("SELECT DISTINCT name FROM purchases WHERE bill_no = ?;", (bill_no,)).fetchall()
            ]
            conn.execute("DELETE FROM purchases WHERE bill_no = ?;", (bill_no,))
            conn.execute("DELETE FROM bills WHERE bill_no = ?;", (bill_no,))
            for name in names:
                self._refresh_final(conn, name)
        LOG.info("Deleted bill #%s; refreshed %d final entr(ies)", bill_no, len(names))
        return names

    # --------------- Bill items (purchases) ---------------
    def _insert_purchase(self, conn: sqlite3.Connection, bill: Dict[str, Any], line: PurchaseInput) -> int:
        _, carrying = self._base_meta(conn, line.name)
        ppp = compute_ppp(line.price, bill["exchange_rate"], carrying)
        cur = conn.execute(
            """
            INSERT INTO purchases (bill_no, name, price, quantity, wsp, rp, ppp, created_on)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (bill["bill_no"], line.name, line.price, line.quantity, line.wsp, line.rp, ppp, bill["created_on"]),
        )
        return int(cur.lastrowid)

    def add_bill_item(self, bill_no: int, payload: Any) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            bill = self._require_bill(conn, bill_no)
            line = parse_purchase(payload)
            purchase_id = self._insert_purchase(conn, bill, line)
            self._refresh_final(conn, line.name)
            total = self._recompute_bill_total(conn, bill_no)
            created = _row(conn, "SELECT * FROM purchases WHERE id = ?;", (purchase_id,))
        LOG.info("Bill #%s: added line #%s %r ppp=%s", bill_no, purchase_id, line.name, created["ppp"])
        return {"item": created, "total_price": total}

    def _require_line(self, conn: sqlite3.Connection, bill_no: int, purchase_id: int) -> Dict[str, Any]:
        line = _row(conn, "SELECT * FROM purchases WHERE id = ? AND bill_no = ?;", (purchase_id, bill_no))
        if line is None:
            raise RecordNotFound("Item not found")
        return line

    def update_bill_item(self, bill_no: int, purchase_id: int, payload: Any) -> Dict[str, Any]:
        with self.db.transaction() as conn:
            bill = self._require_bill(conn, bill_no)
            existing = self._require_line(conn, bill_no, purchase_id)
            line = parse_purchase(payload, existing)
            _, carrying = self._base_meta(conn, line.name)
            ppp = compute_ppp(line.price, bill["exchange_rate"], carrying)
            conn.execute(
                """
                UPDATE purchases
                SET name = ?, price = ?, quantity = ?, wsp = ?, rp = ?, ppp = ?, created_on = ?
                WHERE id = ?;
                """,
                (line.name, line.price, line.quantity, line.wsp, line.rp, ppp, bill["created_on"], purchase_id),
            )
            self._refresh_final(conn, line.name)
            if line.name.lower() != str(existing["name"]).lower():
                self._refresh_final(conn, existing["name"])
            total = self._recompute_bill_total(conn, bill_no)
            updated = _row(conn, "SELECT * FROM purchases WHERE id = ?;", (purchase_id,))
        LOG.info("Bill #%s: updated line #%s %r ppp=%s", bill_no, purchase_id, line.name, ppp)
        return {"item": updated, "total_price": total}

    def delete_bill_item(self, bill_no: int, purchase_id: int) -> float:
        with self.db.transaction() as conn:
            self._require_bill(conn, bill_no)
            existing = self._require_line(conn, bill_no, purchase_id)
            conn.execute("DELETE FROM purchases WHERE id = ?;", (purchase_id,))
            total = self._recompute_bill_total(conn, bill_no)
            self._refresh_final(conn, existing["name"])
        LOG.info("Bill #%s: deleted line #%s %r", bill_no, purchase_id, existing["name"])
        return total

    def _bill_of_purchase(self, purchase_id: int) -> int:
        purchase = self.db.fetch_purchase(purchase_id)
        if purchase is None:
            raise RecordNotFound("not found")
        return int(purchase["bill_no"])

    def update_purchase(self, purchase_id: int, payload: Any) -> Dict[str, Any]:
        return self.update_bill_item(self._bill_of_purchase(purchase_id), purchase_id, payload)

    def delete_purchase(self, purchase_id: int) -> float:
        return self.delete_bill_item(self._bill_of_purchase(purchase_id), purchase_id)

    # --------------- Final entries ---------------
    def update_final_entry(self, name: str, payload: Any) -> Dict[str, Any]:
        """Manual WSP/RP edit; ppp, price and quantity stay as derived."""
        with self.db.transaction() as conn:
            existing = _row(conn, "SELECT * FROM final_entries WHERE name = ?;", (name.strip(),))
            if existing is None:
                raise RecordNotFound("Entry not found")
            edit = parse_final_edit(payload, existing)
            carrying = existing["carrying"]
            if carrying is None:
                _, carrying = self._base_meta(conn, existing["name"])
            conn.execute(
                """
                UPDATE final_entries
                SET wsp = ?, rp = ?, carrying = ?, last_changed_on = ?, bill_no = NULL
                WHERE name = ?;
                """,
                (edit.wsp, edit.rp, carrying, now_iso(), existing["name"]),
            )
            updated = _row(conn, "SELECT * FROM final_entries WHERE name = ?;", (existing["name"],))
        LOG.info("Final entry %r edited manually (wsp=%s, rp=%s)", existing["name"], edit.wsp, edit.rp)
        return updated
