"""Natural language → SQLite SELECT, executed read-only against the inventory.

The model is asked to wrap exactly one SELECT in ``<sql>…</sql>``. The reply is
only trusted after `extract_sql_from_tags` has checked it; anything else is
rejected before it reaches the database.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any, Callable, Dict, Optional, Set

from ..config import LLMConfig
from ..llm.client import ChatClient, build_chat_client
from ..logging import get_logger
from .constants import CHAT_ROW_LIMIT, DATA_TABLES, SheetSpec, sheet_for
from .db import InventoryDatabase


LOG = get_logger("inventory-chat")

SCHEMA_PROMPT = """
You convert natural language to SAFE SQLite SELECT queries.
- Output ONLY SQL wrapped inside <sql>...</sql> tags. No prose, no thinking text.
- NEVER use INSERT/UPDATE/DELETE/PRAGMA; SELECT only.
- Do not use multiple statements.
- Whenever a date is given convert it into the form "YYYY-MM-DD" and use it that way in the query.
- Name comparisons are case-insensitive; prefer LIKE '%text%' for partial names.
- Tables:
  items(id, name, brand, quality, ch_price, ppp, retail_price, ws_price, quantity, created_at)
  base_items(id, name, brand, carrying, created_on)
  bills(bill_no, vendor_name, created_on, exchange_rate, total_price, created_at)
  purchases(id, bill_no, name, price, quantity, wsp, rp, ppp, created_on)
  final_entries(name, brand, last_changed_on, bill_no, quantity, price, carrying, wsp, rp, ppp)
Use only the columns listed above. Example for a range: SELECT * FROM purchases WHERE ppp BETWEEN 1500 AND 2000 ORDER BY created_on DESC;
"""

_SQL_TAG_RE = re.compile(r"<sql>([\s\S]*?)</sql>", re.IGNORECASE)
_THINK_RE = re.compile(r"<think>[\s\S]*?(?:</think>|$)", re.IGNORECASE)
_ORDER_BY_RE = re.compile(r"\border\s+by\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\blimit\s+\d+", re.IGNORECASE)
_JOIN_REF_RE = re.compile(r"\bjoin\s+[\"`\[]?([A-Za-z_][A-Za-z0-9_]*)", re.IGNORECASE)
_FROM_RE = re.compile(r"\bfrom\s+", re.IGNORECASE)
# FROM list up to the next clause keyword or closing parenthesis
_FROM_LIST_RE = re.compile(
    r"([\s\S]*?)(?=\b(?:where|group|order|limit|having|union|except|intersect|window|join|inner|left|right|cross|natural|on|using)\b|\)|$)",
    re.IGNORECASE,
)
_IDENT_RE = re.compile(r"[\"`\[]?([A-Za-z_][A-Za-z0-9_]*)")
_COMMENT_RE = re.compile(r"--[^\n]*|/\*[\s\S]*?(?:\*/|$)")
_FORBIDDEN_RE = re.compile(
    r"\b(insert|update|delete|drop|alter|create|attach|detach|pragma|vacuum|reindex)\b",
    re.IGNORECASE,
)


class ChatConfigError(RuntimeError):
    """The chat endpoint is not configured (no API key)."""


class UnsafeSqlError(ValueError):
    """The model reply did not contain a single clean SELECT."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class SqlExecutionError(RuntimeError):
    """A validated SELECT failed inside SQLite."""

    def __init__(self, message: str, *, sql: str) -> None:
        super().__init__(message)
        self.sql = sql


def build_prompt(sheet: SheetSpec, question: str) -> str:
    return (
        f"{SCHEMA_PROMPT}\n"
        f'Sheet "{sheet.key}" maps to table {sheet.table}. Query ONLY this table.\n'
        f"Always include ORDER BY and LIMIT {CHAT_ROW_LIMIT}.\n"
        "Respond with exactly: <sql>YOUR SELECT HERE</sql>\n"
        f"User question: {question}"
    )


def ensure_order_and_limit(sql: str, default_order: str) -> str:
    """Append ORDER BY <default_order> DESC and/or LIMIT when the query lacks them."""
    updated = sql
    if not _ORDER_BY_RE.search(updated):
        updated += f" ORDER BY {default_order} DESC"
    if not _LIMIT_RE.search(updated):
        updated += f" LIMIT {CHAT_ROW_LIMIT}"
    return updated


def referenced_tables(sql: str) -> Set[str]:
    """Lower-cased names after JOIN and in every comma separated FROM list."""
    names = {m.lower() for m in _JOIN_REF_RE.findall(sql)}
    for start in _FROM_RE.finditer(sql):
        from_list = _FROM_LIST_RE.match(sql, start.end())
        for item in (from_list.group(1) if from_list else "").split(","):
            item = item.strip()
            if not item or item.startswith("("):
                continue
            ident = _IDENT_RE.match(item)
            names.add(ident.group(1).lower() if ident else item.lower())
    return names


def extract_sql_from_tags(text: Optional[str], default_order: str = "created_on") -> Optional[str]:
    """Return the guarded SELECT inside <sql> tags, or None when the reply is unusable.

    - <think> blocks and SQL comments are ignored
    - exactly one statement, starting with SELECT (or a WITH … SELECT)
    - no write keywords and only the inventory data tables
    """
    cleaned = _THINK_RE.sub("", text or "")
    match = _SQL_TAG_RE.search(cleaned)
    if not match:
        return None
    inner = _COMMENT_RE.sub(" ", match.group(1)).strip().rstrip(";").strip()
    if not inner:
        return None
    lowered = inner.lower()
    if not (lowered.startswith("select") or (lowered.startswith("with") and "select" in lowered)):
        return None
    if ";" in inner:
        LOG.warning("Rejected multi-statement SQL: %r", inner)
        return None
    if _FORBIDDEN_RE.search(inner):
        LOG.warning("Rejected SQL with write keyword: %r", inner)
        return None
    cte_names = {m.lower() for m in re.findall(r"\b([A-Za-z_][A-Za-z0-9_]*)\s+as\s*\(", inner, re.IGNORECASE)}
    for table in sorted(referenced_tables(inner)):
        if table not in DATA_TABLES and table not in cte_names:
            LOG.warning("Rejected SQL touching table %r", table)
            return None
    return ensure_order_and_limit(inner, default_order)


def _authorize_read(
    action: int,
    arg1: Optional[str],
    arg2: Optional[str],
    db_name: Optional[str],
    source: Optional[str],
) -> int:
    """sqlite3 authorizer: reads are limited to the data tables, pragmas are denied."""
    if action == sqlite3.SQLITE_PRAGMA:
        return sqlite3.SQLITE_DENY
    if action == sqlite3.SQLITE_READ and (arg1 or "").lower() not in DATA_TABLES:
        return sqlite3.SQLITE_DENY
    return sqlite3.SQLITE_OK


class SqlChat:
    """Relay a question to the LLM, guard its SQL and run it read-only."""

    def __init__(
        self,
        db: InventoryDatabase,
        config: LLMConfig,
        *,
        client_factory: Optional[Callable[[LLMConfig], ChatClient]] = None,
    ) -> None:
        self.db = db
        self.config = config
        self._client_factory = client_factory or build_chat_client

    def _complete(self, prompt: str) -> str:
        client = self._client_factory(self.config)
        try:
            return client.complete(prompt)
        finally:
            client.close()

    def ask(self, sheet_key: Optional[str], question: str) -> Dict[str, Any]:
        sheet = sheet_for(sheet_key)
        if not self.config.api_key:
            raise ChatConfigError(f"API key for LLM backend '{self.config.backend}' missing in backend .env")

        prompt = build_prompt(sheet, question)
        LOG.info("Chat request sheet=%s model=%s", sheet.key, self.config.model_name)
        LOG.debug("Chat prompt: %s", prompt)
        raw = self._complete(prompt)

        sql = extract_sql_from_tags(raw, sheet.order_by)
        if not sql:
            LOG.error("Invalid SQL from LLM: %r", raw[:500])
            raise UnsafeSqlError("LLM did not return a clean SELECT query in <sql> tags", raw=raw)

        try:
            with self.db.connect_readonly() as conn:
                conn.set_authorizer(_authorize_read)
                rows = [dict(r) for r in conn.execute(sql).fetchall()]
        except sqlite3.Error as exc:
            LOG.error("Chat SQL error: %s (sql=%s)", exc, sql)
            raise SqlExecutionError(str(exc), sql=sql) from exc
        LOG.info("Executed chat SQL: %s rows=%d", sql, len(rows))
        return {"sql": sql, "rows": rows}
