from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Sequence

from ..config import load_db_path, load_llm, load_server
from ..inventory import InventoryDatabase, InventoryService, SqlChat
from ..inventory.chat import ChatConfigError, SqlExecutionError, UnsafeSqlError
from ..inventory.constants import DEFAULT_SHEET, SHEETS
from ..inventory.export import export_to_file
from ..inventory.parser import PayloadValidationError
from ..llm.client import LLMError
from ..logging import configure_logging, get_logger
from ..paths import expand_abs

LOG = get_logger("cli-main")


def _open_db(ns: argparse.Namespace) -> InventoryDatabase:
    path = expand_abs(ns.db) if ns.db else load_db_path(os.getcwd())
    return InventoryDatabase(path)


def _add_serve_cli(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    serve = subparsers.add_parser(
        "serve",
        help="Run the inventory JSON API and optional static frontend.",
    )
    serve.add_argument("--host", help="Bind address (default: HOST from env/.env or 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Port (default: PORT from env/.env or 5001)")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (development only)")
    serve.add_argument(
        "--log-level",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Log level for uvicorn and the app (default: info; app logs follow LOG_LEVEL)",
    )
    serve.add_argument("--static-dir", help="Override static frontend directory relative to project root")
    serve.add_argument("--api-only", action="store_true", help="Serve JSON API without static frontend")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..inventory.frontend.app import create_app
        import uvicorn

        if ns.log_level:
            configure_logging(ns.log_level)
        host, port, origins = load_server(os.getcwd())
        app = create_app(
            root_dir=os.getcwd(),
            db_path=expand_abs(ns.db) if ns.db else None,
            static_dir=ns.static_dir,
            allow_origins=ns.allow_origins or origins,
            serve_static=not ns.api_only,
        )
        uvicorn.run(
            app,
            host=ns.host or host,
            port=ns.port or port,
            reload=ns.reload,
            log_level=ns.log_level or "info",
        )
        return 0

    serve.set_defaults(handler=_serve)


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.info("Inventory CLI invoked with arguments: %s", provided)

    parser = argparse.ArgumentParser(
        prog="inventory-suite",
        description="Inventory pricing backend: database, API server, exports and SQL chat.",
    )
    parser.add_argument("--db", help="SQLite file (default: INVENTORY_DB_PATH or var/inventory/inventory.sqlite3)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_cmd = subparsers.add_parser("init", help="Create/ensure the inventory DB schema exists")

    def _init(ns: argparse.Namespace) -> int:
        db = _open_db(ns)
        LOG.info("Inventory DB ready at: %s", db.db_path)
        print(db.db_path)
        return 0

    init_cmd.set_defaults(handler=_init)

    _add_serve_cli(subparsers)

    rate_cmd = subparsers.add_parser("rate", help="Show or set the global exchange rate")
    rate_cmd.add_argument("--set", dest="value", help="New exchange rate (> 0); item prices are recomputed")

    def _rate(ns: argparse.Namespace) -> int:
        service = InventoryService(_open_db(ns))
        if ns.value is None:
            print(service.get_exchange_rate())
            return 0
        try:
            rate = service.set_exchange_rate(ns.value)
        except PayloadValidationError as exc:
            LOG.error("Invalid exchange rate %r: %s", ns.value, exc)
            return 2
        print(rate)
        return 0

    rate_cmd.set_defaults(handler=_rate)

    export_cmd = subparsers.add_parser("export", help="Write a sheet to an Excel workbook")
    export_cmd.add_argument("--sheet", choices=sorted(SHEETS), default=DEFAULT_SHEET)
    export_cmd.add_argument("--output", required=True, help="Target .xlsx file")
    export_cmd.add_argument(
        "--append",
        action="store_true",
        help="Replace the sheet inside an existing workbook instead of overwriting the file",
    )

    def _export(ns: argparse.Namespace) -> int:
        db = _open_db(ns)
        sheet = SHEETS[ns.sheet]
        path = export_to_file(sheet, db.fetch_sheet_rows(sheet), expand_abs(ns.output), append=ns.append)
        print(path)
        return 0

    export_cmd.set_defaults(handler=_export)

    chat_cmd = subparsers.add_parser("chat", help="Ask a question; the LLM writes a read-only SELECT")
    chat_cmd.add_argument("question")
    chat_cmd.add_argument("--sheet", choices=sorted(SHEETS), default=DEFAULT_SHEET)

    def _chat(ns: argparse.Namespace) -> int:
        chat = SqlChat(_open_db(ns), load_llm(os.getcwd()))
        try:
            result = chat.ask(ns.sheet, ns.question)
        except ChatConfigError as exc:
            LOG.error("%s", exc)
            return 2
        except LLMError as exc:
            LOG.error("LLM call failed: %s (%s)", exc, exc.detail)
            return 1
        except UnsafeSqlError as exc:
            LOG.error("%s; reply was: %r", exc, exc.raw[:500])
            return 1
        except SqlExecutionError as exc:
            LOG.error("Chat SQL failed: %s (sql=%s)", exc, exc.sql)
            return 1
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return 0

    chat_cmd.set_defaults(handler=_chat)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.info("Subcommand '%s' finished with exit code %s.", args.command, code)
    return code


if __name__ == "__main__":
    sys.exit(main())
