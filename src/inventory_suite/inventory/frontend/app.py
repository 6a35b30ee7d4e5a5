from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route
from starlette.staticfiles import StaticFiles

from ...config import LLMConfig, load_llm
from ...llm.client import ChatClient, LLMError
from ...logging import get_logger
from ...paths import find_project_root
from ..chat import ChatConfigError, SqlChat, SqlExecutionError, UnsafeSqlError
from ..constants import SHEETS
from ..db import DuplicateRecord, InventoryDatabase, RecordNotFound
from ..export import XLSX_MIME, workbook_bytes
from ..parser import PayloadValidationError
from ..service import InventoryService


LOG = get_logger("inventory-api")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "dist")


def _truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise PayloadValidationError("Request body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise PayloadValidationError("Request body must be a JSON object")
    return data


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


async def _http_exception(_: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def _validation_error(_: Request, exc: PayloadValidationError) -> JSONResponse:
    return _error(400, str(exc))


async def _not_found(_: Request, exc: RecordNotFound) -> JSONResponse:
    return _error(404, str(exc) or "not found")


async def _duplicate(_: Request, exc: DuplicateRecord) -> JSONResponse:
    return _error(409, str(exc))


async def _unhandled(_: Request, exc: Exception) -> JSONResponse:
    LOG.error("Unhandled error: %s", exc, exc_info=exc)
    return _error(500, "Internal server error")


def create_app(
    root_dir: Optional[str] = None,
    *,
    db_path: Optional[str] = None,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = True,
    llm_config: Optional[LLMConfig] = None,
    chat_client_factory: Optional[Callable[[LLMConfig], ChatClient]] = None,
) -> Starlette:
    """Create a Starlette app exposing the inventory API and optional frontend."""

    project_root = find_project_root(root_dir)
    db = InventoryDatabase(db_path, root_dir=project_root)
    service = InventoryService(db)
    chat = SqlChat(db, llm_config or load_llm(project_root), client_factory=chat_client_factory)

    resolved_static_dir: Optional[str] = None
    if serve_static:
        candidate = os.path.abspath(os.path.join(project_root, static_dir or DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)
    else:
        LOG.info("Static frontend serving disabled (API only mode).")

    async def root(_: Request) -> PlainTextResponse:
        return PlainTextResponse("Backend is running")

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path})

    # ---------------- exchange rate ----------------
    async def exchange_rate_get(_: Request) -> JSONResponse:
        return JSONResponse({"exchange_rate": service.get_exchange_rate()})

    async def exchange_rate_put(request: Request) -> JSONResponse:
        body = await _json_body(request)
        rate = service.set_exchange_rate(body.get("exchange_rate"))
        return JSONResponse({"exchange_rate": rate})

    # ---------------- items ----------------
    async def items_list(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_items())

    async def items_search(request: Request) -> JSONResponse:
        query = (request.query_params.get("query") or "").strip()
        return JSONResponse(db.search_items(query) if query else [])

    async def items_create(request: Request) -> JSONResponse:
        return JSONResponse(service.create_item(await _json_body(request)), status_code=201)

    async def item_detail(request: Request) -> JSONResponse:
        item = db.fetch_item(request.path_params["item_id"])
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        return JSONResponse(item)

    async def item_update(request: Request) -> JSONResponse:
        item_id = request.path_params["item_id"]
        return JSONResponse(service.update_item(item_id, await _json_body(request)))

    async def item_delete(request: Request) -> JSONResponse:
        service.delete_item(request.path_params["item_id"])
        return JSONResponse({"success": True})

    # ---------------- base items ----------------
    def _base_key(request: Request) -> Any:
        if "base_id" in request.path_params:
            return int(request.path_params["base_id"])
        return str(request.path_params["name"])

    async def base_list(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_base_items())

    async def base_search(request: Request) -> JSONResponse:
        query = (request.query_params.get("query") or "").strip()
        return JSONResponse(db.search_base_items(query) if query else [])

    async def base_brands(request: Request) -> JSONResponse:
        query = (request.query_params.get("query") or "").strip()
        return JSONResponse(db.search_brands(query) if query else [])

    async def base_create(request: Request) -> JSONResponse:
        return JSONResponse(service.create_base_item(await _json_body(request)), status_code=201)

    async def base_detail(request: Request) -> JSONResponse:
        key = _base_key(request)
        row = db.fetch_base_item(key) if isinstance(key, int) else db.fetch_base_item_by_name(key)
        if row is None:
            raise HTTPException(status_code=404, detail="not found")
        return JSONResponse(row)

    async def base_update(request: Request) -> JSONResponse:
        return JSONResponse(service.update_base_item(_base_key(request), await _json_body(request)))

    async def base_delete(request: Request) -> JSONResponse:
        service.delete_base_item(_base_key(request))
        return JSONResponse({"success": True})

    # ---------------- bills ----------------
    async def bills_list(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_bills())

    async def bills_search(request: Request) -> JSONResponse:
        qp = request.query_params
        rows = db.search_bills(
            vendor_name=(qp.get("vendor_name") or "").strip() or None,
            created_on=(qp.get("created_on") or "").strip() or None,
            name=(qp.get("name") or "").strip() or None,
        )
        return JSONResponse(rows)

    async def bills_create(request: Request) -> JSONResponse:
        return JSONResponse(service.create_bill(await _json_body(request)), status_code=201)

    async def bill_detail(request: Request) -> JSONResponse:
        return JSONResponse(service.bill_detail(request.path_params["bill_no"]))

    async def bill_update(request: Request) -> JSONResponse:
        bill_no = request.path_params["bill_no"]
        return JSONResponse(service.update_bill(bill_no, await _json_body(request)))

    async def bill_delete(request: Request) -> JSONResponse:
        service.delete_bill(request.path_params["bill_no"])
        return JSONResponse({"success": True})

    async def bill_item_create(request: Request) -> JSONResponse:
        bill_no = request.path_params["bill_no"]
        return JSONResponse(service.add_bill_item(bill_no, await _json_body(request)), status_code=201)

    async def bill_item_update(request: Request) -> JSONResponse:
        pp = request.path_params
        return JSONResponse(service.update_bill_item(pp["bill_no"], pp["item_id"], await _json_body(request)))

    async def bill_item_delete(request: Request) -> JSONResponse:
        pp = request.path_params
        total = service.delete_bill_item(pp["bill_no"], pp["item_id"])
        return JSONResponse({"success": True, "total_price": total})

    # ---------------- purchases ----------------
    async def purchases_list(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_purchases())

    async def purchases_search(request: Request) -> JSONResponse:
        query = (request.query_params.get("query") or "").strip()
        return JSONResponse(db.search_purchases(query) if query else [])

    async def purchase_detail(request: Request) -> JSONResponse:
        row = db.fetch_purchase(request.path_params["purchase_id"])
        if row is None:
            raise HTTPException(status_code=404, detail="not found")
        return JSONResponse(row)

    async def purchase_update(request: Request) -> JSONResponse:
        purchase_id = request.path_params["purchase_id"]
        return JSONResponse(service.update_purchase(purchase_id, await _json_body(request)))

    async def purchase_delete(request: Request) -> JSONResponse:
        total = service.delete_purchase(request.path_params["purchase_id"])
        return JSONResponse({"success": True, "total_price": total})

    # ---------------- final entries ----------------
    async def final_list(request: Request) -> JSONResponse:
        qp = request.query_params
        name = (qp.get("name") or "").strip() or None
        fetch_all = _truthy(qp.get("all"))
        LOG.debug("Final list filter=%r all=%s", name, fetch_all)
        return JSONResponse(db.fetch_final_entries(name=name, fetch_all=fetch_all))

    async def final_names(_: Request) -> JSONResponse:
        return JSONResponse(db.fetch_final_names())

    async def final_by_name(request: Request) -> JSONResponse:
        row = db.fetch_final_entry(request.path_params["name"])
        if row is None:
            raise HTTPException(status_code=404, detail="Entry not found")
        return JSONResponse(row)

    async def final_update(request: Request) -> JSONResponse:
        name = request.path_params["name"].strip()
        if not name:
            raise HTTPException(status_code=400, detail="Name is required")
        return JSONResponse(service.update_final_entry(name, await _json_body(request)))

    # ---------------- chat ----------------
    async def chat_query(request: Request) -> JSONResponse:
        body = await _json_body(request)
        question = str(body.get("query") or "").strip()
        if not question:
            raise HTTPException(status_code=400, detail="query is required")
        sheet = body.get("sheet") or "final"
        try:
            payload = await run_in_threadpool(chat.ask, str(sheet), question)
        except ChatConfigError as exc:
            return _error(500, str(exc))
        except LLMError as exc:
            return _error(502, str(exc), detail=exc.detail)
        except UnsafeSqlError as exc:
            return _error(400, str(exc))
        except SqlExecutionError as exc:
            return _error(400, "SQL failed", detail=str(exc), sql=exc.sql)
        return JSONResponse(payload)

    # ---------------- export ----------------
    async def export_sheet(request: Request) -> Response:
        key = request.path_params["sheet"]
        sheet = SHEETS.get(key)
        if sheet is None:
            raise HTTPException(status_code=404, detail=f"Unknown sheet: {key}")
        content = workbook_bytes(sheet, db.fetch_sheet_rows(sheet))
        filename = f"{sheet.key}_export.xlsx"
        return Response(
            content,
            media_type=XLSX_MIME,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    routes = [
        Route("/", root, methods=["GET"]),
        Route("/api/health", health, methods=["GET"]),
        Route("/api/exchange-rate", exchange_rate_get, methods=["GET"]),
        Route("/api/exchange-rate", exchange_rate_put, methods=["PUT"]),
        Route("/api/items", items_list, methods=["GET"]),
        Route("/api/items", items_create, methods=["POST"]),
        Route("/api/items/search", items_search, methods=["GET"]),
        Route("/api/items/{item_id:int}", item_detail, methods=["GET"]),
        Route("/api/items/{item_id:int}", item_update, methods=["PUT"]),
        Route("/api/items/{item_id:int}", item_delete, methods=["DELETE"]),
        Route("/api/base-items", base_list, methods=["GET"]),
        Route("/api/base-items", base_create, methods=["POST"]),
        Route("/api/base-items/search", base_search, methods=["GET"]),
        Route("/api/base-items/brands", base_brands, methods=["GET"]),
        Route("/api/base-items/by-name/{name:str}", base_detail, methods=["GET"]),
        Route("/api/base-items/by-name/{name:str}", base_update, methods=["PUT"]),
        Route("/api/base-items/by-name/{name:str}", base_delete, methods=["DELETE"]),
        Route("/api/base-items/{base_id:int}", base_detail, methods=["GET"]),
        Route("/api/base-items/{base_id:int}", base_update, methods=["PUT"]),
        Route("/api/base-items/{base_id:int}", base_delete, methods=["DELETE"]),
        Route("/api/bills", bills_list, methods=["GET"]),
        Route("/api/bills", bills_create, methods=["POST"]),
        Route("/api/bills/search", bills_search, methods=["GET"]),
        Route("/api/bills/{bill_no:int}", bill_detail, methods=["GET"]),
        Route("/api/bills/{bill_no:int}", bill_update, methods=["PUT"]),
        Route("/api/bills/{bill_no:int}", bill_delete, methods=["DELETE"]),
        Route("/api/bills/{bill_no:int}/items", bill_item_create, methods=["POST"]),
        Route("/api/bills/{bill_no:int}/items/{item_id:int}", bill_item_update, methods=["PUT"]),
        Route("/api/bills/{bill_no:int}/items/{item_id:int}", bill_item_delete, methods=["DELETE"]),
        Route("/api/purchases", purchases_list, methods=["GET"]),
        Route("/api/purchases/search", purchases_search, methods=["GET"]),
        Route("/api/purchases/{purchase_id:int}", purchase_detail, methods=["GET"]),
        Route("/api/purchases/{purchase_id:int}", purchase_update, methods=["PUT"]),
        Route("/api/purchases/{purchase_id:int}", purchase_delete, methods=["DELETE"]),
        Route("/api/final", final_list, methods=["GET"]),
        Route("/api/final/names/all", final_names, methods=["GET"]),
        Route("/api/final/by-name/{name:str}", final_by_name, methods=["GET"]),
        Route("/api/final/{name:str}", final_update, methods=["PUT"]),
        Route("/api/chat", chat_query, methods=["POST"]),
        Route("/api/export/{sheet:str}", export_sheet, methods=["GET"]),
    ]

    origins = allow_origins or ["*"]
    cors_allow_origins = ["*"] if "*" in origins else origins
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials="*" not in cors_allow_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        middleware=middleware,
        exception_handlers={
            HTTPException: _http_exception,
            PayloadValidationError: _validation_error,
            RecordNotFound: _not_found,
            DuplicateRecord: _duplicate,
            Exception: _unhandled,
        },
    )

    if resolved_static_dir:
        app.mount("/app", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")

    return app


__all__ = ["create_app"]
