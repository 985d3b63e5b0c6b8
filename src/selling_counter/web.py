"""HTTP handlers for the Selling Counter UI.

Handlers stay thin: they decode JSON, call :mod:`selling_counter.core_logic`,
and shape the response. The store is mutable, so nothing here may be cached.
"""

from __future__ import annotations

import io
import json
from typing import Any

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from . import core_logic, data_manager, log, report_workbook
from .constants import DOWNLOAD_FILE_NAME, REPORT_FILE_NAME

NO_STORE = {"Cache-Control": "no-store"}
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _row_payload(row: data_manager.SaleRow) -> dict[str, Any]:
    return {
        "productName": row.product_name,
        "price": row.price,
        "quantity": row.quantity,
        "paymentMethod": row.payment_method,
    }


def snapshot_payload(snapshot: core_logic.LedgerSnapshot) -> dict[str, Any]:
    """Shape a ledger snapshot as the JSON document served to the UI."""

    return {
        "rows": [_row_payload(row) for row in snapshot.rows],
        "byProduct": [
            {"productName": total.product_name, "quantity": total.total_quantity, "price": total.price}
            for total in snapshot.by_product
        ],
        "byPayment": [
            {"paymentMethod": total.payment_method, "quantity": total.total_quantity}
            for total in snapshot.by_payment
        ],
    }


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{filename}"', **NO_STORE}


def build_router(context: core_logic.RuntimeContext) -> APIRouter:
    router = APIRouter(prefix="/api/sales", tags=["sales"])

    @router.get("")
    def list_sales() -> JSONResponse:
        snapshot = core_logic.list_sales(context)
        return JSONResponse(snapshot_payload(snapshot), headers=NO_STORE)

    @router.post("")
    async def record_sale(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.warning("Sale request rejected: body is not valid JSON")
            raise core_logic.ValidationError("Body is not valid JSON") from exc
        command = core_logic.parse_sale_payload(payload)
        await run_in_threadpool(core_logic.record_sale, context, command)
        return JSONResponse({"ok": True})

    @router.delete("")
    def reset_sales() -> JSONResponse:
        core_logic.reset_ledger(context)
        return JSONResponse({"ok": True})

    @router.head("")
    def probe_sales() -> Response:
        size = core_logic.probe_ledger_size(context)
        return Response(headers={"x-size": str(size), **NO_STORE})

    @router.get("/download")
    def download_sales() -> Response:
        content = core_logic.export_ledger_csv(context)
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers=_attachment(DOWNLOAD_FILE_NAME),
        )

    @router.get("/report.xlsx")
    def download_report() -> Response:
        workbook = report_workbook.build_report_workbook(core_logic.list_sales(context))
        buffer = io.BytesIO()
        workbook.save(buffer)
        return Response(
            content=buffer.getvalue(),
            media_type=XLSX_MEDIA_TYPE,
            headers=_attachment(REPORT_FILE_NAME),
        )

    return router


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        {"error": "Invalid payload", "detail": str(exc)},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        {"error": "Sales ledger is unavailable"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def create_app(context: core_logic.RuntimeContext) -> FastAPI:
    """Build the FastAPI application serving the ledger for ``context``."""

    app = FastAPI(title="Selling Counter", docs_url=None, redoc_url=None)
    app.include_router(build_router(context))
    app.add_exception_handler(core_logic.ValidationError, validation_error_handler)
    app.add_exception_handler(data_manager.StorageUnavailable, storage_error_handler)
    return app
