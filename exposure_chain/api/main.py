from __future__ import annotations

import asyncio
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from exposure_chain.config import settings
from exposure_chain.contracts.payloads import (
    ChainLinkResponse,
    DeleteReportResponse,
    NegativeReportRequest,
    NegativeReportResponse,
    PositiveReportRequest,
    PositiveReportResponse,
    ProcessReportResponse,
)
from exposure_chain.domain.conditions import load_catalog
from exposure_chain.events.bus import InMemoryEventBus
from exposure_chain.infra.logging import configure_logging, get_logger
from exposure_chain.infra.push import build_push_gateway
from exposure_chain.infra.store import build_store
from exposure_chain.services.report_processor import ReportProcessor
from exposure_chain.services.report_service import ReportService

configure_logging(json_output=settings.log_json, level=settings.log_level)
logger = get_logger(__name__)

app = FastAPI(title="Exposure Chain API", version="1.0.0")
store, using_supabase, store_message = build_store(settings)
gateway = build_push_gateway(settings)
bus = InMemoryEventBus()
catalog = load_catalog(settings.conditions_config_path)
processor = ReportProcessor(store, gateway, config=settings, catalog=catalog, bus=bus)
service = ReportService(store, gateway, config=settings, bus=bus)

_background: set[asyncio.Task[Any]] = set()


def _on_processed(task: asyncio.Task[Any]) -> None:
    _background.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("background_processing_failed", error=str(exc), error_type=type(exc).__name__)


def _schedule_processing(envelope: dict[str, Any]) -> None:
    task = asyncio.get_running_loop().create_task(processor.handle_event(envelope))
    _background.add(task)
    task.add_done_callback(_on_processed)


def _audit(envelope: dict[str, Any]) -> None:
    logger.info("event_published", event_type=envelope["event_type"], report_id=envelope["report_id"])


bus.subscribe("report.created", _schedule_processing)
bus.subscribe("*", _audit)

if store_message:
    logger.warning("store_backend_degraded", detail=store_message)


def _caller(x_user_id: str = Header(..., alias="X-User-ID")) -> str:
    uid = x_user_id.strip()
    if not uid:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return uid


@app.exception_handler(ValueError)
async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
async def permission_error_handler(_request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(LookupError)
async def not_found_handler(_request: Request, exc: LookupError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "persistence": "supabase" if using_supabase else "memory",
        "store_message": store_message,
        "push_backend": settings.push_backend,
        "window_policy": settings.window_policy,
        "max_chain_depth": settings.effective_max_depth(),
    }


@app.post("/reports/positive", response_model=PositiveReportResponse)
async def submit_positive(payload: PositiveReportRequest, uid: str = Depends(_caller)) -> dict[str, Any]:
    return await service.submit_positive(
        uid,
        condition_types=payload.condition_types,
        test_date=payload.test_date,
        disclosure_level=payload.disclosure_level,
    )


@app.post("/reports/negative", response_model=NegativeReportResponse)
async def submit_negative(payload: NegativeReportRequest, uid: str = Depends(_caller)) -> dict[str, Any]:
    return await service.submit_negative(
        uid,
        condition_type=payload.condition_type,
        target_notification_id=payload.target_notification_id,
    )


@app.get("/reports/chain-link", response_model=ChainLinkResponse)
async def check_chain_link(
    condition_type: str | None = Query(default=None, max_length=50),
    uid: str = Depends(_caller),
) -> dict[str, Any]:
    return await service.check_chain_link(uid, condition_type)


@app.delete("/reports/{report_id}", response_model=DeleteReportResponse)
async def delete_report(report_id: str, uid: str = Depends(_caller)) -> dict[str, Any]:
    return await service.delete_report(uid, report_id)


@app.post("/reports/{report_id}/process", response_model=ProcessReportResponse)
async def process_report(report_id: str) -> dict[str, Any]:
    return await processor.process(report_id)
