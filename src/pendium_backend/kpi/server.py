from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .billing import build_billing_source
from .config import AnalyticsConfig, BillingConfig
from .dispatcher import KpiDispatcher, KpiQuery
from .errors import BillingServiceError, EventStoreError, KpiInputError, RosterNotFoundError
from .repository import build_repository_from_env

logger = logging.getLogger(__name__)

app = FastAPI(title="Pendium KPI API", version="0.1.0")


def register_error_handlers(target: FastAPI) -> None:
    """Map the KPI error taxonomy onto HTTP responses for ``target``."""

    @target.exception_handler(KpiInputError)
    async def _input_error(request: Request, exc: KpiInputError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @target.exception_handler(EventStoreError)
    async def _store_error(request: Request, exc: EventStoreError) -> JSONResponse:
        logger.error("Event store failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @target.exception_handler(BillingServiceError)
    async def _billing_error(request: Request, exc: BillingServiceError) -> JSONResponse:
        logger.error("Billing failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": "Billing service unavailable"})

    @target.exception_handler(RosterNotFoundError)
    async def _roster_missing(request: Request, exc: RosterNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "BetaUser not found"})


register_error_handlers(app)


_installed: Optional[KpiDispatcher] = None


def install_dispatcher(dispatcher: Optional[KpiDispatcher]) -> None:
    """Use ``dispatcher`` instead of one built from environment variables."""
    global _installed
    _installed = dispatcher


@lru_cache(maxsize=1)
def _dispatcher_from_env() -> Optional[KpiDispatcher]:
    repository = build_repository_from_env()
    if repository is None:
        return None
    return KpiDispatcher(
        repository,
        AnalyticsConfig.from_env(),
        billing=build_billing_source(BillingConfig.from_env()),
    )


def get_dispatcher() -> KpiDispatcher:
    dispatcher = _installed or _dispatcher_from_env()
    if dispatcher is None:
        raise HTTPException(
            status_code=503,
            detail="No event store configured; set MONGO_URL or DATABASE_URL.",
        )
    return dispatcher


def _query(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    preset: Optional[str] = Query(None, alias="range"),
    bins: Optional[str] = Query(None),
    cohort: Optional[str] = Query(None),
) -> KpiQuery:
    return KpiQuery(start_date=start_date, end_date=end_date, preset=preset, bins=bins, cohort=cohort)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/kpi/kinds")
async def kpi_kinds() -> List[Dict[str, str]]:
    return KpiDispatcher.kinds()


@app.get("/kpi")
async def kpi_endpoint(
    kpi: Optional[str] = Query(None),
    query: KpiQuery = Depends(_query),
    dispatcher: KpiDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    return await asyncio.to_thread(dispatcher.dispatch, kpi, query)


@app.get("/kpi/batch")
async def kpi_batch_endpoint(
    kpi: Optional[List[str]] = Query(None),
    query: KpiQuery = Depends(_query),
    dispatcher: KpiDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    return await asyncio.to_thread(dispatcher.dispatch_many, kpi or [], query)
