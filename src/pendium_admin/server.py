"""FastAPI server for the Pendium admin dashboard."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from pendium_backend.kpi.billing import build_billing_source
from pendium_backend.kpi.dispatcher import KpiDispatcher
from pendium_backend.kpi.repository import EventStoreRepository, build_repository_from_env
from pendium_backend.kpi.server import app as kpi_app
from pendium_backend.kpi.server import install_dispatcher, register_error_handlers

from .configuration import AdminConfig, load_admin_config
from .roster import BetaRosterService, RosterListQuery
from .users import UserDirectory, UserListQuery

logger = logging.getLogger(__name__)

config: AdminConfig = load_admin_config()
repository: Optional[EventStoreRepository] = build_repository_from_env(config.repository)

if repository is not None:
    install_dispatcher(
        KpiDispatcher(repository, config.analytics, billing=build_billing_source(config.billing))
    )
else:
    logger.warning("No event store configured; data endpoints will answer 503")

app = FastAPI(title="Pendium Admin API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)
app.mount("/api/kpi", kpi_app)


class BetaUserPayload(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    cohort: Optional[str] = None
    status: Optional[str] = None
    usage: Optional[int] = None
    profession: Optional[str] = None
    invite_sent: Optional[bool] = None
    source: Optional[str] = None


class DeleteMultipleRequest(BaseModel):
    betaUserIds: List[str] = Field(default_factory=list)


def get_admin_config() -> AdminConfig:
    return config


def get_repository() -> EventStoreRepository:
    if repository is None:
        raise HTTPException(
            status_code=503,
            detail="No event store configured; set MONGO_URL or DATABASE_URL.",
        )
    return repository


def get_user_directory(
    store: EventStoreRepository = Depends(get_repository),
    settings: AdminConfig = Depends(get_admin_config),
) -> UserDirectory:
    return UserDirectory(store, settings.analytics)


def get_roster_service(store: EventStoreRepository = Depends(get_repository)) -> BetaRosterService:
    return BetaRosterService(store)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/users")
async def list_users(
    page: int = Query(1),
    per_page: int = Query(10, alias="perPage"),
    search: str = Query(""),
    user_filter: str = Query("", alias="userFilter"),
    user_group_filter: str = Query("", alias="userGroupFilter"),
    status_filter: str = Query("", alias="statusFilter"),
    preset_range_filter: str = Query("", alias="presetRangeFilter"),
    user_cohort: str = Query("", alias="userCohort"),
    directory: UserDirectory = Depends(get_user_directory),
) -> Dict[str, Any]:
    query = UserListQuery(
        page=page,
        per_page=per_page,
        search=search,
        user_filter=user_filter,
        user_group_filter=user_group_filter,
        status_filter=status_filter,
        preset_range_filter=preset_range_filter,
        user_cohort=user_cohort,
    )
    return await asyncio.to_thread(directory.list_users, query)


@app.get("/api/betalist")
async def list_beta_users(
    page: int = Query(1),
    per_page: int = Query(10, alias="perPage"),
    search: str = Query(""),
    status: str = Query(""),
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, Any]:
    query = RosterListQuery(page=page, per_page=per_page, search=search, status=status)
    return await asyncio.to_thread(roster.list_entries, query)


@app.post("/api/betalist", status_code=201)
async def create_beta_user(
    payload: BetaUserPayload,
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, Any]:
    return await asyncio.to_thread(roster.create_entry, payload.model_dump(exclude_none=True))


@app.post("/api/betalist/delete-multiple")
async def delete_beta_users(
    payload: DeleteMultipleRequest,
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, Any]:
    return await asyncio.to_thread(roster.delete_entries, payload.betaUserIds)


@app.get("/api/betalist/{entry_id}")
async def show_beta_user(
    entry_id: str,
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, Any]:
    return await asyncio.to_thread(roster.get_entry, entry_id)


@app.put("/api/betalist/{entry_id}")
async def update_beta_user(
    entry_id: str,
    payload: BetaUserPayload,
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, Any]:
    return await asyncio.to_thread(roster.update_entry, entry_id, payload.model_dump(exclude_none=True))


@app.delete("/api/betalist/{entry_id}")
async def delete_beta_user(
    entry_id: str,
    roster: BetaRosterService = Depends(get_roster_service),
) -> Dict[str, str]:
    return await asyncio.to_thread(roster.delete_entry, entry_id)
