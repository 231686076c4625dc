from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from app.api.v1.deps import get_profile_system_dep, require_admin_secret
from app.api.v1.schemas import BulkRefreshRequest, ForceRefreshRequest, RefreshEnqueuedResponse
from app.services.profile_system import ProfileSystem
from app.services.refresh.scheduler import HealthReport, RefreshRunResult, RefreshStatus
from app.workers.queue import enqueue_job

router = APIRouter(prefix="/refresh", tags=["refresh"], dependencies=[Depends(require_admin_secret)])
logger = logging.getLogger(__name__)


@router.get("/status", response_model=RefreshStatus)
def refresh_status(system: ProfileSystem = Depends(get_profile_system_dep)) -> RefreshStatus:
    return system.get_refresh_status()


@router.get("/health", response_model=HealthReport)
def refresh_health(system: ProfileSystem = Depends(get_profile_system_dep)) -> HealthReport:
    return system.health_check()


@router.post("/run", response_model=RefreshRunResult | RefreshEnqueuedResponse)
def run_refresh(
    background: bool = Query(default=False),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> RefreshRunResult | RefreshEnqueuedResponse:
    if background:
        job_id = enqueue_job("run_scheduled_refresh")
        return RefreshEnqueuedResponse(job_id=job_id, status="queued")
    return system.run_smart_refresh()


@router.post("/force", response_model=RefreshRunResult)
def force_refresh(
    payload: ForceRefreshRequest,
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> RefreshRunResult:
    logger.info(
        "forced_refresh_requested",
        extra={
            "sources": [kind.value for kind in payload.sources] if payload.sources else "all",
            "max_profiles": payload.max_profiles,
        },
    )
    return system.force_refresh(sources=payload.sources, max_profiles=payload.max_profiles)


@router.post("/bulk", response_model=RefreshRunResult)
def bulk_refresh(
    payload: BulkRefreshRequest,
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> RefreshRunResult:
    return system.bulk_refresh(payload.entity_keys, sources=payload.sources)
