from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from app.api.v1.deps import get_profile_system_dep
from app.api.v1.schemas import (
    LegacySearchRequest,
    LegacySearchResponse,
    ProfileHistoryEntry,
    ProfileHistoryResponse,
)
from app.core.errors import MissingFinancialData, ProfileValidationError, ProfileVersionConflict
from app.services.profile_system import ProfileSystem
from app.services.profiles.legacy import LegacyContractor
from app.services.profiles.sources import SourceKind
from app.services.profiles.types import CacheStats, ConsolidatedProfile, ProfileFilters, ProfilePage

router = APIRouter(prefix="/profiles", tags=["profiles"])
logger = logging.getLogger(__name__)


def profile_filters(
    entity_keys: list[str] | None = Query(default=None),
    industries: list[str] | None = Query(default=None),
    size_tiers: list[str] | None = Query(default=None),
    states: list[str] | None = Query(default=None),
    performance_ratings: list[str] | None = Query(default=None),
    min_performance_score: float | None = Query(default=None, ge=0, le=100),
    max_performance_score: float | None = Query(default=None, ge=0, le=100),
    require_sources: list[SourceKind] | None = Query(default=None),
    min_completeness: int | None = Query(default=None, ge=0, le=100),
    min_revenue: float | None = Query(default=None),
    max_revenue: float | None = Query(default=None),
    max_age_hours: float | None = Query(default=None, gt=0),
    exclude_stale: bool = Query(default=False),
) -> ProfileFilters:
    return ProfileFilters(
        entity_keys=entity_keys,
        industries=industries,
        size_tiers=size_tiers,
        states=states,
        performance_ratings=performance_ratings,
        min_performance_score=min_performance_score,
        max_performance_score=max_performance_score,
        require_sources=require_sources or [],
        min_completeness=min_completeness,
        min_revenue=min_revenue,
        max_revenue=max_revenue,
        max_age_hours=max_age_hours,
        exclude_stale=exclude_stale,
    )


@router.get("", response_model=ProfilePage)
def list_profiles(
    filters: ProfileFilters = Depends(profile_filters),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    sort_by: str = Query(default="composite_performance_score"),
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ProfilePage:
    return system.list_profiles(filters, limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order)


@router.get("/search", response_model=ProfilePage)
def search_profiles(
    q: str = Query(default="", max_length=200),
    filters: ProfileFilters = Depends(profile_filters),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ProfilePage:
    return system.search_profiles(q, filters, limit=limit, offset=offset)


@router.get("/stats", response_model=CacheStats)
def cache_stats(system: ProfileSystem = Depends(get_profile_system_dep)) -> CacheStats:
    return system.get_cache_stats()


@router.post("/legacy/search", response_model=LegacySearchResponse)
def search_legacy_contractors(
    payload: LegacySearchRequest,
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> LegacySearchResponse:
    contractors, total = system.search_legacy_contractors(
        payload.query,
        payload.filters,
        limit=payload.limit,
        offset=payload.offset,
    )
    return LegacySearchResponse(contractors=contractors, total_count=total)


@router.get("/{entity_key}", response_model=ConsolidatedProfile)
def get_profile(
    entity_key: str,
    include_stale: bool = Query(default=False),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ConsolidatedProfile:
    profile = system.get_profile(entity_key, include_stale=include_stale)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile


@router.get("/{entity_key}/history", response_model=ProfileHistoryResponse)
def profile_history(
    entity_key: str,
    limit: int = Query(default=20, ge=1, le=200),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ProfileHistoryResponse:
    entries = [ProfileHistoryEntry(**row) for row in system.update_history(entity_key, limit=limit)]
    return ProfileHistoryResponse(entity_key=entity_key, entries=entries)


@router.get("/{entity_key}/legacy", response_model=LegacyContractor)
def get_legacy_contractor(
    entity_key: str,
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> LegacyContractor:
    contractor = system.get_legacy_contractor(entity_key)
    if contractor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return contractor


@router.post("/{entity_key}/sources/{source_kind}", response_model=ConsolidatedProfile)
def update_profile_source(
    entity_key: str,
    source_kind: SourceKind,
    payload: dict[str, Any] = Body(...),
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ConsolidatedProfile:
    try:
        return system.update_from_source(entity_key, source_kind, payload)
    except ProfileValidationError as exc:
        logger.info(
            "profile_source_rejected",
            extra={"entity_key": entity_key, "source_kind": source_kind.value, "detail": exc.message},
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "source_kind": source_kind.value, "details": exc.details},
        ) from exc
    except ProfileVersionConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc


@router.post("/{entity_key}/insights", response_model=ConsolidatedProfile)
def generate_profile_insights(
    entity_key: str,
    system: ProfileSystem = Depends(get_profile_system_dep),
) -> ConsolidatedProfile:
    try:
        profile = system.generate_insights(entity_key)
    except (MissingFinancialData, ProfileVersionConflict) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return profile
