from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings
from app.core.errors import ProviderNotConfigured
from app.db.pg.session import SessionLocal
from app.services.freshness.tracker import FreshnessTracker
from app.services.freshness.warehouse import FreshnessSource, WarehouseFreshnessSource
from app.services.profiles.cache import ProfileCache
from app.services.profiles.legacy import LegacyContractor, convert_legacy_filters, to_legacy_contractor
from app.services.profiles.merger import ProfileDataMerger
from app.services.profiles.sources import SourceKind
from app.services.profiles.store import ProfileStore
from app.services.profiles.types import CacheStats, ConsolidatedProfile, ProfileFilters, ProfilePage
from app.services.providers.base import SourceProvider
from app.services.providers.enrichment_http import HttpEnrichmentProvider
from app.services.providers.financial_warehouse import WarehouseFinancialProvider
from app.services.refresh.refresher import ProfileRefresher
from app.services.refresh.scheduler import HealthReport, RefreshRunResult, RefreshScheduler, RefreshStatus

logger = logging.getLogger(__name__)


def build_providers(settings: Settings) -> dict[SourceKind, SourceProvider]:
    providers: dict[SourceKind, SourceProvider] = {}
    try:
        providers[SourceKind.FINANCIAL] = WarehouseFinancialProvider.from_settings(settings)
    except ProviderNotConfigured as exc:
        logger.info("financial_provider_not_configured", extra={"detail": exc.message})
    try:
        providers[SourceKind.ENRICHMENT] = HttpEnrichmentProvider(settings)
    except ProviderNotConfigured as exc:
        logger.info("enrichment_provider_not_configured", extra={"detail": exc.message})
    return providers


def build_freshness_source(settings: Settings) -> FreshnessSource | None:
    try:
        return WarehouseFreshnessSource.from_settings(settings)
    except ProviderNotConfigured as exc:
        logger.info("freshness_source_not_configured", extra={"detail": exc.message})
        return None


class ProfileSystem:
    """Entry point used by the API routes, queue jobs and scripts."""

    def __init__(
        self,
        store: ProfileStore,
        tracker: FreshnessTracker,
        refresher: ProfileRefresher,
        scheduler: RefreshScheduler,
    ):
        self.store = store
        self.tracker = tracker
        self.refresher = refresher
        self.scheduler = scheduler

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        session_factory: sessionmaker | None = None,
        freshness_source: FreshnessSource | None = None,
        providers: Mapping[SourceKind, SourceProvider] | None = None,
        refresher_options: dict[str, Any] | None = None,
    ) -> ProfileSystem:
        settings = settings or get_settings()
        session_factory = session_factory or SessionLocal
        cache = ProfileCache(settings.profile_cache_max_size, settings.profile_cache_ttl_seconds)
        tracker = FreshnessTracker(freshness_source, session_factory, settings)
        store = ProfileStore(session_factory, cache, ProfileDataMerger(settings), settings, freshness=tracker)
        refresher = ProfileRefresher(store, providers, settings=settings, **(refresher_options or {}))
        scheduler = RefreshScheduler(tracker, store, refresher, settings)
        return cls(store, tracker, refresher, scheduler)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ProfileSystem:
        settings = settings or get_settings()
        return cls.build(
            settings,
            freshness_source=build_freshness_source(settings),
            providers=build_providers(settings),
        )

    # -- profiles --------------------------------------------------------

    def get_profile(self, entity_key: str, include_stale: bool = False) -> ConsolidatedProfile | None:
        return self.store.get_by_key(entity_key, include_stale=include_stale)

    def list_profiles(
        self,
        filters: ProfileFilters | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "composite_performance_score",
        sort_order: str = "desc",
    ) -> ProfilePage:
        return self.store.query(filters, limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order)

    def search_profiles(
        self,
        text: str,
        filters: ProfileFilters | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ProfilePage:
        return self.store.search_by_text(text, filters, limit=limit, offset=offset)

    def update_from_source(
        self,
        entity_key: str,
        kind: SourceKind,
        raw_payload: Mapping[str, Any] | BaseModel,
        initiated_by: str = "api",
    ) -> ConsolidatedProfile:
        return self.store.update_from_source(entity_key, kind, raw_payload, initiated_by=initiated_by)

    def generate_insights(self, entity_key: str) -> ConsolidatedProfile | None:
        return self.refresher.generate_insights(entity_key)

    def get_cache_stats(self) -> CacheStats:
        return self.store.get_cache_stats()

    def update_history(self, entity_key: str, limit: int = 20) -> list[dict[str, Any]]:
        return self.store.update_history(entity_key, limit=limit)

    # -- refresh ---------------------------------------------------------

    def get_refresh_status(self) -> RefreshStatus:
        return self.scheduler.get_refresh_status()

    def run_smart_refresh(self) -> RefreshRunResult:
        return self.scheduler.run_scheduled_refresh()

    def force_refresh(
        self,
        sources: Sequence[SourceKind] | None = None,
        max_profiles: int | None = None,
    ) -> RefreshRunResult:
        return self.scheduler.force_refresh(sources=sources, max_profiles=max_profiles)

    def bulk_refresh(
        self,
        entity_keys: Sequence[str],
        sources: Sequence[SourceKind] | None = None,
    ) -> RefreshRunResult:
        return self.scheduler.force_refresh(
            sources=sources,
            max_profiles=max(1, len(entity_keys)),
            entity_keys=entity_keys,
        )

    def health_check(self) -> HealthReport:
        return self.scheduler.health_check()

    # -- legacy shape ----------------------------------------------------

    def get_legacy_contractor(self, entity_key: str) -> LegacyContractor | None:
        profile = self.store.get_by_key(entity_key, include_stale=True)
        return to_legacy_contractor(profile) if profile is not None else None

    def get_legacy_contractors(self, entity_keys: Sequence[str]) -> list[LegacyContractor]:
        page = self.store.query(
            ProfileFilters(entity_keys=list(entity_keys)),
            limit=max(1, len(entity_keys)),
            sort_by="primary_name",
            sort_order="asc",
        )
        return [to_legacy_contractor(profile) for profile in page.items]

    def search_legacy_contractors(
        self,
        text: str,
        legacy_filters: dict[str, Any] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[LegacyContractor], int]:
        page = self.store.search_by_text(text, convert_legacy_filters(legacy_filters), limit=limit, offset=offset)
        return [to_legacy_contractor(profile) for profile in page.items], page.total_count


@lru_cache(maxsize=1)
def get_profile_system() -> ProfileSystem:
    return ProfileSystem.from_settings()
