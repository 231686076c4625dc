from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings
from app.services.freshness.tracker import FreshnessTracker
from app.services.freshness.types import RefreshCadence, RefreshDecision, UpstreamFreshness
from app.services.profiles.sources import CALENDAR_SOURCES, SOURCE_ORDER, SourceKind
from app.services.profiles.store import ProfileStore
from app.services.profiles.types import CacheStats
from app.services.refresh.batch import BatchResult
from app.services.refresh.refresher import ProfileRefresher
from app.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RefreshRunResult(BaseModel):
    executed: bool
    reason: str
    decision: RefreshDecision | None = None
    cadence: RefreshCadence | None = None
    results: dict[SourceKind, BatchResult] = Field(default_factory=dict)
    skipped_sources: list[SourceKind] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    next_check_at: datetime


class RefreshStatus(BaseModel):
    state: SchedulerState
    last_run: RefreshRunResult | None = None
    next_check_at: datetime | None = None
    upstream: UpstreamFreshness
    cadence: RefreshCadence
    cache: CacheStats


class HealthReport(BaseModel):
    healthy: bool
    issues: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    upstream_data_age_hours: float | None = None
    oldest_profile_age_hours: float = 0.0
    stale_profile_fraction: float = 0.0
    total_profiles: int = 0


class RefreshScheduler:
    """Periodic orchestration of upstream-gated and calendar-based refreshes.

    A run moves the scheduler from IDLE to RUNNING and back. Runs are not
    re-entrant: a call made while another run holds the lock returns a
    skipped result immediately.
    """

    def __init__(
        self,
        tracker: FreshnessTracker,
        store: ProfileStore,
        refresher: ProfileRefresher,
        settings: Settings | None = None,
    ):
        self.tracker = tracker
        self.store = store
        self.refresher = refresher
        self.settings = settings or get_settings()
        self.state = SchedulerState.IDLE
        self.last_run: RefreshRunResult | None = None
        self._lock = threading.Lock()

    def _busy_result(self, now: datetime) -> RefreshRunResult:
        logger.info("refresh_run_skipped_already_running")
        return RefreshRunResult(
            executed=False,
            reason="Refresh already running",
            next_check_at=now + timedelta(minutes=self.settings.refresh_busy_retry_minutes),
        )

    def calculate_next_check_time(
        self,
        cadence: RefreshCadence,
        decision: RefreshDecision | None,
        now: datetime | None = None,
    ) -> datetime:
        now = as_utc(now or utc_now())
        predicted = cadence.next_expected_refresh
        if predicted is not None and cadence.confidence > self.settings.refresh_prediction_min_confidence:
            candidate = as_utc(predicted) + timedelta(hours=self.settings.refresh_post_prediction_delay_hours)
            if candidate > now:
                return candidate

        if cadence.pattern in ("daily", "weekly", "monthly"):
            hours = 24.0 if cadence.confidence > 0.7 else 12.0
        else:
            hours = self.settings.refresh_irregular_poll_hours
        return now + timedelta(hours=hours)

    def _financial_keys(self, decision: RefreshDecision, now: datetime) -> list[str]:
        candidates = self.store.get_profiles_needing_refresh(
            limit=self.settings.refresh_financial_batch_size,
            now=now,
            kinds=[SourceKind.FINANCIAL],
            upstream_stale=False,
        )
        keys = [candidate.entity_key for candidate in candidates if candidate.needs(SourceKind.FINANCIAL)]
        if decision.estimated_affected_profiles:
            checkpoint = self.tracker.last_checkpoint(now)
            touched = self.tracker.get_entities_with_new_data(checkpoint).entity_keys
            keys.extend(sorted(self.store.existing_keys(touched)))
        return list(dict.fromkeys(keys))

    def _execute(self, now: datetime) -> RefreshRunResult:
        decision = self.tracker.should_trigger_refresh(now)
        results: dict[SourceKind, BatchResult] = {}
        skipped: list[SourceKind] = []

        if decision.should_refresh:
            if self.refresher.has_provider(SourceKind.FINANCIAL):
                keys = self._financial_keys(decision, now)
                results[SourceKind.FINANCIAL] = self.refresher.refresh_many(keys, SourceKind.FINANCIAL, now=now)
                self.tracker.record_data_check(
                    now,
                    freshness=self.tracker.get_upstream_freshness(now),
                    triggered_refresh=True,
                )
            else:
                skipped.append(SourceKind.FINANCIAL)

        # Calendar sources expose no upstream freshness signal; TTL expiry alone drives them.
        for kind in CALENDAR_SOURCES:
            if not self.refresher.has_provider(kind):
                skipped.append(kind)
                continue
            candidates = self.store.get_profiles_needing_refresh(
                limit=self.settings.refresh_secondary_batch_size,
                now=now,
                kinds=[kind],
            )
            keys = [candidate.entity_key for candidate in candidates if candidate.needs(kind)]
            if keys:
                results[kind] = self.refresher.refresh_many(keys, kind, now=now)

        self.store.enforce_cache_bound()
        cadence = self.tracker.infer_refresh_cadence(now)
        return RefreshRunResult(
            executed=True,
            reason=decision.reason,
            decision=decision,
            cadence=cadence,
            results=results,
            skipped_sources=skipped,
            started_at=now,
            finished_at=utc_now(),
            next_check_at=self.calculate_next_check_time(cadence, decision, now),
        )

    def run_scheduled_refresh(self, now: datetime | None = None) -> RefreshRunResult:
        now = as_utc(now or utc_now())
        if not self._lock.acquire(blocking=False):
            return self._busy_result(now)

        self.state = SchedulerState.RUNNING
        try:
            logger.info("refresh_run_started")
            result = self._execute(now)
        except Exception as exc:
            logger.exception("refresh_run_failed")
            result = RefreshRunResult(
                executed=False,
                reason=f"Refresh run failed: {exc.__class__.__name__}",
                started_at=now,
                finished_at=utc_now(),
                next_check_at=now + timedelta(hours=self.settings.refresh_irregular_poll_hours),
            )
        finally:
            self.state = SchedulerState.IDLE
            self._lock.release()

        self.last_run = result
        logger.info(
            "refresh_run_completed",
            extra={
                "executed": result.executed,
                "reason": result.reason,
                "sources": {kind.value: len(batch.successful) for kind, batch in result.results.items()},
                "next_check_at": result.next_check_at.isoformat(),
            },
        )
        return result

    def force_refresh(
        self,
        sources: Sequence[SourceKind] | None = None,
        max_profiles: int | None = None,
        entity_keys: Sequence[str] | None = None,
        now: datetime | None = None,
        initiated_by: str = "operator",
    ) -> RefreshRunResult:
        """Refresh the given sources without consulting the upstream gate.

        With ``entity_keys`` only those entities are refreshed; otherwise the
        ``max_profiles`` least recently fetched profiles per source.
        """
        now = as_utc(now or utc_now())
        kinds = [kind for kind in SOURCE_ORDER if sources is None or kind in sources]
        limit = max_profiles or self.settings.refresh_force_default_max_profiles
        if not self._lock.acquire(blocking=False):
            return self._busy_result(now)

        self.state = SchedulerState.RUNNING
        results: dict[SourceKind, BatchResult] = {}
        skipped: list[SourceKind] = []
        try:
            for kind in kinds:
                if not self.refresher.has_provider(kind):
                    skipped.append(kind)
                    continue
                if entity_keys is not None:
                    keys = list(dict.fromkeys(entity_keys))[:limit]
                else:
                    keys = self.store.keys_for_forced_refresh(kind, limit)
                results[kind] = self.refresher.refresh_many(keys, kind, now=now, initiated_by=initiated_by)
        finally:
            self.state = SchedulerState.IDLE
            self._lock.release()

        logger.info(
            "forced_refresh_completed",
            extra={
                "sources": [kind.value for kind in results],
                "skipped_sources": [kind.value for kind in skipped],
                "max_profiles": limit,
            },
        )
        return RefreshRunResult(
            executed=True,
            reason="Forced refresh",
            results=results,
            skipped_sources=skipped,
            started_at=now,
            finished_at=utc_now(),
            next_check_at=self.last_run.next_check_at if self.last_run else now,
        )

    def get_refresh_status(self, now: datetime | None = None) -> RefreshStatus:
        now = as_utc(now or utc_now())
        return RefreshStatus(
            state=self.state,
            last_run=self.last_run,
            next_check_at=self.last_run.next_check_at if self.last_run else None,
            upstream=self.tracker.get_upstream_freshness(now),
            cadence=self.tracker.infer_refresh_cadence(now),
            cache=self.store.get_cache_stats(now),
        )

    def health_check(self, now: datetime | None = None) -> HealthReport:
        now = as_utc(now or utc_now())
        upstream = self.tracker.get_upstream_freshness(now)
        stats = self.store.get_cache_stats(now)
        report = HealthReport(
            healthy=True,
            upstream_data_age_hours=upstream.data_age_hours,
            oldest_profile_age_hours=stats.stalest_profile_age_hours,
            total_profiles=stats.total_profiles,
        )

        if upstream.degraded:
            report.warnings.append("Upstream freshness probe unavailable")
        if upstream.data_age_hours is None:
            report.issues.append("Upstream has no recorded updates")
        elif upstream.data_age_hours > self.settings.health_max_upstream_age_hours:
            report.issues.append(f"Upstream data is {upstream.data_age_hours:.0f} hours old")

        if stats.stalest_profile_age_hours > self.settings.health_max_profile_age_hours:
            report.issues.append(f"Oldest profile is {stats.stalest_profile_age_hours:.0f} hours old")

        if stats.total_profiles:
            report.stale_profile_fraction = round(stats.freshness_distribution.stale / stats.total_profiles, 4)
            if report.stale_profile_fraction > self.settings.health_max_stale_fraction:
                report.issues.append(f"{report.stale_profile_fraction:.0%} of profiles are stale")

        report.healthy = not report.issues
        if not report.healthy:
            logger.warning("refresh_health_degraded", extra={"issues": report.issues})
        return report
