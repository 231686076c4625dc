from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings
from app.db.pg.models import UpstreamDataCheck
from app.services.freshness.types import (
    DataCheckpoint,
    EntitiesWithNewData,
    EntityUpdateFlags,
    NewDataCheck,
    RefreshCadence,
    RefreshDecision,
    TableFreshness,
    UpstreamFreshness,
)
from app.services.freshness.warehouse import FreshnessSource
from app.services.profiles.sources import SourceKind
from app.utils.time import as_utc, hours_between, utc_now

logger = logging.getLogger(__name__)

# (low, high, pattern, confidence) over the mean gap between update dates, in days.
CADENCE_BANDS: tuple[tuple[float, float, str, float], ...] = (
    (0.0, 1.5, "daily", 0.9),
    (6.0, 8.0, "weekly", 0.8),
    (25.0, 35.0, "monthly", 0.7),
)


class FreshnessTracker:
    """Watches the upstream financial source's own update timestamps.

    The tracker answers whether the upstream has produced anything new,
    independent of our per-slot TTLs. All probe failures degrade to
    conservative answers and are logged; none propagate to the caller.
    """

    def __init__(
        self,
        source: FreshnessSource | None,
        session_factory: sessionmaker,
        settings: Settings | None = None,
    ):
        self.source = source
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.tables = self.settings.upstream_table_names()

    @property
    def configured(self) -> bool:
        return self.source is not None and bool(self.tables)

    def _fallback_freshness(self) -> UpstreamFreshness:
        return UpstreamFreshness(
            per_table={},
            most_recent_update=None,
            data_age_hours=0.0,
            is_stale=False,
            degraded=True,
        )

    def get_upstream_freshness(self, now: datetime | None = None) -> UpstreamFreshness:
        now = as_utc(now or utc_now())
        if not self.configured:
            return self._fallback_freshness()

        per_table: dict[str, TableFreshness] = {}
        try:
            for table in self.tables:
                stats = self.source.table_stats(table)
                per_table[table] = TableFreshness(
                    table=table,
                    last_updated=stats.last_updated,
                    record_count=stats.record_count,
                    latest_snapshot=stats.latest_snapshot,
                )
        except Exception:
            logger.warning(
                "upstream_freshness_probe_failed",
                exc_info=True,
                extra={"tables": self.tables},
            )
            return self._fallback_freshness()

        timestamps = [item.last_updated for item in per_table.values() if item.last_updated is not None]
        if not timestamps:
            # Reachable but never populated: nothing upstream to refresh from.
            return UpstreamFreshness(per_table=per_table, data_age_hours=None, is_stale=True)

        most_recent = max(as_utc(value) for value in timestamps)
        age_hours = max(0.0, hours_between(most_recent, now))
        return UpstreamFreshness(
            per_table=per_table,
            most_recent_update=most_recent,
            data_age_hours=round(age_hours, 2),
            is_stale=age_hours > self.settings.upstream_stale_after_hours,
        )

    def has_new_data_since(
        self,
        since: datetime,
        freshness: UpstreamFreshness | None = None,
        now: datetime | None = None,
    ) -> NewDataCheck:
        freshness = freshness or self.get_upstream_freshness(now)
        since = as_utc(since)
        affected: list[str] = []
        newest: datetime | None = None
        for table, stats in freshness.per_table.items():
            if stats.last_updated is None:
                continue
            updated = as_utc(stats.last_updated)
            if updated > since:
                affected.append(table)
                if newest is None or updated > newest:
                    newest = updated
        return NewDataCheck(
            has_new_data=bool(affected),
            new_data_available_at=newest,
            affected_tables=affected,
        )

    def get_entities_with_new_data(self, since: datetime) -> EntitiesWithNewData:
        if not self.configured:
            return EntitiesWithNewData()

        flags: dict[str, EntityUpdateFlags] = {}
        try:
            for table in self.tables:
                for entity_key, snapshot in self.source.entities_updated_since(table, as_utc(since)).items():
                    entry = flags.setdefault(entity_key, EntityUpdateFlags(entity_key=entity_key))
                    entry.updated_tables.append(table)
                    if snapshot is not None and (entry.latest_snapshot is None or snapshot > entry.latest_snapshot):
                        entry.latest_snapshot = snapshot
        except Exception:
            logger.warning("upstream_entity_scope_failed", exc_info=True, extra={"since": since.isoformat()})
            return EntitiesWithNewData()

        keys = sorted(flags)
        return EntitiesWithNewData(entity_keys=keys, per_entity_flags=[flags[key] for key in keys])

    def infer_refresh_cadence(self, now: datetime | None = None) -> RefreshCadence:
        """Classify the upstream update rhythm from its recent distinct update dates."""
        now = as_utc(now or utc_now())
        if not self.configured:
            return RefreshCadence()

        since = now - timedelta(days=self.settings.upstream_cadence_lookback_days)
        try:
            dates = self.source.update_dates(self.tables[0], since, self.settings.upstream_cadence_max_samples)
        except Exception:
            logger.warning("upstream_cadence_probe_failed", exc_info=True, extra={"table": self.tables[0]})
            return RefreshCadence()

        distinct = sorted(set(dates), reverse=True)[: self.settings.upstream_cadence_max_samples]
        weekdays = sorted({value.weekday() for value in distinct})
        if len(distinct) < 2:
            return RefreshCadence(expected_refresh_weekdays=weekdays, sample_size=len(distinct))

        gaps = [(distinct[index - 1] - distinct[index]).days for index in range(1, len(distinct))]
        average_gap = sum(gaps) / len(gaps)
        for low, high, pattern, confidence in CADENCE_BANDS:
            if low <= average_gap <= high:
                last_update = datetime(distinct[0].year, distinct[0].month, distinct[0].day, tzinfo=now.tzinfo)
                return RefreshCadence(
                    pattern=pattern,
                    next_expected_refresh=last_update + timedelta(days=average_gap),
                    confidence=confidence,
                    expected_refresh_weekdays=weekdays,
                    average_gap_days=round(average_gap, 2),
                    sample_size=len(distinct),
                )

        return RefreshCadence(
            expected_refresh_weekdays=weekdays,
            average_gap_days=round(average_gap, 2),
            sample_size=len(distinct),
        )

    def last_checkpoint(self, now: datetime | None = None) -> datetime:
        now = as_utc(now or utc_now())
        with self.session_factory() as session:
            checked_at = session.scalar(
                select(UpstreamDataCheck.checked_at).order_by(UpstreamDataCheck.checked_at.desc()).limit(1)
            )
        if checked_at is None:
            return now - timedelta(hours=self.settings.upstream_default_checkpoint_hours)
        return as_utc(checked_at)

    def record_data_check(
        self,
        now: datetime | None = None,
        freshness: UpstreamFreshness | None = None,
        triggered_refresh: bool = False,
    ) -> DataCheckpoint:
        now = as_utc(now or utc_now())
        table_updates = {}
        if freshness is not None:
            table_updates = {
                table: stats.last_updated.isoformat() if stats.last_updated else None
                for table, stats in freshness.per_table.items()
            }
        with self.session_factory() as session:
            row = UpstreamDataCheck(
                checked_at=now,
                table_updates_json=table_updates,
                triggered_refresh=triggered_refresh,
            )
            session.add(row)
            session.commit()
            checkpoint = DataCheckpoint(
                check_id=row.check_id,
                checked_at=now,
                table_updates=table_updates,
                triggered_refresh=triggered_refresh,
            )
        logger.info("upstream_data_check_recorded", extra={"triggered_refresh": triggered_refresh})
        return checkpoint

    def should_trigger_refresh(self, now: datetime | None = None) -> RefreshDecision:
        """Decide whether an upstream-driven financial refresh should run now.

        Order matters: a stale upstream always wins, then a still-pending
        predicted refresh, then the new-data check against the last checkpoint.
        """
        now = as_utc(now or utc_now())
        freshness = self.get_upstream_freshness(now)
        if freshness.is_stale:
            age = freshness.data_age_hours
            age_text = f"{round(age)} hours old" if age is not None else "empty"
            return RefreshDecision(
                should_refresh=False,
                reason=f"Upstream data is {age_text} and considered stale; upstream itself has not produced new data",
                priority="low",
                affected_sources=[SourceKind.FINANCIAL],
            )

        checkpoint = self.last_checkpoint(now)
        cadence = self.infer_refresh_cadence(now)
        predicted = cadence.next_expected_refresh
        if predicted is not None and now < as_utc(predicted):
            hours_until = hours_between(now, predicted)
            return RefreshDecision(
                should_refresh=False,
                reason=f"Next upstream refresh expected in {round(hours_until)} hours",
                priority="low",
            )

        check = self.has_new_data_since(checkpoint, freshness=freshness)
        if check.has_new_data:
            entities = self.get_entities_with_new_data(checkpoint)
            sample = self.settings.upstream_affected_entities_sample
            return RefreshDecision(
                should_refresh=True,
                reason=f"New upstream data available in: {', '.join(check.affected_tables)}",
                priority="high",
                affected_sources=[SourceKind.FINANCIAL],
                affected_tables=check.affected_tables,
                affected_entities=entities.entity_keys[:sample],
                estimated_affected_profiles=len(entities.entity_keys),
            )

        return RefreshDecision(
            should_refresh=False,
            reason="No new upstream data detected",
            priority="low",
        )
