from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, assert_never

from pydantic import BaseModel
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, get_settings
from app.core.errors import ProfileVersionConflict
from app.db.pg.models import ConsolidatedProfileRecord, ProfileUpdateLog
from app.services.profiles.cache import ProfileCache
from app.services.profiles.merger import ProfileDataMerger
from app.services.profiles.sources import SOURCE_ORDER, SourceKind
from app.services.profiles.types import (
    CacheStats,
    ConsolidatedProfile,
    FreshnessDistribution,
    ProfileFilters,
    ProfilePage,
    RefreshCandidate,
)
from app.utils.time import as_utc, hours_between, utc_now

if TYPE_CHECKING:
    from app.services.freshness.tracker import FreshnessTracker

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "composite_performance_score": ConsolidatedProfileRecord.composite_performance_score,
    "primary_name": ConsolidatedProfileRecord.primary_name,
    "last_updated_at": ConsolidatedProfileRecord.last_updated_at,
    "created_at": ConsolidatedProfileRecord.created_at,
    "completeness": ConsolidatedProfileRecord.completeness,
    "revenue_ttm_millions": ConsolidatedProfileRecord.revenue_ttm_millions,
    "awards_ttm_millions": ConsolidatedProfileRecord.awards_ttm_millions,
}
DEFAULT_SORT = "composite_performance_score"
MAX_PAGE_SIZE = 500


def _presence_column(kind: SourceKind):
    match kind:
        case SourceKind.FINANCIAL:
            return ConsolidatedProfileRecord.has_financial
        case SourceKind.ENRICHMENT:
            return ConsolidatedProfileRecord.has_enrichment
        case SourceKind.AI_INSIGHTS:
            return ConsolidatedProfileRecord.has_ai_insights
        case SourceKind.NETWORK:
            return ConsolidatedProfileRecord.has_network
        case _:
            assert_never(kind)


def _fetched_column(kind: SourceKind):
    match kind:
        case SourceKind.FINANCIAL:
            return ConsolidatedProfileRecord.financial_fetched_at
        case SourceKind.ENRICHMENT:
            return ConsolidatedProfileRecord.enrichment_fetched_at
        case SourceKind.AI_INSIGHTS:
            return ConsolidatedProfileRecord.ai_insights_fetched_at
        case SourceKind.NETWORK:
            return ConsolidatedProfileRecord.network_fetched_at
        case _:
            assert_never(kind)


def _expires_column(kind: SourceKind):
    match kind:
        case SourceKind.FINANCIAL:
            return ConsolidatedProfileRecord.financial_expires_at
        case SourceKind.ENRICHMENT:
            return ConsolidatedProfileRecord.enrichment_expires_at
        case SourceKind.AI_INSIGHTS:
            return ConsolidatedProfileRecord.ai_insights_expires_at
        case SourceKind.NETWORK:
            return ConsolidatedProfileRecord.network_expires_at
        case _:
            assert_never(kind)


def profile_columns(profile: ConsolidatedProfile) -> dict[str, Any]:
    """Column values for a profile row, including the denormalized filter columns."""
    financial = profile.financial
    enrichment = profile.enrichment
    values: dict[str, Any] = {
        "profile_id": profile.profile_id,
        "primary_name": profile.primary_name,
        "alternative_names_json": list(profile.alternative_names),
        "profile_json": profile.model_dump(mode="json"),
        "profile_version": profile.profile_version,
        "completeness": profile.completeness.overall,
        "has_financial": profile.completeness.has_financial,
        "has_enrichment": profile.completeness.has_enrichment,
        "has_ai_insights": profile.completeness.has_ai_insights,
        "has_network": profile.completeness.has_network,
        "sources_json": [kind.value for kind in profile.sources],
        "primary_industry": profile.quick_access.primary_industry,
        "size_tier": profile.quick_access.size_tier,
        "performance_rating": profile.quick_access.performance_rating,
        "composite_performance_score": financial.performance_scores.composite if financial else None,
        "revenue_ttm_millions": financial.revenue_ttm_millions if financial else None,
        "awards_ttm_millions": financial.awards_ttm_millions if financial else None,
        "state": enrichment.location.state if enrichment else None,
        "country": enrichment.location.country if enrichment else None,
        "created_at": as_utc(profile.created_at),
        "last_updated_at": as_utc(profile.last_updated_at),
    }
    for kind in SOURCE_ORDER:
        metadata = profile.slot_metadata(kind)
        values[f"{kind.value}_fetched_at"] = as_utc(metadata.fetched_at) if metadata else None
        values[f"{kind.value}_expires_at"] = as_utc(metadata.expires_at) if metadata else None
    return values


def record_to_profile(record: ConsolidatedProfileRecord) -> ConsolidatedProfile:
    return ConsolidatedProfile.model_validate(record.profile_json)


class ProfileStore:
    """System of record for consolidated profiles with a bounded front cache."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: ProfileCache,
        merger: ProfileDataMerger,
        settings: Settings | None = None,
        freshness: FreshnessTracker | None = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.merger = merger
        self.settings = settings or get_settings()
        self.freshness = freshness

    # -- reads -----------------------------------------------------------

    def _stale_window(self) -> timedelta:
        return timedelta(days=self.settings.profile_stale_after_days)

    def _outside_window(self, profile: ConsolidatedProfile, now: datetime) -> bool:
        return as_utc(now) - as_utc(profile.last_updated_at) > self._stale_window()

    def get_by_key(
        self,
        entity_key: str,
        include_stale: bool = False,
        now: datetime | None = None,
    ) -> ConsolidatedProfile | None:
        now = now or utc_now()
        profile = self.cache.get(entity_key)
        if profile is None:
            with self.session_factory() as session:
                record = session.get(ConsolidatedProfileRecord, entity_key)
                if record is None:
                    return None
                profile = record_to_profile(record)
            self.cache.set(profile)

        if not include_stale and self._outside_window(profile, now):
            logger.debug("profile_outside_staleness_window", extra={"entity_key": entity_key})
            return None
        return profile.with_staleness(now)

    def _apply_filters(self, stmt, filters: ProfileFilters | None, now: datetime):
        if filters is None:
            return stmt
        record = ConsolidatedProfileRecord
        if filters.entity_keys is not None:
            stmt = stmt.where(record.entity_key.in_(filters.entity_keys))
        if filters.industries:
            stmt = stmt.where(record.primary_industry.in_(filters.industries))
        if filters.size_tiers:
            stmt = stmt.where(record.size_tier.in_(filters.size_tiers))
        if filters.states:
            stmt = stmt.where(record.state.in_(filters.states))
        if filters.performance_ratings:
            stmt = stmt.where(record.performance_rating.in_(filters.performance_ratings))
        if filters.min_performance_score is not None:
            stmt = stmt.where(record.composite_performance_score >= filters.min_performance_score)
        if filters.max_performance_score is not None:
            stmt = stmt.where(record.composite_performance_score <= filters.max_performance_score)
        for kind in filters.require_sources:
            stmt = stmt.where(_presence_column(kind).is_(True))
        if filters.min_completeness is not None:
            stmt = stmt.where(record.completeness >= filters.min_completeness)
        if filters.min_revenue is not None:
            stmt = stmt.where(record.revenue_ttm_millions >= filters.min_revenue)
        if filters.max_revenue is not None:
            stmt = stmt.where(record.revenue_ttm_millions <= filters.max_revenue)
        if filters.max_age_hours is not None:
            stmt = stmt.where(record.last_updated_at >= as_utc(now) - timedelta(hours=filters.max_age_hours))
        if filters.exclude_stale:
            stmt = stmt.where(record.last_updated_at >= as_utc(now) - self._stale_window())
        return stmt

    def query(
        self,
        filters: ProfileFilters | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = DEFAULT_SORT,
        sort_order: str = "desc",
        now: datetime | None = None,
    ) -> ProfilePage:
        now = now or utc_now()
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        sort_column = SORT_COLUMNS.get(sort_by, SORT_COLUMNS[DEFAULT_SORT])
        ordering = sort_column.asc() if sort_order.lower() == "asc" else sort_column.desc()

        base = self._apply_filters(select(ConsolidatedProfileRecord), filters, now)
        with self.session_factory() as session:
            total_count = session.scalar(select(func.count()).select_from(base.subquery())) or 0
            records = session.scalars(
                base.order_by(ordering, ConsolidatedProfileRecord.entity_key.asc()).limit(limit).offset(offset)
            ).all()
            items = [record_to_profile(record).with_staleness(now) for record in records]
        return ProfilePage(items=items, total_count=int(total_count))

    @staticmethod
    def _text_rank(name: str, query: str, tokens: list[str]) -> int:
        lowered = name.lower()
        score = 0
        if lowered == query:
            score += 100
        elif lowered.startswith(query):
            score += 50
        score += sum(10 for token in tokens if token in lowered)
        return score

    def search_by_text(
        self,
        text: str,
        filters: ProfileFilters | None = None,
        limit: int = 50,
        offset: int = 0,
        now: datetime | None = None,
    ) -> ProfilePage:
        now = now or utc_now()
        normalized = " ".join(text.lower().split())
        if not normalized:
            return self.query(filters, limit=limit, offset=offset, sort_by="primary_name", sort_order="asc", now=now)

        tokens = list(dict.fromkeys(normalized.split(" ")))
        name_column = func.lower(ConsolidatedProfileRecord.primary_name)
        stmt = self._apply_filters(select(ConsolidatedProfileRecord), filters, now).where(
            or_(*[name_column.contains(token, autoescape=True) for token in tokens])
        )
        with self.session_factory() as session:
            records = session.scalars(stmt).all()
            ranked = sorted(
                records,
                key=lambda record: (
                    -self._text_rank(record.primary_name, normalized, tokens),
                    record.primary_name.lower(),
                    record.entity_key,
                ),
            )
            limit = max(1, min(limit, MAX_PAGE_SIZE))
            offset = max(0, offset)
            page = ranked[offset : offset + limit]
            items = [record_to_profile(record).with_staleness(now) for record in page]
        return ProfilePage(items=items, total_count=len(ranked))

    def existing_keys(self, entity_keys: Sequence[str]) -> set[str]:
        if not entity_keys:
            return set()
        with self.session_factory() as session:
            rows = session.scalars(
                select(ConsolidatedProfileRecord.entity_key).where(
                    ConsolidatedProfileRecord.entity_key.in_(list(entity_keys))
                )
            ).all()
        return set(rows)

    def count(self) -> int:
        with self.session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(ConsolidatedProfileRecord)) or 0)

    # -- writes ----------------------------------------------------------

    def _write(
        self,
        session: Session,
        profile: ConsolidatedProfile,
        prior_version: int | None,
        sources_updated: Sequence[SourceKind],
        initiated_by: str,
    ) -> bool:
        columns = profile_columns(profile)
        if prior_version is None:
            session.add(ConsolidatedProfileRecord(entity_key=profile.entity_key, **columns))
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                return False
        else:
            # Immutable after the first write.
            columns.pop("created_at")
            columns.pop("profile_id")
            result = session.execute(
                update(ConsolidatedProfileRecord)
                .where(
                    ConsolidatedProfileRecord.entity_key == profile.entity_key,
                    ConsolidatedProfileRecord.profile_version == prior_version,
                )
                .values(**columns)
            )
            if result.rowcount != 1:
                session.rollback()
                return False

        session.add(
            ProfileUpdateLog(
                profile_id=profile.profile_id,
                entity_key=profile.entity_key,
                update_type="create" if prior_version is None else "update",
                sources_updated_json=[kind.value for kind in sources_updated],
                profile_version=profile.profile_version,
                initiated_by=initiated_by,
            )
        )
        session.commit()
        return True

    def upsert(
        self,
        entity_key: str,
        payloads: Mapping[SourceKind, Mapping[str, Any] | BaseModel],
        now: datetime | None = None,
        initiated_by: str = "system",
    ) -> ConsolidatedProfile:
        """Fold every provided slot through the merger and persist the result."""
        now = now or utc_now()
        validated = {kind: self.merger.ensure_valid(payloads[kind], kind) for kind in SOURCE_ORDER if kind in payloads}
        if not validated:
            raise ValueError("At least one source payload is required")

        attempts = self.settings.profile_write_max_attempts
        for attempt in range(1, attempts + 1):
            with self.session_factory() as session:
                record = session.get(ConsolidatedProfileRecord, entity_key)
                existing = record_to_profile(record) if record is not None else None
                profile = self.merger.fold(existing, entity_key, validated, now)
                prior_version = existing.profile_version if existing is not None else None
                if self._write(session, profile, prior_version, list(validated), initiated_by):
                    self.cache.set(profile)
                    logger.info(
                        "profile_upserted",
                        extra={
                            "entity_key": entity_key,
                            "profile_version": profile.profile_version,
                            "sources": [kind.value for kind in validated],
                            "completeness": profile.completeness.overall,
                        },
                    )
                    return profile.with_staleness(now)
            logger.warning(
                "profile_version_conflict_retry",
                extra={"entity_key": entity_key, "attempt": attempt, "max_attempts": attempts},
            )
            self.cache.evict(entity_key)

        raise ProfileVersionConflict(
            f"Profile {entity_key} changed concurrently; gave up after {attempts} attempts",
            {"entity_key": entity_key, "attempts": attempts},
        )

    def update_from_source(
        self,
        entity_key: str,
        kind: SourceKind,
        raw_payload: Mapping[str, Any] | BaseModel,
        now: datetime | None = None,
        initiated_by: str = "system",
    ) -> ConsolidatedProfile:
        """Validate one source payload and fold it into the stored profile.

        Raises ``ProfileValidationError`` before touching storage when the
        payload is invalid, and ``ProfileVersionConflict`` when the row keeps
        moving under concurrent writers.
        """
        return self.upsert(entity_key, {kind: raw_payload}, now=now, initiated_by=initiated_by)

    def record_failure(
        self,
        entity_key: str,
        kind: SourceKind,
        error: str,
        initiated_by: str = "system",
    ) -> None:
        with self.session_factory() as session:
            record = session.get(ConsolidatedProfileRecord, entity_key)
            session.add(
                ProfileUpdateLog(
                    profile_id=record.profile_id if record is not None else "",
                    entity_key=entity_key,
                    update_type="refresh_failed",
                    sources_updated_json=[kind.value],
                    profile_version=record.profile_version if record is not None else 0,
                    initiated_by=initiated_by,
                    error=error[:2000],
                )
            )
            session.commit()

    def update_history(self, entity_key: str, limit: int = 20) -> list[dict[str, Any]]:
        with self.session_factory() as session:
            rows = session.scalars(
                select(ProfileUpdateLog)
                .where(ProfileUpdateLog.entity_key == entity_key)
                .order_by(ProfileUpdateLog.created_at.desc(), ProfileUpdateLog.profile_version.desc())
                .limit(limit)
            ).all()
            return [
                {
                    "update_id": row.update_id,
                    "update_type": row.update_type,
                    "sources_updated": list(row.sources_updated_json or []),
                    "profile_version": row.profile_version,
                    "initiated_by": row.initiated_by,
                    "error": row.error,
                    "created_at": row.created_at,
                }
                for row in rows
            ]

    def enforce_cache_bound(self) -> int:
        return self.cache.enforce_bound()

    # -- refresh support -------------------------------------------------

    def _upstream_is_stale(self, now: datetime) -> bool:
        if self.freshness is None:
            return False
        return self.freshness.get_upstream_freshness(now).is_stale

    def get_profiles_needing_refresh(
        self,
        limit: int = 500,
        now: datetime | None = None,
        kinds: Sequence[SourceKind] | None = None,
        upstream_stale: bool | None = None,
    ) -> list[RefreshCandidate]:
        """Entities whose populated slots have passed ``expires_at``.

        Financial flags are suppressed for every entity while the upstream
        financial source itself is stale.
        """
        now = as_utc(now or utc_now())
        kinds = list(kinds) if kinds is not None else list(SOURCE_ORDER)
        if upstream_stale is None:
            upstream_stale = SourceKind.FINANCIAL in kinds and self._upstream_is_stale(now)
        if upstream_stale and SourceKind.FINANCIAL in kinds:
            kinds.remove(SourceKind.FINANCIAL)
            logger.info("financial_refresh_suppressed_upstream_stale")
        if not kinds:
            return []

        record = ConsolidatedProfileRecord
        stmt = (
            select(record.entity_key, *[_expires_column(kind) for kind in kinds])
            .where(or_(*[_expires_column(kind) <= now for kind in kinds]))
            .order_by(record.last_updated_at.asc(), record.entity_key.asc())
            .limit(max(1, limit))
        )
        with self.session_factory() as session:
            rows = session.execute(stmt).all()

        candidates: list[RefreshCandidate] = []
        for row in rows:
            needs = {kind: False for kind in SOURCE_ORDER}
            for index, kind in enumerate(kinds, start=1):
                expires_at = row[index]
                needs[kind] = expires_at is not None and as_utc(expires_at) <= now
            candidates.append(RefreshCandidate(entity_key=row[0], needs_refresh=needs))
        return candidates

    def keys_for_forced_refresh(self, kind: SourceKind, limit: int) -> list[str]:
        fetched = _fetched_column(kind)
        with self.session_factory() as session:
            rows = session.scalars(
                select(ConsolidatedProfileRecord.entity_key)
                .order_by(fetched.asc(), ConsolidatedProfileRecord.entity_key.asc())
                .limit(max(1, limit))
            ).all()
        return list(rows)

    def get_cache_stats(self, now: datetime | None = None) -> CacheStats:
        now = now or utc_now()
        record = ConsolidatedProfileRecord
        with self.session_factory() as session:
            rows = session.execute(
                select(
                    record.last_updated_at,
                    record.completeness,
                    record.has_financial,
                    record.has_enrichment,
                    record.has_ai_insights,
                    record.has_network,
                )
            ).all()

        by_source = {kind: 0 for kind in SOURCE_ORDER}
        distribution = FreshnessDistribution()
        ages: list[float] = []
        completeness_total = 0
        for last_updated_at, completeness, has_financial, has_enrichment, has_ai, has_network in rows:
            age = max(0.0, hours_between(last_updated_at, now))
            ages.append(age)
            completeness_total += completeness or 0
            if age < 24:
                distribution.fresh += 1
            elif age <= 24 * 7:
                distribution.recent += 1
            else:
                distribution.stale += 1
            for kind, present in zip(SOURCE_ORDER, (has_financial, has_enrichment, has_ai, has_network)):
                if present:
                    by_source[kind] += 1

        total = len(rows)
        cache_stats = self.cache.stats()
        return CacheStats(
            total_profiles=total,
            profiles_by_source=by_source,
            average_data_age_hours=round(sum(ages) / total, 2) if total else 0.0,
            stalest_profile_age_hours=round(max(ages), 2) if ages else 0.0,
            average_completeness=round(completeness_total / total, 2) if total else 0.0,
            freshness_distribution=distribution,
            cache_hit_rate=round(cache_stats.hit_rate, 4),
            cached_entries=cache_stats.size,
        )
