from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime

from app.core.config import Settings, get_settings
from app.core.errors import MissingFinancialData, ProviderNotConfigured
from app.services.insights.narrative import generate_narrative
from app.services.profiles.insights import InsightNarrative, InsightSelection, build_ai_insights, select_insight_attributes
from app.services.profiles.sources import SourceKind
from app.services.profiles.store import ProfileStore
from app.services.profiles.types import AIInsightsPayload, ConsolidatedProfile
from app.services.providers.base import SourceProvider
from app.services.refresh.batch import BatchResult, run_bounded
from app.utils.time import utc_now

logger = logging.getLogger(__name__)


class ProfileRefresher:
    """Fetches one source for one entity and folds it into the store."""

    def __init__(
        self,
        store: ProfileStore,
        providers: Mapping[SourceKind, SourceProvider] | None = None,
        narrative_generator: Callable[[InsightSelection], InsightNarrative] = generate_narrative,
        settings: Settings | None = None,
    ):
        self.store = store
        self.providers = dict(providers or {})
        self.narrative_generator = narrative_generator
        self.settings = settings or get_settings()

    def has_provider(self, kind: SourceKind) -> bool:
        # Insights are derived from the stored financial slot, not fetched.
        return kind == SourceKind.AI_INSIGHTS or kind in self.providers

    def build_insights(self, profile: ConsolidatedProfile) -> AIInsightsPayload:
        if profile.financial is None:
            raise MissingFinancialData(
                f"Profile {profile.entity_key} has no financial data to derive insights from",
                {"entity_key": profile.entity_key},
            )
        selection = select_insight_attributes(profile.financial)
        narrative = self.narrative_generator(selection)
        return build_ai_insights(profile.financial, narrative, self.settings.insight_confidence_score)

    def generate_insights(
        self,
        entity_key: str,
        now: datetime | None = None,
        initiated_by: str = "api",
    ) -> ConsolidatedProfile | None:
        profile = self.store.get_by_key(entity_key, include_stale=True, now=now)
        if profile is None:
            return None
        payload = self.build_insights(profile)
        return self.store.update_from_source(
            entity_key,
            SourceKind.AI_INSIGHTS,
            payload,
            now=now,
            initiated_by=initiated_by,
        )

    def _refresh(self, entity_key: str, kind: SourceKind, now: datetime, initiated_by: str) -> bool:
        if kind == SourceKind.AI_INSIGHTS:
            profile = self.store.get_by_key(entity_key, include_stale=True, now=now)
            if profile is None or profile.financial is None:
                return False
            payload = self.build_insights(profile)
        else:
            provider = self.providers.get(kind)
            if provider is None:
                raise ProviderNotConfigured(f"No provider configured for {kind.value}", {"source": kind.value})
            payload = provider.fetch(entity_key)
            if payload is None:
                return False

        self.store.update_from_source(entity_key, kind, payload, now=now, initiated_by=initiated_by)
        return True

    def refresh_entity(
        self,
        entity_key: str,
        kind: SourceKind,
        now: datetime | None = None,
        initiated_by: str = "scheduler",
    ) -> bool:
        """Refresh one slot. Failures are written to the audit log and re-raised."""
        now = now or utc_now()
        try:
            return self._refresh(entity_key, kind, now, initiated_by)
        except Exception as exc:
            self.store.record_failure(entity_key, kind, f"{exc.__class__.__name__}: {exc}", initiated_by)
            raise

    def refresh_many(
        self,
        entity_keys: Sequence[str],
        kind: SourceKind,
        now: datetime | None = None,
        initiated_by: str = "scheduler",
    ) -> BatchResult:
        now = now or utc_now()
        result = run_bounded(
            entity_keys,
            lambda key: self.refresh_entity(key, kind, now=now, initiated_by=initiated_by),
            self.settings.refresh_concurrency,
        )
        logger.info(
            "source_refresh_batch_completed",
            extra={
                "source": kind.value,
                "successful": len(result.successful),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result
