from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, assert_never

from pydantic import BaseModel, ValidationError

from app.core.config import Settings, get_settings
from app.core.errors import ProfileValidationError
from app.services.profiles.sources import SOURCE_ORDER, SourceKind, completeness_weight, source_ttl
from app.services.profiles.types import (
    AIInsightsPayload,
    CacheMetadata,
    ConsolidatedProfile,
    DataCompleteness,
    EnrichmentPayload,
    FinancialPayload,
    NetworkPayload,
    QuickAccess,
    SourcePayload,
    payload_model_for,
)
from app.utils.time import as_utc

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"

# Fields that are rarely re-observed upstream. A new payload that omits one of
# these keeps the value from the payload it replaces.
STABLE_FIELDS: dict[SourceKind, tuple[tuple[str, ...], ...]] = {
    SourceKind.ENRICHMENT: (("company_details", "founded_year"),),
}


def _get_path(data: dict[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = data
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    current = data
    for part in path[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[path[-1]] = value


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class ProfileDataMerger:
    """Folds per-source payloads into consolidated profiles.

    Every fold replaces whole slots, recomputes the derived fields
    (completeness, quick access, active sources, names) and stamps the
    replaced slot with fresh cache metadata.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self.settings = settings or get_settings()
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    # -- validation -------------------------------------------------------

    def ensure_valid(self, payload: Mapping[str, Any] | BaseModel, kind: SourceKind) -> SourcePayload:
        data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
        model = payload_model_for(kind)
        try:
            parsed = model.model_validate(data)
        except ValidationError as exc:
            raise ProfileValidationError(
                kind.value,
                f"Invalid {kind.value} payload",
                {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc

        missing = self._missing_required(parsed)
        if missing:
            raise ProfileValidationError(
                kind.value,
                f"Invalid {kind.value} payload",
                {"missing_fields": missing},
            )
        return parsed

    def validate(self, payload: Mapping[str, Any] | BaseModel, kind: SourceKind) -> bool:
        try:
            self.ensure_valid(payload, kind)
        except ProfileValidationError:
            return False
        return True

    def _missing_required(self, payload: SourcePayload) -> list[str]:
        missing: list[str] = []
        match payload:
            case FinancialPayload():
                if _blank(payload.entity_key):
                    missing.append("entity_key")
                if _blank(payload.recipient_name):
                    missing.append("recipient_name")
            case EnrichmentPayload():
                if _blank(payload.company_details.name):
                    missing.append("company_details.name")
            case AIInsightsPayload():
                if _blank(payload.performance_insights.strongest_headline):
                    missing.append("performance_insights.strongest_headline")
                if _blank(payload.performance_insights.weakest_headline):
                    missing.append("performance_insights.weakest_headline")
            case NetworkPayload():
                pass
            case _:
                assert_never(payload)
        return missing

    # -- conflict resolution ---------------------------------------------

    def resolve_conflicts(
        self,
        existing: SourcePayload | None,
        new: SourcePayload,
        kind: SourceKind,
    ) -> SourcePayload:
        """New data wins wholesale except for the stable fields it omits."""
        stable_paths = STABLE_FIELDS.get(kind, ())
        if existing is None or not stable_paths:
            return new

        resolved = new.model_dump()
        prior = existing.model_dump()
        preserved: list[str] = []
        for path in stable_paths:
            if _get_path(resolved, path) is None and _get_path(prior, path) is not None:
                _set_path(resolved, path, _get_path(prior, path))
                preserved.append(".".join(path))

        if not preserved:
            return new
        logger.debug("profile_stable_fields_preserved", extra={"source": kind.value, "fields": preserved})
        return payload_model_for(kind).model_validate(resolved)

    # -- folding ---------------------------------------------------------

    def stamp(
        self,
        kind: SourceKind,
        payload: SourcePayload,
        now: datetime,
        prior: CacheMetadata | None = None,
    ) -> SourcePayload:
        fetched_at = as_utc(now)
        metadata = CacheMetadata(
            source=kind,
            fetched_at=fetched_at,
            expires_at=fetched_at + source_ttl(kind, self.settings),
            version=(prior.version + 1) if prior is not None else 1,
            is_stale=False,
        )
        return payload.model_copy(update={"cache": metadata})

    def merge_sources(
        self,
        entity_key: str,
        payloads: Mapping[SourceKind, Mapping[str, Any] | BaseModel],
        now: datetime,
    ) -> ConsolidatedProfile:
        """Build a brand-new profile (version 1) from one or more source payloads."""
        if not payloads:
            raise ValueError("At least one source payload is required to create a profile")

        slots: dict[SourceKind, SourcePayload] = {}
        for kind in SOURCE_ORDER:
            if kind not in payloads:
                continue
            parsed = self.ensure_valid(payloads[kind], kind)
            slots[kind] = self.stamp(kind, parsed, now)

        timestamp = as_utc(now)
        primary_name = self._resolve_primary_name(slots)
        profile = ConsolidatedProfile(
            profile_id=self._id_factory(),
            entity_key=entity_key,
            primary_name=primary_name,
            alternative_names=self._alternative_names(slots, primary_name),
            completeness=self._completeness(slots),
            financial=slots.get(SourceKind.FINANCIAL),
            enrichment=slots.get(SourceKind.ENRICHMENT),
            ai_insights=slots.get(SourceKind.AI_INSIGHTS),
            network=slots.get(SourceKind.NETWORK),
            sources=self._active_sources(slots),
            quick_access=self._quick_access(slots, primary_name),
            profile_version=1,
            created_at=timestamp,
            last_updated_at=timestamp,
        )
        logger.info(
            "profile_created",
            extra={
                "entity_key": entity_key,
                "sources": [kind.value for kind in profile.sources],
                "completeness": profile.completeness.overall,
            },
        )
        return profile

    def update_profile(
        self,
        existing: ConsolidatedProfile,
        kind: SourceKind,
        payload: Mapping[str, Any] | BaseModel,
        now: datetime,
    ) -> ConsolidatedProfile:
        """Replace exactly one slot of ``existing`` and return the next version."""
        parsed = self.ensure_valid(payload, kind)
        prior_payload = existing.slot(kind)
        resolved = self.resolve_conflicts(prior_payload, parsed, kind)
        stamped = self.stamp(kind, resolved, now, prior=existing.slot_metadata(kind))

        slots: dict[SourceKind, SourcePayload] = {}
        for slot_kind in SOURCE_ORDER:
            current = existing.slot(slot_kind)
            if current is not None:
                slots[slot_kind] = current
        slots[kind] = stamped

        primary_name = self._resolve_primary_name(slots)
        timestamp = as_utc(now)
        last_updated_at = max(as_utc(existing.last_updated_at), timestamp)
        return existing.model_copy(
            update={
                "primary_name": primary_name,
                "alternative_names": self._alternative_names(slots, primary_name),
                "completeness": self._completeness(slots),
                self._slot_field(kind): stamped,
                "sources": self._active_sources(slots),
                "quick_access": self._quick_access(slots, primary_name),
                "profile_version": existing.profile_version + 1,
                "last_updated_at": last_updated_at,
            },
            deep=True,
        )

    def fold(
        self,
        existing: ConsolidatedProfile | None,
        entity_key: str,
        payloads: Mapping[SourceKind, Mapping[str, Any] | BaseModel],
        now: datetime,
    ) -> ConsolidatedProfile:
        """Fold several slots at once; one version bump per provided slot."""
        if existing is None:
            return self.merge_sources(entity_key, payloads, now)
        profile = existing
        for kind in SOURCE_ORDER:
            if kind in payloads:
                profile = self.update_profile(profile, kind, payloads[kind], now)
        return profile

    # -- derived fields --------------------------------------------------

    @staticmethod
    def _slot_field(kind: SourceKind) -> str:
        match kind:
            case SourceKind.FINANCIAL:
                return "financial"
            case SourceKind.ENRICHMENT:
                return "enrichment"
            case SourceKind.AI_INSIGHTS:
                return "ai_insights"
            case SourceKind.NETWORK:
                return "network"
            case _:
                assert_never(kind)

    @staticmethod
    def _candidate_names(slots: Mapping[SourceKind, SourcePayload]) -> list[str]:
        names: list[str] = []
        enrichment = slots.get(SourceKind.ENRICHMENT)
        if isinstance(enrichment, EnrichmentPayload) and not _blank(enrichment.company_details.name):
            names.append(enrichment.company_details.name.strip())
        financial = slots.get(SourceKind.FINANCIAL)
        if isinstance(financial, FinancialPayload) and not _blank(financial.recipient_name):
            names.append(financial.recipient_name.strip())
        return names

    def _resolve_primary_name(self, slots: Mapping[SourceKind, SourcePayload]) -> str:
        candidates = self._candidate_names(slots)
        return candidates[0] if candidates else UNKNOWN_NAME

    def _alternative_names(self, slots: Mapping[SourceKind, SourcePayload], primary_name: str) -> list[str]:
        return sorted({name for name in self._candidate_names(slots) if name != primary_name})

    @staticmethod
    def _completeness(slots: Mapping[SourceKind, SourcePayload]) -> DataCompleteness:
        return DataCompleteness(
            overall=sum(completeness_weight(kind) for kind in slots),
            has_financial=SourceKind.FINANCIAL in slots,
            has_enrichment=SourceKind.ENRICHMENT in slots,
            has_ai_insights=SourceKind.AI_INSIGHTS in slots,
            has_network=SourceKind.NETWORK in slots,
        )

    @staticmethod
    def _active_sources(slots: Mapping[SourceKind, SourcePayload]) -> list[SourceKind]:
        return [kind for kind in SOURCE_ORDER if kind in slots]

    @staticmethod
    def _quick_access(slots: Mapping[SourceKind, SourcePayload], primary_name: str) -> QuickAccess:
        financial = slots.get(SourceKind.FINANCIAL)
        enrichment = slots.get(SourceKind.ENRICHMENT)
        quick = QuickAccess(display_name=primary_name)
        if isinstance(financial, FinancialPayload):
            quick.primary_industry = financial.primary_naics_description or "Unknown"
            quick.size_tier = financial.size_tier or "Unknown"
            quick.performance_rating = financial.peer_group.performance_classification or "Unknown"
            quick.last_activity_date = financial.snapshot_month
            quick.total_contract_value = financial.revenue_ttm_millions or 0.0
        elif isinstance(enrichment, EnrichmentPayload) and enrichment.company_details.industry:
            quick.primary_industry = enrichment.company_details.industry
        if isinstance(enrichment, EnrichmentPayload):
            quick.website_url = enrichment.company_details.website
            quick.logo_url = enrichment.digital_presence.logo_url
        return quick
