from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Union, assert_never

from pydantic import BaseModel, Field

from app.services.profiles.sources import SOURCE_ORDER, SourceKind, default_refresh_cron
from app.utils.time import as_utc


class CacheMetadata(BaseModel):
    source: SourceKind
    fetched_at: datetime
    expires_at: datetime
    version: int = Field(default=1, ge=1)
    is_stale: bool = False

    def stale_at(self, now: datetime) -> bool:
        return as_utc(now) >= as_utc(self.expires_at)


# -- financial / performance --------------------------------------------------


class PerformanceScores(BaseModel):
    awards: float | None = None
    revenue: float | None = None
    pipeline: float | None = None
    duration: float | None = None
    growth: float | None = None
    network_activity: float | None = None
    composite: float | None = None


class PeerGroup(BaseModel):
    naics_code: str | None = None
    entity_classification: str | None = None
    group_size: int = 0
    market_share_percent: float = 0.0
    rank_within_peer: int | None = None
    performance_tier: str | None = None
    performance_classification: str = "Insufficient Data"


class FinancialPayload(BaseModel):
    entity_key: str = Field(min_length=1)
    recipient_name: str = Field(min_length=1)
    entity_classification: str | None = None

    awards_ttm_millions: float = 0.0
    revenue_ttm_millions: float
    subcontracting_ttm_millions: float = 0.0
    calculated_pipeline_millions: float = 0.0
    avg_contract_duration_months: float | None = None

    awards_ttm_yoy_growth_pct: float | None = None
    revenue_ttm_yoy_growth_pct: float | None = None
    blended_growth_score: float | None = None

    primary_naics_code: str | None = None
    primary_naics_description: str | None = None
    agency_focus: Literal["Defense", "Civilian"] | None = None
    size_tier: str | None = None

    performance_scores: PerformanceScores
    peer_group: PeerGroup
    snapshot_month: date | None = None
    cache: CacheMetadata | None = None


# -- enrichment ----------------------------------------------------------------


class CompanyDetails(BaseModel):
    name: str = Field(min_length=1)
    domain: str | None = None
    website: str | None = None
    description: str | None = None
    founded_year: int | None = None
    employee_count: int | None = None
    annual_revenue: float | None = None
    industry: str | None = None
    company_type: str | None = None


class Location(BaseModel):
    country: str | None = None
    state: str | None = None
    city: str | None = None
    address: str | None = None
    zip_code: str | None = None


class DigitalPresence(BaseModel):
    linkedin_url: str | None = None
    twitter_handle: str | None = None
    facebook_url: str | None = None
    logo_url: str | None = None


class ContactInfo(BaseModel):
    phone: str | None = None
    email: str | None = None
    contacts_available: int = 0


class EnrichmentPayload(BaseModel):
    company_details: CompanyDetails
    location: Location = Field(default_factory=Location)
    digital_presence: DigitalPresence = Field(default_factory=DigitalPresence)
    contact_info: ContactInfo = Field(default_factory=ContactInfo)
    technologies: list[str] = Field(default_factory=list)
    cache: CacheMetadata | None = None


# -- AI insights ---------------------------------------------------------------


class PerformanceInsights(BaseModel):
    strongest_headline: str = Field(min_length=1)
    strongest_insight: str = ""
    weakest_headline: str = Field(min_length=1)
    weakest_insight: str = ""
    confidence_score: int = Field(default=0, ge=0, le=100)


class MarketInsights(BaseModel):
    competitive_advantages: list[str] = Field(default_factory=list)
    market_opportunities: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    strategic_recommendations: list[str] = Field(default_factory=list)


class NetworkInsights(BaseModel):
    primary_relationships: list[str] = Field(default_factory=list)
    network_strength: Literal["Strong", "Moderate", "Weak"] = "Moderate"
    diversification_level: Literal["High", "Medium", "Low"] = "Medium"


class AIInsightsPayload(BaseModel):
    performance_insights: PerformanceInsights
    market_insights: MarketInsights | None = None
    network_insights: NetworkInsights | None = None
    cache: CacheMetadata | None = None


# -- network / relationships ---------------------------------------------------


class DistributionBucket(BaseModel):
    percentage: float = 0.0
    total_value: float = 0.0
    count: int = 0


class NetworkDistribution(BaseModel):
    agency_direct_awards: DistributionBucket = Field(default_factory=DistributionBucket)
    prime_sub_awards: DistributionBucket = Field(default_factory=DistributionBucket)
    vendor_procurement: DistributionBucket = Field(default_factory=DistributionBucket)


class AgencyRelationship(BaseModel):
    name: str
    total_value: float = 0.0
    percentage: float = 0.0
    contract_count: int = 0


class PartnerRelationship(BaseModel):
    name: str
    entity_key: str | None = None
    total_value: float = 0.0
    percentage: float = 0.0
    contract_count: int = 0


class NetworkPayload(BaseModel):
    network_distribution: NetworkDistribution
    top_agencies: list[AgencyRelationship] = Field(default_factory=list)
    top_primes: list[PartnerRelationship] = Field(default_factory=list)
    top_subcontractors: list[PartnerRelationship] = Field(default_factory=list)
    cache: CacheMetadata | None = None


SourcePayload = Union[FinancialPayload, EnrichmentPayload, AIInsightsPayload, NetworkPayload]


def payload_model_for(kind: SourceKind) -> type[BaseModel]:
    match kind:
        case SourceKind.FINANCIAL:
            return FinancialPayload
        case SourceKind.ENRICHMENT:
            return EnrichmentPayload
        case SourceKind.AI_INSIGHTS:
            return AIInsightsPayload
        case SourceKind.NETWORK:
            return NetworkPayload
        case _:
            assert_never(kind)


# -- consolidated profile ------------------------------------------------------


class DataCompleteness(BaseModel):
    overall: int = Field(default=0, ge=0, le=100)
    has_financial: bool = False
    has_enrichment: bool = False
    has_ai_insights: bool = False
    has_network: bool = False


class QuickAccess(BaseModel):
    display_name: str
    primary_industry: str = "Unknown"
    size_tier: str = "Unknown"
    performance_rating: str = "Unknown"
    last_activity_date: date | None = None
    total_contract_value: float = 0.0
    website_url: str | None = None
    logo_url: str | None = None


class RefreshScheduleHints(BaseModel):
    financial: str = Field(default_factory=lambda: default_refresh_cron(SourceKind.FINANCIAL))
    enrichment: str = Field(default_factory=lambda: default_refresh_cron(SourceKind.ENRICHMENT))
    ai_insights: str = Field(default_factory=lambda: default_refresh_cron(SourceKind.AI_INSIGHTS))
    network: str = Field(default_factory=lambda: default_refresh_cron(SourceKind.NETWORK))


class ConsolidatedProfile(BaseModel):
    profile_id: str
    entity_key: str
    primary_name: str
    alternative_names: list[str] = Field(default_factory=list)
    completeness: DataCompleteness = Field(default_factory=DataCompleteness)

    financial: FinancialPayload | None = None
    enrichment: EnrichmentPayload | None = None
    ai_insights: AIInsightsPayload | None = None
    network: NetworkPayload | None = None

    sources: list[SourceKind] = Field(default_factory=list)
    refresh_schedule: RefreshScheduleHints = Field(default_factory=RefreshScheduleHints)
    quick_access: QuickAccess
    profile_version: int = Field(default=1, ge=1)
    created_at: datetime
    last_updated_at: datetime

    def slot(self, kind: SourceKind) -> SourcePayload | None:
        match kind:
            case SourceKind.FINANCIAL:
                return self.financial
            case SourceKind.ENRICHMENT:
                return self.enrichment
            case SourceKind.AI_INSIGHTS:
                return self.ai_insights
            case SourceKind.NETWORK:
                return self.network
            case _:
                assert_never(kind)

    def slot_metadata(self, kind: SourceKind) -> CacheMetadata | None:
        payload = self.slot(kind)
        return payload.cache if payload is not None else None

    def with_staleness(self, now: datetime) -> ConsolidatedProfile:
        """Copy of the profile with every slot's ``is_stale`` evaluated at ``now``."""
        updated = self.model_copy(deep=True)
        for kind in SOURCE_ORDER:
            metadata = updated.slot_metadata(kind)
            if metadata is not None:
                metadata.is_stale = metadata.stale_at(now)
        return updated


class ProfileFilters(BaseModel):
    entity_keys: list[str] | None = None
    industries: list[str] | None = None
    size_tiers: list[str] | None = None
    states: list[str] | None = None
    performance_ratings: list[str] | None = None
    min_performance_score: float | None = None
    max_performance_score: float | None = None
    require_sources: list[SourceKind] = Field(default_factory=list)
    min_completeness: int | None = Field(default=None, ge=0, le=100)
    min_revenue: float | None = None
    max_revenue: float | None = None
    max_age_hours: float | None = Field(default=None, gt=0)
    exclude_stale: bool = False


class ProfilePage(BaseModel):
    items: list[ConsolidatedProfile]
    total_count: int


class RefreshCandidate(BaseModel):
    entity_key: str
    needs_refresh: dict[SourceKind, bool]

    def needs(self, kind: SourceKind) -> bool:
        return bool(self.needs_refresh.get(kind, False))


class FreshnessDistribution(BaseModel):
    fresh: int = 0
    recent: int = 0
    stale: int = 0


class CacheStats(BaseModel):
    total_profiles: int
    profiles_by_source: dict[SourceKind, int]
    average_data_age_hours: float
    stalest_profile_age_hours: float
    average_completeness: float
    freshness_distribution: FreshnessDistribution
    cache_hit_rate: float
    cached_entries: int
