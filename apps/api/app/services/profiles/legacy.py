"""Projection of consolidated profiles into the older flat contractor record.

Pure functions with fixed mapping tables; nothing here touches storage.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from app.services.profiles.types import ConsolidatedProfile, NetworkPayload, ProfileFilters

NAICS_SECTOR_INDUSTRIES: dict[str, str] = {
    "11": "agriculture",
    "21": "energy",
    "22": "energy",
    "23": "construction",
    "31": "manufacturing",
    "32": "manufacturing",
    "33": "manufacturing",
    "42": "professional-services",
    "44": "professional-services",
    "45": "professional-services",
    "48": "transportation",
    "49": "transportation",
    "51": "information-technology",
    "52": "financial-services",
    "53": "professional-services",
    "54": "professional-services",
    "55": "professional-services",
    "56": "professional-services",
    "61": "education",
    "62": "healthcare",
    "71": "professional-services",
    "72": "professional-services",
    "81": "professional-services",
    "92": "defense",
}

LIFECYCLE_STAGES: dict[str, str] = {
    "Elite": "active",
    "Strong": "active",
    "Stable": "option-period",
    "Emerging": "pre-award",
}

# (minimum growth score, momentum), checked top-down.
MOMENTUM_BANDS: tuple[tuple[float, str], ...] = (
    (90, "high-growth"),
    (70, "steady-growth"),
    (40, "stable"),
    (20, "declining"),
)


class LegacyContractor(BaseModel):
    id: str
    uei: str
    name: str
    dba_name: str | None = None
    industry: str = "other"
    location: str = "International"
    state: str | None = None
    country: str | None = None
    city: str | None = None
    annual_revenue: float | None = None
    employee_count: int | None = None
    founded_year: int | None = None
    established_date: date | None = None
    lifecycle_stage: str = "active"
    business_momentum: str = "stable"
    ownership_type: str = "private"
    growth_potential: float | None = None
    market_position: float | None = None
    total_contract_value: float | None = None
    past_performance_score: float | None = None
    logo_url: str | None = None
    website: str | None = None
    created_at: datetime
    updated_at: datetime
    last_verified: datetime
    total_ueis: int = 1
    primary_agency: str | None = None
    total_agencies: int = 0
    agency_diversity: int = 0
    total_states: int = 0
    states_list: list[str] = Field(default_factory=list)
    primary_naics_code: str | None = None
    primary_naics_description: str | None = None
    industry_clusters: list[str] = Field(default_factory=list)
    size_tier: str | None = None
    performance_score: float | None = None
    profile_completeness: int = 0


def map_naics_to_industry(naics_code: str | None) -> str:
    if not naics_code:
        return "other"
    return NAICS_SECTOR_INDUSTRIES.get(naics_code[:2], "other")


def map_performance_to_lifecycle(classification: str | None) -> str:
    return LIFECYCLE_STAGES.get(classification or "", "active")


def map_growth_to_momentum(growth_score: float | None) -> str:
    if not growth_score:
        return "stable"
    for minimum, momentum in MOMENTUM_BANDS:
        if growth_score >= minimum:
            return momentum
    return "volatile"


def agency_diversity(network: NetworkPayload | None) -> int:
    count = len(network.top_agencies) if network else 0
    if count == 0:
        return 0
    if count == 1:
        return 25
    if count <= 3:
        return 50
    if count <= 5:
        return 75
    return 100


def to_legacy_contractor(profile: ConsolidatedProfile) -> LegacyContractor:
    financial = profile.financial
    enrichment = profile.enrichment
    network = profile.network
    location = enrichment.location if enrichment else None
    details = enrichment.company_details if enrichment else None
    revenue_dollars = financial.revenue_ttm_millions * 1_000_000 if financial else None
    founded_year = details.founded_year if details else None
    state = location.state if location else None

    return LegacyContractor(
        id=profile.profile_id,
        uei=profile.entity_key,
        name=profile.primary_name,
        dba_name=profile.alternative_names[0] if profile.alternative_names else None,
        industry=map_naics_to_industry(financial.primary_naics_code if financial else None),
        location="US" if location and location.country == "US" else "International",
        state=state,
        country=location.country if location else None,
        city=location.city if location else None,
        annual_revenue=revenue_dollars,
        employee_count=details.employee_count if details else None,
        founded_year=founded_year,
        established_date=date(founded_year, 1, 1) if founded_year else None,
        lifecycle_stage=map_performance_to_lifecycle(
            financial.peer_group.performance_classification if financial else None
        ),
        business_momentum=map_growth_to_momentum(financial.blended_growth_score if financial else None),
        growth_potential=financial.performance_scores.growth if financial else None,
        market_position=financial.performance_scores.composite if financial else None,
        total_contract_value=revenue_dollars,
        past_performance_score=financial.performance_scores.composite if financial else None,
        logo_url=enrichment.digital_presence.logo_url if enrichment else None,
        website=details.website if details else None,
        created_at=profile.created_at,
        updated_at=profile.last_updated_at,
        last_verified=profile.last_updated_at,
        primary_agency=network.top_agencies[0].name if network and network.top_agencies else None,
        total_agencies=len(network.top_agencies) if network else 0,
        agency_diversity=agency_diversity(network),
        total_states=1 if state else 0,
        states_list=[state] if state else [],
        primary_naics_code=financial.primary_naics_code if financial else None,
        primary_naics_description=financial.primary_naics_description if financial else None,
        industry_clusters=[financial.primary_naics_description]
        if financial and financial.primary_naics_description
        else [],
        size_tier=financial.size_tier if financial else None,
        performance_score=financial.performance_scores.composite if financial else None,
        profile_completeness=profile.completeness.overall,
    )


def convert_legacy_filters(legacy: dict[str, Any] | None) -> ProfileFilters:
    legacy = legacy or {}
    filters = ProfileFilters()
    if legacy.get("sectors"):
        filters.industries = list(legacy["sectors"])
    if legacy.get("states"):
        filters.states = list(legacy["states"])
    if legacy.get("min_performance_score"):
        filters.min_performance_score = float(legacy["min_performance_score"])
    if legacy.get("revenue_min"):
        filters.min_revenue = float(legacy["revenue_min"])
    if legacy.get("revenue_max"):
        filters.max_revenue = float(legacy["revenue_max"])
    return filters
