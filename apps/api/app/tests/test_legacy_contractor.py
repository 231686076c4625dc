from __future__ import annotations

from datetime import date

from app.services.profiles.legacy import (
    agency_diversity,
    convert_legacy_filters,
    map_growth_to_momentum,
    map_naics_to_industry,
    map_performance_to_lifecycle,
    to_legacy_contractor,
)
from app.services.profiles.merger import ProfileDataMerger
from app.services.profiles.sources import SourceKind
from app.services.profiles.types import NetworkPayload
from app.tests.payloads import (
    NOW,
    build_system,
    enrichment_payload,
    financial_payload,
    make_settings,
    network_payload,
    reset_db,
)


def test_naics_sector_mapping() -> None:
    assert map_naics_to_industry("541512") == "professional-services"
    assert map_naics_to_industry("336411") == "manufacturing"
    assert map_naics_to_industry("928110") == "defense"
    assert map_naics_to_industry("999999") == "other"
    assert map_naics_to_industry(None) == "other"


def test_lifecycle_and_momentum_mapping() -> None:
    assert map_performance_to_lifecycle("Elite") == "active"
    assert map_performance_to_lifecycle("Stable") == "option-period"
    assert map_performance_to_lifecycle("Emerging") == "pre-award"
    assert map_performance_to_lifecycle(None) == "active"

    assert map_growth_to_momentum(95) == "high-growth"
    assert map_growth_to_momentum(70) == "steady-growth"
    assert map_growth_to_momentum(45) == "stable"
    assert map_growth_to_momentum(20) == "declining"
    assert map_growth_to_momentum(5) == "volatile"
    assert map_growth_to_momentum(None) == "stable"
    assert map_growth_to_momentum(0) == "stable"


def test_agency_diversity_bands() -> None:
    def _network(count: int) -> NetworkPayload:
        return NetworkPayload.model_validate(network_payload(tuple(f"Agency {index}" for index in range(count))))

    assert agency_diversity(None) == 0
    assert agency_diversity(_network(0)) == 0
    assert agency_diversity(_network(1)) == 25
    assert agency_diversity(_network(3)) == 50
    assert agency_diversity(_network(5)) == 75
    assert agency_diversity(_network(8)) == 100


def test_profile_projects_into_flat_contractor_record() -> None:
    merger = ProfileDataMerger(make_settings(), id_factory=lambda: "profile-1")
    profile = merger.merge_sources(
        "UEI1",
        {
            SourceKind.FINANCIAL: financial_payload(entity_key="UEI1"),
            SourceKind.ENRICHMENT: enrichment_payload(founded_year=1998),
            SourceKind.NETWORK: network_payload(("Department of the Army", "Department of the Navy")),
        },
        NOW,
    )

    contractor = to_legacy_contractor(profile)

    assert contractor.id == "profile-1"
    assert contractor.uei == "UEI1"
    assert contractor.name == "Acme Federal Group"
    assert contractor.dba_name == "Acme Federal Services"
    assert contractor.industry == "professional-services"
    assert contractor.location == "US"
    assert contractor.state == "VA"
    assert contractor.states_list == ["VA"]
    assert contractor.annual_revenue == 125_000_000.0
    assert contractor.established_date == date(1998, 1, 1)
    assert contractor.lifecycle_stage == "active"
    assert contractor.business_momentum == "steady-growth"
    assert contractor.primary_agency == "Department of the Army"
    assert contractor.total_agencies == 2
    assert contractor.agency_diversity == 50
    assert contractor.performance_score == 72.0
    assert contractor.profile_completeness == 80


def test_sparse_profile_uses_defaults() -> None:
    merger = ProfileDataMerger(make_settings())
    profile = merger.merge_sources("UEI9", {SourceKind.NETWORK: network_payload(())}, NOW)

    contractor = to_legacy_contractor(profile)

    assert contractor.name == "Unknown"
    assert contractor.industry == "other"
    assert contractor.location == "International"
    assert contractor.annual_revenue is None
    assert contractor.states_list == []
    assert contractor.primary_agency is None


def test_legacy_filters_convert_to_profile_filters() -> None:
    filters = convert_legacy_filters(
        {
            "sectors": ["Computer Systems Design Services"],
            "states": ["VA", "MD"],
            "min_performance_score": "60",
            "revenue_min": 10,
            "revenue_max": 500,
            "unknown_key": True,
        }
    )

    assert filters.industries == ["Computer Systems Design Services"]
    assert filters.states == ["VA", "MD"]
    assert filters.min_performance_score == 60.0
    assert filters.min_revenue == 10.0
    assert filters.max_revenue == 500.0
    assert convert_legacy_filters(None).industries is None


def test_system_looks_up_legacy_contractors_by_key() -> None:
    reset_db()
    system = build_system()
    system.store.upsert("E1", {SourceKind.FINANCIAL: financial_payload("E1", "Zulu Systems")})
    system.store.upsert("E2", {SourceKind.FINANCIAL: financial_payload("E2", "Alpha Logistics")})
    system.store.upsert("E3", {SourceKind.FINANCIAL: financial_payload("E3", "Mid Corp")})

    contractors = system.get_legacy_contractors(["E1", "E2", "missing"])

    assert [contractor.uei for contractor in contractors] == ["E2", "E1"]
    assert system.get_legacy_contractor("missing") is None
