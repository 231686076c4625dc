from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.errors import ProfileValidationError, ProfileVersionConflict
from app.services.profiles.sources import SourceKind
from app.services.profiles.store import SORT_COLUMNS
from app.services.profiles.types import ProfileFilters
from app.tests.payloads import (
    NOW,
    FakeFreshnessSource,
    build_system,
    enrichment_payload,
    financial_payload,
    network_payload,
    reset_db,
)


def _seed(store, entity_key: str, name: str, composite: float, now=NOW, **extra) -> None:
    store.upsert(
        entity_key,
        {SourceKind.FINANCIAL: financial_payload(entity_key=entity_key, recipient_name=name, composite=composite, **extra)},
        now=now,
    )


def test_upsert_persists_versions_and_audit_log() -> None:
    reset_db()
    store = build_system().store

    first = store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=NOW)
    second = store.update_from_source("E1", SourceKind.ENRICHMENT, enrichment_payload(), now=NOW + timedelta(hours=1))
    third = store.update_from_source("E1", SourceKind.NETWORK, network_payload(), now=NOW + timedelta(hours=2))

    assert [first.profile_version, second.profile_version, third.profile_version] == [1, 2, 3]
    assert first.last_updated_at <= second.last_updated_at <= third.last_updated_at
    assert third.completeness.overall == 80

    store.cache.clear()
    loaded = store.get_by_key("E1", now=NOW + timedelta(hours=3))
    assert loaded is not None
    assert loaded.profile_version == 3
    assert loaded.profile_id == first.profile_id
    assert loaded.primary_name == "Acme Federal Group"

    history = store.update_history("E1")
    assert [entry["update_type"] for entry in history] == ["update", "update", "create"]
    assert [entry["profile_version"] for entry in history] == [3, 2, 1]
    assert history[-1]["sources_updated"] == ["financial"]


def test_invalid_payload_leaves_store_untouched() -> None:
    reset_db()
    store = build_system().store
    store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=NOW)

    with pytest.raises(ProfileValidationError):
        store.update_from_source("E1", SourceKind.ENRICHMENT, {"company_details": {"name": ""}}, now=NOW)

    profile = store.get_by_key("E1", now=NOW)
    assert profile.profile_version == 1
    assert profile.enrichment is None
    assert len(store.update_history("E1")) == 1


def test_missing_profile_returns_none() -> None:
    reset_db()
    store = build_system().store
    assert store.get_by_key("nope") is None


def test_profiles_outside_staleness_window_need_include_stale() -> None:
    reset_db()
    store = build_system().store
    written_at = NOW - timedelta(days=8)
    store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=written_at)

    assert store.get_by_key("E1", now=NOW) is None
    assert store.get_by_key("E1", include_stale=True, now=NOW) is not None

    store.cache.clear()
    assert store.get_by_key("E1", now=NOW) is None
    assert store.get_by_key("E1", now=written_at + timedelta(days=6)) is not None


def test_slot_staleness_flips_exactly_at_expiry() -> None:
    reset_db()
    store = build_system().store
    store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=NOW)

    before = store.get_by_key("E1", now=NOW + timedelta(hours=24) - timedelta(seconds=1))
    at = store.get_by_key("E1", now=NOW + timedelta(hours=24))

    assert before.financial.cache.is_stale is False
    assert at.financial.cache.is_stale is True


def test_write_response_reports_expired_untouched_slots_as_stale() -> None:
    reset_db()
    store = build_system().store
    store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=NOW)

    later = NOW + timedelta(days=2)
    updated = store.update_from_source("E1", SourceKind.ENRICHMENT, enrichment_payload(), now=later)

    assert updated.financial.cache.is_stale is True
    assert updated.enrichment.cache.is_stale is False
    assert store.get_by_key("E1", now=later).financial.cache.is_stale is True


def test_concurrent_writer_exhausts_retries(monkeypatch) -> None:
    reset_db()
    store = build_system().store
    store.update_from_source("E1", SourceKind.FINANCIAL, financial_payload(), now=NOW)
    attempts: list[int] = []

    def _always_conflict(session, profile, prior_version, sources_updated, initiated_by) -> bool:
        attempts.append(prior_version)
        return False

    monkeypatch.setattr(store, "_write", _always_conflict)

    with pytest.raises(ProfileVersionConflict):
        store.update_from_source("E1", SourceKind.ENRICHMENT, enrichment_payload(), now=NOW)
    assert attempts == [1, 1, 1]
    assert "E1" not in store.cache


def test_query_filters_and_sorting() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Alpha Systems", 91.0, revenue_ttm_millions=300.0)
    _seed(store, "E2", "Bravo Logistics", 55.0, revenue_ttm_millions=40.0, size_tier="Small")
    _seed(store, "E3", "Charlie Analytics", 74.0, revenue_ttm_millions=120.0)
    store.update_from_source("E3", SourceKind.ENRICHMENT, enrichment_payload(name="Charlie Analytics", state="MD"), now=NOW)

    page = store.query(now=NOW)
    assert [item.entity_key for item in page.items] == ["E1", "E3", "E2"]
    assert page.total_count == 3

    page = store.query(ProfileFilters(min_performance_score=60), now=NOW)
    assert [item.entity_key for item in page.items] == ["E1", "E3"]

    page = store.query(ProfileFilters(require_sources=[SourceKind.ENRICHMENT]), now=NOW)
    assert [item.entity_key for item in page.items] == ["E3"]

    page = store.query(ProfileFilters(states=["MD"], min_completeness=70), now=NOW)
    assert [item.entity_key for item in page.items] == ["E3"]

    page = store.query(ProfileFilters(size_tiers=["Small"]), now=NOW)
    assert [item.entity_key for item in page.items] == ["E2"]

    page = store.query(ProfileFilters(min_revenue=100, max_revenue=200), now=NOW)
    assert [item.entity_key for item in page.items] == ["E3"]

    page = store.query(sort_by="primary_name", sort_order="asc", limit=2, now=NOW)
    assert [item.primary_name for item in page.items] == ["Alpha Systems", "Bravo Logistics"]
    assert page.total_count == 3

    page = store.query(sort_by="primary_name; DROP TABLE consolidated_profiles", now=NOW)
    assert [item.entity_key for item in page.items] == ["E1", "E3", "E2"]
    assert "primary_name; DROP TABLE consolidated_profiles" not in SORT_COLUMNS


def test_query_age_filters() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Fresh Co", 70.0, now=NOW - timedelta(hours=2))
    _seed(store, "E2", "Older Co", 70.0, now=NOW - timedelta(days=3))
    _seed(store, "E3", "Ancient Co", 70.0, now=NOW - timedelta(days=10))

    page = store.query(ProfileFilters(max_age_hours=24), now=NOW)
    assert [item.entity_key for item in page.items] == ["E1"]

    page = store.query(ProfileFilters(exclude_stale=True), sort_by="primary_name", sort_order="asc", now=NOW)
    assert [item.entity_key for item in page.items] == ["E1", "E2"]


def test_search_ranks_exact_then_prefix_then_token_matches() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Federal Acme Systems", 50.0)
    _seed(store, "E2", "Acme Federal", 50.0)
    _seed(store, "E3", "Acme", 50.0)
    _seed(store, "E4", "Zenith Partners", 50.0)

    page = store.search_by_text("  ACME ", now=NOW)

    assert [item.primary_name for item in page.items] == ["Acme", "Acme Federal", "Federal Acme Systems"]
    assert page.total_count == 3

    page = store.search_by_text("acme", limit=1, offset=1, now=NOW)
    assert [item.primary_name for item in page.items] == ["Acme Federal"]
    assert page.total_count == 3

    page = store.search_by_text("100%_acme", now=NOW)
    assert [item.primary_name for item in page.items] == []


def test_search_respects_filters() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Acme Federal", 90.0)
    _seed(store, "E2", "Acme Commercial", 30.0)

    page = store.search_by_text("acme", ProfileFilters(min_performance_score=50), now=NOW)

    assert [item.entity_key for item in page.items] == ["E1"]


def test_profiles_needing_refresh_by_expiry() -> None:
    reset_db()
    store = build_system().store
    store.upsert(
        "E1",
        {SourceKind.FINANCIAL: financial_payload(), SourceKind.ENRICHMENT: enrichment_payload()},
        now=NOW - timedelta(hours=25),
    )
    _seed(store, "E2", "Current Co", 60.0, now=NOW - timedelta(hours=1))

    candidates = store.get_profiles_needing_refresh(now=NOW, upstream_stale=False)

    assert [candidate.entity_key for candidate in candidates] == ["E1"]
    assert candidates[0].needs(SourceKind.FINANCIAL) is True
    assert candidates[0].needs(SourceKind.ENRICHMENT) is False
    assert candidates[0].needs(SourceKind.NETWORK) is False


def test_stale_upstream_suppresses_financial_refresh_flags() -> None:
    reset_db()
    source = FakeFreshnessSource(last_updated=NOW - timedelta(hours=80))
    store = build_system(source=source).store
    store.upsert(
        "E1",
        {SourceKind.FINANCIAL: financial_payload(), SourceKind.NETWORK: network_payload()},
        now=NOW - timedelta(hours=25),
    )

    candidates = store.get_profiles_needing_refresh(now=NOW)

    assert [candidate.entity_key for candidate in candidates] == ["E1"]
    assert candidates[0].needs(SourceKind.FINANCIAL) is False
    assert candidates[0].needs(SourceKind.NETWORK) is True
    assert store.get_profiles_needing_refresh(now=NOW, kinds=[SourceKind.FINANCIAL]) == []


def test_cache_stats_bucket_profiles_by_age() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Fresh Co", 70.0, now=NOW - timedelta(hours=2))
    _seed(store, "E2", "Recent Co", 70.0, now=NOW - timedelta(hours=48))
    _seed(store, "E3", "Stale Co", 70.0, now=NOW - timedelta(days=10))
    store.update_from_source("E1", SourceKind.ENRICHMENT, enrichment_payload(name="Fresh Co"), now=NOW - timedelta(hours=2))

    stats = store.get_cache_stats(now=NOW)

    assert stats.total_profiles == 3
    assert stats.freshness_distribution.fresh == 1
    assert stats.freshness_distribution.recent == 1
    assert stats.freshness_distribution.stale == 1
    assert stats.profiles_by_source[SourceKind.FINANCIAL] == 3
    assert stats.profiles_by_source[SourceKind.ENRICHMENT] == 1
    assert stats.stalest_profile_age_hours == 240.0
    assert stats.average_completeness == pytest.approx(50.0)


def test_forced_refresh_keys_oldest_fetch_first() -> None:
    reset_db()
    store = build_system().store
    _seed(store, "E1", "Newer Co", 70.0, now=NOW - timedelta(hours=1))
    _seed(store, "E2", "Older Co", 70.0, now=NOW - timedelta(hours=5))

    assert store.keys_for_forced_refresh(SourceKind.FINANCIAL, 1) == ["E2"]
    assert store.existing_keys(["E1", "E9"]) == {"E1"}
    assert store.count() == 2
