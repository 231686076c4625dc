from __future__ import annotations

from app.services.profiles.cache import ProfileCache
from app.services.profiles.merger import ProfileDataMerger
from app.services.profiles.sources import SourceKind
from app.services.profiles.types import ConsolidatedProfile
from app.tests.payloads import NOW, financial_payload, make_settings


def _profile(entity_key: str) -> ConsolidatedProfile:
    merger = ProfileDataMerger(make_settings())
    return merger.merge_sources(
        entity_key,
        {SourceKind.FINANCIAL: financial_payload(entity_key=entity_key, recipient_name=f"Contractor {entity_key}")},
        NOW,
    )


class _Clock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def test_bound_enforcement_evicts_oldest_inserted() -> None:
    cache = ProfileCache(max_size=2, ttl_seconds=3600, auto_enforce=False)
    for key in ("A", "B", "C"):
        cache.set(_profile(key))

    assert len(cache) == 3
    assert cache.enforce_bound() == 1
    assert cache.keys() == ["B", "C"]
    assert "A" not in cache


def test_set_enforces_bound_by_default() -> None:
    cache = ProfileCache(max_size=2, ttl_seconds=3600)
    for key in ("A", "B", "C"):
        cache.set(_profile(key))

    assert cache.keys() == ["B", "C"]


def test_resetting_a_key_moves_it_to_the_back() -> None:
    cache = ProfileCache(max_size=2, ttl_seconds=3600)
    cache.set(_profile("A"))
    cache.set(_profile("B"))
    cache.set(_profile("A"))
    cache.set(_profile("C"))

    assert cache.keys() == ["A", "C"]


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = ProfileCache(max_size=10, ttl_seconds=60, clock=clock)
    cache.set(_profile("A"))

    clock.value += 59
    assert cache.get("A") is not None

    clock.value += 1
    assert cache.get("A") is None
    assert "A" not in cache


def test_stats_report_hit_rate() -> None:
    cache = ProfileCache(max_size=10, ttl_seconds=3600)
    assert cache.stats().hit_rate == 0.0

    cache.set(_profile("A"))
    cache.get("A")
    cache.get("A")
    cache.get("A")
    cache.get("missing")

    stats = cache.stats()
    assert stats.hits == 3
    assert stats.misses == 1
    assert stats.hit_rate == 0.75
    assert stats.size == 1


def test_evict_and_clear() -> None:
    cache = ProfileCache(max_size=10, ttl_seconds=3600)
    cache.set(_profile("A"))
    cache.set(_profile("B"))

    assert cache.evict("A") is True
    assert cache.evict("A") is False
    cache.clear()
    assert len(cache) == 0
    assert cache.stats().hits == 0
