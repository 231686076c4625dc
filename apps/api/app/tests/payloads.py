"""Shared payload builders and in-memory upstream doubles for the tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from app.core.config import Settings
from app.db.pg.base import Base
from app.db.pg.session import SessionLocal, engine
from app.services.freshness.warehouse import TableStats
from app.services.insights.narrative import compose_template_narrative
from app.services.profile_system import ProfileSystem
from app.services.profiles.sources import SourceKind

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
TABLES = ("contractor_metrics", "peer_comparisons")


def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "upstream_tables": ",".join(TABLES),
        "warehouse_dsn": "",
        "enrichment_api_url": "",
        "admin_secret": "",
        "refresh_concurrency": 4,
    }
    values.update(overrides)
    return Settings(**values)


def financial_payload(
    entity_key: str = "E1",
    recipient_name: str = "Acme Federal Services",
    composite: float | None = 72.0,
    revenue_ttm_millions: float = 125.0,
    scores: dict[str, float | None] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    performance_scores: dict[str, float | None] = {
        "awards": 65.0,
        "revenue": 90.0,
        "pipeline": 55.0,
        "duration": 40.0,
        "growth": 20.0,
        "network_activity": 50.0,
        "composite": composite,
    }
    performance_scores.update(scores or {})
    payload: dict[str, Any] = {
        "entity_key": entity_key,
        "recipient_name": recipient_name,
        "entity_classification": "Pure Prime",
        "awards_ttm_millions": 80.0,
        "revenue_ttm_millions": revenue_ttm_millions,
        "blended_growth_score": 82.0,
        "primary_naics_code": "541512",
        "primary_naics_description": "Computer Systems Design Services",
        "agency_focus": "Defense",
        "size_tier": "Large",
        "snapshot_month": "2026-09-01",
        "performance_scores": performance_scores,
        "peer_group": {
            "naics_code": "541512",
            "entity_classification": "Pure Prime",
            "group_size": 140,
            "market_share_percent": 12.5,
            "rank_within_peer": 8,
            "performance_tier": "Top 10%",
            "performance_classification": "Strong",
        },
    }
    payload.update(overrides)
    return payload


def enrichment_payload(
    name: str = "Acme Federal Group",
    founded_year: int | None = None,
    state: str | None = "VA",
    **overrides: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "company_details": {
            "name": name,
            "domain": "acmefederal.example",
            "website": "https://acmefederal.example",
            "founded_year": founded_year,
            "employee_count": 850,
            "industry": "Government Services",
        },
        "location": {"country": "US", "state": state, "city": "Reston"},
        "digital_presence": {"logo_url": "https://cdn.example/acme.png"},
        "technologies": ["aws", "salesforce"],
    }
    payload.update(overrides)
    return payload


def network_payload(agencies: tuple[str, ...] = ("Department of the Army",)) -> dict[str, Any]:
    return {
        "network_distribution": {
            "agency_direct_awards": {"percentage": 70.0, "total_value": 70_000_000.0, "count": 42},
            "prime_sub_awards": {"percentage": 30.0, "total_value": 30_000_000.0, "count": 11},
        },
        "top_agencies": [
            {"name": agency, "total_value": 1_000_000.0, "percentage": 10.0, "contract_count": 3}
            for agency in agencies
        ],
    }


class FakeFreshnessSource:
    """In-memory upstream with per-table update timestamps."""

    def __init__(
        self,
        last_updated: datetime | None = None,
        update_dates: list[date] | None = None,
        entities: dict[str, date | None] | None = None,
        fail: bool = False,
    ):
        self.last_updated = last_updated
        self.dates = list(update_dates or [])
        self.entities = dict(entities or {})
        self.fail = fail

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("warehouse unreachable")

    def table_stats(self, table: str) -> TableStats:
        self._check()
        return TableStats(
            last_updated=self.last_updated,
            record_count=10 if self.last_updated else 0,
            latest_snapshot=date(2026, 9, 1) if self.last_updated else None,
        )

    def update_dates(self, table: str, since: datetime, limit: int) -> list[date]:
        self._check()
        return self.dates[:limit]

    def entities_updated_since(self, table: str, since: datetime) -> dict[str, date | None]:
        self._check()
        if self.last_updated is None or self.last_updated <= since:
            return {}
        return dict(self.entities)


class FakeProvider:
    def __init__(self, kind: SourceKind, respond: Callable[[str], dict[str, Any] | None]):
        self.kind = kind
        self._respond = respond
        self.calls: list[str] = []

    def fetch(self, entity_key: str) -> dict[str, Any] | None:
        self.calls.append(entity_key)
        return self._respond(entity_key)


def build_system(
    settings: Settings | None = None,
    source: FakeFreshnessSource | None = None,
    providers: dict[SourceKind, FakeProvider] | None = None,
) -> ProfileSystem:
    return ProfileSystem.build(
        settings or make_settings(),
        SessionLocal,
        freshness_source=source,
        providers=providers,
        refresher_options={"narrative_generator": compose_template_narrative},
    )


def days_back(count: int, step: int = 1, start: date | None = None) -> list[date]:
    """``count`` dates going back from ``start`` in ``step``-day gaps, newest first."""
    start = start or NOW.date()
    return [start - timedelta(days=index * step) for index in range(count)]
