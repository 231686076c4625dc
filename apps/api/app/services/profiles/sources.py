from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import assert_never

from app.core.config import Settings


class SourceKind(str, Enum):
    FINANCIAL = "financial"
    ENRICHMENT = "enrichment"
    AI_INSIGHTS = "ai_insights"
    NETWORK = "network"


SOURCE_ORDER: tuple[SourceKind, ...] = (
    SourceKind.FINANCIAL,
    SourceKind.ENRICHMENT,
    SourceKind.AI_INSIGHTS,
    SourceKind.NETWORK,
)

# Sources whose upstream exposes no freshness signal; refreshed on calendar expiry only.
CALENDAR_SOURCES: tuple[SourceKind, ...] = (
    SourceKind.ENRICHMENT,
    SourceKind.AI_INSIGHTS,
    SourceKind.NETWORK,
)


def completeness_weight(kind: SourceKind) -> int:
    match kind:
        case SourceKind.FINANCIAL:
            return 40
        case SourceKind.ENRICHMENT:
            return 30
        case SourceKind.AI_INSIGHTS:
            return 20
        case SourceKind.NETWORK:
            return 10
        case _:
            assert_never(kind)


def source_ttl(kind: SourceKind, settings: Settings) -> timedelta:
    match kind:
        case SourceKind.FINANCIAL:
            return timedelta(hours=settings.financial_ttl_hours)
        case SourceKind.ENRICHMENT:
            return timedelta(hours=settings.enrichment_ttl_hours)
        case SourceKind.AI_INSIGHTS:
            return timedelta(hours=settings.ai_insights_ttl_hours)
        case SourceKind.NETWORK:
            return timedelta(hours=settings.network_ttl_hours)
        case _:
            assert_never(kind)


def default_refresh_cron(kind: SourceKind) -> str:
    match kind:
        case SourceKind.FINANCIAL:
            return "0 2 * * *"
        case SourceKind.ENRICHMENT:
            return "0 3 * * 0"
        case SourceKind.AI_INSIGHTS:
            return "0 4 * * 0"
        case SourceKind.NETWORK:
            return "0 2 * * *"
        case _:
            assert_never(kind)


def parse_source_kind(value: str) -> SourceKind:
    normalized = value.strip().lower().replace("-", "_")
    try:
        return SourceKind(normalized)
    except ValueError as exc:
        allowed = ", ".join(kind.value for kind in SOURCE_ORDER)
        raise ValueError(f"Unknown source kind '{value}'; expected one of: {allowed}") from exc
