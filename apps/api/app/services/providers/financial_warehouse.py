from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.core.errors import ProviderNotConfigured, UpstreamUnavailable
from app.db.pg.session import get_warehouse_engine
from app.services.freshness.warehouse import checked_identifier, coerce_date
from app.services.profiles.sources import SourceKind

logger = logging.getLogger(__name__)

# Peer-comparison score columns keyed by performance dimension.
SCORE_COLUMNS: dict[str, str] = {
    "awards": "awards_score",
    "revenue": "revenue_score",
    "pipeline": "pipeline_score",
    "duration": "duration_score",
    "growth": "growth_score",
    "network_activity": "network_activity_score",
    "composite": "composite_score",
}

METRIC_COLUMNS: tuple[str, ...] = (
    "awards_ttm_millions",
    "revenue_ttm_millions",
    "subcontracting_ttm_millions",
    "calculated_pipeline_millions",
    "avg_contract_duration_months",
    "awards_ttm_yoy_growth_pct",
    "revenue_ttm_yoy_growth_pct",
    "blended_growth_score",
)


def _lower_keys(row: Mapping[str, Any] | None) -> dict[str, Any]:
    if not row:
        return {}
    return {str(key).lower(): value for key, value in row.items()}


def _float_or_none(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int_or_none(value: Any) -> int | None:
    number = _float_or_none(value)
    return int(number) if number is not None else None


def rows_to_financial_payload(
    entity_key: str,
    metrics_row: Mapping[str, Any] | None,
    peer_row: Mapping[str, Any] | None,
) -> dict[str, Any] | None:
    """Shape warehouse metric and peer rows into a financial source payload."""
    metrics = _lower_keys(metrics_row)
    peer = _lower_keys(peer_row)
    if not metrics:
        return None

    payload: dict[str, Any] = {
        "entity_key": entity_key,
        "recipient_name": metrics.get("recipient_name") or peer.get("recipient_name") or "",
        "entity_classification": metrics.get("entity_classification") or peer.get("entity_classification"),
        "primary_naics_code": metrics.get("primary_naics_code"),
        "primary_naics_description": metrics.get("primary_naics_description"),
        "agency_focus": metrics.get("agency_focus") if metrics.get("agency_focus") in ("Defense", "Civilian") else None,
        "size_tier": metrics.get("size_tier"),
        "snapshot_month": coerce_date(metrics.get("snapshot_month")),
    }
    for column in METRIC_COLUMNS:
        value = _float_or_none(metrics.get(column))
        if value is not None:
            payload[column] = value

    payload["performance_scores"] = {
        dimension: _float_or_none(peer.get(column)) for dimension, column in SCORE_COLUMNS.items()
    }
    payload["peer_group"] = {
        "naics_code": peer.get("naics_code") or metrics.get("primary_naics_code"),
        "entity_classification": peer.get("entity_classification") or metrics.get("entity_classification"),
        "group_size": _int_or_none(peer.get("peer_group_size")) or 0,
        "market_share_percent": _float_or_none(peer.get("market_share_percent")) or 0.0,
        "rank_within_peer": _int_or_none(peer.get("rank_within_peer")),
        "performance_tier": peer.get("performance_tier"),
        "performance_classification": peer.get("performance_classification") or "Insufficient Data",
    }
    return payload


class WarehouseFinancialProvider:
    """Reads the latest monthly metrics and peer comparison rows for an entity."""

    kind = SourceKind.FINANCIAL

    def __init__(self, engine: Engine, settings: Settings | None = None):
        self.engine = engine
        self.settings = settings or get_settings()
        tables = self.settings.upstream_table_names()
        if len(tables) < 2:
            raise ProviderNotConfigured("UPSTREAM_TABLES must list the metrics and peer comparison tables")
        self.metrics_table = checked_identifier(tables[0])
        self.peer_table = checked_identifier(tables[1])
        self.entity_column = checked_identifier(self.settings.upstream_entity_column)
        self.snapshot_column = checked_identifier(self.settings.upstream_snapshot_column)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> WarehouseFinancialProvider:
        settings = settings or get_settings()
        if not settings.warehouse_dsn.strip():
            raise ProviderNotConfigured("WAREHOUSE_DSN is not configured")
        return cls(get_warehouse_engine(settings.warehouse_dsn), settings)

    def _latest_row(self, conn, table: str, entity_key: str) -> dict[str, Any] | None:
        query = text(
            f"SELECT * FROM {table} "
            f"WHERE {self.entity_column} = :entity_key "
            f"ORDER BY {self.snapshot_column} DESC "
            f"LIMIT 1"
        )
        row = conn.execute(query, {"entity_key": entity_key}).mappings().first()
        return dict(row) if row is not None else None

    def fetch(self, entity_key: str) -> dict[str, Any] | None:
        try:
            with self.engine.connect() as conn:
                metrics_row = self._latest_row(conn, self.metrics_table, entity_key)
                peer_row = self._latest_row(conn, self.peer_table, entity_key) if metrics_row else None
        except SQLAlchemyError as exc:
            logger.warning("financial_provider_query_failed", extra={"entity_key": entity_key})
            raise UpstreamUnavailable(
                "Warehouse query failed",
                {"entity_key": entity_key, "error": str(exc.__class__.__name__)},
            ) from exc

        payload = rows_to_financial_payload(entity_key, metrics_row, peer_row)
        if payload is None:
            logger.info("financial_provider_no_rows", extra={"entity_key": entity_key})
        return payload
