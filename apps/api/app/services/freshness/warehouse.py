from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Engine

from app.core.config import Settings, get_settings
from app.core.errors import ProviderNotConfigured
from app.db.pg.session import get_warehouse_engine
from app.utils.time import as_utc

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)*$")


@dataclass(frozen=True)
class TableStats:
    last_updated: datetime | None
    record_count: int
    latest_snapshot: date | None


class FreshnessSource(Protocol):
    """Upstream capability that reports its own update timestamps."""

    def table_stats(self, table: str) -> TableStats: ...

    def update_dates(self, table: str, since: datetime, limit: int) -> list[date]: ...

    def entities_updated_since(self, table: str, since: datetime) -> dict[str, date | None]: ...


def checked_identifier(value: str) -> str:
    if not _IDENTIFIER.match(value):
        raise ValueError(f"Unsafe warehouse identifier: {value!r}")
    return value


def coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return as_utc(datetime(value.year, value.month, value.day))
    if isinstance(value, str) and value.strip():
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    return None


def coerce_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        return date.fromisoformat(value.strip()[:10])
    return None


class WarehouseFreshnessSource:
    """Freshness probe over the analytical warehouse tables.

    Table and column names come from settings and are validated as plain
    (optionally dotted) identifiers before being placed in SQL.
    """

    def __init__(self, engine: Engine, settings: Settings | None = None):
        self.engine = engine
        self.settings = settings or get_settings()
        self.entity_column = checked_identifier(self.settings.upstream_entity_column)
        self.timestamp_column = checked_identifier(self.settings.upstream_timestamp_column)
        self.snapshot_column = checked_identifier(self.settings.upstream_snapshot_column)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> WarehouseFreshnessSource:
        settings = settings or get_settings()
        if not settings.warehouse_dsn.strip():
            raise ProviderNotConfigured("WAREHOUSE_DSN is not configured")
        engine = get_warehouse_engine(settings.warehouse_dsn)
        logger.info("warehouse_freshness_source_configured", extra={"backend": engine.url.get_backend_name()})
        return cls(engine, settings)

    def table_stats(self, table: str) -> TableStats:
        name = checked_identifier(table)
        query = text(
            f"SELECT MAX({self.timestamp_column}) AS last_updated, "
            f"COUNT(*) AS record_count, "
            f"MAX({self.snapshot_column}) AS latest_snapshot "
            f"FROM {name}"
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().one()
        return TableStats(
            last_updated=coerce_datetime(row["last_updated"]),
            record_count=int(row["record_count"] or 0),
            latest_snapshot=coerce_date(row["latest_snapshot"]),
        )

    def update_dates(self, table: str, since: datetime, limit: int) -> list[date]:
        name = checked_identifier(table)
        query = text(
            f"SELECT DATE({self.timestamp_column}) AS update_date, COUNT(*) AS updates_count "
            f"FROM {name} "
            f"WHERE {self.timestamp_column} > :since "
            f"GROUP BY DATE({self.timestamp_column}) "
            f"ORDER BY update_date DESC "
            f"LIMIT :limit"
        ).bindparams(bindparam("since", type_=DateTime(timezone=True)))
        with self.engine.connect() as conn:
            rows = conn.execute(query, {"since": as_utc(since), "limit": limit}).mappings().all()
        dates = [coerce_date(row["update_date"]) for row in rows]
        return [value for value in dates if value is not None]

    def entities_updated_since(self, table: str, since: datetime) -> dict[str, date | None]:
        name = checked_identifier(table)
        query = text(
            f"SELECT {self.entity_column} AS entity_key, MAX({self.snapshot_column}) AS latest_snapshot "
            f"FROM {name} "
            f"WHERE {self.timestamp_column} > :since "
            f"GROUP BY {self.entity_column}"
        ).bindparams(bindparam("since", type_=DateTime(timezone=True)))
        with self.engine.connect() as conn:
            rows = conn.execute(query, {"since": as_utc(since)}).mappings().all()
        return {
            str(row["entity_key"]): coerce_date(row["latest_snapshot"])
            for row in rows
            if row["entity_key"] is not None
        }
