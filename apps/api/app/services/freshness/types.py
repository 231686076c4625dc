from __future__ import annotations

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.services.profiles.sources import SourceKind

RefreshPriority = Literal["low", "normal", "high"]
CadencePattern = Literal["daily", "weekly", "monthly", "irregular"]


class TableFreshness(BaseModel):
    table: str
    last_updated: datetime | None = None
    record_count: int = 0
    latest_snapshot: date | None = None


class UpstreamFreshness(BaseModel):
    per_table: dict[str, TableFreshness] = Field(default_factory=dict)
    most_recent_update: datetime | None = None
    data_age_hours: float | None = 0.0
    is_stale: bool = False
    degraded: bool = False


class NewDataCheck(BaseModel):
    has_new_data: bool
    new_data_available_at: datetime | None = None
    affected_tables: list[str] = Field(default_factory=list)


class EntityUpdateFlags(BaseModel):
    entity_key: str
    updated_tables: list[str] = Field(default_factory=list)
    latest_snapshot: date | None = None


class EntitiesWithNewData(BaseModel):
    entity_keys: list[str] = Field(default_factory=list)
    per_entity_flags: list[EntityUpdateFlags] = Field(default_factory=list)


class RefreshCadence(BaseModel):
    pattern: CadencePattern = "irregular"
    next_expected_refresh: datetime | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    expected_refresh_weekdays: list[int] = Field(default_factory=list)
    average_gap_days: float | None = None
    sample_size: int = 0


class RefreshDecision(BaseModel):
    should_refresh: bool
    reason: str
    priority: RefreshPriority = "low"
    affected_sources: list[SourceKind] = Field(default_factory=list)
    affected_tables: list[str] = Field(default_factory=list)
    affected_entities: list[str] = Field(default_factory=list)
    estimated_affected_profiles: int = 0


class DataCheckpoint(BaseModel):
    check_id: str
    checked_at: datetime
    table_updates: dict[str, str | None] = Field(default_factory=dict)
    triggered_refresh: bool = False
