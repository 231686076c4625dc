from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.pg.base import Base
from app.utils.time import utc_now


class ConsolidatedProfileRecord(Base):
    __tablename__ = "consolidated_profiles"

    entity_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    profile_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    primary_name: Mapped[str] = mapped_column(String(500), nullable=False)
    alternative_names_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    profile_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    profile_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    completeness: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_financial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_enrichment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_ai_insights: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_network: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sources_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Denormalized filter/sort columns, refreshed from the profile on every write.
    primary_industry: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size_tier: Mapped[str | None] = mapped_column(String(32), nullable=True)
    performance_rating: Mapped[str | None] = mapped_column(String(64), nullable=True)
    composite_performance_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    revenue_ttm_millions: Mapped[float | None] = mapped_column(Float, nullable=True)
    awards_ttm_millions: Mapped[float | None] = mapped_column(Float, nullable=True)
    state: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country: Mapped[str | None] = mapped_column(String(64), nullable=True)

    financial_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    financial_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    enrichment_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    enrichment_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ai_insights_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ai_insights_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    network_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    network_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProfileUpdateLog(Base):
    __tablename__ = "profile_update_log"

    update_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    profile_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_key: Mapped[str] = mapped_column(String(64), nullable=False)
    update_type: Mapped[str] = mapped_column(String(32), nullable=False)
    sources_updated_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    profile_version: Mapped[int] = mapped_column(Integer, nullable=False)
    initiated_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )


class UpstreamDataCheck(Base):
    __tablename__ = "upstream_data_checks"

    check_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    table_updates_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    triggered_refresh: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


Index("ix_consolidated_profiles_last_updated", ConsolidatedProfileRecord.last_updated_at)
Index("ix_consolidated_profiles_primary_name", ConsolidatedProfileRecord.primary_name)
Index("ix_consolidated_profiles_composite", ConsolidatedProfileRecord.composite_performance_score)
Index("ix_profile_update_log_entity", ProfileUpdateLog.entity_key)
Index("ix_upstream_data_checks_checked_at", UpstreamDataCheck.checked_at)
