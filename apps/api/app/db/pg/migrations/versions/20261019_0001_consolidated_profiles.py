"""consolidated profile tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "consolidated_profiles",
        sa.Column("entity_key", sa.String(length=64), nullable=False),
        sa.Column("profile_id", sa.String(length=36), nullable=False),
        sa.Column("primary_name", sa.String(length=500), nullable=False),
        sa.Column("alternative_names_json", sa.JSON(), nullable=False),
        sa.Column("profile_json", sa.JSON(), nullable=False),
        sa.Column("profile_version", sa.Integer(), nullable=False),
        sa.Column("completeness", sa.Integer(), nullable=False),
        sa.Column("has_financial", sa.Boolean(), nullable=False),
        sa.Column("has_enrichment", sa.Boolean(), nullable=False),
        sa.Column("has_ai_insights", sa.Boolean(), nullable=False),
        sa.Column("has_network", sa.Boolean(), nullable=False),
        sa.Column("sources_json", sa.JSON(), nullable=False),
        sa.Column("primary_industry", sa.String(length=255), nullable=True),
        sa.Column("size_tier", sa.String(length=32), nullable=True),
        sa.Column("performance_rating", sa.String(length=64), nullable=True),
        sa.Column("composite_performance_score", sa.Float(), nullable=True),
        sa.Column("revenue_ttm_millions", sa.Float(), nullable=True),
        sa.Column("awards_ttm_millions", sa.Float(), nullable=True),
        sa.Column("state", sa.String(length=64), nullable=True),
        sa.Column("country", sa.String(length=64), nullable=True),
        _timestamp("financial_fetched_at"),
        _timestamp("financial_expires_at"),
        _timestamp("enrichment_fetched_at"),
        _timestamp("enrichment_expires_at"),
        _timestamp("ai_insights_fetched_at"),
        _timestamp("ai_insights_expires_at"),
        _timestamp("network_fetched_at"),
        _timestamp("network_expires_at"),
        _timestamp("created_at", nullable=False),
        _timestamp("last_updated_at", nullable=False),
        sa.PrimaryKeyConstraint("entity_key"),
        sa.UniqueConstraint("profile_id"),
    )
    op.create_index("ix_consolidated_profiles_last_updated", "consolidated_profiles", ["last_updated_at"])
    op.create_index("ix_consolidated_profiles_primary_name", "consolidated_profiles", ["primary_name"])
    op.create_index("ix_consolidated_profiles_composite", "consolidated_profiles", ["composite_performance_score"])

    op.create_table(
        "profile_update_log",
        sa.Column("update_id", sa.String(length=36), nullable=False),
        sa.Column("profile_id", sa.String(length=36), nullable=False),
        sa.Column("entity_key", sa.String(length=64), nullable=False),
        sa.Column("update_type", sa.String(length=32), nullable=False),
        sa.Column("sources_updated_json", sa.JSON(), nullable=False),
        sa.Column("profile_version", sa.Integer(), nullable=False),
        sa.Column("initiated_by", sa.String(length=64), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("update_id"),
    )
    op.create_index("ix_profile_update_log_entity", "profile_update_log", ["entity_key"])

    op.create_table(
        "upstream_data_checks",
        sa.Column("check_id", sa.String(length=36), nullable=False),
        _timestamp("checked_at", nullable=False),
        sa.Column("table_updates_json", sa.JSON(), nullable=False),
        sa.Column("triggered_refresh", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("check_id"),
    )
    op.create_index("ix_upstream_data_checks_checked_at", "upstream_data_checks", ["checked_at"])


def downgrade() -> None:
    op.drop_index("ix_upstream_data_checks_checked_at", table_name="upstream_data_checks")
    op.drop_table("upstream_data_checks")
    op.drop_index("ix_profile_update_log_entity", table_name="profile_update_log")
    op.drop_table("profile_update_log")
    op.drop_index("ix_consolidated_profiles_composite", table_name="consolidated_profiles")
    op.drop_index("ix_consolidated_profiles_primary_name", table_name="consolidated_profiles")
    op.drop_index("ix_consolidated_profiles_last_updated", table_name="consolidated_profiles")
    op.drop_table("consolidated_profiles")
