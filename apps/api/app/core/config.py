from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Contractor Profile Service"
    environment: str = "dev"
    api_prefix: str = "/v1"
    log_level: str = "INFO"

    pg_dsn: str = "sqlite:///./contractor_profiles.db"
    db_pool_size: int = Field(default=20, ge=1, le=200)
    db_max_overflow: int = Field(default=40, ge=0, le=400)
    db_pool_timeout_seconds: int = Field(default=60, ge=1, le=600)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86400)

    redis_url: str = "redis://redis:6379/0"
    queue_mode: str = "redis"
    queue_name: str = "profile-refresh"
    queue_job_timeout_seconds: int = Field(default=1800, ge=30, le=24 * 3600)
    queue_retry_max: int = Field(default=2, ge=0, le=10)
    queue_retry_interval_seconds: int = Field(default=60, ge=5, le=3600)

    admin_secret: str = ""
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Per-source slot lifetimes.
    financial_ttl_hours: int = Field(default=24, ge=1, le=24 * 90)
    enrichment_ttl_hours: int = Field(default=24 * 7, ge=1, le=24 * 365)
    ai_insights_ttl_hours: int = Field(default=24 * 30, ge=1, le=24 * 365)
    network_ttl_hours: int = Field(default=24, ge=1, le=24 * 90)

    profile_cache_max_size: int = Field(default=10000, ge=1, le=1_000_000)
    profile_cache_ttl_seconds: int = Field(default=3600, ge=1, le=86400)
    profile_stale_after_days: int = Field(default=7, ge=1, le=365)
    profile_write_max_attempts: int = Field(default=3, ge=1, le=10)

    warehouse_dsn: str = ""
    upstream_tables: str = (
        "USAS_V1.UI_CD_ACTIVITY.UNIVERSAL_CONTRACTOR_METRICS_MONTHLY,"
        "USAS_V1.UI_CD_PERFORMANCE.UNIVERSAL_PEER_COMPARISONS_MONTHLY"
    )
    upstream_entity_column: str = "recipient_uei"
    upstream_timestamp_column: str = "created_at"
    upstream_snapshot_column: str = "snapshot_month"
    upstream_stale_after_hours: float = Field(default=48.0, ge=1.0, le=24 * 30)
    upstream_cadence_lookback_days: int = Field(default=60, ge=7, le=365)
    upstream_cadence_max_samples: int = Field(default=30, ge=2, le=365)
    upstream_default_checkpoint_hours: int = Field(default=24, ge=1, le=24 * 30)
    upstream_affected_entities_sample: int = Field(default=50, ge=0, le=10000)

    refresh_financial_batch_size: int = Field(default=500, ge=1, le=10000)
    refresh_secondary_batch_size: int = Field(default=200, ge=1, le=10000)
    refresh_concurrency: int = Field(default=10, ge=1, le=64)
    refresh_force_default_max_profiles: int = Field(default=100, ge=1, le=10000)
    refresh_busy_retry_minutes: int = Field(default=30, ge=1, le=24 * 60)
    refresh_prediction_min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    refresh_post_prediction_delay_hours: float = Field(default=2.0, ge=0.0, le=48.0)
    refresh_irregular_poll_hours: float = Field(default=6.0, ge=0.5, le=168.0)

    health_max_upstream_age_hours: float = Field(default=72.0, ge=1.0)
    health_max_profile_age_hours: float = Field(default=168.0, ge=1.0)
    health_max_stale_fraction: float = Field(default=0.3, ge=0.0, le=1.0)

    enrichment_api_url: str = ""
    enrichment_api_key: str = ""
    enrichment_timeout_seconds: float = Field(default=20.0, ge=1.0, le=300.0)

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    insight_confidence_score: int = Field(default=85, ge=0, le=100)

    def upstream_table_names(self) -> list[str]:
        return [name.strip() for name in self.upstream_tables.split(",") if name.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
