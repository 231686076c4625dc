from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.config import Settings, get_settings

settings = get_settings()


def normalize_dsn(dsn: str) -> str:
    dsn = dsn.strip()
    if dsn.startswith("postgres://"):
        dsn = "postgresql://" + dsn[len("postgres://") :]
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    return dsn


def build_engine(dsn: str, config: Settings | None = None) -> Engine:
    """Engine for the profile database or the warehouse.

    Postgres engines get a pool sized for batch refreshes, where every worker
    thread holds its own session. SQLite engines are shared across threads.
    """
    config = config or settings
    url = normalize_dsn(dsn)
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if url.startswith("postgresql+psycopg://"):
        kwargs.update(
            pool_size=max(config.db_pool_size, config.refresh_concurrency),
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout_seconds,
            pool_recycle=config.db_pool_recycle_seconds,
        )
    elif url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


@lru_cache(maxsize=4)
def get_warehouse_engine(dsn: str) -> Engine:
    return build_engine(dsn)


engine = build_engine(settings.pg_dsn)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
