from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.routes import health, profiles, refresh
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging
from app.db.pg.base import Base
from app.db.pg import models as _models  # noqa: F401
from app.db.pg.session import engine

logger = logging.getLogger(__name__)


def _cors_origins(settings: Settings) -> list[str]:
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]


configure_logging()
settings = get_settings()
app = FastAPI(title=settings.app_name)
origins = _cors_origins(settings)
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info(
        "profile_service_started",
        extra={
            "queue_mode": settings.queue_mode,
            "warehouse_configured": bool(settings.warehouse_dsn.strip()),
            "enrichment_configured": bool(settings.enrichment_api_url.strip()),
            "admin_secret_required": bool(settings.admin_secret),
        },
    )


for module in (health, profiles, refresh):
    app.include_router(module.router, prefix=settings.api_prefix)
