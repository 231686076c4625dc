"""Queue job handlers.

Handlers take and return plain JSON-compatible values so they can run on an
RQ worker as well as inline.
"""

from __future__ import annotations

import logging

from app.services.profile_system import get_profile_system
from app.services.profiles.sources import parse_source_kind

logger = logging.getLogger(__name__)

__all__ = [
    "force_refresh",
    "generate_profile_insights",
    "refresh_profile_source",
    "run_scheduled_refresh",
]


def run_scheduled_refresh() -> dict:
    result = get_profile_system().run_smart_refresh()
    logger.info("job_scheduled_refresh_done", extra={"executed": result.executed, "reason": result.reason})
    return result.model_dump(mode="json")


def refresh_profile_source(entity_key: str, source_kind: str) -> bool:
    kind = parse_source_kind(source_kind)
    system = get_profile_system()
    return system.refresher.refresh_entity(entity_key, kind, initiated_by="queue")


def generate_profile_insights(entity_key: str) -> bool:
    profile = get_profile_system().refresher.generate_insights(entity_key, initiated_by="queue")
    if profile is None:
        logger.info("job_insights_skipped_missing_profile", extra={"entity_key": entity_key})
        return False
    return True


def force_refresh(sources: list[str] | None = None, max_profiles: int | None = None) -> dict:
    kinds = [parse_source_kind(value) for value in sources] if sources else None
    result = get_profile_system().force_refresh(sources=kinds, max_profiles=max_profiles)
    return result.model_dump(mode="json")
