from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.v1.deps import get_profile_system_dep
from app.services.profile_system import ProfileSystem

router = APIRouter(tags=["health"])


@router.get("/health")
def health(system: ProfileSystem = Depends(get_profile_system_dep)) -> dict:
    report = system.health_check()
    return {
        "status": "ok" if report.healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "issues": report.issues,
        "warnings": report.warnings,
    }
