from __future__ import annotations

from fastapi import Depends

from app.core.config import Settings, get_settings
from app.core.security import admin_secret_header, verify_admin_secret
from app.services.profile_system import ProfileSystem, get_profile_system


def get_settings_dep() -> Settings:
    return get_settings()


def get_profile_system_dep() -> ProfileSystem:
    return get_profile_system()


def require_admin_secret(
    settings: Settings = Depends(get_settings_dep),
    x_admin_secret: str | None = Depends(admin_secret_header),
) -> None:
    verify_admin_secret(settings, x_admin_secret)
