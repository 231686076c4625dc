from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, status

from app.core.config import Settings


def verify_admin_secret(settings: Settings, secret_header: str | None) -> None:
    if not settings.admin_secret:
        return
    if not secret_header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin secret",
        )
    if not secrets.compare_digest(secret_header.encode(), settings.admin_secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin secret",
        )


def admin_secret_header(x_admin_secret: str | None = Header(default=None)) -> str | None:
    return x_admin_secret
