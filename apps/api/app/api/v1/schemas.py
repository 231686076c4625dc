from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.services.profiles.legacy import LegacyContractor
from app.services.profiles.sources import SourceKind


class ProfileHistoryEntry(BaseModel):
    update_id: str
    update_type: str
    sources_updated: list[str] = Field(default_factory=list)
    profile_version: int
    initiated_by: str
    error: str | None = None
    created_at: datetime | None = None


class ProfileHistoryResponse(BaseModel):
    entity_key: str
    entries: list[ProfileHistoryEntry]


class LegacySearchRequest(BaseModel):
    query: str = ""
    filters: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class LegacySearchResponse(BaseModel):
    contractors: list[LegacyContractor]
    total_count: int


class ForceRefreshRequest(BaseModel):
    sources: list[SourceKind] | None = None
    max_profiles: int | None = Field(default=None, ge=1, le=10000)


class BulkRefreshRequest(BaseModel):
    entity_keys: list[str] = Field(min_length=1, max_length=10000)
    sources: list[SourceKind] | None = None


class RefreshEnqueuedResponse(BaseModel):
    job_id: str
    status: str
