"""Error taxonomy for the profile caching and refresh service."""

from __future__ import annotations

from typing import Any


class ProfileServiceError(Exception):
    """Base class for errors raised by the profile services."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProfileValidationError(ProfileServiceError):
    """A source payload failed its required-field checks and was not merged."""

    def __init__(self, source_kind: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.source_kind = source_kind


class UpstreamUnavailable(ProfileServiceError):
    """A freshness probe or provider fetch could not reach its upstream."""


class ProviderNotConfigured(ProfileServiceError):
    """No provider adapter is registered for the requested source kind."""


class ProfileVersionConflict(ProfileServiceError):
    """The stored profile moved on while a merge was being written."""


class MissingFinancialData(ProfileServiceError):
    """Insight generation needs a financial slot that the profile does not have."""
