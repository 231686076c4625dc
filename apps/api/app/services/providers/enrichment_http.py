from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import Settings, get_settings
from app.core.errors import ProviderNotConfigured, UpstreamUnavailable
from app.services.profiles.sources import SourceKind

logger = logging.getLogger(__name__)


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _count(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _domain_from_website(website: str | None) -> str | None:
    if not website:
        return None
    url = httpx.URL(website if website.startswith("http") else f"https://{website}")
    host = url.host or ""
    return host[4:] if host.startswith("www.") else host or None


def response_to_enrichment_payload(data: dict[str, Any]) -> dict[str, Any] | None:
    """Normalize a company-enrichment API response into an enrichment payload.

    Accepts both camelCase and snake_case keys.
    """
    company = data.get("company") if isinstance(data.get("company"), dict) else data
    name = _first(company, "name", "companyName", "company_name")
    if not name:
        return None

    website = _first(company, "website", "websiteUrl", "website_url")
    location = company.get("location") if isinstance(company.get("location"), dict) else {}
    social = company.get("social") if isinstance(company.get("social"), dict) else {}
    contacts = company.get("contacts") if isinstance(company.get("contacts"), dict) else {}
    technologies = company.get("technologies") or []

    return {
        "company_details": {
            "name": name,
            "domain": _first(company, "domain") or _domain_from_website(website),
            "website": website,
            "description": _first(company, "description"),
            "founded_year": _first(company, "foundedYear", "founded_year", "founded"),
            "employee_count": _first(company, "employeeCount", "employee_count", "employees"),
            "annual_revenue": _first(company, "annualRevenue", "annual_revenue", "revenue"),
            "industry": _first(company, "industry"),
            "company_type": _first(company, "companyType", "company_type", "type"),
        },
        "location": {
            "country": _first(location, "country"),
            "state": _first(location, "state"),
            "city": _first(location, "city"),
            "address": _first(location, "address", "street"),
            "zip_code": _first(location, "zipCode", "zip_code", "zip"),
        },
        "digital_presence": {
            "linkedin_url": _first(social, "linkedin", "linkedinUrl", "linkedin_url"),
            "twitter_handle": _first(social, "twitter", "twitterHandle", "twitter_handle"),
            "facebook_url": _first(social, "facebook", "facebookUrl", "facebook_url"),
            "logo_url": _first(company, "logoUrl", "logo_url", "logo"),
        },
        "contact_info": {
            "phone": _first(contacts, "phone") or _first(company, "phone"),
            "email": _first(contacts, "email") or _first(company, "email"),
            "contacts_available": _count(_first(contacts, "count", "contactsAvailable")),
        },
        "technologies": [str(item) for item in technologies if item],
    }


class HttpEnrichmentProvider:
    """Company firmographics over the enrichment provider's HTTP API."""

    kind = SourceKind.ENRICHMENT

    def __init__(self, settings: Settings | None = None, client: httpx.Client | None = None):
        self.settings = settings or get_settings()
        if not self.settings.enrichment_api_url.strip():
            raise ProviderNotConfigured("ENRICHMENT_API_URL is not configured")
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.settings.enrichment_api_key:
            headers["api_key"] = self.settings.enrichment_api_key
        return headers

    def _get(self, client: httpx.Client, url: str) -> httpx.Response:
        return client.get(url, headers=self._headers())

    def fetch(self, entity_key: str) -> dict[str, Any] | None:
        url = f"{self.settings.enrichment_api_url.rstrip('/')}/companies/{entity_key}"
        try:
            if self._client is not None:
                response = self._get(self._client, url)
            else:
                with httpx.Client(timeout=self.settings.enrichment_timeout_seconds) as client:
                    response = self._get(client, url)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("enrichment_provider_request_failed", extra={"entity_key": entity_key, "url": url})
            raise UpstreamUnavailable("Enrichment request failed", {"entity_key": entity_key}) from exc

        if not isinstance(data, dict):
            logger.error("enrichment_provider_invalid_result_type", extra={"type": type(data).__name__})
            return None
        return response_to_enrichment_payload(data)
