from __future__ import annotations

import pytest

from app.services.profiles.sources import SourceKind
from app.tests.payloads import FakeProvider, build_system, enrichment_payload, financial_payload, reset_db
from app.workers import jobs
from app.workers.queue import enqueue_job


def _system_with_enrichment():
    provider = FakeProvider(SourceKind.ENRICHMENT, lambda key: enrichment_payload(name=f"Enriched {key}"))
    return build_system(providers={SourceKind.ENRICHMENT: provider})


def test_refresh_profile_source_job_runs_inline(monkeypatch) -> None:
    reset_db()
    system = _system_with_enrichment()
    system.store.upsert("E1", {SourceKind.FINANCIAL: financial_payload()})
    monkeypatch.setattr(jobs, "get_profile_system", lambda: system)

    job_id = enqueue_job("refresh_profile_source", "E1", "enrichment")

    assert job_id == "inline-refresh_profile_source"
    profile = system.store.get_by_key("E1")
    assert profile.primary_name == "Enriched E1"
    assert system.store.update_history("E1")[0]["initiated_by"] == "queue"


def test_scheduled_refresh_job_returns_json_result(monkeypatch) -> None:
    reset_db()
    system = _system_with_enrichment()
    monkeypatch.setattr(jobs, "get_profile_system", lambda: system)

    result = jobs.run_scheduled_refresh()

    assert result["executed"] is True
    assert "enrichment" not in result["skipped_sources"]
    assert "financial" not in result["results"]


def test_generate_insights_job_skips_missing_profile(monkeypatch) -> None:
    reset_db()
    system = build_system()
    monkeypatch.setattr(jobs, "get_profile_system", lambda: system)

    assert jobs.generate_profile_insights("missing") is False


def test_unknown_jobs_and_sources_are_rejected() -> None:
    with pytest.raises(KeyError):
        enqueue_job("get_profile_system")
    with pytest.raises(ValueError):
        jobs.refresh_profile_source("E1", "lusha")
