from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from app.db.pg.session import SessionLocal
from app.services.freshness.tracker import FreshnessTracker
from app.services.profiles.sources import SourceKind
from app.tests.payloads import NOW, TABLES, FakeFreshnessSource, days_back, make_settings, reset_db


def _tracker(source: FakeFreshnessSource | None) -> FreshnessTracker:
    return FreshnessTracker(source, SessionLocal, make_settings())


def test_old_upstream_is_stale_and_blocks_refresh() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=NOW - timedelta(hours=80)))

    freshness = tracker.get_upstream_freshness(NOW)
    assert freshness.data_age_hours == 80.0
    assert freshness.is_stale is True
    assert set(freshness.per_table) == set(TABLES)

    decision = tracker.should_trigger_refresh(NOW)
    assert decision.should_refresh is False
    assert decision.priority == "low"
    assert "stale" in decision.reason


def test_probe_failure_degrades_to_not_stale() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=NOW, fail=True))

    freshness = tracker.get_upstream_freshness(NOW)
    assert freshness.degraded is True
    assert freshness.is_stale is False
    assert freshness.data_age_hours == 0.0
    assert freshness.per_table == {}

    decision = tracker.should_trigger_refresh(NOW)
    assert decision.should_refresh is False
    assert decision.reason == "No new upstream data detected"
    assert tracker.get_entities_with_new_data(NOW - timedelta(days=1)).entity_keys == []
    assert tracker.infer_refresh_cadence(NOW).pattern == "irregular"


def test_unconfigured_tracker_uses_fallback() -> None:
    reset_db()
    tracker = _tracker(None)

    assert tracker.configured is False
    assert tracker.get_upstream_freshness(NOW).degraded is True
    assert tracker.should_trigger_refresh(NOW).should_refresh is False


def test_empty_upstream_is_treated_as_stale() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=None))

    freshness = tracker.get_upstream_freshness(NOW)
    assert freshness.is_stale is True
    assert freshness.data_age_hours is None
    assert freshness.most_recent_update is None

    decision = tracker.should_trigger_refresh(NOW)
    assert decision.should_refresh is False
    assert "stale" in decision.reason


def test_new_data_since_default_checkpoint_triggers_high_priority_refresh() -> None:
    reset_db()
    source = FakeFreshnessSource(
        last_updated=NOW - timedelta(hours=2),
        entities={"E2": date(2026, 9, 1), "E1": None},
    )
    tracker = _tracker(source)

    decision = tracker.should_trigger_refresh(NOW)

    assert decision.should_refresh is True
    assert decision.priority == "high"
    assert decision.reason.startswith("New upstream data available in:")
    assert decision.affected_tables == list(TABLES)
    assert decision.affected_sources == [SourceKind.FINANCIAL]
    assert decision.affected_entities == ["E1", "E2"]
    assert decision.estimated_affected_profiles == 2


def test_checkpoint_after_latest_update_means_no_new_data() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=NOW - timedelta(hours=2)))
    tracker.record_data_check(NOW - timedelta(hours=1), freshness=tracker.get_upstream_freshness(NOW), triggered_refresh=True)

    assert tracker.last_checkpoint(NOW) == NOW - timedelta(hours=1)
    decision = tracker.should_trigger_refresh(NOW)
    assert decision.should_refresh is False
    assert decision.reason == "No new upstream data detected"


def test_pending_predicted_refresh_holds_until_expected_time() -> None:
    reset_db()
    source = FakeFreshnessSource(last_updated=NOW - timedelta(hours=2), update_dates=days_back(10))
    tracker = _tracker(source)
    tracker.record_data_check(NOW - timedelta(hours=1), triggered_refresh=True)

    decision = tracker.should_trigger_refresh(NOW)

    assert decision.should_refresh is False
    assert decision.reason == "Next upstream refresh expected in 12 hours"


def test_pending_prediction_holds_even_with_new_upstream_data() -> None:
    reset_db()
    source = FakeFreshnessSource(last_updated=NOW - timedelta(hours=2), update_dates=days_back(10))
    tracker = _tracker(source)
    tracker.record_data_check(NOW - timedelta(hours=5), triggered_refresh=True)

    decision = tracker.should_trigger_refresh(NOW)

    assert decision.should_refresh is False
    assert decision.priority == "low"
    assert decision.reason == "Next upstream refresh expected in 12 hours"


def test_cadence_inference_patterns() -> None:
    reset_db()

    daily = _tracker(FakeFreshnessSource(last_updated=NOW, update_dates=days_back(10))).infer_refresh_cadence(NOW)
    assert daily.pattern == "daily"
    assert daily.confidence == 0.9
    assert daily.next_expected_refresh == datetime(2026, 10, 20, tzinfo=timezone.utc)

    weekly_dates = days_back(6, step=7, start=date(2026, 10, 14))
    weekly = _tracker(FakeFreshnessSource(last_updated=NOW, update_dates=weekly_dates)).infer_refresh_cadence(NOW)
    assert weekly.pattern == "weekly"
    assert weekly.confidence == 0.8
    assert weekly.next_expected_refresh == datetime(2026, 10, 21, tzinfo=timezone.utc)
    assert weekly.expected_refresh_weekdays == [date(2026, 10, 14).weekday()]

    monthly_dates = days_back(3, step=30, start=date(2026, 10, 1))
    monthly = _tracker(FakeFreshnessSource(last_updated=NOW, update_dates=monthly_dates)).infer_refresh_cadence(NOW)
    assert monthly.pattern == "monthly"
    assert monthly.confidence == 0.7
    assert monthly.average_gap_days == 30.0

    irregular_dates = days_back(5, step=3)
    irregular = _tracker(FakeFreshnessSource(last_updated=NOW, update_dates=irregular_dates)).infer_refresh_cadence(NOW)
    assert irregular.pattern == "irregular"
    assert irregular.confidence == 0.0
    assert irregular.next_expected_refresh is None
    assert irregular.average_gap_days == 3.0

    single = _tracker(FakeFreshnessSource(last_updated=NOW, update_dates=[NOW.date()])).infer_refresh_cadence(NOW)
    assert single.pattern == "irregular"
    assert single.sample_size == 1


def test_has_new_data_since_lists_changed_tables() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=NOW - timedelta(hours=3)))

    changed = tracker.has_new_data_since(NOW - timedelta(hours=4), now=NOW)
    assert changed.has_new_data is True
    assert changed.new_data_available_at == NOW - timedelta(hours=3)
    assert changed.affected_tables == list(TABLES)

    unchanged = tracker.has_new_data_since(NOW - timedelta(hours=1), now=NOW)
    assert unchanged.has_new_data is False
    assert unchanged.affected_tables == []


def test_last_checkpoint_defaults_to_a_day_back() -> None:
    reset_db()
    tracker = _tracker(FakeFreshnessSource(last_updated=NOW))

    assert tracker.last_checkpoint(NOW) == NOW - timedelta(hours=24)

    checkpoint = tracker.record_data_check(NOW, freshness=tracker.get_upstream_freshness(NOW))
    assert checkpoint.table_updates == {table: NOW.isoformat() for table in TABLES}
    assert tracker.last_checkpoint(NOW + timedelta(hours=1)) == NOW
