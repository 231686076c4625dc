from __future__ import annotations

import threading
import time

from app.services.refresh.batch import run_bounded


def test_results_keep_input_order_and_isolate_failures() -> None:
    def _worker(key: str) -> bool:
        if key == "bad":
            raise ValueError("payload rejected")
        if key == "empty":
            return False
        time.sleep(0.01 if key == "slow" else 0)
        return True

    result = run_bounded(["slow", "bad", "ok", "empty", "ok"], _worker, max_workers=3)

    assert result.successful == ["slow", "ok"]
    assert result.skipped == ["empty"]
    assert [(failure.entity_key, failure.error) for failure in result.failed] == [("bad", "ValueError: payload rejected")]
    assert result.attempted == 4


def test_concurrency_is_bounded() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def _worker(key: str) -> bool:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return True

    result = run_bounded([f"E{index}" for index in range(12)], _worker, max_workers=3)

    assert len(result.successful) == 12
    assert peak <= 3


def test_empty_input_returns_empty_result() -> None:
    result = run_bounded([], lambda key: True, max_workers=4)
    assert result.attempted == 0
