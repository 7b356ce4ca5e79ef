"""
Unit tests for guarded reference lookups.
"""

import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from unittest.mock import MagicMock, patch

from app.services.lookup_guard import TIMEOUT_REASON, LookupGuard, LookupResult


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=False, cancel_futures=True)


class TestLookupGuard:

    def test_returns_value(self):
        result = LookupGuard().call("opps_addendum_b", lambda code: {"hcpcs": code}, "71046")

        assert result.ok
        assert result.found
        assert result.value == {"hcpcs": "71046"}

    def test_miss_is_ok_but_not_found(self):
        result = LookupGuard().call("opps_addendum_b", lambda: None)

        assert result.ok
        assert not result.found

    def test_retries_then_succeeds(self):
        fn = MagicMock(side_effect=[RuntimeError("flaky"), "row"])
        result = LookupGuard(retries=1).call("mpfs_benchmarks", fn)

        assert result.value == "row"
        assert fn.call_count == 2

    def test_gives_up_after_retries(self):
        fn = MagicMock(side_effect=RuntimeError("down"))
        result = LookupGuard(retries=2).call("mpfs_benchmarks", fn)

        assert not result.ok
        assert result.reason == "lookup failed: down"
        assert fn.call_count == 3

    def test_timeout_is_not_retried(self, executor):
        calls = []

        def slow():
            calls.append(1)
            time.sleep(0.5)
            return "late"

        result = LookupGuard(executor=executor, timeout=0.05, retries=3).call("gpci_localities", slow)

        assert not result.ok
        assert result.reason == TIMEOUT_REASON
        assert len(calls) == 1

    def test_expired_deadline_skips_lookup(self):
        fn = MagicMock(return_value="row")
        guard = LookupGuard(timeout=1.0, deadline=time.monotonic() - 1)

        result = guard.call("zip_to_locality", fn)

        assert result.reason == TIMEOUT_REASON
        fn.assert_not_called()

    def test_records_metrics(self):
        with patch("app.services.lookup_guard.track_lookup") as track:
            LookupGuard().call("opps_addendum_b", lambda: "row")
            LookupGuard().call("opps_addendum_b", lambda: None)

        outcomes = [c.args[1] for c in track.call_args_list]
        assert outcomes == ["hit", "miss"]


def test_lookup_result_defaults():
    result = LookupResult()

    assert result.ok
    assert result.value is None
    assert not result.found
