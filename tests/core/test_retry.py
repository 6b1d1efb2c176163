"""Tests for retry policies."""

import pytest

from conduit.core.retry import ExponentialBackoff, GrowingDelay, next_delay


class TestNextDelay:
    def test_grows_by_multiplier(self):
        assert next_delay(40.0, 1.5, 250.0) == 60.0

    def test_capped(self):
        assert next_delay(200.0, 1.5, 250.0) == 250.0


class TestExponentialBackoff:
    def test_delay_without_jitter(self):
        backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0, max_delay=60.0, jitter=False)
        assert [backoff.next_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter=False)
        assert backoff.next_delay(10) == 5.0

    def test_jitter_stays_within_range(self):
        backoff = ExponentialBackoff(base_delay=4.0, max_delay=60.0, jitter_range=0.25)
        for _ in range(50):
            assert 3.0 <= backoff.next_delay(0) <= 5.0

    def test_should_retry_respects_max_retries(self):
        backoff = ExponentialBackoff(max_retries=2)
        assert backoff.should_retry(0) is True
        assert backoff.should_retry(1) is True
        assert backoff.should_retry(2) is False

    def test_should_retry_consults_predicate(self):
        backoff = ExponentialBackoff(max_retries=5, retryable=lambda e: isinstance(e, OSError))
        assert backoff.should_retry(0, OSError()) is True
        assert backoff.should_retry(0, ValueError()) is False


class TestGrowingDelay:
    def test_default_schedule(self):
        policy = GrowingDelay()
        delays = list(policy.delays())
        assert len(delays) == 9
        assert delays[:5] == [40.0, 60.0, 90.0, 135.0, 202.5]
        assert delays[5:] == [250.0, 250.0, 250.0, 250.0]

    def test_every_delay_is_capped(self):
        policy = GrowingDelay(max_attempts=20)
        assert max(policy.delays()) == 250.0

    def test_explicit_count(self):
        assert list(GrowingDelay().delays(2)) == [40.0, 60.0]

    def test_initial_delay_above_cap_is_capped(self):
        policy = GrowingDelay(initial_delay=500.0, max_delay=250.0)
        assert next(policy.delays()) == 250.0

    def test_single_attempt_has_no_delays(self):
        assert list(GrowingDelay(max_attempts=1).delays()) == []

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"initial_delay": -1.0}])
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            GrowingDelay(**kwargs)
