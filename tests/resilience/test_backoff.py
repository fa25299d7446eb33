"""Tests for the backoff policy."""

import pytest

from servers.content_guard.resilience.backoff import BackoffPolicy


class TestBackoffPolicy:
    """Tests for BackoffPolicy.delay()."""

    def test_first_attempt_returns_base(self):
        policy = BackoffPolicy(base_delay_ms=250, multiplier=3, max_delay_ms=10_000)
        assert policy.delay(1) == 250

    def test_grows_exponentially(self):
        policy = BackoffPolicy(base_delay_ms=100, multiplier=2, max_delay_ms=10_000)
        assert [policy.delay(n) for n in range(1, 5)] == [100, 200, 400, 800]

    def test_clamped_to_max(self):
        policy = BackoffPolicy(base_delay_ms=1000, multiplier=2, max_delay_ms=3000)
        assert policy.delay(2) == 2000
        assert policy.delay(3) == 3000
        assert policy.delay(8) == 3000

    def test_base_above_max_is_clamped(self):
        policy = BackoffPolicy(base_delay_ms=5000, multiplier=2, max_delay_ms=1000)
        assert policy.delay(1) == 1000

    @pytest.mark.parametrize(
        "base,multiplier,max_delay",
        [(1000, 2, 10_000), (50, 1.5, 400), (10, 1, 10), (0, 2, 100)],
    )
    def test_non_decreasing_and_bounded(self, base, multiplier, max_delay):
        """Delays never shrink and never exceed the cap."""
        policy = BackoffPolicy(base_delay_ms=base, multiplier=multiplier, max_delay_ms=max_delay)
        delays = [policy.delay(n) for n in range(1, 12)]

        assert delays == sorted(delays)
        assert all(d <= max_delay for d in delays)

    def test_deterministic(self):
        policy = BackoffPolicy()
        assert policy.delay(3) == policy.delay(3)

    def test_rejects_attempt_below_one(self):
        with pytest.raises(ValueError):
            BackoffPolicy().delay(0)

    def test_rejects_shrinking_multiplier(self):
        with pytest.raises(ValueError):
            BackoffPolicy(multiplier=0.5)
