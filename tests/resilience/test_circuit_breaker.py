"""Tests for circuit breaker pattern."""

import asyncio

import pytest

from conftest import FakeClock
from servers.content_guard.errors import (
    AuthConfigError,
    CircuitBreakerOpenError,
    InvalidInputError,
    TransientNetworkError,
)
from servers.content_guard.models import CircuitState
from servers.content_guard.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
)


async def fail():
    raise TransientNetworkError("test error")


async def success():
    return "ok"


async def trip(cb: CircuitBreaker) -> None:
    for _ in range(cb.failure_threshold):
        with pytest.raises(TransientNetworkError):
            await cb.call(fail)


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def test_starts_closed(self):
        """Circuit breaker should start in closed state."""
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.state == CircuitState.CLOSED
        assert cb.is_closed
        assert not cb.is_open

    @pytest.mark.asyncio
    async def test_stays_closed_on_success(self):
        cb = CircuitBreaker(failure_threshold=3)

        result = await cb.call(success)
        assert result == "ok"
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, clock: FakeClock):
        """Circuit should open after reaching failure threshold."""
        cb = CircuitBreaker(failure_threshold=3, clock=clock)

        await trip(cb)

        assert cb.state == CircuitState.OPEN
        assert cb.consecutive_failures == 3
        assert cb.last_failure_at == clock.now

    @pytest.mark.asyncio
    async def test_open_circuit_does_not_invoke_operation(self, clock: FakeClock):
        """Calls within reset_timeout fail fast; call count stays at threshold."""
        cb = CircuitBreaker(failure_threshold=3, reset_timeout=30, clock=clock)
        calls = 0

        async def counted_fail():
            nonlocal calls
            calls += 1
            raise TransientNetworkError("down")

        for _ in range(3):
            with pytest.raises(TransientNetworkError):
                await cb.call(counted_fail)

        for _ in range(5):
            clock.advance(5)
            with pytest.raises(CircuitBreakerOpenError) as exc_info:
                await cb.call(counted_fail)

        assert calls == 3
        assert cb.name in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=3)

        with pytest.raises(TransientNetworkError):
            await cb.call(fail)
        with pytest.raises(TransientNetworkError):
            await cb.call(fail)
        await cb.call(success)

        assert cb.consecutive_failures == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_excluded_errors_do_not_count(self):
        """Malformed input is the caller's fault, not the service's."""
        cb = CircuitBreaker(failure_threshold=1)

        async def bad_input():
            raise InvalidInputError("too long")

        with pytest.raises(InvalidInputError):
            await cb.call(bad_input)

        assert cb.is_closed
        assert cb.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_auth_errors_count(self):
        cb = CircuitBreaker(failure_threshold=1)

        async def bad_key():
            raise AuthConfigError("403")

        with pytest.raises(AuthConfigError):
            await cb.call(bad_key)

        assert cb.is_open

    def test_reset_method(self, clock: FakeClock):
        """Manual reset should restore initial state."""
        cb = CircuitBreaker(failure_threshold=3, clock=clock)
        cb.consecutive_failures = 5
        cb.state = CircuitState.OPEN
        cb.last_failure_at = clock.now

        cb.reset()

        assert cb.consecutive_failures == 0
        assert cb.state == CircuitState.CLOSED
        assert cb.last_failure_at is None

    def test_snapshot(self):
        """Snapshot should include all relevant information."""
        cb = CircuitBreaker(name="test_circuit", failure_threshold=5)

        state = cb.snapshot()

        assert state.service == "test_circuit"
        assert state.state == CircuitState.CLOSED
        assert state.consecutive_failures == 0
        assert state.failure_threshold == 5
        assert state.last_failure_at is None

    def test_record_failure_counts_toward_threshold(self, clock: FakeClock):
        cb = CircuitBreaker(failure_threshold=2, clock=clock)

        cb.record_failure(TimeoutError("deadline"))
        assert cb.is_closed
        cb.record_failure(TimeoutError("deadline"))

        assert cb.is_open
        assert cb.last_failure_at == clock.now

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)


class TestCircuitBreakerRecovery:
    """Tests for circuit breaker recovery behavior."""

    @pytest.mark.asyncio
    async def test_stays_open_until_timeout_elapses(self, clock: FakeClock):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=30, clock=clock)
        await trip(cb)

        clock.advance(30)  # not strictly greater yet
        with pytest.raises(CircuitBreakerOpenError):
            await cb.call(success)
        assert cb.is_open

    @pytest.mark.asyncio
    async def test_single_success_after_timeout_closes(self, clock: FakeClock):
        """OPEN -> HALF_OPEN -> CLOSED after one successful probe."""
        cb = CircuitBreaker(failure_threshold=2, reset_timeout=30, clock=clock)
        await trip(cb)

        clock.advance(31)
        result = await cb.call(success)

        assert result == "ok"
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        # usable again immediately
        assert await cb.call(success) == "ok"

    @pytest.mark.asyncio
    async def test_reopens_on_failure_in_half_open(self, clock: FakeClock):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=30, clock=clock)
        await trip(cb)
        first_failure = cb.last_failure_at

        clock.advance(31)
        with pytest.raises(TransientNetworkError):
            await cb.call(fail)

        assert cb.state == CircuitState.OPEN
        assert cb.last_failure_at == first_failure + 31

        # cooldown restarted from the failed probe
        clock.advance(10)
        with pytest.raises(CircuitBreakerOpenError):
            await cb.call(success)

    @pytest.mark.asyncio
    async def test_only_one_probe_in_flight(self, clock: FakeClock):
        """Concurrent callers are rejected while the half-open probe runs."""
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=30, clock=clock)
        await trip(cb)
        clock.advance(31)

        release = asyncio.Event()
        probe_calls = 0

        async def slow_probe():
            nonlocal probe_calls
            probe_calls += 1
            await release.wait()
            return "recovered"

        probe = asyncio.create_task(cb.call(slow_probe))
        await asyncio.sleep(0)

        assert cb.state == CircuitState.HALF_OPEN
        with pytest.raises(CircuitBreakerOpenError):
            await cb.call(slow_probe)

        release.set()
        assert await probe == "recovered"
        assert probe_calls == 1
        assert cb.is_closed

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_slot(self, clock: FakeClock):
        cb = CircuitBreaker(failure_threshold=1, reset_timeout=30, clock=clock)
        await trip(cb)
        clock.advance(31)

        async def hang():
            await asyncio.sleep(60)

        probe = asyncio.create_task(cb.call(hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert cb.state == CircuitState.HALF_OPEN
        assert await cb.call(success) == "ok"
        assert cb.is_closed


class TestCircuitBreakerRegistry:
    """Tests for the per-service breaker registry."""

    def test_create_and_get(self):
        registry = CircuitBreakerRegistry()
        breaker = registry.create("scam-detector", failure_threshold=4)

        assert registry.get("scam-detector") is breaker
        assert "scam-detector" in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self):
        registry = CircuitBreakerRegistry([CircuitBreaker(name="a")])
        with pytest.raises(ValueError):
            registry.create("a")

    @pytest.mark.asyncio
    async def test_breakers_are_independent(self):
        registry = CircuitBreakerRegistry()
        a = registry.create("a", failure_threshold=1)
        b = registry.create("b", failure_threshold=1)

        await trip(a)

        states = registry.snapshot()
        assert states["a"].state == CircuitState.OPEN
        assert states["b"].state == CircuitState.CLOSED
        assert await b.call(success) == "ok"


class TestCircuitBreakerOpenError:
    """Tests for CircuitBreakerOpenError exception."""

    def test_error_includes_circuit_name(self):
        error = CircuitBreakerOpenError("api_circuit")
        assert "api_circuit" in str(error)
        assert error.circuit_name == "api_circuit"
