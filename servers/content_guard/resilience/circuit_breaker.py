"""Circuit breaker pattern for protecting external detector calls."""

import time
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import structlog

from ..errors import CircuitBreakerOpenError, InvalidInputError
from ..models import BreakerState, CircuitState

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitBreaker:
    """Circuit breaker for protecting external detector calls.

    Prevents cascading failures by stopping requests to failing services.
    After a reset timeout, allows a single probe request through (half-open
    state); the probe's outcome decides whether the circuit closes again.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 3,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        excluded_exceptions: tuple[type[BaseException], ...] = (InvalidInputError,),
    ):
        """Initialize circuit breaker.

        Args:
            name: Service name for logging and identification
            failure_threshold: Consecutive failures before opening circuit
            reset_timeout: Seconds to wait before attempting recovery
            clock: Monotonic time source in seconds
            excluded_exceptions: Errors that pass through without counting
                as a service failure
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.excluded_exceptions = excluded_exceptions
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_at: float | None = None
        self._probe_in_flight = False

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Execute coroutine function with circuit breaker protection.

        Args:
            func: Zero-argument async function to execute

        Returns:
            Result of the call

        Raises:
            CircuitBreakerOpenError: If circuit is open or a probe is running
            Exception: If the call fails (after recording failure)
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                raise CircuitBreakerOpenError(self.name)

        is_probe = False
        if self.state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitBreakerOpenError(self.name)
            self._probe_in_flight = True
            is_probe = True

        try:
            result = await func()
        except self.excluded_exceptions:
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        else:
            self._on_success()
            return result
        finally:
            if is_probe:
                self._probe_in_flight = False

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to try recovering."""
        if self.last_failure_at is None:
            return True
        return self._clock() - self.last_failure_at > self.reset_timeout

    def _transition_to_half_open(self) -> None:
        """Move to half-open state to test recovery."""
        self.state = CircuitState.HALF_OPEN
        logger.info(
            "circuit_half_open",
            circuit=self.name,
            message="Testing if service has recovered",
        )

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self._close_circuit()
        else:
            self.consecutive_failures = 0

    def _close_circuit(self) -> None:
        """Close circuit, return to normal operation."""
        self.consecutive_failures = 0
        self.state = CircuitState.CLOSED
        logger.info(
            "circuit_closed",
            circuit=self.name,
            message="Service recovered, resuming normal operation",
        )

    def _on_failure(self, error: BaseException) -> None:
        self.consecutive_failures += 1

        if self.state == CircuitState.HALF_OPEN:
            self._open_circuit(error)
        elif (
            self.state == CircuitState.CLOSED
            and self.consecutive_failures >= self.failure_threshold
        ):
            self._open_circuit(error)

    def _open_circuit(self, error: BaseException) -> None:
        """Open circuit, block future requests."""
        self.state = CircuitState.OPEN
        self.last_failure_at = self._clock()
        logger.warning(
            "circuit_opened",
            circuit=self.name,
            consecutive_failures=self.consecutive_failures,
            reset_timeout=self.reset_timeout,
            error=str(error),
        )

    def record_failure(self, error: BaseException) -> None:
        """Count a failure observed outside call(), such as a cancelled call
        that ran out of time.
        """
        self._on_failure(error)

    def reset(self) -> None:
        """Manually reset circuit breaker to closed state."""
        self.consecutive_failures = 0
        self.state = CircuitState.CLOSED
        self.last_failure_at = None
        self._probe_in_flight = False

    @property
    def is_open(self) -> bool:
        """Check if circuit is currently open."""
        return self.state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if circuit is currently closed."""
        return self.state == CircuitState.CLOSED

    def snapshot(self) -> BreakerState:
        """Get current circuit breaker state."""
        return BreakerState(
            service=self.name,
            state=self.state,
            consecutive_failures=self.consecutive_failures,
            failure_threshold=self.failure_threshold,
            last_failure_at=self.last_failure_at,
        )


class CircuitBreakerRegistry:
    """One circuit breaker per named service, created up front."""

    def __init__(self, breakers: Iterable[CircuitBreaker] = ()):
        self._breakers: dict[str, CircuitBreaker] = {}
        for breaker in breakers:
            self.add(breaker)

    def add(self, breaker: CircuitBreaker) -> CircuitBreaker:
        if breaker.name in self._breakers:
            raise ValueError(f"Circuit breaker '{breaker.name}' already registered")
        self._breakers[breaker.name] = breaker
        return breaker

    def create(self, name: str, **kwargs: Any) -> CircuitBreaker:
        """Create and register a breaker for a service."""
        return self.add(CircuitBreaker(name=name, **kwargs))

    def get(self, name: str) -> CircuitBreaker:
        return self._breakers[name]

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def snapshot(self) -> dict[str, BreakerState]:
        """Current state of every breaker, keyed by service name."""
        return {name: b.snapshot() for name, b in self._breakers.items()}
