"""
Resilient wrapper around one external detector service.

Layering, outermost first: circuit breaker -> retry executor -> raw call.
The breaker sits outside so that once a circuit is open no retry attempts
(or their backoff sleeps) are spent on it.
"""

import asyncio
import time
from typing import Callable

import structlog

from .detectors import Detector
from .errors import (
    AuthConfigError,
    CircuitBreakerOpenError,
    InvalidInputError,
    RateLimitError,
    TransientNetworkError,
    is_retryable_error,
)
from .events import (
    SERVICE_CALL_FAILED,
    SERVICE_CALL_REJECTED,
    SERVICE_CALL_SUCCEEDED,
    EventSink,
    emit,
)
from .models import DetectorFailure, DetectorSuccess, FailureReason, InputKind
from .resilience.circuit_breaker import CircuitBreaker
from .resilience.health import ServiceHealthRegistry
from .resilience.retry import RetryExecutor

logger = structlog.get_logger()


def classify_failure(error: BaseException) -> FailureReason:
    """Map an exception onto the reason reported in a degraded outcome."""
    if isinstance(error, CircuitBreakerOpenError):
        return FailureReason.CIRCUIT_OPEN
    if isinstance(error, RateLimitError):
        return FailureReason.RATE_LIMITED
    if isinstance(error, AuthConfigError):
        return FailureReason.UNAVAILABLE
    if isinstance(error, InvalidInputError):
        return FailureReason.INVALID_INPUT
    if isinstance(error, (TransientNetworkError, asyncio.TimeoutError, TimeoutError)):
        return FailureReason.TRANSIENT
    return FailureReason.ERROR


class ResilientServiceAdapter:
    """Call one detector through its breaker, retries and health tracking.

    Detector exceptions never escape invoke(); they come back as a
    DetectorFailure. Cancellation is the only thing that propagates.
    """

    def __init__(
        self,
        detector: Detector,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
        health: ServiceHealthRegistry,
        sink: EventSink | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.detector = detector
        self.breaker = breaker
        self.retry = retry
        self.health = health
        self.sink = sink
        self._clock = clock
        health.register(self.name)

    @property
    def name(self) -> str:
        return self.detector.name

    @property
    def input_kind(self) -> InputKind:
        return self.detector.input_kind

    async def invoke(self, content: str) -> DetectorSuccess | DetectorFailure:
        """Run the detector on content with every resilience layer applied."""
        attempts = 0

        async def call_detector():
            return await self.detector.call(content)

        async def with_retries():
            nonlocal attempts
            result, attempts = await self.retry.execute_with_attempts(
                call_detector, is_retryable_error, label=self.name
            )
            return result

        started = self._clock()
        is_error = True
        report_health = True
        try:
            raw = await self.breaker.call(with_retries)
            is_error = False
            latency_ms = self._elapsed_ms(started)
            emit(self.sink, SERVICE_CALL_SUCCEEDED, {
                "service": self.name,
                "latency_ms": latency_ms,
                "attempts": attempts,
                "flagged": raw.is_flagged,
            })
            return DetectorSuccess(
                service=self.name,
                result=raw,
                latency_ms=latency_ms,
                attempts=attempts,
            )
        except CircuitBreakerOpenError as e:
            # Local rejection, not evidence about the remote service
            report_health = False
            logger.info("service_call_rejected", service=self.name, reason="circuit_open")
            emit(self.sink, SERVICE_CALL_REJECTED, {"service": self.name, "reason": "circuit_open"})
            return self._failure(FailureReason.CIRCUIT_OPEN, str(e), started)
        except asyncio.CancelledError:
            # The request deadline ran out while this service was still working
            self.breaker.record_failure(
                TimeoutError(f"{self.name} cancelled after {self._elapsed_ms(started)}ms")
            )
            logger.warning("service_call_cancelled", service=self.name)
            raise
        except Exception as e:
            reason = classify_failure(e)
            logger.warning(
                "service_call_failed",
                service=self.name,
                reason=reason.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            emit(self.sink, SERVICE_CALL_FAILED, {
                "service": self.name,
                "reason": reason.value,
                "error": str(e),
            })
            return self._failure(reason, str(e), started)
        finally:
            if report_health:
                self.health.update(self.name, self._elapsed_ms(started), is_error)

    def _failure(self, reason: FailureReason, message: str, started: float) -> DetectorFailure:
        return DetectorFailure(
            service=self.name,
            reason=reason,
            message=message,
            latency_ms=self._elapsed_ms(started),
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    def __repr__(self) -> str:
        return f"ResilientServiceAdapter(service={self.name!r}, breaker={self.breaker.state.value})"
