"""Resilience patterns for calling unreliable detector services."""

from .backoff import BackoffPolicy
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .health import ServiceHealthRegistry
from .retry import RetryExecutor

__all__ = [
    "BackoffPolicy",
    "RetryExecutor",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "ServiceHealthRegistry",
]
