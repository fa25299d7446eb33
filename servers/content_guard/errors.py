"""Error taxonomy for detector calls and analysis requests."""

import asyncio


class ContentGuardError(Exception):
    """Base class for all content guard errors."""


class InvalidRequestError(ContentGuardError):
    """Raised when a CheckRequest cannot be analyzed at all."""


class DetectorError(ContentGuardError):
    """A remote detector call failed.

    Not retryable unless a subclass says otherwise.
    """

    def __init__(self, message: str, service: str | None = None):
        super().__init__(message)
        self.service = service


class TransientNetworkError(DetectorError):
    """Network blip, timeout or 5xx from the detector. Retryable."""


class RateLimitError(DetectorError):
    """Detector asked us to slow down (HTTP 429). Retryable with backoff."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, service)
        self.retry_after = retry_after


class AuthConfigError(DetectorError):
    """Detector is misconfigured (missing or rejected credentials)."""


class InvalidInputError(DetectorError):
    """Detector rejected the content itself."""


class CircuitBreakerOpenError(ContentGuardError):
    """Raised when circuit breaker is open and blocking requests."""

    def __init__(self, circuit_name: str):
        super().__init__(f"Circuit breaker '{circuit_name}' is open")
        self.circuit_name = circuit_name


RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TransientNetworkError,
    RateLimitError,
    asyncio.TimeoutError,
    TimeoutError,
)


def is_retryable_error(error: BaseException) -> bool:
    """Check whether a failed detector call is worth another attempt.

    Circuit-open rejections are local and never retried; auth/config and
    invalid-input failures fail fast.
    """
    if isinstance(error, CircuitBreakerOpenError):
        return False
    return isinstance(error, RETRYABLE_ERRORS)
