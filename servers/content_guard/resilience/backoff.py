"""Exponential backoff delays for retried detector calls."""


class BackoffPolicy:
    """Map an attempt number to a capped exponential delay.

    delay(n) = base_delay_ms * multiplier ** (n - 1), clamped to max_delay_ms.
    """

    def __init__(
        self,
        base_delay_ms: float = 1000.0,
        multiplier: float = 2.0,
        max_delay_ms: float = 10000.0,
    ):
        """Initialize backoff policy.

        Args:
            base_delay_ms: Delay after the first failed attempt
            multiplier: Growth factor between consecutive attempts
            max_delay_ms: Upper bound for any single delay
        """
        if base_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.base_delay_ms = base_delay_ms
        self.multiplier = multiplier
        self.max_delay_ms = max_delay_ms

    def delay(self, attempt: int) -> float:
        """Milliseconds to wait after the given (1-based) failed attempt."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(
            self.base_delay_ms * (self.multiplier ** (attempt - 1)),
            self.max_delay_ms,
        )

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(base_delay_ms={self.base_delay_ms}, "
            f"multiplier={self.multiplier}, max_delay_ms={self.max_delay_ms})"
        )
