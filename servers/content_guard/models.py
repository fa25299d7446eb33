"""
Pydantic models for analysis data structures.

These models define the core data types used throughout the orchestrator:
- CheckRequest: A unit of content plus the checks to run on it
- RawDetectorResult: What a single external detector returns
- DetectorSuccess / DetectorFailure: Normalized adapter result (tagged union)
- CheckOutcome: Exactly one per requested check
- AggregateVerdict: The combined answer for a request
- BreakerState / HealthRecord: Read-only snapshots of per-service state
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckName(str, Enum):
    """Supported analysis types."""

    PROFANITY = "profanity"
    FACT_CHECK = "fact-check"
    SCAM = "scam"
    ETHICS = "ethics"
    ASCII = "ascii"


class CheckStatus(str, Enum):
    """Outcome status, ordered clean < warning < danger < critical."""

    CLEAN = "clean"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    CheckStatus.CLEAN: 0,
    CheckStatus.WARNING: 1,
    CheckStatus.DANGER: 2,
    CheckStatus.CRITICAL: 3,
}


def max_status(statuses: list[CheckStatus]) -> CheckStatus:
    """Highest-severity status, clean for an empty list."""
    return max(statuses, key=lambda s: s.severity, default=CheckStatus.CLEAN)


class InputKind(str, Enum):
    """What a detector expects to receive."""

    TEXT = "text"
    URL = "url"


class CheckRequest(BaseModel):
    """Content to analyze and the checks to run. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    content: str
    checks: tuple[CheckName, ...]
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    submitted_at: datetime = Field(default_factory=utcnow)

    @field_validator("checks", mode="before")
    @classmethod
    def _dedupe_checks(cls, value):
        # Set semantics, first occurrence keeps its position
        if isinstance(value, (str, CheckName)):
            value = [value]
        seen: list = []
        for item in value:
            if item not in seen:
                seen.append(item)
        return tuple(seen)


class RawDetectorResult(BaseModel):
    """Result of one external detector call."""

    is_flagged: bool
    confidence: float = Field(ge=0.0, le=1.0)
    explanation: str = ""
    risk_level: Literal["low", "medium", "high", "critical"] | None = None


class FailureReason(str, Enum):
    """Why an adapter call did not produce a result."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"  # auth/config problem on our side
    INVALID_INPUT = "invalid_input"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    ERROR = "error"


class DetectorSuccess(BaseModel):
    """A detector answered."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    service: str
    result: RawDetectorResult
    latency_ms: int
    attempts: int = 1


class DetectorFailure(BaseModel):
    """A detector call failed after every resilience layer gave up."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failure"] = "failure"
    service: str
    reason: FailureReason
    message: str
    latency_ms: int


AdapterResult = Annotated[
    DetectorSuccess | DetectorFailure, Field(discriminator="kind")
]


class CheckOutcome(BaseModel):
    """The answer for one requested check."""

    model_config = ConfigDict(frozen=True)

    check: CheckName
    status: CheckStatus
    message: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    latency_ms: int = 0
    source_service: str
    failed: bool = False


class AggregateVerdict(BaseModel):
    """Combined result of an analysis request.

    failed_services lists every service that failed during the request, in
    first-failure order. That includes a service whose check was still
    answered by another detector, so it can name services that appear in no
    failed outcome. Use `degraded` or CheckOutcome.failed to tell whether a
    check itself went unanswered.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    outcomes: tuple[CheckOutcome, ...]
    failed_services: tuple[str, ...] = ()  # superset of failed outcomes' services
    completed_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def overall_status(self) -> CheckStatus:
        """Max severity across all outcomes."""
        return max_status([o.status for o in self.outcomes])

    @computed_field
    @property
    def degraded(self) -> bool:
        """True when at least one check could not be completed."""
        return any(o.failed for o in self.outcomes)


class CircuitState(str, Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"  # Normal operation, requests allowed
    OPEN = "open"  # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if recovered


class BreakerState(BaseModel):
    """Point-in-time view of one circuit breaker."""

    model_config = ConfigDict(frozen=True)

    service: str
    state: CircuitState
    consecutive_failures: int
    failure_threshold: int
    last_failure_at: float | None = None


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class HealthRecord(BaseModel):
    """Rolling health statistics for one service."""

    model_config = ConfigDict(frozen=True)

    service: str
    rolling_latency_ms: float = 0.0
    rolling_error_rate_pct: float = 0.0
    rolling_availability_pct: float = 100.0
    status: HealthStatus = HealthStatus.HEALTHY
    last_check_at: datetime = Field(default_factory=utcnow)
