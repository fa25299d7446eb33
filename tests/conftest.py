"""Shared pytest fixtures for content guard tests."""

import asyncio

import pytest

from servers.content_guard.adapter import ResilientServiceAdapter
from servers.content_guard.config import CheckPolicy
from servers.content_guard.events import InMemoryEventSink
from servers.content_guard.models import CheckName, InputKind, RawDetectorResult
from servers.content_guard.orchestrator import AnalysisOrchestrator
from servers.content_guard.resilience.backoff import BackoffPolicy
from servers.content_guard.resilience.circuit_breaker import CircuitBreaker
from servers.content_guard.resilience.health import ServiceHealthRegistry
from servers.content_guard.resilience.retry import RetryExecutor

Step = RawDetectorResult | BaseException


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDetector:
    """Detector that replays scripted results or errors.

    The last step repeats once the script runs out.
    """

    def __init__(
        self,
        name: str,
        *steps: Step,
        input_kind: InputKind = InputKind.TEXT,
        delay: float = 0.0,
    ):
        self.name = name
        self.input_kind = input_kind
        self.steps = list(steps) or [clean()]
        self.delay = delay
        self.calls: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def call(self, content: str) -> RawDetectorResult:
        index = min(len(self.calls), len(self.steps) - 1)
        self.calls.append(content)
        if self.delay:
            await asyncio.sleep(self.delay)
        step = self.steps[index]
        if isinstance(step, BaseException):
            raise step
        return step


def clean(confidence: float = 0.95, explanation: str = "") -> RawDetectorResult:
    return RawDetectorResult(is_flagged=False, confidence=confidence, explanation=explanation)


def flagged(confidence: float, explanation: str = "", risk_level: str | None = None) -> RawDetectorResult:
    return RawDetectorResult(
        is_flagged=True, confidence=confidence, explanation=explanation, risk_level=risk_level
    )


def policy(check: CheckName, *services: str, **kwargs) -> CheckPolicy:
    """Minimal routing entry for tests."""
    label = check.value.replace("-", " ").capitalize()
    return CheckPolicy(
        check=check,
        label=label,
        services=services,
        clean_message=kwargs.pop("clean_message", f"{label}: clean"),
        flagged_message=kwargs.pop("flagged_message", f"{label}: flagged"),
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def health() -> ServiceHealthRegistry:
    """Create a fresh health registry."""
    return ServiceHealthRegistry()


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def fast_retry() -> RetryExecutor:
    """Retry executor with millisecond backoff so tests stay quick."""
    return RetryExecutor(BackoffPolicy(base_delay_ms=1, multiplier=2, max_delay_ms=4), max_attempts=3)


@pytest.fixture
def make_adapter(health: ServiceHealthRegistry, sink: InMemoryEventSink, fast_retry: RetryExecutor, clock: FakeClock):
    """Factory for adapters sharing the test's registry, sink and clock."""

    def _make(detector: FakeDetector, failure_threshold: int = 3, reset_timeout: float = 30.0) -> ResilientServiceAdapter:
        breaker = CircuitBreaker(
            name=detector.name,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
            clock=clock,
        )
        return ResilientServiceAdapter(detector, breaker, fast_retry, health, sink)

    return _make


@pytest.fixture
def make_orchestrator(make_adapter, health: ServiceHealthRegistry, sink: InMemoryEventSink):
    """Build an orchestrator from detectors and a check -> services table."""

    def _make(
        detectors: list[FakeDetector],
        routes: dict[CheckName, tuple[str, ...]],
        request_timeout: float = 5.0,
        **adapter_kwargs,
    ) -> AnalysisOrchestrator:
        adapters = {d.name: make_adapter(d, **adapter_kwargs) for d in detectors}
        return AnalysisOrchestrator(
            adapters=adapters,
            health=health,
            routes={check: policy(check, *services) for check, services in routes.items()},
            sink=sink,
            request_timeout=request_timeout,
        )

    return _make
