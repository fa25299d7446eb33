"""
Analysis orchestrator.

Fans a CheckRequest out to the detector adapters behind each check, waits
for all of them (never fail-fast), and folds whatever came back into one
AggregateVerdict. Every requested check gets exactly one CheckOutcome, in
request order, whether its detectors answered, failed, or timed out.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import structlog

from .adapter import ResilientServiceAdapter
from .config import CheckPolicy, default_routes
from .errors import InvalidRequestError
from .events import ANALYSIS_COMPLETED, ANALYSIS_STARTED, EventSink, emit
from .models import (
    AggregateVerdict,
    BreakerState,
    CheckName,
    CheckOutcome,
    CheckRequest,
    CheckStatus,
    DetectorFailure,
    DetectorSuccess,
    FailureReason,
    HealthRecord,
    InputKind,
    RawDetectorResult,
)
from .resilience.health import ServiceHealthRegistry

logger = structlog.get_logger()

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+")
MAX_URLS_PER_REQUEST = 10

RISK_LEVEL_STATUS = {
    "medium": CheckStatus.WARNING,
    "high": CheckStatus.DANGER,
    "critical": CheckStatus.CRITICAL,
}

FAILURE_MESSAGES = {
    FailureReason.UNAVAILABLE: "{label} service unavailable (configuration problem)",
    FailureReason.CIRCUIT_OPEN: "{label} paused after repeated failures, try again shortly",
    FailureReason.TIMEOUT: "{label} timed out",
    FailureReason.INVALID_INPUT: "{label} could not process this content",
}
DEFAULT_FAILURE_MESSAGE = "{label} temporarily unavailable"

AdapterResult = DetectorSuccess | DetectorFailure


def extract_urls(text: str, limit: int = MAX_URLS_PER_REQUEST) -> list[str]:
    """Find distinct http(s) URLs in text, in order of appearance."""
    urls: list[str] = []
    for match in URL_PATTERN.finditer(text):
        url = match.group(0).rstrip(".,;:!?)]}")
        if url not in urls:
            urls.append(url)
        if len(urls) >= limit:
            break
    return urls


def interpret(result: RawDetectorResult, policy: CheckPolicy) -> CheckStatus:
    """Turn a raw detector answer into a check status."""
    if result.risk_level is not None:
        if result.risk_level == "low":
            return CheckStatus.WARNING if result.is_flagged else CheckStatus.CLEAN
        return RISK_LEVEL_STATUS[result.risk_level]
    if not result.is_flagged:
        return CheckStatus.CLEAN
    if result.confidence > policy.danger_threshold:
        return CheckStatus.DANGER
    return CheckStatus.WARNING


@dataclass(frozen=True)
class _Call:
    """One dispatched (check, adapter, input) unit."""

    check: CheckName
    adapter: ResilientServiceAdapter
    content: str


class AnalysisOrchestrator:
    """Run requested checks concurrently and aggregate a verdict.

    Registries are injected rather than global, so each orchestrator (and
    each test) owns its own breaker and health state.
    """

    def __init__(
        self,
        adapters: Mapping[str, ResilientServiceAdapter],
        health: ServiceHealthRegistry,
        routes: Mapping[CheckName, CheckPolicy] | None = None,
        sink: EventSink | None = None,
        request_timeout: float = 12.0,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """Initialize orchestrator.

        Args:
            adapters: Resilient adapters keyed by service name
            health: Registry the adapters report into
            routes: Check routing table (defaults to config.default_routes())
            sink: Event sink for observability events
            request_timeout: Seconds allowed for a whole analyze() call
            clock: Time source for latency measurement
        """
        self.adapters = dict(adapters)
        self.health = health
        self.routes = dict(routes) if routes is not None else default_routes()
        self.sink = sink
        self.request_timeout = request_timeout
        self._clock = clock

        for policy in self.routes.values():
            missing = [s for s in policy.services if s not in self.adapters]
            if missing:
                raise ValueError(
                    f"Check '{policy.check.value}' routes to unknown services: {missing}"
                )

    async def analyze(self, request: CheckRequest) -> AggregateVerdict:
        """Analyze content with every requested check.

        Raises:
            InvalidRequestError: Empty content, no checks, or an unrouted check
        """
        self._validate(request)
        log = logger.bind(request_id=request.request_id)
        checks = [c.value for c in request.checks]
        log.info("analysis_started", checks=checks)
        emit(self.sink, ANALYSIS_STARTED, {"request_id": request.request_id, "checks": checks})

        started = self._clock()
        calls = self._plan(request)
        results = await self._dispatch(calls, log)

        outcomes: list[CheckOutcome] = []
        failed_services: list[str] = []
        for check in request.checks:
            check_results = [r for call, r in zip(calls, results) if call.check == check]
            for r in check_results:
                if isinstance(r, DetectorFailure) and r.service not in failed_services:
                    failed_services.append(r.service)
            outcomes.append(self._build_outcome(self.routes[check], check_results))

        verdict = AggregateVerdict(
            request_id=request.request_id,
            outcomes=tuple(outcomes),
            failed_services=tuple(failed_services),
        )
        elapsed_ms = int((self._clock() - started) * 1000)
        log.info(
            "analysis_completed",
            overall_status=verdict.overall_status.value,
            failed_services=failed_services,
            duration_ms=elapsed_ms,
        )
        emit(self.sink, ANALYSIS_COMPLETED, {
            "request_id": request.request_id,
            "overall_status": verdict.overall_status.value,
            "failed_services": failed_services,
            "duration_ms": elapsed_ms,
        })
        return verdict

    def submit(self, request: CheckRequest) -> "asyncio.Task[AggregateVerdict]":
        """Start analysis in the background and return its task.

        Validation errors surface immediately rather than inside the task.
        """
        self._validate(request)
        return asyncio.create_task(
            self.analyze(request), name=f"analyze-{request.request_id}"
        )

    def get_service_health(self) -> Mapping[str, HealthRecord]:
        """Read-only health snapshot for status indicators."""
        return self.health.snapshot()

    def get_breaker_states(self) -> dict[str, BreakerState]:
        return {name: a.breaker.snapshot() for name, a in self.adapters.items()}

    def _validate(self, request: CheckRequest) -> None:
        if not request.content or not request.content.strip():
            raise InvalidRequestError("content must not be empty")
        if not request.checks:
            raise InvalidRequestError("at least one check must be requested")
        unrouted = [c.value for c in request.checks if c not in self.routes]
        if unrouted:
            raise InvalidRequestError(f"unsupported checks: {unrouted}")

    def _plan(self, request: CheckRequest) -> list[_Call]:
        """Expand checks into individual adapter calls."""
        urls: list[str] | None = None
        calls: list[_Call] = []
        for check in request.checks:
            for service in self.routes[check].services:
                adapter = self.adapters[service]
                if adapter.input_kind == InputKind.URL:
                    if urls is None:
                        urls = extract_urls(request.content)
                    calls.extend(_Call(check, adapter, url) for url in urls)
                else:
                    calls.append(_Call(check, adapter, request.content))
        return calls

    async def _dispatch(self, calls: Sequence[_Call], log) -> list[AdapterResult]:
        """Run all calls concurrently under the request timeout.

        Results line up with calls by index, not by completion order.
        """
        if not calls:
            return []
        started = self._clock()
        tasks = [
            asyncio.ensure_future(call.adapter.invoke(call.content)) for call in calls
        ]
        done, pending = await asyncio.wait(tasks, timeout=self.request_timeout)

        if pending:
            log.warning(
                "analysis_timeout",
                timeout=self.request_timeout,
                pending_services=sorted({calls[tasks.index(t)].adapter.name for t in pending}),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        timed_out_ms = int((self._clock() - started) * 1000)
        results: list[AdapterResult] = []
        for call, task in zip(calls, tasks):
            if task.cancelled():
                results.append(DetectorFailure(
                    service=call.adapter.name,
                    reason=FailureReason.TIMEOUT,
                    message=f"No answer within {self.request_timeout}s",
                    latency_ms=timed_out_ms,
                ))
            elif task.exception() is not None:
                # invoke() absorbs detector errors; anything here is a bug
                error = task.exception()
                log.error(
                    "adapter_crashed",
                    service=call.adapter.name,
                    error_type=type(error).__name__,
                    error=str(error),
                )
                results.append(DetectorFailure(
                    service=call.adapter.name,
                    reason=FailureReason.ERROR,
                    message=str(error),
                    latency_ms=timed_out_ms,
                ))
            else:
                results.append(task.result())
        return results

    def _build_outcome(
        self, policy: CheckPolicy, results: Sequence[AdapterResult]
    ) -> CheckOutcome:
        """Fold every result for one check into a single outcome."""
        if not results:
            return CheckOutcome(
                check=policy.check,
                status=CheckStatus.CLEAN,
                message="No URLs found to check",
                confidence=1.0,
                latency_ms=0,
                source_service="+".join(policy.services),
            )

        successes = [r for r in results if isinstance(r, DetectorSuccess)]
        latency_ms = max(r.latency_ms for r in results)

        if not successes:
            failures = [r for r in results if isinstance(r, DetectorFailure)]
            return self._degraded_outcome(policy, failures, latency_ms)

        candidates = [
            (interpret(s.result, policy), s.result.confidence, s) for s in successes
        ]
        # Higher severity wins; ties go to the more confident detector
        status, confidence, best = max(candidates, key=lambda c: (c[0].severity, c[1]))
        if status == CheckStatus.CLEAN:
            message = best.result.explanation or policy.clean_message
        else:
            message = best.result.explanation or policy.flagged_message
        return CheckOutcome(
            check=policy.check,
            status=status,
            message=message,
            confidence=confidence,
            latency_ms=latency_ms,
            source_service=best.service,
        )

    def _degraded_outcome(
        self,
        policy: CheckPolicy,
        failures: Sequence[DetectorFailure],
        latency_ms: int,
    ) -> CheckOutcome:
        services: list[str] = []
        for f in failures:
            if f.service not in services:
                services.append(f.service)
        template = FAILURE_MESSAGES.get(failures[0].reason, DEFAULT_FAILURE_MESSAGE)
        return CheckOutcome(
            check=policy.check,
            status=policy.degraded_status,
            message=template.format(label=policy.label),
            confidence=0.0,
            latency_ms=latency_ms,
            source_service="+".join(services),
            failed=True,
        )
