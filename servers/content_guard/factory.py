"""Wire breakers, retries, health tracking and adapters into an orchestrator."""

from typing import Mapping, Sequence

from .adapter import ResilientServiceAdapter
from .config import DEFAULT_SERVICES, CheckPolicy, ServiceConfig, Settings
from .detectors import Detector, HttpDetector
from .events import EventSink
from .models import CheckName
from .orchestrator import AnalysisOrchestrator
from .resilience.backoff import BackoffPolicy
from .resilience.circuit_breaker import CircuitBreakerRegistry
from .resilience.health import ServiceHealthRegistry
from .resilience.retry import RetryExecutor


def build_http_detector(service: ServiceConfig, settings: Settings) -> HttpDetector:
    return HttpDetector(
        name=service.name,
        url=service.endpoint(settings.detector_base_url),
        api_key_env=service.api_key_env,
        input_kind=service.input_kind,
        timeout=settings.detector_timeout_seconds,
    )


def build_orchestrator(
    settings: Settings | None = None,
    detectors: Mapping[str, Detector] | None = None,
    sink: EventSink | None = None,
    services: Sequence[ServiceConfig] = DEFAULT_SERVICES,
    routes: Mapping[CheckName, CheckPolicy] | None = None,
) -> AnalysisOrchestrator:
    """Build an orchestrator with fresh, isolated registries.

    Args:
        settings: Tunables; read from the environment when omitted
        detectors: Detector per service name; services without one get an
            HttpDetector built from their config
        sink: Event sink shared by the orchestrator and every adapter
        services: External services to create breakers and adapters for
        routes: Check routing table (defaults to config.default_routes())

    Returns:
        Ready-to-use AnalysisOrchestrator
    """
    settings = settings or Settings()
    detectors = detectors or {}

    backoff = BackoffPolicy(
        base_delay_ms=settings.base_delay_ms,
        multiplier=settings.backoff_multiplier,
        max_delay_ms=settings.max_delay_ms,
    )
    retry = RetryExecutor(backoff=backoff, max_attempts=settings.max_attempts)
    health = ServiceHealthRegistry()
    breakers = CircuitBreakerRegistry()

    adapters: dict[str, ResilientServiceAdapter] = {}
    for service in services:
        breaker = breakers.create(
            service.name,
            failure_threshold=service.failure_threshold or settings.failure_threshold,
            reset_timeout=(
                service.reset_timeout_seconds
                if service.reset_timeout_seconds is not None
                else settings.reset_timeout_seconds
            ),
        )
        detector = detectors.get(service.name) or build_http_detector(service, settings)
        if detector.name != service.name:
            raise ValueError(
                f"Detector '{detector.name}' registered for service '{service.name}'"
            )
        adapters[service.name] = ResilientServiceAdapter(
            detector=detector,
            breaker=breaker,
            retry=retry,
            health=health,
            sink=sink,
        )

    return AnalysisOrchestrator(
        adapters=adapters,
        health=health,
        routes=routes,
        sink=sink,
        request_timeout=settings.request_timeout_seconds,
    )
