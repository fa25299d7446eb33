"""Rolling health tracking for external detector services."""

from types import MappingProxyType
from typing import Iterable, Mapping

import structlog

from ..models import HealthRecord, HealthStatus, utcnow

logger = structlog.get_logger()

LATENCY_WEIGHT = 0.3
ERROR_DECAY = 0.9
ERROR_STEP = 10.0
ERROR_RECOVERY = 0.95
AVAILABILITY_WEIGHT = 0.05

DOWN_ERROR_RATE = 50.0
DOWN_AVAILABILITY = 50.0
DEGRADED_ERROR_RATE = 20.0
DEGRADED_AVAILABILITY = 80.0
DEGRADED_LATENCY_MS = 5000.0


def derive_status(error_rate: float, availability: float, latency_ms: float) -> HealthStatus:
    """Classify a service from its rolling statistics."""
    if error_rate > DOWN_ERROR_RATE or availability < DOWN_AVAILABILITY:
        return HealthStatus.DOWN
    if (
        error_rate > DEGRADED_ERROR_RATE
        or availability < DEGRADED_AVAILABILITY
        or latency_ms > DEGRADED_LATENCY_MS
    ):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class ServiceHealthRegistry:
    """Monitor and report health of detector services.

    Statistics are exponential moving averages, so memory stays constant per
    service and recent calls weigh more than old ones. Every update replaces
    the service's record with a new immutable HealthRecord in a single
    assignment; readers never see a half-applied update.
    """

    def __init__(self, services: Iterable[str] = ()):
        """Initialize registry, pre-registering known services as healthy."""
        self._records: dict[str, HealthRecord] = {}
        for service in services:
            self.register(service)

    def register(self, service: str) -> HealthRecord:
        """Start tracking a service if it is not tracked yet."""
        record = self._records.get(service)
        if record is None:
            record = HealthRecord(service=service)
            self._records[service] = record
        return record

    def update(self, service: str, latency_ms: float, is_error: bool) -> HealthRecord:
        """Fold one call outcome into the service's rolling statistics.

        Args:
            service: Name of the detector service
            latency_ms: Wall time of the call including retries
            is_error: Whether the call ultimately failed

        Returns:
            The new health record
        """
        previous = self._records.get(service) or HealthRecord(service=service)

        if previous.rolling_latency_ms == 0:
            latency = float(latency_ms)
        else:
            latency = (
                previous.rolling_latency_ms * (1 - LATENCY_WEIGHT)
                + latency_ms * LATENCY_WEIGHT
            )

        if is_error:
            error_rate = min(100.0, previous.rolling_error_rate_pct * ERROR_DECAY + ERROR_STEP)
        else:
            error_rate = max(0.0, previous.rolling_error_rate_pct * ERROR_RECOVERY)

        uptime = 0.0 if is_error else 100.0
        availability = (
            previous.rolling_availability_pct * (1 - AVAILABILITY_WEIGHT)
            + uptime * AVAILABILITY_WEIGHT
        )

        status = derive_status(error_rate, availability, latency)
        record = HealthRecord(
            service=service,
            rolling_latency_ms=latency,
            rolling_error_rate_pct=error_rate,
            rolling_availability_pct=availability,
            status=status,
            last_check_at=utcnow(),
        )
        self._records[service] = record

        if status != previous.status:
            log = logger.warning if status != HealthStatus.HEALTHY else logger.info
            log(
                "service_health_changed",
                service=service,
                previous=previous.status.value,
                status=status.value,
                error_rate=round(error_rate, 2),
                availability=round(availability, 2),
                latency_ms=round(latency, 1),
            )
        return record

    def get(self, service: str) -> HealthRecord | None:
        """Get the current record for a service, or None if not tracked."""
        return self._records.get(service)

    def is_healthy(self, service: str) -> bool:
        """Unknown services are considered healthy."""
        record = self._records.get(service)
        return record is None or record.status == HealthStatus.HEALTHY

    def snapshot(self) -> Mapping[str, HealthRecord]:
        """Read-only copy of every tracked service's record."""
        return MappingProxyType(dict(self._records))

    def summary(self) -> dict[str, int]:
        """Count services per health status."""
        counts = {status.value: 0 for status in HealthStatus}
        for record in list(self._records.values()):
            counts[record.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    def reset(self, service: str | None = None) -> None:
        """Reset health statistics.

        Args:
            service: Specific service to reset, or None to reset all
        """
        if service:
            if service in self._records:
                self._records[service] = HealthRecord(service=service)
        else:
            for name in list(self._records):
                self._records[name] = HealthRecord(service=name)
