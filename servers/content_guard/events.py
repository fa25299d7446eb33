"""
Event sinks for orchestration observability.

A sink receives structured events (analysis started, call succeeded or
failed, aggregate verdict). Recording is fire-and-forget: the orchestration
path goes through emit(), which never lets a sink error escape.
"""

from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()

ANALYSIS_STARTED = "analysis_started"
ANALYSIS_COMPLETED = "analysis_completed"
SERVICE_CALL_SUCCEEDED = "service_call_succeeded"
SERVICE_CALL_FAILED = "service_call_failed"
SERVICE_CALL_REJECTED = "service_call_rejected"


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts (event_type, payload) pairs."""

    def record(self, event_type: str, payload: dict[str, Any]) -> None: ...


def emit(sink: EventSink | None, event_type: str, payload: dict[str, Any]) -> None:
    """Send an event to a sink without ever failing the caller."""
    if sink is None:
        return
    try:
        sink.record(event_type, payload)
    except Exception as e:
        logger.warning("event_sink_failed", event_type=event_type, error=str(e))


class LoggingEventSink:
    """Write every event as a structlog entry."""

    def __init__(self, logger_name: str = "content_guard.events"):
        self._log = structlog.get_logger(logger_name)

    def record(self, event_type: str, payload: dict[str, Any]) -> None:
        self._log.info(event_type, **payload)


class InMemoryEventSink:
    """Keep a bounded history of recent events and notify subscribers.

    Newest events come first, as a status dashboard would show them.
    """

    def __init__(self, max_events: int = 1000):
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._counts: Counter[str] = Counter()
        self._subscribers: list[Callable[[dict[str, Any]], None]] = []

    def record(self, event_type: str, payload: dict[str, Any]) -> None:
        event = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": dict(payload),
        }
        self._events.appendleft(event)
        self._counts[event_type] += 1
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning("event_subscriber_failed", event_type=event_type, error=str(e))

    def subscribe(self, callback: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def recent(self, count: int = 50, event_type: str | None = None) -> list[dict[str, Any]]:
        """Most recent events, optionally filtered by type."""
        events = [e for e in self._events if event_type is None or e["type"] == event_type]
        return events[:count]

    def count(self, event_type: str) -> int:
        """Total events of a type recorded so far (not bounded by history)."""
        return self._counts[event_type]

    def clear(self) -> None:
        self._events.clear()
        self._counts.clear()

    def __len__(self) -> int:
        return len(self._events)


class CompositeEventSink:
    """Fan one event out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, *sinks: EventSink):
        self.sinks = sinks

    def record(self, event_type: str, payload: dict[str, Any]) -> None:
        for sink in self.sinks:
            emit(sink, event_type, payload)
