"""
Content Guard analysis orchestrator

This package provides:
- Concurrent fan-out of analysis checks to external detector services
- Circuit breakers, retries with backoff, and rolling health per service
- Aggregation into a single verdict that never drops a requested check

Detectors themselves live outside this package; they are reached through
the Detector interface (HTTP by default).
"""

from .errors import InvalidRequestError
from .factory import build_orchestrator
from .models import AggregateVerdict, CheckName, CheckOutcome, CheckRequest, CheckStatus
from .orchestrator import AnalysisOrchestrator

__version__ = "1.0.0"

__all__ = [
    "AnalysisOrchestrator",
    "build_orchestrator",
    "CheckRequest",
    "CheckName",
    "CheckStatus",
    "CheckOutcome",
    "AggregateVerdict",
    "InvalidRequestError",
]
