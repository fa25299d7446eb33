"""
Command-line entry point for Content Guard.

Runs one analysis against the configured detector services and prints the
verdict plus the per-service health snapshot as JSON.

Run with: python -m servers.content_guard "some text" --checks profanity scam
"""

import argparse
import asyncio
import json
import sys

from .config import Settings
from .errors import InvalidRequestError
from .events import CompositeEventSink, InMemoryEventSink, LoggingEventSink
from .factory import build_orchestrator
from .log_config import configure_logging
from .models import CheckName, CheckRequest


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="content-guard",
        description="Analyze content with external detector services",
    )
    parser.add_argument("content", help="Text (or URL) to analyze")
    parser.add_argument(
        "--checks",
        nargs="+",
        choices=[c.value for c in CheckName],
        default=[c.value for c in CheckName],
        help="Checks to run (default: all)",
    )
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, settings: Settings) -> dict:
    if args.timeout:
        settings = settings.model_copy(update={"request_timeout_seconds": args.timeout})
    history = InMemoryEventSink(max_events=settings.event_history_size)
    orchestrator = build_orchestrator(
        settings, sink=CompositeEventSink(LoggingEventSink(), history)
    )

    request = CheckRequest(content=args.content, checks=args.checks)
    verdict = await orchestrator.analyze(request)
    return {
        "verdict": verdict.model_dump(mode="json"),
        "health": {
            name: record.model_dump(mode="json")
            for name, record in orchestrator.get_service_health().items()
        },
        # oldest first, as they happened
        "events": list(reversed(history.recent(settings.event_history_size))),
    }


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        result = asyncio.run(run(args, settings))
    except InvalidRequestError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 2

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
