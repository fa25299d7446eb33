"""
Detector capability interface and HTTP transport.

A detector is an external collaborator (toxicity scorer, URL-reputation
service, generative-AI judge, ...). Whatever it is, it must:
- expose a service name and the kind of input it takes (text or url)
- answer call(content) with a RawDetectorResult
- fail with one of the DetectorError subclasses in errors.py
"""

import os
from typing import Any, Callable, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import ValidationError

from .errors import (
    AuthConfigError,
    DetectorError,
    InvalidInputError,
    RateLimitError,
    TransientNetworkError,
)
from .models import InputKind, RawDetectorResult

logger = structlog.get_logger()

ResponseParser = Callable[[dict[str, Any]], RawDetectorResult]

AUTH_STATUSES = {401, 403}
INVALID_INPUT_STATUSES = {400, 413, 415, 422}


@runtime_checkable
class Detector(Protocol):
    """Uniform capability every external detector satisfies."""

    name: str
    input_kind: InputKind

    async def call(self, content: str) -> RawDetectorResult: ...


def parse_raw_result(data: dict[str, Any]) -> RawDetectorResult:
    """Default parser: the body already has the RawDetectorResult shape."""
    return RawDetectorResult.model_validate(data)


class HttpDetector:
    """Detector reached over HTTP with a JSON request/response.

    POSTs {"content": ...} to the endpoint and maps HTTP failures onto the
    detector error taxonomy so the retry layer can tell retryable failures
    apart from misconfiguration.
    """

    def __init__(
        self,
        name: str,
        url: str,
        api_key_env: str | None = None,
        input_kind: InputKind = InputKind.TEXT,
        timeout: float = 10.0,
        parser: ResponseParser = parse_raw_result,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP detector.

        Args:
            name: Service name (also the breaker/health key)
            url: Endpoint to POST content to
            api_key_env: Environment variable holding a bearer token, if any
            input_kind: Whether the detector takes text or a single URL
            timeout: Per-attempt HTTP timeout in seconds
            parser: Turns the JSON body into a RawDetectorResult
            transport: Optional httpx transport (used by tests)
        """
        self.name = name
        self.url = url
        self.api_key_env = api_key_env
        self.input_kind = input_kind
        self.timeout = timeout
        self.parser = parser
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key_env:
            api_key = os.environ.get(self.api_key_env)
            if not api_key:
                raise AuthConfigError(f"{self.api_key_env} not set", service=self.name)
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def call(self, content: str) -> RawDetectorResult:
        headers = self._headers()
        payload_key = "url" if self.input_kind == InputKind.URL else "content"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers=headers,
                    json={payload_key: content},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise _error_for_status(self.name, e.response) from e
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request timed out: {e}", service=self.name) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"Request failed: {e}", service=self.name) from e
        except ValueError as e:
            raise DetectorError(f"Response is not JSON: {e}", service=self.name) from e

        if not isinstance(data, dict):
            raise DetectorError("Response body is not a JSON object", service=self.name)
        try:
            return self.parser(data)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise DetectorError(f"Unexpected response shape: {e}", service=self.name) from e

    def __repr__(self) -> str:
        return f"HttpDetector(name={self.name!r}, url={self.url!r}, input_kind={self.input_kind.value})"


def _error_for_status(service: str, response: httpx.Response) -> DetectorError:
    """Map an HTTP error response onto the detector error taxonomy."""
    status = response.status_code
    message = f"HTTP {status}"

    if status == 429:
        return RateLimitError(
            message, service=service, retry_after=_retry_after(response)
        )
    if status in AUTH_STATUSES:
        return AuthConfigError(message, service=service)
    if status in INVALID_INPUT_STATUSES:
        return InvalidInputError(message, service=service)
    if status >= 500 or status == 408:
        return TransientNetworkError(message, service=service)
    return DetectorError(message, service=service)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
