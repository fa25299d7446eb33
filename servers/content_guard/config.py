"""
Configuration for the content guard orchestrator.

Settings come from environment variables with the CONTENT_GUARD_ prefix.
The service list and check routing table are static defaults that callers
can replace when building an orchestrator.
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import CheckName, CheckStatus, InputKind


class Settings(BaseSettings):
    """Runtime tunables for retries, breakers, timeouts and logging."""

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    request_timeout_seconds: float = Field(default=12.0, gt=0)

    # Retry Executor / Backoff Policy
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_delay_ms: float = Field(default=10000.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)

    # Circuit Breaker defaults, overridable per service
    failure_threshold: int = Field(default=3, ge=1)
    reset_timeout_seconds: float = Field(default=30.0, ge=0)

    # Detector endpoints live under this base URL unless a service overrides it
    detector_base_url: str = "http://localhost:8700/detect"
    detector_timeout_seconds: float = Field(default=10.0, gt=0)

    log_level: str = "INFO"
    log_json: bool = False
    event_history_size: int = Field(default=1000, ge=1)


class ServiceConfig(BaseModel):
    """One external detector service."""

    name: str
    path: str
    input_kind: InputKind = InputKind.TEXT
    api_key_env: str | None = None
    url: str | None = None  # full URL, overrides detector_base_url + path
    failure_threshold: int | None = Field(default=None, ge=1)
    reset_timeout_seconds: float | None = Field(default=None, ge=0)

    def endpoint(self, base_url: str) -> str:
        if self.url:
            return self.url
        return f"{base_url.rstrip('/')}/{self.path.lstrip('/')}"


class CheckPolicy(BaseModel):
    """How one check is routed and how its results are read."""

    check: CheckName
    label: str
    services: tuple[str, ...]
    danger_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Status reported when every backing service failed; never clean
    degraded_status: CheckStatus = CheckStatus.WARNING
    clean_message: str
    flagged_message: str


DEFAULT_SERVICES: tuple[ServiceConfig, ...] = (
    ServiceConfig(name="profanity-detector", path="profanity", api_key_env="PROFANITY_API_KEY"),
    ServiceConfig(name="toxicity-scorer", path="toxicity", api_key_env="PERSPECTIVE_API_KEY"),
    ServiceConfig(name="fact-checker", path="fact-check", api_key_env="FACT_CHECK_API_KEY"),
    ServiceConfig(name="scam-detector", path="scam", api_key_env="SCAM_API_KEY"),
    ServiceConfig(
        name="url-reputation",
        path="url-reputation",
        input_kind=InputKind.URL,
        api_key_env="WEB_RISK_API_KEY",
        # Reputation lookups are noisier; trip sooner, probe later
        failure_threshold=5,
        reset_timeout_seconds=60.0,
    ),
    ServiceConfig(name="ethics-judge", path="ethics", api_key_env="ETHICS_API_KEY"),
    ServiceConfig(name="ascii-detector", path="ascii"),
)

DEFAULT_CHECKS: tuple[CheckPolicy, ...] = (
    CheckPolicy(
        check=CheckName.PROFANITY,
        label="Profanity check",
        services=("profanity-detector", "toxicity-scorer"),
        clean_message="No inappropriate language detected",
        flagged_message="Inappropriate language detected",
    ),
    CheckPolicy(
        check=CheckName.FACT_CHECK,
        label="Fact check",
        services=("fact-checker",),
        clean_message="No factual inaccuracies detected",
        flagged_message="Some claims may need independent verification",
    ),
    CheckPolicy(
        check=CheckName.SCAM,
        label="Scam detection",
        services=("scam-detector", "url-reputation"),
        clean_message="No scam indicators detected",
        flagged_message="Scam indicators detected",
    ),
    CheckPolicy(
        check=CheckName.ETHICS,
        label="Ethical analysis",
        services=("ethics-judge",),
        clean_message="No ethical concerns detected",
        flagged_message="Potential ethical concerns detected",
    ),
    CheckPolicy(
        check=CheckName.ASCII,
        label="ASCII detection",
        services=("ascii-detector",),
        clean_message="No special ASCII patterns detected",
        flagged_message="ASCII art detected",
    ),
)


def default_routes() -> dict[CheckName, CheckPolicy]:
    """Routing table keyed by check name."""
    return {policy.check: policy for policy in DEFAULT_CHECKS}
