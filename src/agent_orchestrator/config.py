"""Runtime configuration for state bootstrap and LLM invocation."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from agent_orchestrator.errors import ConfigurationError

SUPPORTED_EMBEDDINGS_PROVIDERS = ("openai", "stub")
SUPPORTED_METRICS_BACKENDS = ("none", "console", "otlp")
_REDIS_SCHEMES = {"redis", "rediss", "unix"}


@dataclass(slots=True)
class StateSettings:
    """Run state backend selection and health-check settings."""

    redis_url: str | None = None
    require_redis: bool = False
    connect_attempts: int = 3
    connect_base_delay_seconds: float = 0.2
    connect_jitter_seconds: float = 0.1
    key_prefix: str = "state:"


@dataclass(slots=True)
class LlmSettings:
    """Chat/embedding provider settings."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    timeout_seconds: float = 15.0
    retries: int = 2
    retry_base_seconds: float = 0.2
    embeddings_provider: str = "openai"


@dataclass(slots=True)
class ContextSettings:
    """Prompt composition limits."""

    max_context_tokens: int = 8_000
    safety_margin: float = 0.05


@dataclass(slots=True)
class MetricsSettings:
    """Where emitted metrics are exported; `none` keeps them in-process."""

    backend: str = "none"
    service_name: str = "agent-orchestrator"
    export_interval_seconds: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    state: StateSettings = field(default_factory=StateSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    context: ContextSettings = field(default_factory=ContextSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        settings = cls(
            state=StateSettings(
                redis_url=_env_optional(
                    "AGENT_ORCHESTRATOR_REDIS_URL",
                    _env_optional("REDIS_URL"),
                ),
                require_redis=_env_bool("AGENT_ORCHESTRATOR_REQUIRE_REDIS", default=False),
                connect_attempts=_env_int("AGENT_ORCHESTRATOR_REDIS_CONNECT_ATTEMPTS", "3"),
                connect_base_delay_seconds=_env_float(
                    "AGENT_ORCHESTRATOR_REDIS_CONNECT_BASE_DELAY_SECONDS",
                    "0.2",
                ),
                connect_jitter_seconds=_env_float(
                    "AGENT_ORCHESTRATOR_REDIS_CONNECT_JITTER_SECONDS",
                    "0.1",
                ),
                key_prefix=os.getenv("AGENT_ORCHESTRATOR_STATE_KEY_PREFIX", "state:"),
            ),
            llm=LlmSettings(
                api_key=_env_optional("OPENAI_API_KEY"),
                base_url=os.getenv(
                    "AGENT_ORCHESTRATOR_LLM_BASE_URL",
                    "https://api.openai.com/v1",
                ).rstrip("/"),
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
                timeout_seconds=_env_float("AGENT_ORCHESTRATOR_LLM_TIMEOUT_SECONDS", "15.0"),
                retries=_env_int("AGENT_ORCHESTRATOR_LLM_RETRIES", "2"),
                retry_base_seconds=_env_float(
                    "AGENT_ORCHESTRATOR_LLM_RETRY_BASE_SECONDS",
                    "0.2",
                ),
                embeddings_provider=os.getenv("EMBEDDINGS_PROVIDER", "openai").strip().lower(),
            ),
            context=ContextSettings(
                max_context_tokens=_env_int("AGENT_ORCHESTRATOR_MAX_CONTEXT_TOKENS", "8000"),
            ),
            metrics=MetricsSettings(
                backend=os.getenv("METRICS_BACKEND", "none").strip().lower(),
                service_name=os.getenv("OTEL_SERVICE_NAME", "agent-orchestrator"),
                export_interval_seconds=_env_float(
                    "AGENT_ORCHESTRATOR_METRICS_EXPORT_INTERVAL_SECONDS",
                    "60",
                ),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.state.redis_url is not None:
            _validate_redis_url(self.state.redis_url)
        if self.state.connect_attempts < 1:
            raise ConfigurationError("AGENT_ORCHESTRATOR_REDIS_CONNECT_ATTEMPTS must be >= 1.")
        if self.state.connect_base_delay_seconds < 0:
            raise ConfigurationError(
                "AGENT_ORCHESTRATOR_REDIS_CONNECT_BASE_DELAY_SECONDS must be >= 0.",
            )
        if self.state.connect_jitter_seconds < 0:
            raise ConfigurationError(
                "AGENT_ORCHESTRATOR_REDIS_CONNECT_JITTER_SECONDS must be >= 0.",
            )
        if not self.state.key_prefix:
            raise ConfigurationError("AGENT_ORCHESTRATOR_STATE_KEY_PREFIX must not be empty.")

        parsed = urlparse(self.llm.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigurationError(
                "Invalid LLM base URL: "
                f"{self.llm.base_url!r}. Expected an absolute URL with http:// or https:// scheme.",
            )
        if self.llm.timeout_seconds <= 0:
            raise ConfigurationError("AGENT_ORCHESTRATOR_LLM_TIMEOUT_SECONDS must be > 0.")
        if self.llm.retries < 0:
            raise ConfigurationError("AGENT_ORCHESTRATOR_LLM_RETRIES must be >= 0.")
        if self.llm.retry_base_seconds < 0:
            raise ConfigurationError("AGENT_ORCHESTRATOR_LLM_RETRY_BASE_SECONDS must be >= 0.")
        if self.llm.embeddings_provider not in SUPPORTED_EMBEDDINGS_PROVIDERS:
            raise ConfigurationError(
                "Unsupported EMBEDDINGS_PROVIDER: "
                f"{self.llm.embeddings_provider!r}; expected one of "
                f"{', '.join(SUPPORTED_EMBEDDINGS_PROVIDERS)}.",
            )
        if self.context.max_context_tokens <= 0:
            raise ConfigurationError("AGENT_ORCHESTRATOR_MAX_CONTEXT_TOKENS must be > 0.")
        if not 0 <= self.context.safety_margin < 1:
            raise ConfigurationError("Context safety margin must be in [0, 1).")
        if self.metrics.backend not in SUPPORTED_METRICS_BACKENDS:
            raise ConfigurationError(
                "Unsupported METRICS_BACKEND: "
                f"{self.metrics.backend!r}; expected one of "
                f"{', '.join(SUPPORTED_METRICS_BACKENDS)}.",
            )
        if self.metrics.export_interval_seconds <= 0:
            raise ConfigurationError(
                "AGENT_ORCHESTRATOR_METRICS_EXPORT_INTERVAL_SECONDS must be > 0.",
            )


def _validate_redis_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in _REDIS_SCHEMES:
        raise ConfigurationError(
            "Invalid Redis URL: "
            f"{value!r}. Expected redis://, rediss:// or unix:// scheme.",
        )


def _env_optional(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigurationError(f"Invalid number value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {value!r}")
