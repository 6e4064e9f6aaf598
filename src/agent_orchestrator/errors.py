"""Typed error taxonomy shared by state, bootstrap and provider layers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class OrchestratorError(Exception):
    """Base orchestrator error."""

    message: str
    code: str = "orchestrator_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ValidationError(OrchestratorError):
    """Malformed caller input; never retried."""

    code: str = "validation_error"


@dataclass(slots=True)
class ProviderError(OrchestratorError):
    """Upstream provider failure surfaced after the retry budget is spent."""

    code: str = "provider_error"
    attempts: int = 0
    status_code: int | None = None
    last_error: BaseException | None = None


@dataclass(slots=True)
class StateConflict(OrchestratorError):
    """Duplicate create or invalid run status transition."""

    code: str = "state_conflict"
    run_id: str | None = None
    current: str | None = None
    requested: str | None = None


@dataclass(slots=True)
class RunNotFound(StateConflict):
    """Transition requested for a run id that was never created."""

    code: str = "run_not_found"


@dataclass(slots=True)
class CorruptState(OrchestratorError):
    """Stored run record could not be decoded."""

    code: str = "corrupt_state"
    run_id: str | None = None


@dataclass(slots=True)
class NotInitialized(OrchestratorError):
    """State runtime used before initialization."""

    code: str = "not_initialized"


@dataclass(slots=True)
class ConfigurationError(OrchestratorError):
    """Invalid settings or missing required secret."""

    code: str = "configuration_error"
