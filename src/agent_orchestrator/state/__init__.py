"""Run lifecycle state: models, backends, manager and bootstrap."""

from agent_orchestrator.state.bootstrap import (
    StateBootstrapOptions,
    StateRuntime,
    build_state_manager,
)
from agent_orchestrator.state.manager import BackendKind, StateManager
from agent_orchestrator.state.models import Run, RunStatus

__all__ = [
    "BackendKind",
    "Run",
    "RunStatus",
    "StateBootstrapOptions",
    "StateManager",
    "StateRuntime",
    "build_state_manager",
]
