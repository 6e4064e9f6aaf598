"""Run state backend implementations."""

from agent_orchestrator.state.backends.base import StateBackend, TransitionBackend
from agent_orchestrator.state.backends.memory import InMemoryStateBackend
from agent_orchestrator.state.backends.remote import RedisStateBackend, RemoteStoreClient

__all__ = [
    "InMemoryStateBackend",
    "RedisStateBackend",
    "RemoteStoreClient",
    "StateBackend",
    "TransitionBackend",
]
