"""Run lifecycle facade over one selected backend."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from agent_orchestrator.metrics import MetricsEmitter, default_emitter
from agent_orchestrator.state.backends.base import StateBackend
from agent_orchestrator.state.models import Run

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """Closed set of supported state backends."""

    MEMORY = "memory"
    REDIS = "redis"


class StateManager:
    """Owns the run state machine; the backend is fixed at construction."""

    def __init__(
        self,
        backend: StateBackend,
        *,
        kind: BackendKind,
        emitter: MetricsEmitter | None = None,
    ) -> None:
        self.backend = backend
        self.kind = kind
        self.emitter = emitter or default_emitter

    async def create(self, run_id: str) -> Run:
        return self._record(await self.backend.create(run_id))

    async def get(self, run_id: str) -> Run | None:
        return await self.backend.get(run_id)

    async def start(self, run_id: str) -> Run:
        return self._record(await self.backend.start(run_id))

    async def complete(self, run_id: str, result: Any = None) -> Run:
        return self._record(await self.backend.complete(run_id, result))

    async def fail(self, run_id: str, error: BaseException | str) -> Run:
        return self._record(await self.backend.fail(run_id, error))

    async def delete(self, run_id: str) -> bool:
        return await self.backend.delete(run_id)

    async def close(self) -> None:
        await self.backend.close()

    def _record(self, run: Run) -> Run:
        logger.debug("Run %s -> %s (%s backend)", run.id, run.status.value, self.kind.value)
        self.emitter.emit(
            "state_transitions",
            1,
            {"status": run.status.value, "backend": self.kind.value},
        )
        self.emitter.emit_event("state.change", {"id": run.id, "status": run.status.value})
        return run
