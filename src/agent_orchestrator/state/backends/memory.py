"""Process-local run state backend."""

from __future__ import annotations

from agent_orchestrator.state.backends.base import TransitionBackend
from agent_orchestrator.state.models import Run


class InMemoryStateBackend(TransitionBackend):
    """Dict-backed backend; state is lost when the process exits.

    Runs are kept as serialized records, so a stored result is a snapshot that
    later mutation of the caller's objects cannot reach.
    """

    def __init__(self) -> None:
        self._runs: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._runs)

    async def _load(self, run_id: str) -> Run | None:
        raw = self._runs.get(run_id)
        if raw is None:
            return None
        return Run.loads(raw)

    async def _store(self, run: Run) -> None:
        self._runs[run.id] = run.dumps()

    async def _remove(self, run_id: str) -> bool:
        return self._runs.pop(run_id, None) is not None
