"""Persistence backend contract for run state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol

from agent_orchestrator.errors import RunNotFound, StateConflict
from agent_orchestrator.state.models import Run, RunStatus, describe_error


class StateBackend(Protocol):
    """Operations every run-state backend provides."""

    async def create(self, run_id: str) -> Run: ...

    async def get(self, run_id: str) -> Run | None: ...

    async def start(self, run_id: str) -> Run: ...

    async def complete(self, run_id: str, result: Any = None) -> Run: ...

    async def fail(self, run_id: str, error: BaseException | str) -> Run: ...

    async def delete(self, run_id: str) -> bool: ...

    async def close(self) -> None: ...


class TransitionBackend(ABC):
    """Read -> validate -> write state machine over storage primitives.

    Subclasses provide `_load`, `_store` and `_remove`. Nothing here serializes
    concurrent writers: two transitions on the same id race and the last write
    wins.
    """

    async def create(self, run_id: str) -> Run:
        existing = await self._load(run_id)
        if existing is not None:
            raise StateConflict(
                f"Run {run_id!r} already exists.",
                run_id=run_id,
                current=existing.status.value,
                requested=RunStatus.PENDING.value,
            )
        run = Run.new(run_id)
        await self._store(run)
        return run

    async def get(self, run_id: str) -> Run | None:
        return await self._load(run_id)

    async def start(self, run_id: str) -> Run:
        return await self._advance(run_id, RunStatus.RUNNING)

    async def complete(self, run_id: str, result: Any = None) -> Run:
        return await self._advance(run_id, RunStatus.COMPLETED, result=result)

    async def fail(self, run_id: str, error: BaseException | str) -> Run:
        return await self._advance(run_id, RunStatus.FAILED, error=describe_error(error))

    async def delete(self, run_id: str) -> bool:
        return await self._remove(run_id)

    async def close(self) -> None:
        return None

    async def _advance(
        self,
        run_id: str,
        status: RunStatus,
        *,
        result: Any = None,
        error: str | None = None,
    ) -> Run:
        current = await self._load(run_id)
        if current is None:
            raise RunNotFound(
                f"Run {run_id!r} not found.",
                run_id=run_id,
                requested=status.value,
            )
        updated = current.transition(status, result=result, error=error)
        await self._store(updated)
        return updated

    @abstractmethod
    async def _load(self, run_id: str) -> Run | None:
        """Return the stored run or None when absent."""

    @abstractmethod
    async def _store(self, run: Run) -> None:
        """Persist one run snapshot, replacing any previous one."""

    @abstractmethod
    async def _remove(self, run_id: str) -> bool:
        """Delete one run; True when something was removed."""
