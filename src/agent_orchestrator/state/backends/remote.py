"""Remote key-value run state backend (Redis-shaped client)."""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from agent_orchestrator.errors import CorruptState
from agent_orchestrator.state.backends.base import TransitionBackend
from agent_orchestrator.state.models import Run

DEFAULT_KEY_PREFIX = "state:"


@runtime_checkable
class RemoteStoreClient(Protocol):
    """Minimal client capability set; `redis.asyncio.Redis` satisfies it."""

    async def get(self, name: str) -> Any: ...

    async def set(self, name: str, value: str) -> Any: ...

    async def delete(self, *names: str) -> int: ...

    async def ping(self) -> Any: ...

    async def aclose(self) -> None: ...


class RedisStateBackend(TransitionBackend):
    """Stores each run as compact JSON under `{prefix}{run_id}`.

    Transitions are read-then-write without compare-and-swap; concurrent
    transitions (including two creates) on one id are last-writer-wins.
    """

    def __init__(self, client: RemoteStoreClient, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        self.client = client
        self.key_prefix = key_prefix

    def key(self, run_id: str) -> str:
        return f"{self.key_prefix}{run_id}"

    async def close(self) -> None:
        await self.client.aclose()

    async def _load(self, run_id: str) -> Run | None:
        raw = await self.client.get(self.key(run_id))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return Run.loads(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
            raise CorruptState(
                f"Stored state for run {run_id!r} is not a valid run record.",
                run_id=run_id,
            ) from error

    async def _store(self, run: Run) -> None:
        await self.client.set(self.key(run.id), run.dumps())

    async def _remove(self, run_id: str) -> bool:
        removed = await self.client.delete(self.key(run_id))
        return bool(removed)
