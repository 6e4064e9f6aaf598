"""Execution controller: one chat turn tracked as a run."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any
from uuid import uuid4

from agent_orchestrator.context_window import ContextWindowManager
from agent_orchestrator.llm.adapter import CallOptions, LlmAdapter
from agent_orchestrator.metrics import MetricsEmitter, default_emitter
from agent_orchestrator.state.bootstrap import StateRuntime
from agent_orchestrator.state.manager import StateManager
from agent_orchestrator.state.models import RunStatus

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_TOKENS = 8_000


def new_run_id() -> str:
    """Run ids are assigned here, never by callers."""

    return f"exec:{uuid4().hex}"


@dataclass(slots=True)
class RunInput:
    """Caller input for one chat turn."""

    workspace_id: str
    message: str
    user_id: str | None = None
    history: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class RunResult:
    """Reply and accounting for a completed run."""

    run_id: str
    reply: str
    model: str
    tokens_in: int
    tokens_out: int
    token_method: str
    cost_estimate_usd: float

    def to_record(self) -> dict[str, Any]:
        """Payload stored on the completed run (run id is the key already)."""

        record = asdict(self)
        record.pop("run_id")
        return record


class ExecutionController:
    """create -> start -> call provider -> complete, or fail and re-raise."""

    def __init__(  # noqa: PLR0913
        self,
        state_manager: StateManager,
        adapter: LlmAdapter,
        *,
        context_window: ContextWindowManager | None = None,
        model: str | None = None,
        max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
        safety_margin: float = 0.05,
        emitter: MetricsEmitter | None = None,
        id_factory: Callable[[], str] = new_run_id,
    ) -> None:
        self.state_manager = state_manager
        self.adapter = adapter
        self.model = model or adapter.settings.model
        self.context_window = context_window
        self.max_context_tokens = max_context_tokens
        self.safety_margin = safety_margin
        self.emitter = emitter or default_emitter
        self.id_factory = id_factory

    @classmethod
    def from_runtime(
        cls,
        runtime: StateRuntime,
        adapter: LlmAdapter,
        **kwargs: Any,
    ) -> ExecutionController:
        """Bind to an initialized runtime; raises `NotInitialized` otherwise."""

        return cls(runtime.get(), adapter, **kwargs)

    async def run_chat(self, run_input: RunInput, composed_prompt: str) -> RunResult:
        """Run one chat turn end-to-end.

        Every error after the run is created moves a running run to `failed`
        before it propagates; nothing is swallowed.
        """

        run_id = self.id_factory()
        await self.state_manager.create(run_id)
        try:
            await self.state_manager.start(run_id)
            window = await self._window()
            messages = window.build_prompt(
                run_input.history,
                composed_prompt,
                run_input.message,
            )
            messages = window.enforce_token_budget(
                messages,
                self.max_context_tokens,
                self.safety_margin,
            )
            chat = await self.adapter.call_chat(messages, CallOptions(model=self.model))
            result = RunResult(
                run_id=run_id,
                reply=chat.reply,
                model=chat.model,
                tokens_in=chat.tokens_in,
                tokens_out=chat.tokens_out,
                token_method=chat.token_method,
                cost_estimate_usd=chat.cost_usd,
            )
            await self.state_manager.complete(run_id, result.to_record())
        except Exception as error:
            await self._record_failure(run_id, error)
            raise

        self.emitter.emit(
            "run_completed",
            1,
            {"model": result.model, "workspace_id": run_input.workspace_id},
        )
        return result

    async def _window(self) -> ContextWindowManager:
        if self.context_window is None:
            counter = await self.adapter.token_counter(self.model)
            self.context_window = ContextWindowManager(counter)
        return self.context_window

    async def _record_failure(self, run_id: str, error: Exception) -> None:
        try:
            current = await self.state_manager.get(run_id)
            if current is None or current.status != RunStatus.RUNNING:
                logger.warning(
                    "Run %s failed outside the running state (%s): %s",
                    run_id,
                    current.status.value if current is not None else "missing",
                    error,
                )
                return
            await self.state_manager.fail(run_id, error)
        except Exception:
            logger.exception("Could not record failure for run %s", run_id)
        else:
            logger.warning("Run %s failed: %s", run_id, error)
