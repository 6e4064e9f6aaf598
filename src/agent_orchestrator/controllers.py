"""Controllers for CLI commands."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace

from agent_orchestrator.config import Settings
from agent_orchestrator.controller import ExecutionController, RunInput, RunResult
from agent_orchestrator.llm.adapter import CallOptions, LlmAdapter
from agent_orchestrator.llm.tokenizer import TokenCounter
from agent_orchestrator.metrics import MetricsEmitter, MetricsRecorder
from agent_orchestrator.state.bootstrap import StateBootstrapOptions, StateRuntime
from agent_orchestrator.state.manager import StateManager
from agent_orchestrator.telemetry import create_metrics_exporter

EMBED_PREVIEW_COORDINATES = 4


@dataclass(slots=True)
class ChatCommand:
    """CLI input for one tracked chat turn."""

    message: str
    system_prompt: str
    workspace_id: str
    model: str | None = None
    redis_url: str | None = None


@dataclass(slots=True)
class EmbedCommand:
    """CLI input for embedding one or more texts."""

    texts: tuple[str, ...]
    model: str | None = None
    stub: bool = False


@dataclass(slots=True)
class TokensCommand:
    """CLI input for token counting."""

    text: str
    model: str | None = None


@dataclass(slots=True)
class StateCheckCommand:
    """CLI input for state backend bootstrap check."""

    redis_url: str | None = None
    require_redis: bool | None = None
    connect_attempts: int | None = None


class OrchestratorCliController:
    """Wires settings, state runtime and LLM adapter for CLI operations."""

    def chat(self, command: ChatCommand) -> list[str]:
        return asyncio.run(self._chat(command))

    def embed(self, command: EmbedCommand) -> list[str]:
        return asyncio.run(self._embed(command))

    def tokens(self, command: TokensCommand) -> list[str]:
        settings = Settings.from_env()
        model = command.model or settings.llm.model
        counted = TokenCounter(model).count_text(command.text)
        return [f"Tokens: {counted.tokens} method={counted.method} model={model}"]

    def state_check(self, command: StateCheckCommand) -> list[str]:
        return asyncio.run(self._state_check(command))

    async def _chat(self, command: ChatCommand) -> list[str]:
        settings = Settings.from_env()
        emitter = MetricsEmitter()
        recorder = MetricsRecorder().attach(emitter)
        exporter = create_metrics_exporter(settings.metrics)
        if exporter is not None:
            exporter.attach(emitter)
        try:
            result, manager = await self._run_chat(command, settings, emitter)
        finally:
            if exporter is not None:
                exporter.shutdown()

        failures = sum(recorder.values("llm_provider_failures"))
        return [
            result.reply,
            "",
            f"Run: {result.run_id} backend={manager.kind.value} model={result.model}",
            "Tokens: "
            f"in={result.tokens_in} ({result.token_method}) out={result.tokens_out} "
            f"cost_usd={result.cost_estimate_usd:.6f} provider_failures={int(failures)}",
        ]

    async def _run_chat(
        self,
        command: ChatCommand,
        settings: Settings,
        emitter: MetricsEmitter,
    ) -> tuple[RunResult, StateManager]:
        runtime = StateRuntime(settings, emitter=emitter)
        manager = await runtime.init(
            StateBootstrapOptions.from_settings(settings.state, redis_url=command.redis_url),
        )
        try:
            async with LlmAdapter(settings.llm, emitter=emitter) as adapter:
                controller = ExecutionController(
                    manager,
                    adapter,
                    model=command.model,
                    max_context_tokens=settings.context.max_context_tokens,
                    safety_margin=settings.context.safety_margin,
                    emitter=emitter,
                )
                result = await controller.run_chat(
                    RunInput(workspace_id=command.workspace_id, message=command.message),
                    command.system_prompt,
                )
        finally:
            await runtime.close()
        return result, manager

    async def _embed(self, command: EmbedCommand) -> list[str]:
        settings = Settings.from_env()
        llm_settings = settings.llm
        if command.stub:
            llm_settings = replace(llm_settings, embeddings_provider="stub")
        async with LlmAdapter(llm_settings) as adapter:
            vectors = await adapter.call_embeddings(
                list(command.texts),
                CallOptions(model=command.model),
            )
        lines: list[str] = []
        for text, vector in zip(command.texts, vectors, strict=False):
            preview = ", ".join(f"{value:.6f}" for value in vector[:EMBED_PREVIEW_COORDINATES])
            lines.append(f"{text!r}: dim={len(vector)} [{preview}, ...]")
        return lines

    async def _state_check(self, command: StateCheckCommand) -> list[str]:
        settings = Settings.from_env()
        options = StateBootstrapOptions.from_settings(
            settings.state,
            redis_url=command.redis_url,
            require_redis=command.require_redis,
            connect_attempts=command.connect_attempts,
        )
        runtime = StateRuntime(settings)
        manager = await runtime.init(options)
        try:
            return [f"State backend: {manager.kind.value}"]
        finally:
            await runtime.close()
