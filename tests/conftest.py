"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

import agent_orchestrator.llm.tokenizer as tokenizer_module
from agent_orchestrator.config import LlmSettings
from agent_orchestrator.metrics import MetricsEmitter, MetricsRecorder

_ENV_KEYS = (
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_EMBEDDING_MODEL",
    "EMBEDDINGS_PROVIDER",
    "REDIS_URL",
    "AGENT_ORCHESTRATOR_REDIS_URL",
    "AGENT_ORCHESTRATOR_REQUIRE_REDIS",
    "AGENT_ORCHESTRATOR_REDIS_CONNECT_ATTEMPTS",
    "AGENT_ORCHESTRATOR_REDIS_CONNECT_BASE_DELAY_SECONDS",
    "AGENT_ORCHESTRATOR_REDIS_CONNECT_JITTER_SECONDS",
    "AGENT_ORCHESTRATOR_STATE_KEY_PREFIX",
    "AGENT_ORCHESTRATOR_LLM_BASE_URL",
    "AGENT_ORCHESTRATOR_LLM_TIMEOUT_SECONDS",
    "AGENT_ORCHESTRATOR_LLM_RETRIES",
    "AGENT_ORCHESTRATOR_LLM_RETRY_BASE_SECONDS",
    "AGENT_ORCHESTRATOR_LLM_PRICING",
    "AGENT_ORCHESTRATOR_MAX_CONTEXT_TOKENS",
    "AGENT_ORCHESTRATOR_METRICS_EXPORT_INTERVAL_SECONDS",
    "METRICS_BACKEND",
    "OTEL_SERVICE_NAME",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ambient configuration so tests see defaults only."""

    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _offline_tokenizer(monkeypatch: pytest.MonkeyPatch) -> None:
    """Never download tokenizer files; counters run in estimate mode."""

    monkeypatch.setattr(tokenizer_module, "load_encoding", lambda model: None)


class FakeRemoteStore:
    """In-process stand-in satisfying the remote store client protocol."""

    def __init__(self, ping_responses: list[Any] | None = None) -> None:
        self.data: dict[str, str] = {}
        self.ping_responses = list(ping_responses or [True])
        self.ping_calls = 0
        self.closed = False

    async def get(self, name: str) -> str | None:
        return self.data.get(name)

    async def set(self, name: str, value: str) -> bool:
        self.data[name] = value
        return True

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.data.pop(name, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> Any:
        self.ping_calls += 1
        response = self.ping_responses[min(self.ping_calls, len(self.ping_responses)) - 1]
        if isinstance(response, BaseException):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_store() -> FakeRemoteStore:
    return FakeRemoteStore()


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def emitter() -> MetricsEmitter:
    return MetricsEmitter()


@pytest.fixture()
def recorder(emitter: MetricsEmitter) -> MetricsRecorder:
    return MetricsRecorder().attach(emitter)


@pytest.fixture()
def llm_settings() -> LlmSettings:
    return LlmSettings(
        api_key="sk-test",
        base_url="https://llm.example.test/v1",
        model="gpt-4o-mini",
        timeout_seconds=5.0,
        retries=2,
        retry_base_seconds=0.1,
    )


class ProviderStub:
    """Scripted provider: each call pops the next response or exception."""

    def __init__(self, *responses: httpx.Response | Exception | Callable[..., Any]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response(request)
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def chat_response(
    reply: str = "Hello!",
    *,
    usage: dict[str, int] | None = None,
    status_code: int = 200,
) -> httpx.Response:
    payload: dict[str, Any] = {"choices": [{"message": {"role": "assistant", "content": reply}}]}
    if usage is not None:
        payload["usage"] = usage
    return httpx.Response(status_code, json=payload)


@pytest.fixture()
def make_store() -> type[FakeRemoteStore]:
    return FakeRemoteStore


@pytest.fixture()
def make_provider() -> type[ProviderStub]:
    return ProviderStub


@pytest.fixture()
def make_chat_response() -> Callable[..., httpx.Response]:
    return chat_response


class FakeInstrument:
    """Records every `add`/`set` call made on a meter instrument."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        self.calls: list[tuple[float, dict[str, Any]]] = []

    def add(self, amount: float, attributes: dict[str, Any] | None = None) -> None:
        self.calls.append((amount, dict(attributes or {})))

    def set(self, amount: float, attributes: dict[str, Any] | None = None) -> None:
        self.calls.append((amount, dict(attributes or {})))


class FakeMeter:
    """Meter stand-in handing out recording instruments."""

    def __init__(self) -> None:
        self.instruments: dict[str, FakeInstrument] = {}
        self.created: list[str] = []

    def create_counter(self, name: str, **_: Any) -> FakeInstrument:
        return self._create("counter", name)

    def create_gauge(self, name: str, **_: Any) -> FakeInstrument:
        return self._create("gauge", name)

    def _create(self, kind: str, name: str) -> FakeInstrument:
        self.created.append(name)
        instrument = self.instruments[name] = FakeInstrument(kind, name)
        return instrument


@pytest.fixture()
def fake_meter() -> FakeMeter:
    return FakeMeter()
