from __future__ import annotations

import asyncio
import json
import time

import allure
import httpx
import pytest

from agent_orchestrator.config import LlmSettings
from agent_orchestrator.errors import ConfigurationError, ProviderError, ValidationError
from agent_orchestrator.llm.adapter import (
    CallOptions,
    ChatMessage,
    LlmAdapter,
    validate_messages,
)
from agent_orchestrator.llm.tokenizer import TokenCounter

pytestmark = [
    allure.epic("LLM Runtime"),
    allure.feature("Provider Calls"),
]

USER_MESSAGE = [{"role": "user", "content": "x" * 40}]


def _adapter(settings, provider, emitter, no_sleep, **kwargs) -> LlmAdapter:
    return LlmAdapter(
        settings,
        http_client=provider.client(),
        emitter=emitter,
        sleep=no_sleep,
        **kwargs,
    )


async def test_chat_success_returns_reply_and_accounting(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    recorder,
    no_sleep,
) -> None:
    provider = make_provider(
        make_chat_response("Hi there", usage={"prompt_tokens": 11, "completion_tokens": 20}),
    )
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    result = await adapter.call_chat(USER_MESSAGE)

    assert result.reply == "Hi there"
    assert result.model == "gpt-4o-mini"
    assert result.tokens_in == 10
    assert result.token_method == "estimate"
    assert result.tokens_out == 20
    assert result.usage_status == "reported"
    assert result.attempts == 1
    assert result.cost_usd == pytest.approx(10 / 1e6 * 30 + 20 / 1e6 * 60)
    assert recorder.values("llm_tokens_in") == [10]
    assert recorder.by_name("llm_tokens_in")[0].labels == {
        "model": "gpt-4o-mini",
        "method": "estimate",
    }
    assert recorder.values("llm_tokens_out") == [20]
    cost = recorder.by_name("llm_cost_estimate_usd")[0]
    assert cost.value == pytest.approx(0.0015)
    assert cost.labels == {"model": "gpt-4o-mini", "pricing": "table"}
    assert recorder.values("llm_provider_failures") == []


async def test_chat_request_shape(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    await adapter.call_chat(
        [ChatMessage(role="system", content="Be brief."), {"role": "user", "content": "hi"}],
        CallOptions(model="gpt-4o"),
    )

    request = provider.requests[0]
    assert str(request.url) == "https://llm.example.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert json.loads(request.content) == {
        "model": "gpt-4o",
        "messages": [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ],
    }


async def test_string_option_selects_model(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    result = await adapter.call_chat(USER_MESSAGE, "gpt-4o")

    assert result.model == "gpt-4o"


@pytest.mark.parametrize(
    "messages",
    [
        [],
        None,
        "hello",
        [{"role": "user", "content": "   "}],
        [{"role": "user"}],
        [{"role": "tool", "content": "hi"}],
        ["plain string"],
    ],
)
async def test_invalid_messages_raise_before_any_request(
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
    messages,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(LlmSettings(api_key=None), provider, emitter, no_sleep)

    with pytest.raises(ValidationError):
        await adapter.call_chat(messages)

    assert provider.calls == 0


async def test_negative_retries_rejected(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ValidationError, match="retries"):
        await adapter.call_chat(USER_MESSAGE, CallOptions(retries=-1))

    assert provider.calls == 0


@pytest.mark.parametrize("timeout_seconds", [0, -1.5])
async def test_non_positive_timeout_rejected(
    timeout_seconds,
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ValidationError, match="timeout_seconds"):
        await adapter.call_chat(USER_MESSAGE, CallOptions(timeout_seconds=timeout_seconds))

    assert provider.calls == 0


async def test_missing_api_key_is_configuration_error(
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response())
    adapter = _adapter(LlmSettings(api_key=None), provider, emitter, no_sleep)

    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        await adapter.call_chat(USER_MESSAGE)

    assert provider.calls == 0


async def test_retries_then_succeeds(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    recorder,
    no_sleep,
) -> None:
    provider = make_provider(
        httpx.Response(500, text="upstream down"),
        httpx.Response(503, text="busy"),
        make_chat_response("third time"),
    )
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    result = await adapter.call_chat(USER_MESSAGE)

    assert result.reply == "third time"
    assert result.attempts == 3
    assert provider.calls == 3
    assert no_sleep.delays == pytest.approx([0.1, 0.2])
    assert recorder.values("llm_provider_failures") == [1, 1]


async def test_exhausted_retries_raise_provider_error(
    llm_settings,
    make_provider,
    emitter,
    recorder,
    no_sleep,
) -> None:
    provider = make_provider(httpx.Response(502, text="bad gateway"))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await adapter.call_chat(USER_MESSAGE)

    error = excinfo.value
    assert provider.calls == 3
    assert error.attempts == 3
    assert error.status_code == 502
    assert "after 3 attempts" in str(error)
    assert "bad gateway" in str(error)
    assert isinstance(error.last_error, ProviderError)
    assert len(no_sleep.delays) == 2
    assert recorder.values("llm_provider_failures") == [1, 1, 1]
    assert recorder.values("llm_tokens_out") == []


async def test_zero_retries_makes_single_attempt(
    llm_settings,
    make_provider,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(httpx.Response(500, text="nope"))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await adapter.call_chat(USER_MESSAGE, CallOptions(retries=0))

    assert provider.calls == 1
    assert excinfo.value.attempts == 1
    assert no_sleep.delays == []


async def test_transport_error_is_retried_and_wrapped(
    llm_settings,
    make_provider,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(httpx.ConnectError("connection refused"))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ProviderError, match="transport error") as excinfo:
        await adapter.call_chat(USER_MESSAGE, CallOptions(retries=1))

    assert provider.calls == 2
    assert excinfo.value.status_code is None


async def test_slow_provider_times_out(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    async def _slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return make_chat_response()

    provider = make_provider(_slow)
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ProviderError, match="timed out") as excinfo:
        await adapter.call_chat(USER_MESSAGE, CallOptions(timeout_seconds=0.05, retries=0))

    assert excinfo.value.attempts == 1


async def test_invalid_json_body_is_provider_error(
    llm_settings,
    make_provider,
    emitter,
    no_sleep,
) -> None:
    provider = make_provider(httpx.Response(200, text="<html>oops</html>"))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    with pytest.raises(ProviderError, match="invalid JSON"):
        await adapter.call_chat(USER_MESSAGE, CallOptions(retries=0))


async def test_missing_choices_gives_empty_reply_and_unknown_usage(
    llm_settings,
    make_provider,
    emitter,
    recorder,
    no_sleep,
) -> None:
    provider = make_provider(httpx.Response(200, json={"id": "cmpl-1"}))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    result = await adapter.call_chat(USER_MESSAGE)

    assert result.reply == ""
    assert result.usage_status == "unknown"
    assert result.tokens_out == 0
    assert recorder.values("llm_tokens_out") == [0]


async def test_unknown_model_uses_fallback_pricing(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    recorder,
    no_sleep,
) -> None:
    provider = make_provider(make_chat_response(usage={"completion_tokens": 0}))
    adapter = _adapter(llm_settings, provider, emitter, no_sleep)

    result = await adapter.call_chat(USER_MESSAGE, "mystery-model")

    assert result.cost_usd == pytest.approx(10 / 1e6 * 50)
    assert recorder.by_name("llm_cost_estimate_usd")[0].labels["pricing"] == "fallback"


async def test_token_counter_factory_is_cached_per_model(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    built: list[str] = []

    def _factory(model: str) -> TokenCounter:
        built.append(model)
        return TokenCounter(model, loader=lambda name: None)

    provider = make_provider(make_chat_response())
    adapter = _adapter(llm_settings, provider, emitter, no_sleep, token_counter_factory=_factory)

    await adapter.call_chat(USER_MESSAGE)
    await adapter.call_chat(USER_MESSAGE)
    await adapter.call_chat(USER_MESSAGE, "gpt-4o")

    assert built == ["gpt-4o-mini", "gpt-4o"]


async def test_injected_client_is_not_closed(llm_settings, make_provider, emitter) -> None:
    provider = make_provider(httpx.Response(200, json={}))
    client = provider.client()

    async with LlmAdapter(llm_settings, http_client=client, emitter=emitter):
        pass

    assert client.is_closed is False
    await client.aclose()


def test_validate_messages_defaults_role_to_user() -> None:
    assert validate_messages([{"content": "hi"}]) == [ChatMessage(role="user", content="hi")]


async def test_encoding_load_does_not_block_event_loop(
    llm_settings,
    make_provider,
    make_chat_response,
    emitter,
    no_sleep,
) -> None:
    def _slow_loader(model: str) -> None:
        time.sleep(0.3)

    provider = make_provider(make_chat_response("ok"))
    adapter = _adapter(
        llm_settings,
        provider,
        emitter,
        no_sleep,
        token_counter_factory=lambda model: TokenCounter(model, loader=_slow_loader),
    )
    ticks: list[float] = []
    done = asyncio.Event()

    async def _ticker() -> None:
        while not done.is_set():
            ticks.append(time.monotonic())
            await asyncio.sleep(0.01)

    async def _call() -> str:
        try:
            return (await adapter.call_chat(USER_MESSAGE)).reply
        finally:
            done.set()

    _, reply = await asyncio.gather(_ticker(), _call())

    assert reply == "ok"
    gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:], strict=False)]
    assert len(ticks) > 5
    assert max(gaps) < 0.2
