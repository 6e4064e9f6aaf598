"""Validated, time-bounded and metered calls to an OpenAI-compatible provider."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from agent_orchestrator.config import LlmSettings
from agent_orchestrator.errors import ConfigurationError, ProviderError, ValidationError
from agent_orchestrator.llm.embeddings import StubEmbedder, Vector
from agent_orchestrator.llm.pricing import estimate_cost_usd
from agent_orchestrator.llm.tokenizer import TokenCounter
from agent_orchestrator.llm.usage import extract_usage
from agent_orchestrator.metrics import MetricsEmitter, default_emitter
from agent_orchestrator.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

SUPPORTED_ROLES = ("system", "user", "assistant")
_ERROR_BODY_PREVIEW_CHARS = 500


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """One chat turn sent to the provider."""

    role: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class CallOptions:
    """Per-call overrides; unset fields fall back to settings."""

    model: str | None = None
    timeout_seconds: float | None = None
    retries: int | None = None


@dataclass(slots=True)
class ChatResult:
    """Provider reply with token and cost accounting."""

    reply: str
    model: str
    tokens_in: int
    tokens_out: int
    token_method: str
    cost_usd: float
    attempts: int
    usage_status: str


MessageInput = ChatMessage | dict[str, Any]
TokenCounterFactory = Callable[[str], TokenCounter]


def validate_messages(messages: Sequence[MessageInput] | None) -> list[ChatMessage]:
    """Normalize messages or raise `ValidationError`; no I/O happens here."""

    if not messages or isinstance(messages, (str, bytes)):
        raise ValidationError("messages must be a non-empty list")
    normalized: list[ChatMessage] = []
    for index, message in enumerate(messages):
        if isinstance(message, ChatMessage):
            role, content = message.role, message.content
        elif isinstance(message, dict):
            role, content = message.get("role", "user"), message.get("content")
        else:
            raise ValidationError(f"message #{index} must be a mapping with role and content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError(f"message #{index} must have a non-empty content string")
        if role not in SUPPORTED_ROLES:
            raise ValidationError(
                f"message #{index} has unsupported role {role!r}; "
                f"expected one of {', '.join(SUPPORTED_ROLES)}",
            )
        normalized.append(ChatMessage(role=role, content=content))
    return normalized


def validate_embedding_input(value: str | Sequence[str] | None) -> list[str]:
    if isinstance(value, str):
        inputs = [value]
    elif value is None or isinstance(value, bytes):
        inputs = []
    else:
        inputs = list(value)
    if not inputs:
        raise ValidationError("embedding input must be a non-empty string or list of strings")
    for index, item in enumerate(inputs):
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"embedding input #{index} must be a non-empty string")
    return inputs


class LlmAdapter:
    """Chat and embedding calls with validation, timeouts, retries and metering."""

    def __init__(
        self,
        settings: LlmSettings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        token_counter_factory: TokenCounterFactory = TokenCounter,
        emitter: MetricsEmitter | None = None,
        sleep: Sleep = asyncio.sleep,
        embedder: StubEmbedder | None = None,
    ) -> None:
        self.settings = settings or LlmSettings()
        self.emitter = emitter or default_emitter
        self.token_counter_factory = token_counter_factory
        self.sleep = sleep
        self.embedder = embedder or StubEmbedder()
        self._http_client = http_client
        self._owns_client = http_client is None
        self._token_counters: dict[str, TokenCounter] = {}

    async def __aenter__(self) -> LlmAdapter:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def token_counter(self, model: str) -> TokenCounter:
        """Cached counter for `model`; the first build runs in a worker thread.

        Loading an encoding reads (and may download) tokenizer files.
        """

        counter = self._token_counters.get(model)
        if counter is None:
            built = await asyncio.to_thread(self.token_counter_factory, model)
            counter = self._token_counters.setdefault(model, built)
        return counter

    async def call_chat(
        self,
        messages: Sequence[MessageInput],
        options: CallOptions | str | None = None,
    ) -> ChatResult:
        """Send one chat completion request.

        Validation and configuration errors are raised before any request is
        made. Provider failures (non-2xx, transport errors, timeouts, malformed
        JSON) are retried `retries` extra times; the last one is wrapped in
        `ProviderError`.
        """

        normalized = validate_messages(messages)
        resolved = _resolve_options(options)
        model = resolved.model or self.settings.model
        timeout_seconds = self._resolve_timeout(resolved)
        retries = self.settings.retries if resolved.retries is None else resolved.retries
        if retries < 0:
            raise ValidationError("retries must be >= 0")
        api_key = self._require_api_key()

        counted = (await self.token_counter(model)).count_messages(normalized)
        self.emitter.emit("llm_tokens_in", counted.tokens, {"model": model, "method": counted.method})

        url = f"{self.settings.base_url.rstrip('/')}/chat/completions"
        body = {"model": model, "messages": [message.to_payload() for message in normalized]}
        attempts = 0

        async def _attempt() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return await self._post_json(url, body, api_key=api_key, timeout_seconds=timeout_seconds)

        def _on_failure(attempt: int, error: BaseException, delay: float | None) -> None:
            self.emitter.emit("llm_provider_failures", 1, {"model": model})
            if delay is None:
                logger.warning("LLM call attempt %d/%d failed: %s", attempt, retries + 1, error)
                return
            logger.warning(
                "LLM call attempt %d/%d failed, retry in %.3fs: %s",
                attempt,
                retries + 1,
                delay,
                error,
            )

        policy = RetryPolicy.from_retries(
            retries,
            base_delay_seconds=self.settings.retry_base_seconds,
            retry_on=lambda error: isinstance(error, ProviderError),
            sleep=self.sleep,
        )
        try:
            payload = await policy.run(_attempt, on_failure=_on_failure)
        except ProviderError as error:
            raise ProviderError(
                f"LLM provider failed after {attempts} attempts: {error}",
                attempts=attempts,
                status_code=error.status_code,
                last_error=error,
            ) from error

        reply = _extract_reply(payload)
        usage = extract_usage(payload)
        tokens_out = usage.output_tokens
        self.emitter.emit("llm_tokens_out", tokens_out, {"model": model})
        estimate = estimate_cost_usd(
            model=model,
            prompt_tokens=counted.tokens,
            completion_tokens=tokens_out,
        )
        self.emitter.emit(
            "llm_cost_estimate_usd",
            round(estimate.cost_usd, 6),
            {"model": model, "pricing": estimate.pricing_source},
        )
        return ChatResult(
            reply=reply,
            model=model,
            tokens_in=counted.tokens,
            tokens_out=tokens_out,
            token_method=counted.method,
            cost_usd=estimate.cost_usd,
            attempts=attempts,
            usage_status=usage.usage_status,
        )

    async def call_embeddings(
        self,
        value: str | Sequence[str],
        options: CallOptions | str | None = None,
    ) -> list[Vector]:
        """Embed one or more strings; stub mode is local and deterministic.

        Provider mode makes a single time-bounded request without retries.
        """

        inputs = validate_embedding_input(value)
        resolved = _resolve_options(options)
        timeout_seconds = self._resolve_timeout(resolved)
        if self.settings.embeddings_provider == "stub":
            return self.embedder.embed(inputs)

        model = resolved.model or self.settings.embedding_model
        api_key = self._require_api_key()
        url = f"{self.settings.base_url.rstrip('/')}/embeddings"
        try:
            payload = await self._post_json(
                url,
                {"model": model, "input": inputs},
                api_key=api_key,
                timeout_seconds=timeout_seconds,
            )
        except ProviderError as error:
            error.attempts = 1
            raise
        data = payload.get("data")
        if not isinstance(data, list):
            raise ProviderError("embeddings provider returned no data", attempts=1)
        ordered = sorted(
            (item for item in data if isinstance(item, dict)),
            key=lambda item: item.get("index", 0),
        )
        return [[float(x) for x in item.get("embedding", [])] for item in ordered]

    async def _post_json(
        self,
        url: str,
        body: dict[str, Any],
        *,
        api_key: str,
        timeout_seconds: float,
    ) -> dict[str, Any]:
        client = self._client()
        try:
            response = await asyncio.wait_for(
                client.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {api_key}"},
                    timeout=timeout_seconds,
                ),
                timeout=timeout_seconds,
            )
        except TimeoutError as error:
            raise ProviderError(
                f"provider call timed out after {timeout_seconds}s",
                last_error=error,
            ) from error
        except httpx.TimeoutException as error:
            raise ProviderError(
                f"provider call timed out after {timeout_seconds}s",
                last_error=error,
            ) from error
        except httpx.HTTPError as error:
            raise ProviderError(f"provider transport error: {error}", last_error=error) from error

        if not response.is_success:
            raise ProviderError(
                f"provider returned {response.status_code}: "
                f"{response.text[:_ERROR_BODY_PREVIEW_CHARS]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise ProviderError(
                "provider returned invalid JSON",
                status_code=response.status_code,
                last_error=error,
            ) from error
        if not isinstance(payload, dict):
            raise ProviderError(
                "provider returned a non-object JSON payload",
                status_code=response.status_code,
            )
        return payload

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.timeout_seconds, connect=10.0),
            )
        return self._http_client

    def _resolve_timeout(self, options: CallOptions) -> float:
        if options.timeout_seconds is None:
            return self.settings.timeout_seconds
        if options.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be > 0")
        return options.timeout_seconds

    def _require_api_key(self) -> str:
        if not self.settings.api_key:
            raise ConfigurationError("OPENAI_API_KEY not configured")
        return self.settings.api_key


def _resolve_options(options: CallOptions | str | None) -> CallOptions:
    if options is None:
        return CallOptions()
    if isinstance(options, str):
        return CallOptions(model=options)
    return options


def _extract_reply(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return "" if content is None else str(content)
