"""Select, health-check and cache the process run-state manager."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

import redis.asyncio as redis_asyncio

from agent_orchestrator.config import Settings, StateSettings
from agent_orchestrator.errors import NotInitialized, OrchestratorError
from agent_orchestrator.metrics import MetricsEmitter
from agent_orchestrator.retry import RetryPolicy, Sleep
from agent_orchestrator.state.backends.memory import InMemoryStateBackend
from agent_orchestrator.state.backends.remote import RedisStateBackend, RemoteStoreClient
from agent_orchestrator.state.manager import BackendKind, StateManager

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], RemoteStoreClient]


@dataclass(slots=True)
class UnexpectedPing(OrchestratorError):
    """Health check returned something other than PONG."""

    code: str = "unexpected_ping"


@dataclass(slots=True)
class StateBootstrapOptions:
    """Backend selection inputs; every field can be overridden per call."""

    redis_url: str | None = None
    require_redis: bool = False
    connect_attempts: int = 3
    connect_base_delay_seconds: float = 0.2
    connect_jitter_seconds: float = 0.1
    key_prefix: str = "state:"

    @classmethod
    def from_settings(cls, settings: StateSettings, **overrides: object) -> StateBootstrapOptions:
        options = cls(
            redis_url=settings.redis_url,
            require_redis=settings.require_redis,
            connect_attempts=settings.connect_attempts,
            connect_base_delay_seconds=settings.connect_base_delay_seconds,
            connect_jitter_seconds=settings.connect_jitter_seconds,
            key_prefix=settings.key_prefix,
        )
        for name, value in overrides.items():
            if value is None:
                continue
            if not hasattr(options, name):
                raise TypeError(f"Unknown bootstrap option: {name}")
            setattr(options, name, value)
        return options


def default_client_factory(url: str) -> RemoteStoreClient:
    """Build a lazily-connecting `redis.asyncio` client returning str values."""

    return redis_asyncio.from_url(url, decode_responses=True)


async def build_state_manager(
    options: StateBootstrapOptions,
    *,
    client_factory: ClientFactory = default_client_factory,
    emitter: MetricsEmitter | None = None,
    sleep: Sleep = asyncio.sleep,
) -> StateManager:
    """Construct a state manager, preferring Redis and degrading to memory.

    With `require_redis` set, the last connection error propagates instead of
    falling back.
    """

    if not options.redis_url:
        logger.info("No Redis URL configured; using in-memory run state")
        return _memory_manager(emitter)

    redacted = _redact_url(options.redis_url)
    try:
        client = client_factory(options.redis_url)
    except Exception as error:
        if options.require_redis:
            raise
        logger.warning(
            "Redis client construction failed for %s (continuing with in-memory state): %s",
            redacted,
            error,
        )
        return _memory_manager(emitter)

    policy = RetryPolicy(
        attempts=options.connect_attempts,
        base_delay_seconds=options.connect_base_delay_seconds,
        jitter_seconds=options.connect_jitter_seconds,
        sleep=sleep,
    )

    def _log_failure(attempt: int, error: BaseException, delay: float | None) -> None:
        if delay is None:
            logger.warning(
                "Redis health check %d/%d failed for %s: %s",
                attempt,
                options.connect_attempts,
                redacted,
                error,
            )
            return
        logger.warning(
            "Redis health check %d/%d failed for %s, retry in %.3fs: %s",
            attempt,
            options.connect_attempts,
            redacted,
            delay,
            error,
        )

    try:
        await policy.run(lambda: check_health(client), on_failure=_log_failure)
    except Exception as error:
        await _release(client)
        if options.require_redis:
            raise
        logger.warning(
            "Redis health check failed (continuing with in-memory state): %s",
            error,
        )
        return _memory_manager(emitter)

    logger.info("Redis connected: %s", redacted)
    return StateManager(
        RedisStateBackend(client, key_prefix=options.key_prefix),
        kind=BackendKind.REDIS,
        emitter=emitter,
    )


async def check_health(client: RemoteStoreClient) -> None:
    """Ping the store; anything but PONG/True is a failed check."""

    pong = await client.ping()
    if pong is True:
        return
    if isinstance(pong, bytes):
        pong = pong.decode("utf-8", errors="replace")
    if isinstance(pong, str) and pong.strip().upper() == "PONG":
        return
    raise UnexpectedPing(f"Redis ping unexpected response: {pong!r}")


class StateRuntime:
    """Holds the one state manager for a process.

    Create once at startup and pass it to handlers. `init` is lazy and cached,
    `close` releases the backend so a later `init` rebuilds it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client_factory: ClientFactory = default_client_factory,
        emitter: MetricsEmitter | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.client_factory = client_factory
        self.emitter = emitter
        self.sleep = sleep
        self._manager: StateManager | None = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._manager is not None

    async def init(self, options: StateBootstrapOptions | None = None) -> StateManager:
        """Build the manager on first call; later calls return the cached one."""

        async with self._lock:
            if self._manager is not None:
                return self._manager
            resolved = options or self._default_options()
            self._manager = await build_state_manager(
                resolved,
                client_factory=self.client_factory,
                emitter=self.emitter,
                sleep=self.sleep,
            )
            return self._manager

    def get(self) -> StateManager:
        if self._manager is None:
            raise NotInitialized("State manager not initialized; call init() first.")
        return self._manager

    async def close(self) -> None:
        async with self._lock:
            manager, self._manager = self._manager, None
            if manager is None:
                return
            try:
                await manager.close()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to close %s state backend", manager.kind.value, exc_info=True)

    def _default_options(self) -> StateBootstrapOptions:
        settings = self.settings or Settings.from_env()
        return StateBootstrapOptions.from_settings(settings.state)


def _memory_manager(emitter: MetricsEmitter | None) -> StateManager:
    return StateManager(InMemoryStateBackend(), kind=BackendKind.MEMORY, emitter=emitter)


async def _release(client: RemoteStoreClient) -> None:
    try:
        await client.aclose()
    except Exception:  # noqa: BLE001
        logger.debug("Ignoring error while closing failed Redis client", exc_info=True)


def _redact_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.password is None:
        return url
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@")
    return parsed._replace(netloc=netloc).geturl()
