"""Exponential backoff with jitter for async operations."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
FailureCallback = Callable[[int, BaseException, float | None], None]
Sleep = Callable[[float], Awaitable[None]]


def _retry_everything(_: BaseException) -> bool:
    return True


@dataclass(slots=True)
class RetryPolicy:
    """Bounded retry loop: `attempts` total calls, backoff `base * 2**(n-1) + jitter`."""

    attempts: int
    base_delay_seconds: float
    jitter_seconds: float = 0.0
    max_delay_seconds: float | None = None
    retry_on: RetryPredicate = _retry_everything
    sleep: Sleep = asyncio.sleep
    _random: random.Random = field(default_factory=random.Random, repr=False)  # noqa: S311

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be >= 1.")
        if self.base_delay_seconds < 0 or self.jitter_seconds < 0:
            raise ValueError("RetryPolicy delays must be >= 0.")

    @classmethod
    def from_retries(
        cls,
        retries: int,
        *,
        base_delay_seconds: float,
        retry_on: RetryPredicate = _retry_everything,
        sleep: Sleep = asyncio.sleep,
    ) -> RetryPolicy:
        """Build a policy from a retry budget (extra attempts after the first)."""

        return cls(
            attempts=max(retries, 0) + 1,
            base_delay_seconds=base_delay_seconds,
            retry_on=retry_on,
            sleep=sleep,
        )

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after failed `attempt` (1-based)."""

        delay = self.base_delay_seconds * (2 ** max(attempt - 1, 0))
        if self.jitter_seconds > 0:
            delay += self._random.uniform(0, self.jitter_seconds)
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        on_failure: FailureCallback | None = None,
    ) -> T:
        """Call `operation` until it succeeds or the attempt budget is spent.

        Errors rejected by `retry_on` propagate immediately. After the last
        attempt the final error is re-raised unchanged so callers can wrap it.
        """

        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as error:
                if not self.retry_on(error):
                    raise
                is_last = attempt >= self.attempts
                delay = None if is_last else self.compute_delay(attempt)
                if on_failure is not None:
                    on_failure(attempt, error, delay)
                if delay is None:
                    raise
                await self.sleep(delay)
