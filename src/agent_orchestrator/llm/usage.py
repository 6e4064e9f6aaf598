"""Best-effort token usage extraction from provider payloads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class UsageExtraction:
    """Token usage reported by the provider, if any."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None
    usage_status: str

    @property
    def output_tokens(self) -> int:
        """Completion tokens, derived from total minus prompt when not reported."""

        if self.completion_tokens is not None:
            return self.completion_tokens
        if self.total_tokens is not None and self.prompt_tokens is not None:
            return max(self.total_tokens - self.prompt_tokens, 0)
        return 0


def extract_usage(payload: Any) -> UsageExtraction:
    """Read the OpenAI-style `usage` block from a response payload."""

    usage = payload.get("usage") if isinstance(payload, dict) else None
    if not isinstance(usage, dict):
        return UsageExtraction(
            prompt_tokens=None,
            completion_tokens=None,
            total_tokens=None,
            usage_status="unknown",
        )

    prompt = _as_int(usage.get("prompt_tokens"))
    completion = _as_int(usage.get("completion_tokens"))
    total = _as_int(usage.get("total_tokens"))
    if prompt is None and completion is None and total is None:
        return UsageExtraction(
            prompt_tokens=None,
            completion_tokens=None,
            total_tokens=None,
            usage_status="unknown",
        )
    if total is None:
        known = [value for value in (prompt, completion) if value is not None]
        total = sum(known) if known else None
    return UsageExtraction(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        usage_status="reported",
    )


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
