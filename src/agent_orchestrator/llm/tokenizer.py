"""Token counting with explicit exact/estimate capability reporting."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import tiktoken

logger = logging.getLogger(__name__)

TokenMethod = Literal["exact", "estimate", "unknown"]
FALLBACK_ENCODING = "cl100k_base"
CHARS_PER_TOKEN = 4


class Encoding(Protocol):
    def encode(self, text: str) -> list[int]: ...


EncodingLoader = Callable[[str], Encoding | None]


@dataclass(slots=True, frozen=True)
class TokenCount:
    """Token count plus the method that produced it."""

    tokens: int
    method: TokenMethod


_ENCODING_CACHE: dict[str, Encoding | None] = {}


def load_encoding(model: str) -> Encoding | None:
    """Resolve a tiktoken encoding for `model`, or None when none can be loaded.

    Unknown models use `cl100k_base`. Encoding files are fetched on first use,
    so offline environments end up with None and estimate mode.
    """

    if model in _ENCODING_CACHE:
        return _ENCODING_CACHE[model]
    encoding: Encoding | None
    try:
        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            encoding = tiktoken.get_encoding(FALLBACK_ENCODING)
    except (OSError, ValueError) as error:
        logger.warning("Exact tokenizer unavailable for %s, using estimate: %s", model, error)
        encoding = None
    _ENCODING_CACHE[model] = encoding
    return encoding


def estimate_tokens(text: str) -> int:
    """Character heuristic: one token per four characters, at least one."""

    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))


class TokenCounter:
    """Counts tokens exactly when an encoder is available, otherwise estimates."""

    def __init__(self, model: str = "gpt-4o-mini", *, loader: EncodingLoader | None = None) -> None:
        self.model = model
        self._encoding = (loader or load_encoding)(model)

    @property
    def capability(self) -> TokenMethod:
        return "exact" if self._encoding is not None else "estimate"

    def count_text(self, text: str) -> TokenCount:
        if not text:
            return TokenCount(tokens=0, method="unknown")
        if self._encoding is not None:
            try:
                return TokenCount(tokens=len(self._encoding.encode(text)), method="exact")
            except ValueError as error:
                logger.debug("Exact encode failed, using estimate: %s", error)
        return TokenCount(tokens=estimate_tokens(text), method="estimate")

    def count_messages(self, messages: Iterable[Any]) -> TokenCount:
        """Sum content tokens; exact wins over estimate, estimate over unknown."""

        total = 0
        methods: set[str] = set()
        for message in messages:
            content = message.get("content", "") if isinstance(message, dict) else message.content
            counted = self.count_text(content or "")
            total += counted.tokens
            methods.add(counted.method)
        method: TokenMethod = "unknown"
        if "exact" in methods:
            method = "exact"
        elif "estimate" in methods:
            method = "estimate"
        return TokenCount(tokens=total, method=method)
