"""Prompt composition and token-budget trimming."""

from __future__ import annotations

import math
from collections.abc import Sequence

from agent_orchestrator.llm.adapter import ChatMessage
from agent_orchestrator.llm.tokenizer import TokenCounter


class ContextWindowManager:
    """Builds chat messages and trims them to a model's context budget."""

    def __init__(self, token_counter: TokenCounter) -> None:
        self.token_counter = token_counter

    def build_prompt(
        self,
        history: Sequence[str],
        system_prompt: str,
        user_message: str,
    ) -> list[ChatMessage]:
        """System prompt first, then prior turns, then the new user message."""

        messages: list[ChatMessage] = []
        if system_prompt.strip():
            messages.append(ChatMessage(role="system", content=system_prompt))
        messages.extend(ChatMessage(role="user", content=turn) for turn in history if turn.strip())
        messages.append(ChatMessage(role="user", content=user_message))
        return messages

    def enforce_token_budget(
        self,
        messages: Sequence[ChatMessage],
        max_tokens: int,
        safety_margin: float = 0.05,
    ) -> list[ChatMessage]:
        """Keep the system message and the newest turns that fit the budget.

        When not even the newest turn fits, only the last message is returned.
        """

        if not messages:
            return []
        effective_max = math.floor(max_tokens * (1 - safety_margin))
        if self.token_counter.count_messages(messages).tokens <= effective_max:
            return list(messages)

        remaining = effective_max
        head: list[ChatMessage] = []
        rest = list(messages)
        if rest[0].role == "system":
            system = rest.pop(0)
            system_tokens = self._tokens(system)
            if system_tokens <= remaining:
                head.append(system)
                remaining -= system_tokens

        tail: list[ChatMessage] = []
        for message in reversed(rest):
            tokens = self._tokens(message)
            if tokens > remaining:
                break
            tail.insert(0, message)
            remaining -= tokens

        if not tail:
            return [messages[-1]]
        return head + tail

    def _tokens(self, message: ChatMessage) -> int:
        return self.token_counter.count_text(message.content).tokens
