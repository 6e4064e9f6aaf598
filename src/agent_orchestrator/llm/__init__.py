"""LLM invocation: adapter, tokenizer, pricing, usage and stub embeddings."""

from agent_orchestrator.llm.adapter import (
    CallOptions,
    ChatMessage,
    ChatResult,
    LlmAdapter,
    validate_embedding_input,
    validate_messages,
)
from agent_orchestrator.llm.embeddings import STUB_DIMENSIONS, StubEmbedder
from agent_orchestrator.llm.pricing import CostEstimate, ModelPricing, estimate_cost_usd
from agent_orchestrator.llm.tokenizer import TokenCount, TokenCounter

__all__ = [
    "STUB_DIMENSIONS",
    "CallOptions",
    "ChatMessage",
    "ChatResult",
    "CostEstimate",
    "LlmAdapter",
    "ModelPricing",
    "StubEmbedder",
    "TokenCount",
    "TokenCounter",
    "estimate_cost_usd",
    "validate_embedding_input",
    "validate_messages",
]
