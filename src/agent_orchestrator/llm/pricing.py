"""Token cost estimation for provider calls."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV = "AGENT_ORCHESTRATOR_LLM_PRICING"


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-4o-mini": ModelPricing(input_per_1m=30.0, output_per_1m=60.0),
    "gpt-4o": ModelPricing(input_per_1m=60.0, output_per_1m=120.0),
    "text-embedding-3-small": ModelPricing(input_per_1m=10.0, output_per_1m=10.0),
}
FALLBACK_PRICING = ModelPricing(input_per_1m=50.0, output_per_1m=100.0)


@dataclass(slots=True, frozen=True)
class CostEstimate:
    """Estimated spend for one call and where its pricing came from."""

    cost_usd: float
    model: str
    pricing: ModelPricing
    pricing_source: str


def estimate_cost_usd(
    *,
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
) -> CostEstimate:
    """Estimate call cost in USD; unknown models use fallback pricing."""

    pricing, source = lookup_pricing(model)
    cost = (prompt_tokens / 1_000_000) * pricing.input_per_1m + (
        completion_tokens / 1_000_000
    ) * pricing.output_per_1m
    return CostEstimate(cost_usd=cost, model=model, pricing=pricing, pricing_source=source)


def lookup_pricing(model: str) -> tuple[ModelPricing, str]:
    """Resolve pricing: env override (exact, then `*`), built-in table, fallback."""

    overrides = _parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    normalized = model.strip()
    direct = overrides.get(normalized)
    if direct is not None:
        return direct, "override"
    table = DEFAULT_PRICING.get(normalized)
    if table is not None:
        return table, "table"
    wildcard = overrides.get("*")
    if wildcard is not None:
        return wildcard, "override"
    return FALLBACK_PRICING, "fallback"


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `AGENT_ORCHESTRATOR_LLM_PRICING` mapping.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model applies to every model missing from the built-in table
    - malformed or negative rows are skipped
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.rsplit(":", 2)]
        if len(parts) != 3 or not parts[0]:
            continue
        model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        if input_per_1m < 0 or output_per_1m < 0:
            continue
        parsed[model] = ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
