"""Research call pricing and cost estimation (USD).

Rates are per 1M tokens. Update PRICING_USD_PER_1M when providers publish
new rates. Estimates never touch the network.
"""

from __future__ import annotations

from typing import Iterable, Optional

from model_enrichment.enrichment.models import ModelSelectionPolicy, QualityTier

PRICING_USD_PER_1M = {
    "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
    "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
    "sonar-pro": {"input": 3.00, "output": 15.00},
    "sonar": {"input": 1.00, "output": 1.00},
}

# Assumed token budget for one research call, by quality tier
TOKEN_BUDGET = {
    QualityTier.BASIC: {"prompt": 1500, "completion": 1500},
    QualityTier.ENHANCED: {"prompt": 2000, "completion": 3000},
    QualityTier.PREMIUM: {"prompt": 2500, "completion": 5000},
}

# Flat per-call rates for models missing from the price table
FLAT_COST_PER_CALL = {
    QualityTier.BASIC: 0.02,
    QualityTier.ENHANCED: 0.03,
    QualityTier.PREMIUM: 0.05,
}

VALIDATION_MULTIPLIER = 1.5


def cost_from_usage(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    thinking_tokens: int = 0,
) -> float:
    """Cost in USD of one call from its token usage.

    Thinking tokens are billed at the output rate. Unknown models cost 0,
    callers fall back to estimate_call_cost for those.
    """
    rates = PRICING_USD_PER_1M.get(model)
    if rates is None:
        return 0.0
    return (
        (prompt_tokens / 1_000_000) * rates["input"]
        + ((completion_tokens + thinking_tokens) / 1_000_000) * rates["output"]
    )


def estimate_call_cost(model: str, quality_tier: QualityTier) -> float:
    """Expected cost of one research call with the given model."""
    if model not in PRICING_USD_PER_1M:
        return FLAT_COST_PER_CALL[quality_tier]
    budget = TOKEN_BUDGET[quality_tier]
    return cost_from_usage(model, budget["prompt"], budget["completion"])


def estimate(
    batch_size: int,
    quality_tier: QualityTier,
    model_selection_policy: ModelSelectionPolicy,
    models: Optional[Iterable[str]] = None,
    include_validation: bool = False,
) -> float:
    """
    Predict the cost of researching batch_size entities.

    Args:
        batch_size: Number of entities (0 yields 0.0)
        quality_tier: Research depth
        model_selection_policy: SINGLE prices the first model only,
            FALLBACK prices every call at the most expensive model in the chain
        models: Model chain (first entry is the configured model)
        include_validation: Apply the validation pass multiplier

    Returns:
        Non-negative cost in USD
    """
    if batch_size <= 0:
        return 0.0

    chain = list(models or [])
    if not chain:
        per_call = FLAT_COST_PER_CALL[quality_tier]
    elif model_selection_policy == ModelSelectionPolicy.SINGLE:
        per_call = estimate_call_cost(chain[0], quality_tier)
    else:
        per_call = max(estimate_call_cost(m, quality_tier) for m in chain)

    if include_validation:
        per_call *= VALIDATION_MULTIPLIER

    return batch_size * per_call


def estimate_for_config(batch_size: int, config) -> float:
    """estimate() with every parameter taken from an EnrichmentConfig."""
    return estimate(
        batch_size,
        config.quality_tier,
        config.model_selection_policy,
        models=config.model_chain(),
        include_validation=config.include_validation,
    )


__all__ = [
    "PRICING_USD_PER_1M",
    "cost_from_usage",
    "estimate_call_cost",
    "estimate",
    "estimate_for_config",
]
