"""Tests for cost estimation."""

import pytest

from model_enrichment.enrichment.cost import (
    FLAT_COST_PER_CALL,
    cost_from_usage,
    estimate,
    estimate_call_cost,
    estimate_for_config,
)
from model_enrichment.enrichment.models import (
    EnrichmentConfig,
    ModelSelectionPolicy,
    Provider,
    QualityTier,
)


class TestEstimate:
    """estimate() is a pure, non-negative function of its inputs."""

    def test_zero_batch_costs_nothing(self):
        assert estimate(0, QualityTier.PREMIUM, ModelSelectionPolicy.FALLBACK, ["gemini-2.5-pro"]) == 0.0

    def test_negative_batch_costs_nothing(self):
        assert estimate(-3, QualityTier.BASIC, ModelSelectionPolicy.SINGLE) == 0.0

    def test_flat_rate_without_models(self):
        assert estimate(10, QualityTier.BASIC, ModelSelectionPolicy.SINGLE) == pytest.approx(0.2)
        assert estimate(10, QualityTier.ENHANCED, ModelSelectionPolicy.SINGLE) == pytest.approx(0.3)
        assert estimate(10, QualityTier.PREMIUM, ModelSelectionPolicy.SINGLE) == pytest.approx(0.5)

    def test_unknown_model_uses_flat_rate(self):
        cost = estimate(2, QualityTier.ENHANCED, ModelSelectionPolicy.SINGLE, ["some-new-model"])
        assert cost == pytest.approx(2 * FLAT_COST_PER_CALL[QualityTier.ENHANCED])

    def test_priced_model_uses_token_budget(self):
        # enhanced: 2000 prompt + 3000 completion tokens at 1.25 / 10.00 per 1M
        cost = estimate(1, QualityTier.ENHANCED, ModelSelectionPolicy.SINGLE, ["gemini-2.5-pro"])
        assert cost == pytest.approx(0.0025 + 0.03)

    def test_fallback_prices_most_expensive_model(self):
        chain = ["gemini-2.5-flash", "gemini-2.5-pro"]
        single = estimate(4, QualityTier.ENHANCED, ModelSelectionPolicy.SINGLE, chain)
        fallback = estimate(4, QualityTier.ENHANCED, ModelSelectionPolicy.FALLBACK, chain)
        assert fallback > single
        assert fallback == pytest.approx(4 * estimate_call_cost("gemini-2.5-pro", QualityTier.ENHANCED))

    def test_validation_multiplier(self):
        base = estimate(3, QualityTier.BASIC, ModelSelectionPolicy.SINGLE)
        validated = estimate(3, QualityTier.BASIC, ModelSelectionPolicy.SINGLE, include_validation=True)
        assert validated == pytest.approx(base * 1.5)

    def test_scales_linearly_with_batch_size(self):
        one = estimate(1, QualityTier.PREMIUM, ModelSelectionPolicy.FALLBACK, ["sonar-pro", "sonar"])
        five = estimate(5, QualityTier.PREMIUM, ModelSelectionPolicy.FALLBACK, ["sonar-pro", "sonar"])
        assert five == pytest.approx(5 * one)


class TestCostFromUsage:

    def test_thinking_tokens_billed_as_output(self):
        cost = cost_from_usage("gemini-2.5-flash", 1_000_000, 0, thinking_tokens=1_000_000)
        assert cost == pytest.approx(0.30 + 2.50)

    def test_unknown_model_is_free(self):
        assert cost_from_usage("mystery", 5000, 5000) == 0.0


def test_estimate_for_config_uses_model_chain():
    config = EnrichmentConfig(provider=Provider.SECONDARY, api_key="k")
    assert config.model_chain() == ["sonar-pro", "sonar"]
    expected = estimate(3, config.quality_tier, config.model_selection_policy, ["sonar-pro", "sonar"])
    assert estimate_for_config(3, config) == pytest.approx(expected)
