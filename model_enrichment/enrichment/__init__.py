"""
Enrichment Package - research, validation and cost estimation.

This package provides:
- models: EnrichmentConfig and research result types
- cost: Pure cost estimation from the price table
- llm_client: Gemini / Perplexity / mock backends
- research: ResearchClient with retry and model fallback
- validators: Response parsing and validation
"""

from model_enrichment.enrichment.models import (
    EnrichmentConfig,
    EntityResearchResult,
    ModelSelectionPolicy,
    Provider,
    QualityTier,
)

from model_enrichment.enrichment.cost import estimate

from model_enrichment.enrichment.llm_client import (
    LLMClient,
    MockLLMClient,
    get_llm_client,
)

from model_enrichment.enrichment.research import ResearchClient

from model_enrichment.enrichment.validators import validate


__all__ = [
    # Models
    "EnrichmentConfig",
    "EntityResearchResult",
    "ModelSelectionPolicy",
    "Provider",
    "QualityTier",
    # Cost
    "estimate",
    # LLM
    "LLMClient",
    "MockLLMClient",
    "get_llm_client",
    "ResearchClient",
    # Validation
    "validate",
]
