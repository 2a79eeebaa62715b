"""Shared fixtures: in-memory stores, scripted LLM client, scheduler."""

import json

import pytest

from model_enrichment.enrichment.llm_client import MockLLMClient
from model_enrichment.enrichment.models import EnrichmentConfig, Provider, QualityTier
from model_enrichment.enrichment.research import ResearchClient
from model_enrichment.jobs.scheduler import BatchScheduler
from model_enrichment.storage.memory_store import InMemoryExecutionStore, InMemoryModelStore


def research_payload(**overrides):
    """A research response that passes validation."""
    payload = {
        "useCaseAnalysis": {
            "idealUseCases": ["code generation", "long document analysis"],
            "strengths": ["strong reasoning"],
            "limitations": ["higher latency"],
            "industries": ["software"],
        },
        "capabilities": {
            "supportsImages": True,
            "supportsVision": True,
            "supportsFunctionCalling": True,
            "supportsStreaming": True,
            "contextWindow": 128000,
            "maxTokens": 16384,
        },
        "technicalDetails": {
            "languageSupport": ["en", "de"],
            "specialCapabilities": ["json mode"],
        },
        "performanceAnalysis": {
            "qualityTier": 5,
            "speedTier": 3,
            "costTier": 4,
            "reliabilityScore": 92,
        },
        "sources": ["https://example.com/model-card"],
        "confidence": "high",
    }
    payload.update(overrides)
    return payload


def research_reply(**overrides):
    return json.dumps(research_payload(**overrides))


def catalog_model(model_id, **fields):
    doc = {
        "id": model_id,
        "name": model_id.replace("-", " ").title(),
        "providerId": "openai",
        "tags": ["chat"],
        "dataSource": {"dataQuality": "unknown", "scrapedFrom": ["https://openrouter.ai/models"]},
        "pricing": {"inputTokenCost": 0.0025, "source": "third-party"},
    }
    doc.update(fields)
    return doc


@pytest.fixture
def model_store():
    return InMemoryModelStore([
        catalog_model("m1"),
        catalog_model("m2"),
        catalog_model("m3"),
    ])


@pytest.fixture
def execution_store():
    return InMemoryExecutionStore()


@pytest.fixture
def mock_llm():
    return MockLLMClient(default_reply=research_reply())


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def research_client(mock_llm, sleeps):
    return ResearchClient(
        llm_client=mock_llm,
        max_retries=2,
        backoff_base_secs=5,
        backoff_max_secs=60,
        sleep=sleeps.append,
    )


@pytest.fixture
def scheduler(model_store, execution_store, research_client):
    return BatchScheduler(
        model_store,
        execution_store,
        research_client=research_client,
        batch_pause_secs=0,
    )


@pytest.fixture
def config():
    return EnrichmentConfig(
        provider=Provider.PRIMARY,
        api_key="test-key",
        quality_tier=QualityTier.ENHANCED,
        batch_size=1,
        max_cost_per_batch=1.0,
    )


def research_calls(mock_llm, entity_id):
    """Research calls made for one entity (credential checks excluded)."""
    return [c for c in mock_llm.calls if f"catalog id: {entity_id})" in c["prompt"]]
