"""Research request wording for catalog model enrichment."""

from __future__ import annotations

import json
from typing import Any, Dict

from model_enrichment.enrichment.models import QualityTier

DETAIL_LEVELS = {
    QualityTier.BASIC: "concise",
    QualityTier.ENHANCED: "thorough",
    QualityTier.PREMIUM: "comprehensive and detailed",
}

RESPONSE_SHAPE = {
    "useCaseAnalysis": {
        "idealUseCases": ["string"],
        "strengths": ["string"],
        "limitations": ["string"],
        "industries": ["string"],
    },
    "capabilities": {
        "supportsImages": "boolean",
        "supportsVision": "boolean",
        "supportsAudio": "boolean",
        "supportsFunctionCalling": "boolean",
        "supportsCodeExecution": "boolean",
        "supportsStreaming": "boolean",
        "contextWindow": "integer",
        "maxTokens": "integer",
    },
    "technicalDetails": {
        "languageSupport": ["string"],
        "specialCapabilities": ["string"],
    },
    "performanceAnalysis": {
        "qualityTier": "1-5",
        "speedTier": "1-5",
        "costTier": "1-5",
        "reliabilityScore": "0-100",
    },
    "sources": ["url"],
    "confidence": "high | medium | low",
}

CREDENTIAL_CHECK_PROMPT = 'Reply with the JSON object {"ok": true}.'


def build_research_prompt(entity: Dict[str, Any], quality_tier: QualityTier) -> str:
    """Build the research request for one catalog model."""
    name = entity.get("name") or entity.get("id", "")
    provider_id = entity.get("providerId", "unknown")
    return (
        f"Research the AI model \"{name}\" (catalog id: {entity.get('id', '')}) "
        f"by {provider_id}. Give a {DETAIL_LEVELS[quality_tier]} assessment of its actual "
        "capabilities, ideal use cases, strengths and limitations, based on official "
        "documentation and published benchmarks. Only claim a capability when a source "
        "confirms it, and cite those sources.\n\n"
        "Respond with ONLY valid JSON matching this shape:\n"
        f"{json.dumps(RESPONSE_SHAPE, indent=2)}"
    )
