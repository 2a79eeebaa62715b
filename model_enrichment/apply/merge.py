"""
Merge Step - write accepted research into a catalog model document.

Key rules:
- Partial update with dotted Firestore paths; only fields present in the
  accepted result are overwritten, everything else is left alone
- Pricing is never touched (third-party pricing is authoritative)
- Provenance is always stamped under dataSource.enrichment
- Data quality becomes "estimated"; AI research never marks data verified
- Source citations are merged into dataSource.scrapedFrom (max 10)
- Enrichment tags (ai-enriched, enriched-<date>, confidence-<level>) are
  replaced, other tags kept in order
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from model_enrichment.enrichment.models import Accepted, EntityResearchResult, ResearchFields
from model_enrichment.errors import NotFound, ValidationRejected
from model_enrichment.storage.base import ModelStore

logger = logging.getLogger(__name__)

PROVENANCE_SOURCE = "ai-research"
MAX_SCRAPED_SOURCES = 10
_ENRICHMENT_TAG_PREFIXES = ("ai-enriched", "enriched-", "confidence-")


def merge_sources(existing: Optional[List[str]], new: List[str], limit: int = MAX_SCRAPED_SOURCES) -> List[str]:
    """Existing citations first, then new ones, de-duplicated and capped."""
    merged: List[str] = []
    for source in list(existing or []) + list(new):
        if isinstance(source, str) and source and source not in merged:
            merged.append(source)
    return merged[:limit]


def refresh_tags(existing: Optional[List[str]], confidence: str, now: datetime) -> List[str]:
    kept = [t for t in (existing or []) if not t.startswith(_ENRICHMENT_TAG_PREFIXES)]
    return kept + ["ai-enriched", f"enriched-{now.date().isoformat()}", f"confidence-{confidence}"]


def build_update(
    entity: Dict[str, Any],
    fields: ResearchFields,
    model_used: Optional[str] = None,
    execution_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build the dotted-path partial update for one accepted result.

    Args:
        entity: Current model document (tags / scrapedFrom are merged)
        fields: Accepted research fields
        model_used: Research model that produced the fields
        execution_id: Execution that produced the fields (None for apply-test-results)
        now: Timestamp override (tests)

    Returns:
        Dict of Firestore field paths to values
    """
    now = now or datetime.now(timezone.utc)
    updates: Dict[str, Any] = {}

    # Use-case analysis
    for path, values in (
        ("idealUseCases", fields.ideal_use_cases),
        ("strengths", fields.strengths),
        ("limitations", fields.limitations),
        ("industries", fields.industries),
    ):
        if values:
            updates[path] = list(values)

    # Capabilities
    for flag, supported in fields.modalities.items():
        updates[f"capabilities.{flag}"] = supported
    if fields.context_window:
        updates["capabilities.contextWindow"] = fields.context_window
    if fields.max_tokens:
        updates["capabilities.maxTokens"] = fields.max_tokens
    if fields.languages:
        updates["capabilities.languages"] = list(fields.languages)
    if fields.special_capabilities:
        updates["capabilities.specialFeatures"] = list(fields.special_capabilities)

    # Performance tiers
    for key, value in fields.performance.items():
        updates[f"performance.{key}"] = value

    # Provenance
    data_source = entity.get("dataSource") or {}
    updates["dataSource.enrichment"] = {
        "source": PROVENANCE_SOURCE,
        "enrichedAt": now,
        "verificationMethod": "unverified",
        "executionId": execution_id,
        "model": model_used,
        "confidence": fields.confidence,
    }
    updates["dataSource.dataQuality"] = "estimated"
    updates["dataSource.lastSuccessfulUpdate"] = now
    updates["dataSource.scrapedFrom"] = merge_sources(data_source.get("scrapedFrom"), list(fields.sources))

    updates["tags"] = refresh_tags(entity.get("tags"), fields.confidence, now)
    updates["updatedAt"] = now
    return updates


class EnrichmentMerger:
    """Writes accepted research results into the model store."""

    def __init__(self, model_store: ModelStore):
        self.model_store = model_store

    def merge(
        self,
        entity_id: str,
        result: EntityResearchResult,
        execution_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Merge an accepted result into the entity.

        Returns:
            The update that was written

        Raises:
            ValidationRejected: result is not Accepted
            NotFound: entity no longer exists
            StorageError: write failed
        """
        if not isinstance(result.outcome, Accepted):
            raise ValidationRejected(
                result.outcome.reason.value,
                f"Refusing to merge rejected result for {entity_id}: {result.outcome.detail}",
            )

        entity = self.model_store.get(entity_id)
        if entity is None:
            raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id})

        updates = build_update(entity, result.outcome.fields, result.model_used, execution_id)
        self.model_store.update(entity_id, updates)
        logger.info("Merged enrichment into %s: %d fields (execution=%s)",
                    entity_id, len(updates), execution_id)
        return updates


__all__ = [
    "PROVENANCE_SOURCE",
    "MAX_SCRAPED_SOURCES",
    "EnrichmentMerger",
    "build_update",
    "merge_sources",
    "refresh_tags",
]
