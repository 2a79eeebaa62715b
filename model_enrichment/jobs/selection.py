"""
Eligible-entity selection - which catalog models a run should research
when the caller gives no explicit ids.

Priority scoring (higher = researched first):
- dataQuality unknown/outdated: +1000
- never enriched: +400; enriched >90d ago: +300, >30d: +200, >7d: +50
- dataQuality unknown: +150, estimated: +100, outdated: +200
- popular provider: +25
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from model_enrichment import config as settings
from model_enrichment.enrichment.models import EnrichmentConfig
from model_enrichment.jobs.models import ExecutionStatus
from model_enrichment.storage.base import ExecutionStore, ModelStore

logger = logging.getLogger(__name__)

POPULAR_PROVIDERS = frozenset({"openai", "anthropic", "google", "meta", "microsoft"})
ENRICHED_TAG = "ai-enriched"

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def as_datetime(value: Any) -> Optional[datetime]:
    """Firestore timestamps arrive as datetimes, in-memory ones may be ISO strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _days_between(earlier: Optional[datetime], now: datetime) -> float:
    if earlier is None:
        return math.inf
    return (now - earlier).total_seconds() / 86400


def is_enriched(model: Dict[str, Any]) -> bool:
    return any(ENRICHED_TAG in tag for tag in model.get("tags") or [])


@dataclass
class ScoredModel:
    model: Dict[str, Any]
    priority: int
    days_since_update: float
    data_quality: str


def score_model(model: Dict[str, Any], now: Optional[datetime] = None) -> ScoredModel:
    """Compute the selection priority for one catalog model."""
    now = now or datetime.now(timezone.utc)
    data_source = model.get("dataSource") or {}
    quality = data_source.get("dataQuality")
    last_update = as_datetime(data_source.get("lastSuccessfulUpdate"))
    days = math.floor(_days_between(last_update, now)) if last_update else math.inf
    enriched = is_enriched(model)

    priority = 0
    if quality in ("unknown", "outdated"):
        priority += 1000

    if enriched and last_update:
        if days > 90:
            priority += 300
        elif days > 30:
            priority += 200
        elif days > 7:
            priority += 50
    elif not enriched:
        priority += 400

    priority += {"unknown": 150, "estimated": 100, "outdated": 200}.get(quality, 0)

    if str(model.get("providerId", "")).lower() in POPULAR_PROVIDERS:
        priority += 25

    return ScoredModel(model=model, priority=priority, days_since_update=days, data_quality=quality or "unknown")


def select_eligible(
    model_store: ModelStore,
    config: EnrichmentConfig,
    now: Optional[datetime] = None,
    limit: int = settings.SELECTION_MAX_ENTITIES,
) -> List[str]:
    """
    Resolve "all eligible" into an ordered list of model ids.

    Applies the config's provider, data-quality and recency filters, then
    takes the highest-priority models (stable for equal priority).
    """
    now = now or datetime.now(timezone.utc)
    models = model_store.list(provider_id=config.provider_id, limit=settings.SELECTION_POOL_LIMIT)
    logger.info("Selection pool: %d models (provider=%s)", len(models), config.provider_id or "all")

    if config.filter_by_data_quality and config.allowed_data_qualities:
        allowed = set(config.allowed_data_qualities)
        models = [m for m in models if (m.get("dataSource") or {}).get("dataQuality") in allowed]
        logger.info("After data quality filter: %d models", len(models))

    scored = [score_model(m, now) for m in models]

    if config.filter_by_recency and config.max_days_since_update > 0:
        before = len(scored)
        scored = [s for s in scored if s.days_since_update >= config.max_days_since_update]
        logger.info("Recency filter excluded %d models updated within %d days",
                    before - len(scored), config.max_days_since_update)

    scored.sort(key=lambda s: s.priority, reverse=True)
    return [s.model["id"] for s in scored[:limit]]


def _classify(model: Dict[str, Any], now: datetime) -> Dict[str, str]:
    data_source = model.get("dataSource") or {}
    quality = data_source.get("dataQuality")
    days = _days_between(as_datetime(data_source.get("lastSuccessfulUpdate")), now)
    enriched = is_enriched(model)

    if quality == "unknown":
        return {"priority": "high", "enrichmentStatus": "never"}
    if quality == "outdated":
        return {"priority": "high", "enrichmentStatus": "stale"}
    if quality == "estimated" and not enriched:
        return {"priority": "medium", "enrichmentStatus": "never"}
    if quality == "verified" and enriched:
        return {"priority": "low", "enrichmentStatus": "recent" if days < 30 else "old"}
    if enriched and days != math.inf:
        if days < 3:
            return {"priority": "low", "enrichmentStatus": "recent"}
        if days < 30:
            return {"priority": "medium", "enrichmentStatus": "old"}
        return {"priority": "high", "enrichmentStatus": "stale"}
    return {"priority": "medium", "enrichmentStatus": "never"}


def _processing_info(execution_store: Optional[ExecutionStore]) -> Dict[str, Dict[str, Any]]:
    info: Dict[str, Dict[str, Any]] = {}
    if execution_store is None:
        return info
    for execution in execution_store.list_active():
        if execution.status == ExecutionStatus.RUNNING:
            status = f"Processing ({execution.processed_entities}/{execution.total_entities})"
        else:
            status = execution.status.value
        for entity_id in execution.entity_ids:
            info[entity_id] = {"progress": execution.progress, "status": status}
    return info


def list_eligible_entities(
    model_store: ModelStore,
    execution_store: Optional[ExecutionStore] = None,
    provider_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Lightweight model summaries for choosing what to enrich.

    Ordered by priority (high first) then name. Models referenced by a
    queued or running execution are flagged with its progress.
    """
    now = now or datetime.now(timezone.utc)
    processing = _processing_info(execution_store)
    summaries = []
    for model in model_store.list(provider_id=provider_id, limit=settings.LISTING_LIMIT):
        data_source = model.get("dataSource") or {}
        last_update = as_datetime(data_source.get("lastSuccessfulUpdate"))
        days = _days_between(last_update, now)
        in_flight = processing.get(model["id"])
        summaries.append({
            "id": model["id"],
            "name": model.get("name") or model["id"],
            "providerId": model.get("providerId"),
            "dataQuality": data_source.get("dataQuality") or "unknown",
            "lastEnriched": last_update.isoformat() if last_update and is_enriched(model) else None,
            "daysSinceUpdate": None if days == math.inf else round(days, 1),
            "isBeingProcessed": in_flight is not None,
            "processingProgress": in_flight["progress"] if in_flight else None,
            "processingStatus": in_flight["status"] if in_flight else None,
            **_classify(model, now),
        })
    summaries.sort(key=lambda s: (_PRIORITY_ORDER[s["priority"]], s["name"].lower()))
    return summaries


__all__ = [
    "POPULAR_PROVIDERS",
    "ScoredModel",
    "as_datetime",
    "score_model",
    "select_eligible",
    "list_eligible_entities",
]
