"""
Enrichment Models - Data models for model-catalog research runs.

EnrichmentConfig is the immutable input copied onto every execution.
EntityResearchResult captures the per-model outcome as a tagged variant
(Accepted | Rejected) produced by the validator.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from model_enrichment.errors import ConfigError


class Provider(str, Enum):
    """AI provider selector."""
    PRIMARY = "generative-primary"      # Gemini via google-genai
    SECONDARY = "generative-secondary"  # Perplexity chat completions


class QualityTier(str, Enum):
    """Research depth requested from the provider."""
    BASIC = "basic"
    ENHANCED = "enhanced"
    PREMIUM = "premium"


class ModelSelectionPolicy(str, Enum):
    """How research models are chosen for each call."""
    SINGLE = "single"      # Configured model only
    FALLBACK = "fallback"  # Configured model, then provider fallback chain


PROVIDER_ALIASES = {
    "gemini": Provider.PRIMARY,
    "perplexity": Provider.SECONDARY,
    Provider.PRIMARY.value: Provider.PRIMARY,
    Provider.SECONDARY.value: Provider.SECONDARY,
}

DEFAULT_MODELS = {
    Provider.PRIMARY: "gemini-2.5-pro",
    Provider.SECONDARY: "sonar-pro",
}

FALLBACK_MODELS = {
    Provider.PRIMARY: ("gemini-2.5-flash",),
    Provider.SECONDARY: ("sonar",),
}

DEFAULT_CREDENTIALS_REFS = {
    Provider.PRIMARY: "GEMINI_API_KEY",
    Provider.SECONDARY: "PERPLEXITY_API_KEY",
}

DATA_QUALITIES = ("unknown", "estimated", "outdated", "verified")


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key (snake_case or legacy camelCase)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class EnrichmentConfig:
    """
    Immutable configuration for one enrichment run.

    api_key is used for the run but never persisted; credentials_ref names
    the environment variable that holds the key.
    """
    provider: Provider = Provider.PRIMARY
    model: str = ""
    credentials_ref: str = ""
    api_key: Optional[str] = field(default=None, repr=False, compare=False)
    quality_tier: QualityTier = QualityTier.ENHANCED
    test_mode: bool = False
    batch_size: int = 5
    max_cost_per_batch: float = 1.0
    include_validation: bool = False
    model_selection_policy: ModelSelectionPolicy = ModelSelectionPolicy.FALLBACK

    # Eligibility filters (used only when no entity ids are given)
    provider_id: Optional[str] = None
    filter_by_recency: bool = False
    max_days_since_update: int = 0
    filter_by_data_quality: bool = False
    allowed_data_qualities: Tuple[str, ...] = ()

    def __post_init__(self):
        # batch_size may arrive as a float from JSON
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int):
            raise ConfigError(f"batchSize must be an integer, got {self.batch_size!r}")
        if self.batch_size < 1:
            raise ConfigError(f"batchSize must be >= 1, got {self.batch_size}")
        if not isinstance(self.max_cost_per_batch, (int, float)) or self.max_cost_per_batch <= 0:
            raise ConfigError(f"maxCostPerBatch must be > 0, got {self.max_cost_per_batch}")
        if not self.model:
            object.__setattr__(self, "model", DEFAULT_MODELS[self.provider])
        if not self.credentials_ref:
            object.__setattr__(self, "credentials_ref", DEFAULT_CREDENTIALS_REFS[self.provider])
        bad = [q for q in self.allowed_data_qualities if q not in DATA_QUALITIES]
        if bad:
            raise ConfigError(f"Unknown data qualities: {bad}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EnrichmentConfig":
        """
        Build a config from an API/CLI payload.

        Accepts the snake_case field names as well as the legacy camelCase
        admin-panel keys (aiProvider, aiModel, geminiApiKey, ...).

        Raises:
            ConfigError: If a required field is missing or invalid
        """
        if not data:
            raise ConfigError("Configuration is required")
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be an object")

        raw_provider = _pick(data, "provider", "aiProvider")
        if not raw_provider:
            raise ConfigError("Valid AI provider is required (generative-primary or generative-secondary)")
        provider = PROVIDER_ALIASES.get(str(raw_provider).strip().lower())
        if provider is None:
            raise ConfigError(f"Unknown AI provider: {raw_provider}")

        try:
            quality = QualityTier(_pick(data, "quality_tier", "targetDataQuality", default="enhanced"))
            policy = ModelSelectionPolicy(
                _pick(data, "model_selection_policy", "modelSelectionPolicy", default="fallback")
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        batch_size = _pick(data, "batch_size", "batchSize", default=5)
        if isinstance(batch_size, float) and batch_size.is_integer():
            batch_size = int(batch_size)
        max_cost = _pick(data, "max_cost_per_batch", "maxCostPerBatch", default=1.0)
        if isinstance(max_cost, str):
            try:
                max_cost = float(max_cost)
            except ValueError as e:
                raise ConfigError(f"maxCostPerBatch must be a number, got {max_cost!r}") from e

        return cls(
            provider=provider,
            model=_pick(data, "model", "aiModel", default=""),
            credentials_ref=_pick(data, "credentials_ref", "credentialsRef", default=""),
            api_key=_pick(data, "api_key", "apiKey", "geminiApiKey", "perplexityApiKey"),
            quality_tier=quality,
            test_mode=_as_bool(_pick(data, "test_mode", "testMode", default=False)),
            batch_size=batch_size,
            max_cost_per_batch=max_cost,
            include_validation=_as_bool(_pick(data, "include_validation", "includeValidation", default=False)),
            model_selection_policy=policy,
            provider_id=_pick(data, "provider_id", "providerId"),
            filter_by_recency=_as_bool(_pick(data, "filter_by_recency", "filterByRecency", default=False)),
            max_days_since_update=int(_pick(data, "max_days_since_update", "maxDaysSinceUpdate", default=0)),
            filter_by_data_quality=_as_bool(
                _pick(data, "filter_by_data_quality", "filterByDataQuality", default=False)
            ),
            allowed_data_qualities=tuple(
                _pick(data, "allowed_data_qualities", "allowedDataQualities", default=())
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for storage. The inline api_key is never written."""
        return {
            "provider": self.provider.value,
            "model": self.model,
            "credentials_ref": self.credentials_ref,
            "quality_tier": self.quality_tier.value,
            "test_mode": self.test_mode,
            "batch_size": self.batch_size,
            "max_cost_per_batch": self.max_cost_per_batch,
            "include_validation": self.include_validation,
            "model_selection_policy": self.model_selection_policy.value,
            "provider_id": self.provider_id,
            "filter_by_recency": self.filter_by_recency,
            "max_days_since_update": self.max_days_since_update,
            "filter_by_data_quality": self.filter_by_data_quality,
            "allowed_data_qualities": list(self.allowed_data_qualities),
        }

    def resolve_api_key(self) -> str:
        """
        Return the API key for this run.

        Raises:
            ConfigError: If neither an inline key nor the referenced env var is set
        """
        key = self.api_key or os.environ.get(self.credentials_ref, "")
        if not key:
            raise ConfigError(
                f"API key is required (inline or via ${self.credentials_ref})",
                details={"credentials_ref": self.credentials_ref},
            )
        return key

    def model_chain(self) -> List[str]:
        """Models tried in order for each research call."""
        chain = [self.model]
        if self.model_selection_policy == ModelSelectionPolicy.FALLBACK:
            chain.extend(m for m in FALLBACK_MODELS[self.provider] if m not in chain)
        return chain

    def for_single_update(self) -> "EnrichmentConfig":
        """Production single-model correction: never a test, never a bulk write."""
        return replace(self, test_mode=False, batch_size=1)


# =============================================================================
# RESEARCH RESULTS
# =============================================================================

MODALITY_FLAGS = (
    "supportsImages",
    "supportsVision",
    "supportsAudio",
    "supportsFunctionCalling",
    "supportsCodeExecution",
    "supportsStreaming",
)


class RejectionReason(str, Enum):
    """Machine-readable validator rejection codes."""
    MALFORMED = "malformed"
    MISSING_FIELD = "missing_field"
    INVALID_VALUE = "invalid_value"
    CAPABILITY_CONFLICT = "capability_conflict"


@dataclass(frozen=True)
class ResearchFields:
    """Structured fields derived from an accepted research response."""
    ideal_use_cases: Tuple[str, ...] = ()
    strengths: Tuple[str, ...] = ()
    limitations: Tuple[str, ...] = ()
    industries: Tuple[str, ...] = ()
    confidence: str = "low"
    modalities: Dict[str, bool] = field(default_factory=dict)
    sources: Tuple[str, ...] = ()
    context_window: Optional[int] = None
    max_tokens: Optional[int] = None
    languages: Tuple[str, ...] = ()
    special_capabilities: Tuple[str, ...] = ()
    performance: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, Any]:
        """Short form written to execution logs."""
        return {
            "confidence": self.confidence,
            "use_cases": len(self.ideal_use_cases),
            "strengths": len(self.strengths),
            "limitations": len(self.limitations),
            "sources": len(self.sources),
            "modalities": {k: v for k, v in self.modalities.items() if v},
        }


@dataclass(frozen=True)
class Accepted:
    fields: ResearchFields


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    detail: str


Outcome = Union[Accepted, Rejected]


@dataclass
class RawResearch:
    """Raw provider output for one research call."""
    text: str
    model_used: str
    cost: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    attempts: int = 1


@dataclass
class EntityResearchResult:
    """Result of researching a single catalog model."""
    entity_id: str
    raw_response: str
    outcome: Outcome
    model_used: Optional[str] = None
    cost: float = 0.0
    payload: Optional[Dict[str, Any]] = None

    @property
    def accepted(self) -> bool:
        return isinstance(self.outcome, Accepted)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        data: Dict[str, Any] = {
            "entity_id": self.entity_id,
            "accepted": self.accepted,
            "model_used": self.model_used,
            "cost": round(self.cost, 6),
        }
        if isinstance(self.outcome, Accepted):
            data["summary"] = self.outcome.fields.summary()
            data["parsed_data"] = self.payload
        else:
            data["reason"] = self.outcome.reason.value
            data["detail"] = self.outcome.detail
        return data


__all__ = [
    "Provider",
    "QualityTier",
    "ModelSelectionPolicy",
    "EnrichmentConfig",
    "MODALITY_FLAGS",
    "RejectionReason",
    "ResearchFields",
    "Accepted",
    "Rejected",
    "Outcome",
    "RawResearch",
    "EntityResearchResult",
]
