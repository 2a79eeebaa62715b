"""
Response Validator - parse and check research output before it can be merged.

Rejection rules (deterministic, first failure wins):
- malformed: no well-formed JSON object in the response
- missing_field: a required dotted path is absent
- invalid_value: wrong type or out-of-range value
- capability_conflict: a modality flag the model family is known not to
  support is asserted as true (hallucinated capability claims)

Handles common LLM quirks before parsing:
- JSON wrapped in markdown code blocks
- Prose before/after the JSON object
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple

from model_enrichment.enrichment.models import (
    MODALITY_FLAGS,
    Accepted,
    EntityResearchResult,
    Rejected,
    RejectionReason,
    ResearchFields,
)

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ("high", "medium", "low")
TIER_FIELDS = ("qualityTier", "speedTier", "costTier")

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


@dataclass(frozen=True)
class FamilyConstraint:
    """Modalities a model family is known not to support."""
    name: str
    pattern: Pattern[str]
    unsupported: FrozenSet[str]


KNOWN_FAMILY_CONSTRAINTS: Tuple[FamilyConstraint, ...] = (
    FamilyConstraint(
        "embedding", re.compile(r"embed"),
        frozenset({"supportsVision", "supportsAudio", "supportsFunctionCalling", "supportsCodeExecution"}),
    ),
    FamilyConstraint(
        "speech-to-text", re.compile(r"whisper"),
        frozenset({"supportsImages", "supportsVision", "supportsFunctionCalling", "supportsCodeExecution"}),
    ),
    FamilyConstraint(
        "image-generation", re.compile(r"dall-e|imagen|stable-diffusion"),
        frozenset({"supportsAudio", "supportsFunctionCalling", "supportsCodeExecution"}),
    ),
    FamilyConstraint(
        "gpt-3.5", re.compile(r"gpt-3\.5"),
        frozenset({"supportsImages", "supportsVision", "supportsAudio"}),
    ),
    FamilyConstraint(
        "legacy-completion", re.compile(r"davinci|babbage|curie|\bada\b"),
        frozenset({"supportsImages", "supportsVision", "supportsAudio", "supportsFunctionCalling"}),
    ),
    FamilyConstraint(
        "claude", re.compile(r"claude"),
        frozenset({"supportsAudio"}),
    ),
    FamilyConstraint(
        "llama-2", re.compile(r"llama-?2"),
        frozenset({"supportsImages", "supportsVision", "supportsAudio"}),
    ),
    FamilyConstraint(
        "mistral-text", re.compile(r"mistral-7b|mixtral"),
        frozenset({"supportsImages", "supportsVision", "supportsAudio"}),
    ),
)


@dataclass(frozen=True)
class EntitySchema:
    """Expected shape of a research response."""
    required_paths: Tuple[str, ...] = (
        "useCaseAnalysis.idealUseCases",
        "useCaseAnalysis.strengths",
        "useCaseAnalysis.limitations",
        "confidence",
        "sources",
    )
    string_list_paths: Tuple[str, ...] = (
        "useCaseAnalysis.idealUseCases",
        "useCaseAnalysis.strengths",
        "useCaseAnalysis.limitations",
        "useCaseAnalysis.industries",
        "sources",
        "technicalDetails.languageSupport",
        "technicalDetails.specialCapabilities",
    )
    family_constraints: Tuple[FamilyConstraint, ...] = field(default=KNOWN_FAMILY_CONSTRAINTS)


DEFAULT_ENTITY_SCHEMA = EntitySchema()


class _Reject(Exception):
    def __init__(self, reason: RejectionReason, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON
    raise ValueError(f"Non-finite number {name}")


def extract_json_object(raw_response: str) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from LLM text.

    Tries, in order: the whole text, fenced code blocks, then the span from
    the first "{" to the last "}". Returns None if nothing parses to a dict.
    """
    if not raw_response:
        return None
    text = raw_response.strip()

    candidates: List[str] = [text]
    candidates.extend(m.strip() for m in _FENCE_RE.findall(text))
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate, parse_constant=_reject_constant)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def get_path(data: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted path; returns None when any segment is missing."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _has_path(data: Dict[str, Any], path: str) -> bool:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return False
        current = current[part]
    return current is not None


def _string_list(data: Dict[str, Any], path: str) -> Tuple[str, ...]:
    value = get_path(data, path)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise _Reject(RejectionReason.INVALID_VALUE, f"{path} must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


def _optional_int(data: Dict[str, Any], path: str, low: int, high: Optional[int] = None) -> Optional[int]:
    value = get_path(data, path)
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        raise _Reject(RejectionReason.INVALID_VALUE, f"{path} must be finite, got {value!r}")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise _Reject(RejectionReason.INVALID_VALUE, f"{path} must be an integer, got {value!r}")
    value = int(value)
    if value < low or (high is not None and value > high):
        bounds = f"[{low}, {high}]" if high is not None else f">= {low}"
        raise _Reject(RejectionReason.INVALID_VALUE, f"{path}={value} outside {bounds}")
    return value


def _modalities(data: Dict[str, Any]) -> Dict[str, bool]:
    capabilities = data.get("capabilities") or {}
    if not isinstance(capabilities, dict):
        raise _Reject(RejectionReason.INVALID_VALUE, "capabilities must be an object")
    flags: Dict[str, bool] = {}
    for flag in MODALITY_FLAGS:
        if flag not in capabilities or capabilities[flag] is None:
            continue
        if not isinstance(capabilities[flag], bool):
            raise _Reject(RejectionReason.INVALID_VALUE, f"capabilities.{flag} must be a boolean")
        flags[flag] = capabilities[flag]
    return flags


def _check_capability_conflicts(
    flags: Dict[str, bool],
    entity: Optional[Dict[str, Any]],
    schema: EntitySchema,
) -> None:
    if not entity:
        return
    identity = " ".join(
        str(entity.get(k, "")) for k in ("id", "name")
    ).lower()
    for constraint in schema.family_constraints:
        if not constraint.pattern.search(identity):
            continue
        claimed = sorted(f for f in constraint.unsupported if flags.get(f) is True)
        if claimed:
            raise _Reject(
                RejectionReason.CAPABILITY_CONFLICT,
                f"{constraint.name} models do not support: {', '.join(claimed)}",
            )


def _build_fields(data: Dict[str, Any], entity: Optional[Dict[str, Any]], schema: EntitySchema) -> ResearchFields:
    for path in schema.required_paths:
        if not _has_path(data, path):
            raise _Reject(RejectionReason.MISSING_FIELD, f"Missing required field: {path}")

    lists = {path: _string_list(data, path) for path in schema.string_list_paths}

    confidence = data.get("confidence")
    if not isinstance(confidence, str) or confidence.strip().lower() not in CONFIDENCE_LEVELS:
        raise _Reject(RejectionReason.INVALID_VALUE, f"confidence must be one of {CONFIDENCE_LEVELS}, got {confidence!r}")

    flags = _modalities(data)
    _check_capability_conflicts(flags, entity, schema)

    performance: Dict[str, Any] = {}
    for tier in TIER_FIELDS:
        value = _optional_int(data, f"performanceAnalysis.{tier}", 1, 5)
        if value is not None:
            performance[tier] = value
    reliability = _optional_int(data, "performanceAnalysis.reliabilityScore", 0, 100)
    if reliability is not None:
        performance["reliabilityScore"] = reliability

    return ResearchFields(
        ideal_use_cases=lists["useCaseAnalysis.idealUseCases"],
        strengths=lists["useCaseAnalysis.strengths"],
        limitations=lists["useCaseAnalysis.limitations"],
        industries=lists.get("useCaseAnalysis.industries", ()),
        confidence=confidence.strip().lower(),
        modalities=flags,
        sources=lists["sources"],
        context_window=_optional_int(data, "capabilities.contextWindow", 0),
        max_tokens=_optional_int(data, "capabilities.maxTokens", 0),
        languages=lists.get("technicalDetails.languageSupport", ()),
        special_capabilities=lists.get("technicalDetails.specialCapabilities", ()),
        performance=performance,
    )


def validate_payload(
    payload: Any,
    entity_schema: EntitySchema = DEFAULT_ENTITY_SCHEMA,
    entity: Optional[Dict[str, Any]] = None,
):
    """Validate an already-parsed payload. Returns Accepted or Rejected."""
    if not isinstance(payload, dict):
        return Rejected(RejectionReason.MALFORMED, "Research payload is not a JSON object")
    try:
        return Accepted(_build_fields(payload, entity, entity_schema))
    except _Reject as r:
        return Rejected(r.reason, r.detail)


def validate(
    raw_response: str,
    entity_schema: EntitySchema = DEFAULT_ENTITY_SCHEMA,
    entity: Optional[Dict[str, Any]] = None,
) -> EntityResearchResult:
    """
    Parse and validate raw research output for one entity.

    Args:
        raw_response: Provider text
        entity_schema: Expected response shape and family constraints
        entity: Catalog model document (id/name drive family constraints)

    Returns:
        EntityResearchResult whose outcome is Accepted or Rejected
    """
    entity_id = (entity or {}).get("id", "")
    payload = extract_json_object(raw_response)
    if payload is None:
        outcome = Rejected(RejectionReason.MALFORMED, "No JSON object found in research response")
    else:
        outcome = validate_payload(payload, entity_schema, entity)

    if isinstance(outcome, Rejected):
        logger.info("Rejected research for %s: %s (%s)", entity_id, outcome.reason.value, outcome.detail)

    return EntityResearchResult(
        entity_id=entity_id,
        raw_response=raw_response,
        outcome=outcome,
        payload=payload,
    )


__all__ = [
    "EntitySchema",
    "FamilyConstraint",
    "DEFAULT_ENTITY_SCHEMA",
    "KNOWN_FAMILY_CONSTRAINTS",
    "extract_json_object",
    "validate_payload",
    "validate",
]
