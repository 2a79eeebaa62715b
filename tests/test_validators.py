"""Tests for research response validation."""

import json

import pytest

from model_enrichment.enrichment.models import Accepted, Rejected, RejectionReason
from model_enrichment.enrichment.validators import (
    EntitySchema,
    extract_json_object,
    validate,
    validate_payload,
)

from conftest import catalog_model, research_payload, research_reply


class TestExtractJsonObject:

    def test_plain_json(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nHope that helps.'
        assert extract_json_object(text) == {"a": 1}

    def test_prose_around_object(self):
        assert extract_json_object('Result: {"a": {"b": 2}} -- end') == {"a": {"b": 2}}

    def test_top_level_array_is_not_an_object(self):
        assert extract_json_object("[1, 2, 3]") is None

    @pytest.mark.parametrize("text", ["", "no json here", "{broken: json"])
    def test_unparseable(self, text):
        assert extract_json_object(text) is None

    @pytest.mark.parametrize("text", ['{"a": NaN}', '{"a": Infinity}', '{"a": -Infinity}'])
    def test_non_finite_constants_are_not_json(self, text):
        assert extract_json_object(text) is None


class TestValidate:

    def test_valid_response_accepted(self):
        result = validate(research_reply(), entity=catalog_model("gpt-4o"))
        assert result.entity_id == "gpt-4o"
        assert isinstance(result.outcome, Accepted)
        fields = result.outcome.fields
        assert fields.confidence == "high"
        assert fields.ideal_use_cases == ("code generation", "long document analysis")
        assert fields.modalities["supportsVision"] is True
        assert fields.context_window == 128000
        assert fields.performance == {"qualityTier": 5, "speedTier": 3, "costTier": 4, "reliabilityScore": 92}
        assert result.payload["confidence"] == "high"

    def test_fenced_response_accepted(self):
        raw = f"```json\n{research_reply()}\n```"
        assert validate(raw, entity=catalog_model("m1")).accepted

    def test_malformed(self):
        result = validate("I could not find information about this model.", entity=catalog_model("m1"))
        assert isinstance(result.outcome, Rejected)
        assert result.outcome.reason == RejectionReason.MALFORMED
        assert result.payload is None

    def test_missing_required_field(self):
        payload = research_payload()
        del payload["sources"]
        result = validate(json.dumps(payload), entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.MISSING_FIELD
        assert "sources" in result.outcome.detail

    def test_missing_nested_field(self):
        payload = research_payload(useCaseAnalysis={"idealUseCases": ["chat"], "strengths": ["fast"]})
        result = validate(json.dumps(payload), entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.MISSING_FIELD
        assert "useCaseAnalysis.limitations" in result.outcome.detail

    def test_bad_confidence(self):
        result = validate(research_reply(confidence="certain"), entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.INVALID_VALUE

    def test_confidence_is_normalised(self):
        result = validate(research_reply(confidence=" Medium "), entity=catalog_model("m1"))
        assert result.outcome.fields.confidence == "medium"

    def test_non_string_list(self):
        result = validate(research_reply(sources=["https://a", 3]), entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.INVALID_VALUE

    def test_tier_out_of_range(self):
        result = validate(
            research_reply(performanceAnalysis={"qualityTier": 9}),
            entity=catalog_model("m1"),
        )
        assert result.outcome.reason == RejectionReason.INVALID_VALUE
        assert "qualityTier" in result.outcome.detail

    def test_non_boolean_capability_flag(self):
        result = validate(
            research_reply(capabilities={"supportsVision": "yes"}),
            entity=catalog_model("m1"),
        )
        assert result.outcome.reason == RejectionReason.INVALID_VALUE

    def test_negative_context_window(self):
        result = validate(
            research_reply(capabilities={"contextWindow": -1}),
            entity=catalog_model("m1"),
        )
        assert result.outcome.reason == RejectionReason.INVALID_VALUE

    def test_infinite_context_window_is_malformed(self):
        reply = research_reply().replace("128000", "Infinity")
        result = validate(reply, entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.MALFORMED

    def test_overflowing_context_window(self):
        # 1e400 is valid JSON but parses to an infinite float
        reply = research_reply().replace("128000", "1e400")
        result = validate(reply, entity=catalog_model("m1"))
        assert result.outcome.reason == RejectionReason.INVALID_VALUE
        assert "contextWindow" in result.outcome.detail


class TestCapabilityConflicts:

    def test_embedding_model_claiming_vision(self):
        result = validate(research_reply(), entity=catalog_model("text-embedding-3-large"))
        assert result.outcome.reason == RejectionReason.CAPABILITY_CONFLICT
        assert "supportsVision" in result.outcome.detail

    def test_claude_claiming_audio(self):
        reply = research_reply(capabilities={"supportsAudio": True, "supportsVision": True})
        result = validate(reply, entity=catalog_model("claude-3-opus"))
        assert result.outcome.reason == RejectionReason.CAPABILITY_CONFLICT

    def test_family_matched_on_display_name(self):
        entity = catalog_model("m-whisper", name="Whisper Large v3")
        result = validate(research_reply(), entity=entity)
        assert result.outcome.reason == RejectionReason.CAPABILITY_CONFLICT

    def test_denying_unsupported_flag_is_fine(self):
        reply = research_reply(capabilities={"supportsVision": False, "supportsAudio": False})
        assert validate(reply, entity=catalog_model("text-embedding-3-small")).accepted

    def test_custom_schema_without_constraints(self):
        schema = EntitySchema(family_constraints=())
        assert validate(research_reply(), schema, entity=catalog_model("text-embedding-3-large")).accepted


class TestValidatePayload:

    def test_non_dict_payload(self):
        outcome = validate_payload(["not", "an", "object"])
        assert outcome.reason == RejectionReason.MALFORMED

    def test_already_parsed_payload(self):
        assert isinstance(validate_payload(research_payload(), entity=catalog_model("m1")), Accepted)

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_integer_field(self, value):
        payload = research_payload()
        payload["capabilities"]["contextWindow"] = value
        outcome = validate_payload(payload, entity=catalog_model("m1"))
        assert outcome.reason == RejectionReason.INVALID_VALUE
