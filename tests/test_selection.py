"""Tests for eligible-model selection and priority listing."""

from datetime import datetime, timedelta, timezone

import pytest

from model_enrichment.enrichment.models import EnrichmentConfig
from model_enrichment.jobs.models import Execution, ExecutionStatus, utcnow_iso
from model_enrichment.jobs.selection import (
    as_datetime,
    list_eligible_entities,
    score_model,
    select_eligible,
)
from model_enrichment.storage.memory_store import InMemoryModelStore

from conftest import catalog_model

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def enriched_model(model_id, days_ago, quality="estimated", **fields):
    return catalog_model(
        model_id,
        tags=["chat", "ai-enriched"],
        dataSource={
            "dataQuality": quality,
            "lastSuccessfulUpdate": (NOW - timedelta(days=days_ago)).isoformat(),
        },
        **fields,
    )


@pytest.fixture
def catalog():
    return InMemoryModelStore([
        enriched_model("fresh", 2, providerId="mistral"),
        enriched_model("month-old", 45, providerId="mistral"),
        catalog_model("never", providerId="mistral"),
        enriched_model("verified", 1, quality="verified", providerId="anthropic"),
    ])


class TestAsDatetime:

    def test_iso_string_with_z(self):
        assert as_datetime("2025-01-01T00:00:00Z") == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_naive_datetime_assumed_utc(self):
        assert as_datetime(datetime(2025, 1, 1)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "not a date", 12345])
    def test_unusable_values(self, value):
        assert as_datetime(value) is None


class TestScoring:

    def test_unknown_quality_never_enriched_ranks_highest(self):
        scored = score_model(catalog_model("x", providerId="openai"), NOW)
        # unknown +1000, never enriched +400, unknown +150, popular provider +25
        assert scored.priority == 1575

    def test_recently_enriched_scores_low(self):
        scored = score_model(enriched_model("x", 2, providerId="mistral"), NOW)
        assert scored.priority == 100
        assert scored.days_since_update == 2

    def test_stale_enrichment_scores_higher(self):
        stale = score_model(enriched_model("x", 120, providerId="mistral"), NOW)
        recent = score_model(enriched_model("y", 10, providerId="mistral"), NOW)
        assert stale.priority == 400
        assert recent.priority == 150


class TestSelectEligible:

    def test_ordered_by_priority(self, catalog):
        ids = select_eligible(catalog, EnrichmentConfig(), now=NOW)
        assert ids[0] == "never"
        assert ids[1] == "month-old"
        assert set(ids) == {"fresh", "month-old", "never", "verified"}

    def test_provider_filter(self, catalog):
        ids = select_eligible(catalog, EnrichmentConfig(provider_id="anthropic"), now=NOW)
        assert ids == ["verified"]

    def test_recency_filter_excludes_recent_updates(self, catalog):
        config = EnrichmentConfig(filter_by_recency=True, max_days_since_update=30)
        ids = select_eligible(catalog, config, now=NOW)
        assert "fresh" not in ids
        assert "verified" not in ids
        assert ids == ["never", "month-old"]

    def test_data_quality_filter(self, catalog):
        config = EnrichmentConfig(filter_by_data_quality=True, allowed_data_qualities=("unknown",))
        assert select_eligible(catalog, config, now=NOW) == ["never"]

    def test_limit(self, catalog):
        assert len(select_eligible(catalog, EnrichmentConfig(), now=NOW, limit=2)) == 2


class TestListEligibleEntities:

    def test_summaries_sorted_by_priority_then_name(self, catalog):
        rows = list_eligible_entities(catalog, now=NOW)
        by_id = {row["id"]: row for row in rows}
        assert by_id["never"]["priority"] == "high"
        assert by_id["never"]["enrichmentStatus"] == "never"
        assert by_id["never"]["lastEnriched"] is None
        assert by_id["month-old"]["priority"] == "high"
        assert by_id["month-old"]["enrichmentStatus"] == "stale"
        assert by_id["month-old"]["daysSinceUpdate"] == 45
        assert by_id["fresh"]["priority"] == "low"
        assert by_id["verified"]["enrichmentStatus"] == "recent"
        assert [row["id"] for row in rows] == ["month-old", "never", "fresh", "verified"]

    def test_flags_models_in_active_executions(self, catalog, execution_store):
        execution = Execution(
            id="enrichment_5_feed",
            config=EnrichmentConfig(api_key="k"),
            status=ExecutionStatus.RUNNING,
            entity_ids=["never", "fresh"],
            total_entities=2,
            processed_entities=1,
            started_at=utcnow_iso(),
        )
        execution_store.create(execution)
        rows = {row["id"]: row for row in list_eligible_entities(catalog, execution_store, now=NOW)}
        assert rows["never"]["isBeingProcessed"] is True
        assert rows["never"]["processingProgress"] == 50
        assert rows["never"]["processingStatus"] == "Processing (1/2)"
        assert rows["month-old"]["isBeingProcessed"] is False

    def test_provider_filter(self, catalog):
        rows = list_eligible_entities(catalog, provider_id="anthropic", now=NOW)
        assert [row["id"] for row in rows] == ["verified"]
