"""Tests for the HTTP API (Flask test client, in-memory stores)."""

import json

import pytest

from model_enrichment.api_server import create_app
from model_enrichment.jobs.models import Execution, LogEntry, utcnow_iso

from conftest import research_payload

CONFIG = {"provider": "gemini", "geminiApiKey": "test-key", "batchSize": 2, "maxCostPerBatch": 1.0}


@pytest.fixture
def client(scheduler):
    app = create_app(scheduler)
    app.config["TESTING"] = True
    return app.test_client()


def queued_execution(execution_store, config, execution_id="enrichment_6_0001"):
    execution = Execution(id=execution_id, config=config, entity_ids=["m1"], total_entities=1,
                          started_at=utcnow_iso(), logs=[LogEntry(message="queued")])
    execution_store.create(execution)
    return execution


class TestStart:

    def test_start_returns_execution_id(self, client, scheduler):
        resp = client.post("/workflows/enrichment/start", json={"config": CONFIG, "modelIds": ["m1", "m2"]})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["totalModels"] == 2
        assert body["executionId"].startswith("enrichment_")
        assert body["estimatedCost"] == pytest.approx(2 * 0.0325)
        finished = scheduler.wait_for(body["executionId"], timeout=10)
        assert finished.status.value == "completed"

    def test_missing_provider_is_400(self, client, execution_store):
        resp = client.post("/workflows/enrichment/start", json={"config": {"batchSize": 2}})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["success"] is False
        assert body["error"]["code"] == "config_error"
        assert execution_store.list() == []

    def test_invalid_batch_size_is_400(self, client):
        resp = client.post("/workflows/enrichment/start", json={"config": {**CONFIG, "batchSize": 0}})
        assert resp.status_code == 400

    def test_model_ids_must_be_a_list(self, client):
        resp = client.post("/workflows/enrichment/start", json={"config": CONFIG, "modelIds": "m1"})
        assert resp.status_code == 400

    @pytest.mark.parametrize("path", [
        "/workflows/enrichment/start",
        "/workflows/update-single",
        "/workflows/test-single",
        "/workflows/apply-test-results",
        "/workflows/execution/stop",
    ])
    def test_non_object_body_is_400(self, client, execution_store, path):
        resp = client.post(path, json=[{"config": CONFIG, "modelId": "m1"}])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "config_error"
        assert execution_store.list() == []

    def test_string_config_is_400(self, client, execution_store):
        resp = client.post("/workflows/enrichment/start", json={"config": "gemini", "modelIds": ["m1"]})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["message"] == "Configuration must be an object"
        assert execution_store.list() == []

    def test_update_single_unknown_model_is_404(self, client):
        resp = client.post("/workflows/update-single", json={"modelId": "ghost", "config": CONFIG})
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "not_found"


class TestSingleModel:

    def test_test_single_returns_parsed_data(self, client, model_store):
        resp = client.post("/workflows/test-single", json={"modelId": "m1", "config": CONFIG})
        assert resp.status_code == 200
        result = resp.get_json()["result"]
        assert result["accepted"] is True
        assert result["parsed_data"]["confidence"] == "high"
        assert model_store.update_calls == []

    def test_apply_test_results(self, client, model_store):
        resp = client.post("/workflows/apply-test-results",
                           json={"modelId": "m1", "parsedData": research_payload()})
        assert resp.status_code == 200
        assert "dataSource.enrichment" in resp.get_json()["updatedFields"]
        assert model_store.get("m1")["dataSource"]["dataQuality"] == "estimated"

    def test_apply_invalid_payload_is_422(self, client, model_store):
        resp = client.post("/workflows/apply-test-results",
                           json={"modelId": "m1", "parsedData": {"confidence": "high"}})
        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "validation_rejected"
        assert error["reason"] == "missing_field"
        assert model_store.update_calls == []

    def test_apply_non_finite_number_is_422(self, client, model_store):
        payload = research_payload()
        payload["capabilities"]["contextWindow"] = float("inf")
        # json.dumps writes the bare Infinity token
        resp = client.post("/workflows/apply-test-results",
                           data=json.dumps({"modelId": "m1", "parsedData": payload}),
                           content_type="application/json")
        assert resp.status_code == 422
        assert resp.get_json()["error"]["reason"] == "invalid_value"
        assert model_store.update_calls == []


class TestStop:

    def test_stop_requires_execution_id(self, client):
        assert client.post("/workflows/execution/stop", json={}).status_code == 400

    def test_stop_unknown_execution_is_404(self, client):
        resp = client.post("/workflows/execution/stop", json={"executionId": "enrichment_missing"})
        assert resp.status_code == 404

    def test_stop_sets_flag(self, client, execution_store, config):
        execution = queued_execution(execution_store, config)
        resp = client.post("/workflows/execution/stop", json={"executionId": execution.id})
        assert resp.status_code == 200
        assert resp.get_json()["stopRequested"] is True

    def test_stop_all(self, client, execution_store, config):
        queued_execution(execution_store, config, "enrichment_6_0001")
        queued_execution(execution_store, config, "enrichment_6_0002")
        body = client.post("/workflows/execution/stop-all").get_json()
        assert body["count"] == 2
        assert sorted(body["stoppedExecutions"]) == ["enrichment_6_0001", "enrichment_6_0002"]


class TestQueries:

    def test_health(self, client):
        assert client.get("/health").get_json()["status"] == "healthy"

    def test_get_execution_includes_logs_and_progress(self, client, scheduler, config):
        execution = scheduler.start(config, ["m1"], wait=True)
        resp = client.get(f"/workflows/execution/{execution.id}")
        assert resp.status_code == 200
        snapshot = resp.get_json()["execution"]
        assert snapshot["status"] == "completed"
        assert snapshot["succeeded"] is True
        assert snapshot["progress"] == 100
        assert snapshot["logs"][0]["message"].startswith("Enrichment queued")
        assert "api_key" not in snapshot["config"]

    def test_get_unknown_execution_is_404(self, client):
        assert client.get("/workflows/execution/enrichment_nope").status_code == 404

    def test_list_executions_bad_limit_uses_default(self, client, scheduler, config):
        scheduler.start(config, ["m1"], wait=True)
        body = client.get("/workflows/executions?limit=abc").get_json()
        assert body["count"] == 1

    def test_stats(self, client, scheduler, config):
        scheduler.start(config, ["m1", "m2"], wait=True)
        stats = client.get("/workflows/stats").get_json()["stats"]
        assert stats["total_executions"] == 1
        assert stats["by_status"]["completed"] == 1
        assert stats["models_enriched"] == 2

    def test_models_for_enrichment(self, client):
        body = client.get("/workflows/models-for-enrichment").get_json()
        assert body["count"] == 3
        assert {m["id"] for m in body["models"]} == {"m1", "m2", "m3"}
