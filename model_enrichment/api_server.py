#!/usr/bin/env python3
"""
API Server for the model enrichment engine.
Provides HTTP endpoints to start, stop and inspect enrichment runs.

Errors are returned as {"success": false, "error": {"code", "message"}}
with the status code carried by the EnrichmentError subclass.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from model_enrichment import config as settings
from model_enrichment.enrichment.models import EnrichmentConfig
from model_enrichment.errors import ConfigError, EnrichmentError
from model_enrichment.jobs.scheduler import BatchScheduler
from model_enrichment.jobs.selection import list_eligible_entities
from model_enrichment.jobs.stats import get_workflow_stats
from model_enrichment.storage import get_stores

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


def build_scheduler() -> BatchScheduler:
    model_store, execution_store = get_stores()
    return BatchScheduler(model_store, execution_store)


def _body() -> dict:
    data = request.get_json(silent=True)
    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Request body must be a JSON object")
    return data


def _parse_limit(raw: Optional[str]) -> int:
    try:
        limit = int(raw) if raw is not None else DEFAULT_LIST_LIMIT
    except ValueError:
        limit = DEFAULT_LIST_LIMIT
    return max(1, min(limit, 100))


def create_app(scheduler: Optional[BatchScheduler] = None) -> Flask:
    """
    Build the Flask app.

    Args:
        scheduler: Scheduler override (tests); defaults to the configured stores
    """
    app = Flask(__name__)
    CORS(app)
    app.extensions["enrichment_scheduler"] = scheduler or build_scheduler()

    def get_scheduler() -> BatchScheduler:
        return app.extensions["enrichment_scheduler"]

    @app.errorhandler(EnrichmentError)
    def handle_enrichment_error(e: EnrichmentError):
        if e.http_status >= 500:
            logger.error("Request failed: %s", e)
        return jsonify({"success": False, "error": e.to_dict()}), e.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error")
        return jsonify({
            "success": False,
            "error": {"code": "internal_error", "message": str(e)},
        }), 500

    @app.route("/health", methods=["GET"])
    def health():
        """Health check endpoint"""
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # =========================================================================
    # RUNS
    # =========================================================================

    @app.route("/workflows/enrichment/start", methods=["POST"])
    def start_enrichment():
        """
        Start an enrichment run in the background.

        Expected payload:
        {
            "config": {"provider": "generative-primary", "apiKey": "...", "batchSize": 5, ...},
            "modelIds": ["openai-gpt-4o", ...]   # optional, default: all eligible
        }
        """
        data = _body()
        config = EnrichmentConfig.from_dict(data.get("config"))
        entity_ids = data.get("modelIds") or data.get("entityIds") or None
        if entity_ids is not None and not isinstance(entity_ids, list):
            raise ConfigError("modelIds must be a list")

        execution = get_scheduler().start(config, entity_ids)
        return jsonify({
            "success": True,
            "executionId": execution.id,
            "status": execution.status.value,
            "estimatedCost": execution.estimated_cost,
            "totalModels": execution.total_entities,
        })

    @app.route("/workflows/update-single", methods=["POST"])
    def update_single():
        """Production update of one model (test mode off, batch size 1)."""
        data = _body()
        model_id = data.get("modelId")
        if not model_id:
            raise ConfigError("modelId is required")
        config = EnrichmentConfig.from_dict(data.get("config"))

        execution = get_scheduler().start_single(model_id, config)
        return jsonify({
            "success": True,
            "executionId": execution.id,
            "status": execution.status.value,
            "estimatedCost": execution.estimated_cost,
        })

    @app.route("/workflows/test-single", methods=["POST"])
    def test_single():
        """Research and validate one model; nothing is written."""
        data = _body()
        model_id = data.get("modelId")
        if not model_id:
            raise ConfigError("modelId is required")
        config = EnrichmentConfig.from_dict(data.get("config"))

        result = get_scheduler().test_single(model_id, config)
        return jsonify({"success": True, "modelId": model_id, "result": result.to_dict()})

    @app.route("/workflows/apply-test-results", methods=["POST"])
    def apply_test_results():
        """Merge a payload previously returned by test-single."""
        data = _body()
        model_id = data.get("modelId")
        parsed = data.get("parsedData")
        if not model_id or parsed is None:
            raise ConfigError("modelId and parsedData are required")

        updates = get_scheduler().apply_result(model_id, parsed)
        return jsonify({"success": True, "modelId": model_id, "updatedFields": sorted(updates)})

    # =========================================================================
    # STOP
    # =========================================================================

    @app.route("/workflows/execution/stop", methods=["POST"])
    def stop_execution():
        execution_id = _body().get("executionId")
        if not execution_id:
            raise ConfigError("executionId is required")

        execution = get_scheduler().stop(execution_id)
        return jsonify({
            "success": True,
            "executionId": execution_id,
            "status": execution.status.value,
            "stopRequested": execution.stop_requested,
        })

    @app.route("/workflows/execution/stop-all", methods=["POST"])
    def stop_all_executions():
        stopped = get_scheduler().stop_all()
        return jsonify({"success": True, "stoppedExecutions": stopped, "count": len(stopped)})

    # =========================================================================
    # QUERIES
    # =========================================================================

    @app.route("/workflows/execution/<execution_id>", methods=["GET"])
    def get_execution(execution_id: str):
        execution = get_scheduler().get_execution(execution_id)
        return jsonify({"success": True, "execution": execution.to_api_dict()})

    @app.route("/workflows/executions", methods=["GET"])
    def list_executions():
        limit = _parse_limit(request.args.get("limit"))
        executions = get_scheduler().list_executions(limit)
        return jsonify({
            "success": True,
            "executions": [e.to_dict() for e in executions],
            "count": len(executions),
        })

    @app.route("/workflows/stats", methods=["GET"])
    def workflow_stats():
        stats = get_workflow_stats(get_scheduler().execution_store)
        return jsonify({"success": True, "stats": stats})

    @app.route("/workflows/models-for-enrichment", methods=["GET"])
    def models_for_enrichment():
        scheduler = get_scheduler()
        models = list_eligible_entities(
            scheduler.model_store,
            scheduler.execution_store,
            provider_id=request.args.get("providerId") or None,
        )
        return jsonify({"success": True, "models": models, "count": len(models)})

    return app


def main():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = create_app()
    app.run(host="0.0.0.0", port=settings.API_PORT, debug=False)


if __name__ == "__main__":
    main()
