"""Read-only aggregate over recent executions."""

from __future__ import annotations

from typing import Any, Dict

from model_enrichment.jobs.models import ExecutionStatus
from model_enrichment.storage.base import ExecutionStore

STATS_WINDOW = 100


def get_workflow_stats(execution_store: ExecutionStore, window: int = STATS_WINDOW) -> Dict[str, Any]:
    """
    Summarise the most recent executions.

    Returns:
        Dict with total_executions, counts by status, estimated/actual cost
        totals, models enriched (test-mode runs excluded) and last_run_at
    """
    executions = execution_store.list(limit=window)
    by_status = {status.value: 0 for status in ExecutionStatus}
    for execution in executions:
        by_status[execution.status.value] += 1

    return {
        "total_executions": len(executions),
        "by_status": by_status,
        "models_enriched": sum(
            e.succeeded_entities for e in executions if not e.config.test_mode
        ),
        "models_rejected": sum(e.rejected_entities for e in executions),
        "models_failed": sum(e.failed_entities for e in executions),
        "total_cost": round(sum(e.accumulated_cost for e in executions), 6),
        "total_estimated_cost": round(sum(e.estimated_cost for e in executions), 6),
        "last_run_at": executions[0].started_at if executions else None,
    }


__all__ = ["get_workflow_stats"]
