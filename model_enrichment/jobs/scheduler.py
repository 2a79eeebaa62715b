"""
Batch Scheduler - drives one execution through its batches.

Flow per run:
1. start(): validate config, resolve entities, pre-flight cost ceiling,
   create the execution as queued (nothing external called yet)
2. run(): credential check -> running -> for each batch:
   stop checkpoint -> cost check -> for each entity:
   stop checkpoint -> research -> validate -> merge (or log in test mode)
3. Terminal transition: completed, failed or stopped

Entities are processed strictly sequentially inside a run. Per-entity
failures (upstream errors, rejections, vanished models) are logged and
counted; they never abort the batch. Independent runs execute on their own
threads and share nothing but the stores.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from model_enrichment import config as settings
from model_enrichment.apply.merge import EnrichmentMerger
from model_enrichment.enrichment.cost import estimate_for_config
from model_enrichment.enrichment.models import EnrichmentConfig, EntityResearchResult, Rejected
from model_enrichment.enrichment.research import ResearchClient
from model_enrichment.enrichment.validators import (
    DEFAULT_ENTITY_SCHEMA,
    EntitySchema,
    validate,
    validate_payload,
)
from model_enrichment.errors import (
    ConfigError,
    CostExceeded,
    EnrichmentError,
    InvalidCredentials,
    NotFound,
    StorageError,
    UpstreamError,
    ValidationRejected,
)
from model_enrichment.jobs.models import (
    Execution,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    new_execution_id,
    utcnow_iso,
)
from model_enrichment.jobs.selection import select_eligible
from model_enrichment.jobs.state import ExecutionStateMachine, log_event, request_stop
from model_enrichment.storage.base import ExecutionStore, ModelStore

logger = logging.getLogger(__name__)


def partition(entity_ids: List[str], batch_size: int) -> List[List[str]]:
    """Consecutive batches of at most batch_size, order preserved."""
    return [entity_ids[i:i + batch_size] for i in range(0, len(entity_ids), batch_size)]


def _dedupe(entity_ids: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for entity_id in entity_ids:
        if entity_id and entity_id not in seen:
            seen.add(entity_id)
            ordered.append(entity_id)
    return ordered


class BatchScheduler:
    """Starts, runs and stops enrichment executions."""

    def __init__(
        self,
        model_store: ModelStore,
        execution_store: ExecutionStore,
        research_client: Optional[ResearchClient] = None,
        entity_schema: EntitySchema = DEFAULT_ENTITY_SCHEMA,
        max_execution_cost: float = settings.MAX_EXECUTION_COST_USD,
        batch_pause_secs: float = settings.BATCH_PAUSE_SECS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            model_store: Catalog models
            execution_store: Execution records and logs
            research_client: Research backend (default: per-provider client)
            entity_schema: Validator schema
            max_execution_cost: Pre-flight ceiling for a whole run (USD)
            batch_pause_secs: Pause between batches
            sleep: Sleep function (injected in tests)
        """
        self.model_store = model_store
        self.execution_store = execution_store
        self.research_client = research_client or ResearchClient()
        self.merger = EnrichmentMerger(model_store)
        self.entity_schema = entity_schema
        self.max_execution_cost = max_execution_cost
        self.batch_pause_secs = batch_pause_secs
        self._sleep = sleep
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # START
    # =========================================================================

    def start(
        self,
        config: EnrichmentConfig,
        entity_ids: Optional[List[str]] = None,
        wait: bool = False,
    ) -> Execution:
        """
        Accept a start request and create the execution as queued.

        Args:
            config: Run configuration (copied onto the execution)
            entity_ids: Ordered model ids; None or empty means all eligible
            wait: Run inline instead of on a background thread

        Returns:
            Execution snapshot (queued, or terminal when wait=True)

        Raises:
            ConfigError: Missing credentials or nothing to enrich
            CostExceeded: Projected cost above MAX_EXECUTION_COST_USD
        """
        config.resolve_api_key()

        if entity_ids:
            ids = _dedupe(entity_ids)
        else:
            ids = select_eligible(self.model_store, config)
        if not ids:
            raise ConfigError("No models to enrich")

        estimated = estimate_for_config(len(ids), config)
        if estimated > self.max_execution_cost:
            raise CostExceeded(
                f"Estimated cost ${estimated:.2f} exceeds limit ${self.max_execution_cost:.2f}",
                details={"estimated_cost": estimated, "limit": self.max_execution_cost},
            )

        mode = "test mode" if config.test_mode else "production"
        execution = Execution(
            id=new_execution_id(),
            config=config,
            entity_ids=ids,
            estimated_cost=estimated,
            total_entities=len(ids),
            started_at=utcnow_iso(),
            logs=[LogEntry(
                message=(
                    f"Enrichment queued ({mode}): {len(ids)} models, batch size {config.batch_size}, "
                    f"provider {config.provider.value}, model {config.model}, "
                    f"estimated cost ${estimated:.4f}"
                ),
            )],
        )
        self.execution_store.create(execution)
        log_event(
            "execution_queued",
            execution_id=execution.id,
            total_entities=len(ids),
            estimated_cost=estimated,
            test_mode=config.test_mode,
        )

        if wait:
            self.run(execution)
            return self.execution_store.get(execution.id)

        thread = threading.Thread(
            target=self.run,
            args=(execution,),
            name=f"enrichment-{execution.id}",
            daemon=True,
        )
        with self._lock:
            self._threads[execution.id] = thread
        thread.start()
        return execution

    def start_single(self, entity_id: str, config: EnrichmentConfig, wait: bool = False) -> Execution:
        """
        Production update of one model: test mode off, batch size 1.

        Raises:
            NotFound: Model does not exist
        """
        if self.model_store.get(entity_id) is None:
            raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id})
        return self.start(config.for_single_update(), [entity_id], wait=wait)

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self, execution: Execution) -> None:
        """Drive a queued execution to a terminal state. Never raises."""
        machine = ExecutionStateMachine(self.execution_store, execution)
        try:
            self._run(machine)
        except EnrichmentError as e:
            self._fail(machine, f"Enrichment failed: {e.code}: {e.message}", e.to_dict())
        except Exception as e:
            logger.exception("Unexpected error in execution %s", execution.id)
            self._fail(machine, f"Unexpected error: {e}", {"code": "internal_error", "message": str(e)})
        finally:
            with self._lock:
                self._threads.pop(execution.id, None)

    def _fail(self, machine: ExecutionStateMachine, message: str, error: Dict[str, Any]) -> None:
        try:
            machine.transition(ExecutionStatus.FAILED, message, error=error)
        except EnrichmentError as e:
            logger.error("Could not record failure of %s: %s", machine.execution.id, e)

    def _run(self, machine: ExecutionStateMachine) -> None:
        execution = machine.execution
        config = execution.config

        if machine.stop_requested():
            machine.transition(ExecutionStatus.STOPPED, "Stopped before processing started")
            return

        try:
            self.research_client.check_credentials(config)
        except (ConfigError, InvalidCredentials) as e:
            machine.transition(
                ExecutionStatus.FAILED,
                f"Credential check failed: {e.message}",
                error=e.to_dict(),
            )
            return

        batches = partition(execution.entity_ids, config.batch_size)
        machine.transition(
            ExecutionStatus.RUNNING,
            f"Processing {execution.total_entities} models in {len(batches)} batches",
        )

        for index, batch in enumerate(batches):
            if machine.stop_requested():
                self._stop(machine)
                return

            batch_estimate = estimate_for_config(len(batch), config)
            if execution.accumulated_cost + batch_estimate > config.max_cost_per_batch:
                error = CostExceeded(
                    f"Cost limit exceeded before batch {index + 1}: "
                    f"${execution.accumulated_cost:.4f} spent + ${batch_estimate:.4f} estimated "
                    f"> ${config.max_cost_per_batch:.2f}",
                    details={
                        "accumulated_cost": execution.accumulated_cost,
                        "batch_estimate": batch_estimate,
                        "max_cost_per_batch": config.max_cost_per_batch,
                    },
                )
                machine.transition(ExecutionStatus.FAILED, error.message, error=error.to_dict())
                return

            machine.log(f"Starting batch {index + 1}/{len(batches)} ({len(batch)} models)")
            for entity_id in batch:
                if machine.stop_requested():
                    self._stop(machine)
                    return
                self._process_entity(machine, entity_id)
                execution.processed_entities += 1
                machine.save_progress()

            execution.batches_processed += 1
            machine.save_progress()

            if index < len(batches) - 1 and self.batch_pause_secs > 0:
                self._sleep(self.batch_pause_secs)

        action = "validated (not saved)" if config.test_mode else "enriched"
        machine.transition(
            ExecutionStatus.COMPLETED,
            f"Enrichment completed: {execution.succeeded_entities} {action}, "
            f"{execution.rejected_entities} rejected, {execution.failed_entities} failed. "
            f"Total cost ${execution.accumulated_cost:.4f}",
        )

    def _stop(self, machine: ExecutionStateMachine) -> None:
        execution = machine.execution
        machine.transition(
            ExecutionStatus.STOPPED,
            f"Stopped by user after {execution.processed_entities}/{execution.total_entities} models",
        )

    def _process_entity(self, machine: ExecutionStateMachine, entity_id: str) -> None:
        execution = machine.execution
        config = execution.config

        entity = self.model_store.get(entity_id)
        if entity is None:
            execution.failed_entities += 1
            machine.log(f"Model {entity_id} not found, skipped", LogLevel.WARN, entity_id)
            return

        name = entity.get("name") or entity_id
        try:
            raw = self.research_client.research(entity, config)
        except UpstreamError as e:
            execution.failed_entities += 1
            machine.log(f"Research failed for {name}: {e.code}: {e.message}", LogLevel.ERROR, entity_id)
            return

        execution.accumulated_cost += raw.cost
        result = validate(raw.text, self.entity_schema, entity)
        result.model_used = raw.model_used
        result.cost = raw.cost

        if isinstance(result.outcome, Rejected):
            execution.rejected_entities += 1
            rejection = ValidationRejected(result.outcome.reason.value, result.outcome.detail)
            machine.log(
                f"ValidationRejected for {name}: {rejection.reason}: {rejection.message}",
                LogLevel.WARN,
                entity_id,
            )
            return

        summary = json.dumps(result.outcome.fields.summary())
        if config.test_mode:
            execution.succeeded_entities += 1
            machine.log(f"Test mode: {name} accepted, not saved. {summary}", entity_id=entity_id)
            return

        try:
            self.merger.merge(entity_id, result, execution.id)
        except NotFound:
            execution.failed_entities += 1
            machine.log(f"Model {name} vanished before merge, skipped", LogLevel.WARN, entity_id)
            return
        except StorageError as e:
            execution.failed_entities += 1
            machine.log(f"Saving {name} failed: {e.message}", LogLevel.ERROR, entity_id)
            return

        execution.succeeded_entities += 1
        machine.log(f"Enriched {name} via {raw.model_used} (${raw.cost:.4f}). {summary}", entity_id=entity_id)

    # =========================================================================
    # SINGLE-MODEL TEST / APPLY
    # =========================================================================

    def test_single(self, entity_id: str, config: EnrichmentConfig) -> EntityResearchResult:
        """
        Research and validate one model without writing anything.

        Raises:
            NotFound, ConfigError, InvalidCredentials, UpstreamError
        """
        entity = self.model_store.get(entity_id)
        if entity is None:
            raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id})

        raw = self.research_client.research(entity, config)
        result = validate(raw.text, self.entity_schema, entity)
        result.model_used = raw.model_used
        result.cost = raw.cost
        logger.info("Test research for %s: accepted=%s model=%s cost=%.4f",
                    entity_id, result.accepted, raw.model_used, raw.cost)
        return result

    def apply_result(self, entity_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge a previously tested research payload.

        Raises:
            NotFound: Model does not exist
            ValidationRejected: Payload fails validation
        """
        entity = self.model_store.get(entity_id)
        if entity is None:
            raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id})

        outcome = validate_payload(payload, self.entity_schema, entity)
        if isinstance(outcome, Rejected):
            raise ValidationRejected(outcome.reason.value, outcome.detail)

        result = EntityResearchResult(
            entity_id=entity_id,
            raw_response=json.dumps(payload),
            outcome=outcome,
            payload=payload,
        )
        return self.merger.merge(entity_id, result)

    # =========================================================================
    # STOP / QUERY
    # =========================================================================

    def stop(self, execution_id: str) -> Execution:
        """Request a stop; idempotent. Returns the current snapshot."""
        request_stop(self.execution_store, execution_id)
        return self.execution_store.get(execution_id)

    def stop_all(self) -> List[str]:
        """Request a stop on every queued or running execution."""
        stopped = []
        for execution in self.execution_store.list_active():
            if request_stop(self.execution_store, execution.id):
                stopped.append(execution.id)
        logger.info("Stop requested for %d executions", len(stopped))
        return stopped

    def get_execution(self, execution_id: str) -> Execution:
        return self.execution_store.get(execution_id)

    def list_executions(self, limit: int = 50) -> List[Execution]:
        return self.execution_store.list(limit=max(1, min(limit, 100)))

    def wait_for(self, execution_id: str, timeout: Optional[float] = None) -> Execution:
        """Block until a background run finishes (CLI and tests)."""
        with self._lock:
            thread = self._threads.get(execution_id)
        if thread is not None:
            thread.join(timeout)
        return self.execution_store.get(execution_id)


__all__ = ["BatchScheduler", "partition"]
