"""Tests for execution status transitions and the cooperative stop flag."""

import pytest

from model_enrichment.enrichment.models import EnrichmentConfig
from model_enrichment.errors import NotFound
from model_enrichment.jobs.models import (
    TERMINAL_STATUSES,
    Execution,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    utcnow_iso,
)
from model_enrichment.jobs.state import (
    ExecutionStateMachine,
    IllegalTransition,
    is_allowed,
    request_stop,
)
from model_enrichment.storage.memory_store import InMemoryExecutionStore


@pytest.fixture
def execution(execution_store):
    execution = Execution(
        id="enrichment_1_abcd",
        config=EnrichmentConfig(api_key="k"),
        entity_ids=["m1", "m2"],
        total_entities=2,
        started_at=utcnow_iso(),
        logs=[LogEntry(message="Execution queued")],
    )
    execution_store.create(execution)
    return execution


@pytest.fixture
def machine(execution_store, execution):
    return ExecutionStateMachine(execution_store, execution)


class TestTransitions:

    @pytest.mark.parametrize("current,target,allowed", [
        (ExecutionStatus.QUEUED, ExecutionStatus.RUNNING, True),
        (ExecutionStatus.QUEUED, ExecutionStatus.FAILED, True),
        (ExecutionStatus.QUEUED, ExecutionStatus.STOPPED, True),
        (ExecutionStatus.QUEUED, ExecutionStatus.COMPLETED, False),
        (ExecutionStatus.RUNNING, ExecutionStatus.QUEUED, False),
        (ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING, False),
        (ExecutionStatus.STOPPED, ExecutionStatus.RUNNING, False),
    ])
    def test_allowed_table(self, current, target, allowed):
        assert is_allowed(current, target) is allowed

    def test_each_transition_appends_one_log_entry(self, machine, execution_store, execution):
        machine.transition(ExecutionStatus.RUNNING, "Processing 2 models")
        machine.transition(ExecutionStatus.COMPLETED, "Done")
        stored = execution_store.get(execution.id)
        assert [e.message for e in stored.logs] == ["Execution queued", "Processing 2 models", "Done"]
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.completed_at is not None

    def test_queued_cannot_complete(self, machine):
        with pytest.raises(IllegalTransition):
            machine.transition(ExecutionStatus.COMPLETED, "skipped running")

    def test_terminal_state_is_final(self, machine, execution_store, execution):
        machine.transition(ExecutionStatus.RUNNING, "start")
        machine.transition(ExecutionStatus.STOPPED, "stopped")
        assert machine.transition(ExecutionStatus.FAILED, "late failure") is False
        stored = execution_store.get(execution.id)
        assert stored.status == ExecutionStatus.STOPPED
        assert stored.logs[-1].message == "stopped"

    @pytest.mark.parametrize("target,level", [
        (ExecutionStatus.COMPLETED, LogLevel.INFO),
        (ExecutionStatus.FAILED, LogLevel.ERROR),
        (ExecutionStatus.STOPPED, LogLevel.WARN),
    ])
    def test_final_entry_level(self, machine, execution_store, execution, target, level):
        machine.transition(ExecutionStatus.RUNNING, "start")
        machine.transition(target, "end")
        assert execution_store.get(execution.id).logs[-1].level == level

    def test_failed_records_error(self, machine, execution_store, execution):
        machine.transition(ExecutionStatus.FAILED, "boom", error={"code": "cost_exceeded", "message": "boom"})
        stored = execution_store.get(execution.id)
        assert stored.error == {"code": "cost_exceeded", "message": "boom"}

    def test_terminal_write_includes_counters(self, machine, execution_store, execution):
        machine.transition(ExecutionStatus.RUNNING, "start")
        execution.processed_entities = 2
        execution.succeeded_entities = 1
        execution.rejected_entities = 1
        execution.accumulated_cost = 0.02
        machine.transition(ExecutionStatus.COMPLETED, "done")
        stored = execution_store.get(execution.id)
        assert stored.processed_entities == 2
        assert stored.rejected_entities == 1
        assert stored.accumulated_cost == pytest.approx(0.02)
        assert stored.succeeded is False


class TestRequestStop:

    def test_sets_flag_and_logs_once(self, execution_store, execution):
        assert request_stop(execution_store, execution.id) is True
        assert request_stop(execution_store, execution.id) is False
        stored = execution_store.get(execution.id)
        assert stored.stop_requested is True
        assert [e.message for e in stored.logs].count("Stop requested") == 1
        assert stored.status == ExecutionStatus.QUEUED

    def test_terminal_execution_is_untouched(self, machine, execution_store, execution):
        machine.transition(ExecutionStatus.FAILED, "boom")
        before = len(execution_store.get(execution.id).logs)
        assert request_stop(execution_store, execution.id) is False
        stored = execution_store.get(execution.id)
        assert len(stored.logs) == before
        assert stored.stop_requested is False

    def test_unknown_execution(self, execution_store):
        with pytest.raises(NotFound):
            request_stop(execution_store, "enrichment_missing")

    def test_machine_observes_flag(self, machine, execution_store, execution):
        assert machine.stop_requested() is False
        request_stop(execution_store, execution.id)
        assert machine.stop_requested() is True


class StopDuringFinalWrite(InMemoryExecutionStore):
    """Fires a stop request on either side of each terminal write."""

    def record_transition(self, execution_id, status, entry, **fields):
        if status in TERMINAL_STATUSES:
            request_stop(self, execution_id)
        super().record_transition(execution_id, status, entry, **fields)
        if status in TERMINAL_STATUSES:
            request_stop(self, execution_id)


class TestConcurrentStop:

    @pytest.mark.parametrize("target,level", [
        (ExecutionStatus.COMPLETED, LogLevel.INFO),
        (ExecutionStatus.FAILED, LogLevel.ERROR),
    ])
    def test_final_entry_stays_last(self, execution, target, level):
        store = StopDuringFinalWrite()
        store.create(execution)
        machine = ExecutionStateMachine(store, execution)
        machine.transition(ExecutionStatus.RUNNING, "start")
        machine.transition(target, "end")

        stored = store.get(execution.id)
        assert stored.status == target
        assert stored.logs[-1].message == "end"
        assert stored.logs[-1].level == level
        assert [e.message for e in stored.logs].count("Stop requested") == 1


def test_config_is_not_writable(execution_store, execution):
    with pytest.raises(ValueError):
        execution_store.record_transition(
            execution.id,
            ExecutionStatus.RUNNING,
            LogEntry(message="start"),
            config={"batch_size": 99},
        )
    stored = execution_store.get(execution.id)
    assert stored.status == ExecutionStatus.QUEUED
    assert [e.message for e in stored.logs] == ["Execution queued"]
