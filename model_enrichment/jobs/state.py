"""
Execution State Machine - the only writer of execution status.

    queued ──> running ──> completed
      │           ├──────> failed
      ├──> failed └──────> stopped
      └──> stopped

Rules:
- Transitions are one-directional; terminal states never change
  (a transition requested from a terminal state is a no-op)
- Every transition appends exactly one log entry, written together with
  the status in one atomic store write
- Final entry level: error for failed, warn for stopped, info otherwise
- Stop is cooperative: request_stop() only sets a flag; the scheduler
  polls it at checkpoints and performs the transition itself
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from model_enrichment.jobs.models import (
    TERMINAL_STATUSES,
    Execution,
    ExecutionStatus,
    LogEntry,
    LogLevel,
    utcnow_iso,
)
from model_enrichment.storage.base import ExecutionStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ExecutionStatus.QUEUED: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
        ExecutionStatus.STOPPED,
    }),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.STOPPED,
    }),
}

_FINAL_LEVELS = {
    ExecutionStatus.FAILED: LogLevel.ERROR,
    ExecutionStatus.STOPPED: LogLevel.WARN,
}

_PROCESS_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class IllegalTransition(ValueError):
    """Requested transition is not in ALLOWED_TRANSITIONS."""

    def __init__(self, current: ExecutionStatus, target: ExecutionStatus):
        super().__init__(f"Illegal transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def log_event(event: str, execution_id: Optional[str] = None, **extra: Any) -> None:
    """
    Log a structured event.

    Uses JSON for Cloud Logging compatibility.
    """
    record: Dict[str, Any] = {"event": event, "timestamp": utcnow_iso()}
    if execution_id:
        record["execution_id"] = execution_id
    record.update(extra)
    logger.info(json.dumps(record, default=str))


def is_allowed(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class ExecutionStateMachine:
    """
    Owns one execution's status, counters and audit log.

    Holds a local snapshot that mirrors everything written to the store, so
    the scheduler never needs to re-read the record except for the stop flag.
    """

    def __init__(self, store: ExecutionStore, execution: Execution):
        self.store = store
        self.execution = execution

    @property
    def status(self) -> ExecutionStatus:
        return self.execution.status

    def log(self, message: str, level: LogLevel = LogLevel.INFO, entity_id: Optional[str] = None) -> LogEntry:
        """Append an entry to the execution log and mirror it to the process log."""
        entry = LogEntry(message=message, level=level, entity_id=entity_id)
        self.store.append_log(self.execution.id, entry)
        self.execution.logs.append(entry)
        logger.log(_PROCESS_LOG_LEVELS[level], "[%s] %s", self.execution.id, message)
        return entry

    def transition(
        self,
        target: ExecutionStatus,
        message: str,
        error: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move to target status.

        Args:
            target: New status
            message: Cause, written as the transition's log entry
            error: Structured error (failed only)

        Returns:
            False if the execution was already terminal (nothing written)

        Raises:
            IllegalTransition: target not reachable from the current status
        """
        current = self.execution.status
        if current in TERMINAL_STATUSES:
            logger.info("Execution %s already %s, ignoring transition to %s",
                        self.execution.id, current.value, target.value)
            return False
        if not is_allowed(current, target):
            raise IllegalTransition(current, target)

        level = _FINAL_LEVELS.get(target, LogLevel.INFO)
        entry = LogEntry(message=message, level=level)
        fields: Dict[str, Any] = {}
        if target in TERMINAL_STATUSES:
            fields["completed_at"] = utcnow_iso()
            fields.update(self.execution.counters())
        if target == ExecutionStatus.FAILED:
            fields["error"] = error or {"code": "enrichment_error", "message": message}
        self.store.record_transition(self.execution.id, target, entry, **fields)

        self.execution.logs.append(entry)
        logger.log(_PROCESS_LOG_LEVELS[level], "[%s] %s", self.execution.id, message)
        self.execution.status = target
        self.execution.completed_at = fields.get("completed_at", self.execution.completed_at)
        if "error" in fields:
            self.execution.error = fields["error"]

        log_event(
            "execution_transition",
            execution_id=self.execution.id,
            from_status=current.value,
            to_status=target.value,
            **self.execution.counters(),
        )
        return True

    def save_progress(self) -> None:
        self.store.update_progress(self.execution.id, self.execution.counters())

    def stop_requested(self) -> bool:
        """Checkpoint poll of the stop flag on the stored record."""
        if not self.execution.stop_requested:
            self.execution.stop_requested = self.store.is_stop_requested(self.execution.id)
        return self.execution.stop_requested


def request_stop(store: ExecutionStore, execution_id: str) -> bool:
    """
    Ask a running execution to stop at its next checkpoint.

    Idempotent: a repeated request, or one against a terminal execution,
    succeeds without writing anything.

    Returns:
        True if the flag was newly set

    Raises:
        NotFound: Unknown execution
        StorageError: Backend failure
    """
    entry = LogEntry(message="Stop requested", level=LogLevel.WARN)
    if store.set_stop_flag(execution_id, entry):
        log_event("stop_requested", execution_id=execution_id)
        return True
    logger.info("Stop request for %s ignored (already requested or finished)", execution_id)
    return False


__all__ = [
    "ALLOWED_TRANSITIONS",
    "IllegalTransition",
    "ExecutionStateMachine",
    "is_allowed",
    "log_event",
    "request_stop",
]
