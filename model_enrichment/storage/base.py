"""
Storage interfaces used by the engine.

Implementations:
- FirestoreModelStore / FirestoreExecutionStore: production
- InMemoryModelStore / InMemoryExecutionStore: tests and local runs

Every method raises StorageError on backend failure; lookups of missing
documents raise NotFound where noted.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from model_enrichment.jobs.models import Execution, ExecutionStatus, LogEntry


class ModelStore(ABC):
    """Catalog model documents."""

    @abstractmethod
    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Return the document (with "id") or None if it does not exist."""

    @abstractmethod
    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        """
        Partial update; keys may be dotted paths ("dataSource.dataQuality").

        Raises:
            NotFound: Document does not exist
        """

    @abstractmethod
    def list(self, provider_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """List documents, optionally restricted to one provider."""


class ExecutionStore(ABC):
    """Execution records and their log entries."""

    @abstractmethod
    def create(self, execution: Execution) -> None:
        """Write a new record with its initial logs; existing ids are refused."""

    @abstractmethod
    def get(self, execution_id: str) -> Execution:
        """
        Raises:
            NotFound: Unknown execution
        """

    @abstractmethod
    def append_log(self, execution_id: str, entry: LogEntry) -> None:
        """Append one log entry."""

    @abstractmethod
    def record_transition(
        self,
        execution_id: str,
        status: ExecutionStatus,
        entry: LogEntry,
        **fields: Any,
    ) -> None:
        """
        Append entry and write status plus timestamps/error in one atomic step.

        A concurrent set_stop_flag observes either the old status (and its
        entry lands before this one) or the new one. The config is never
        writable.
        """

    @abstractmethod
    def update_progress(self, execution_id: str, counters: Dict[str, Any]) -> None:
        """Write progress counters and accumulated cost."""

    @abstractmethod
    def set_stop_flag(self, execution_id: str, entry: LogEntry) -> bool:
        """
        Atomically set stop_requested and append entry.

        Returns:
            False (and writes nothing) if already requested or terminal

        Raises:
            NotFound: Unknown execution
        """

    @abstractmethod
    def is_stop_requested(self, execution_id: str) -> bool:
        """Read only the stop flag (checkpoint poll)."""

    @abstractmethod
    def list(self, limit: int = 50, status: Optional[ExecutionStatus] = None) -> List[Execution]:
        """Most recent first, without logs."""

    def list_active(self) -> List[Execution]:
        """Queued and running executions."""
        return (
            self.list(limit=100, status=ExecutionStatus.QUEUED)
            + self.list(limit=100, status=ExecutionStatus.RUNNING)
        )


# Fields a status or progress write may touch
WRITABLE_FIELDS = frozenset({
    "status",
    "started_at",
    "completed_at",
    "error",
    "stop_requested",
    "total_entities",
    "processed_entities",
    "succeeded_entities",
    "rejected_entities",
    "failed_entities",
    "batches_processed",
    "accumulated_cost",
})


def check_writable(fields: Dict[str, Any]) -> None:
    illegal = set(fields) - WRITABLE_FIELDS
    if illegal:
        raise ValueError(f"Execution fields are not writable: {sorted(illegal)}")


__all__ = ["ModelStore", "ExecutionStore", "WRITABLE_FIELDS", "check_writable"]
