"""
Execution Models - Data models for enrichment runs.

Firestore Collections:
- workflow_executions/{executionId}: Execution documents
- workflow_executions/{executionId}/logs/{logId}: Execution log entries
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from model_enrichment.enrichment.models import EnrichmentConfig


class ExecutionStatus(str, Enum):
    """Execution status states."""
    QUEUED = "queued"        # Start accepted, nothing external called yet
    RUNNING = "running"      # Batches being processed
    COMPLETED = "completed"  # All batches processed
    FAILED = "failed"        # Run-fatal error
    STOPPED = "stopped"      # Stop request honoured at a checkpoint


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.STOPPED,
})

ACTIVE_STATUSES = frozenset({ExecutionStatus.QUEUED, ExecutionStatus.RUNNING})


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _token() -> str:
    return f"{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_execution_id() -> str:
    return f"enrichment_{_token()}"


@dataclass
class LogEntry:
    """One line of an execution's audit trail."""
    message: str
    level: LogLevel = LogLevel.INFO
    entity_id: Optional[str] = None
    id: str = field(default_factory=lambda: f"log_{_token()}")
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict."""
        data = {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
        }
        if self.entity_id:
            data["entity_id"] = self.entity_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        """Create from Firestore dict."""
        return cls(
            id=data.get("id", ""),
            timestamp=data.get("timestamp", ""),
            level=LogLevel(data.get("level", "info")),
            message=data.get("message", ""),
            entity_id=data.get("entity_id"),
        )


@dataclass
class Execution:
    """Enrichment run document model."""
    id: str
    config: EnrichmentConfig
    status: ExecutionStatus = ExecutionStatus.QUEUED
    entity_ids: List[str] = field(default_factory=list)

    # Cost (USD)
    estimated_cost: float = 0.0
    accumulated_cost: float = 0.0

    # Progress counters
    total_entities: int = 0
    processed_entities: int = 0
    succeeded_entities: int = 0
    rejected_entities: int = 0
    failed_entities: int = 0
    batches_processed: int = 0

    # Cooperative stop signal
    stop_requested: bool = False

    # Set only when failed
    error: Optional[Dict[str, Any]] = None

    # Timestamps (ISO-8601 UTC)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    logs: List[LogEntry] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        """Completed with every entity accepted and merged."""
        return (
            self.status == ExecutionStatus.COMPLETED
            and self.failed_entities == 0
            and self.rejected_entities == 0
        )

    @property
    def progress(self) -> int:
        """Percent of entities processed."""
        if not self.total_entities:
            return 100 if self.is_terminal else 0
        return int(self.processed_entities * 100 / self.total_entities)

    def counters(self) -> Dict[str, Any]:
        return {
            "total_entities": self.total_entities,
            "processed_entities": self.processed_entities,
            "succeeded_entities": self.succeeded_entities,
            "rejected_entities": self.rejected_entities,
            "failed_entities": self.failed_entities,
            "batches_processed": self.batches_processed,
            "accumulated_cost": self.accumulated_cost,
        }

    def to_dict(self, include_logs: bool = False) -> Dict[str, Any]:
        """Convert to Firestore-compatible dict (logs live in a subcollection)."""
        data = {
            "id": self.id,
            "status": self.status.value,
            "entity_ids": list(self.entity_ids),
            "config": self.config.to_dict(),
            "estimated_cost": self.estimated_cost,
            "stop_requested": self.stop_requested,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            **self.counters(),
        }
        if include_logs:
            data["logs"] = [entry.to_dict() for entry in self.logs]
        return data

    def to_api_dict(self) -> Dict[str, Any]:
        """Snapshot returned by the HTTP layer and CLI."""
        data = self.to_dict(include_logs=True)
        data["succeeded"] = self.succeeded
        data["progress"] = self.progress
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], logs: Optional[List[Dict[str, Any]]] = None) -> "Execution":
        """Create from Firestore dict."""
        return cls(
            id=data.get("id", ""),
            config=EnrichmentConfig.from_dict(data.get("config") or {}),
            status=ExecutionStatus(data.get("status", "queued")),
            entity_ids=list(data.get("entity_ids", [])),
            estimated_cost=data.get("estimated_cost", 0.0),
            accumulated_cost=data.get("accumulated_cost", 0.0),
            total_entities=data.get("total_entities", 0),
            processed_entities=data.get("processed_entities", 0),
            succeeded_entities=data.get("succeeded_entities", 0),
            rejected_entities=data.get("rejected_entities", 0),
            failed_entities=data.get("failed_entities", 0),
            batches_processed=data.get("batches_processed", 0),
            stop_requested=data.get("stop_requested", False),
            error=data.get("error"),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            logs=[LogEntry.from_dict(entry) for entry in (logs or data.get("logs") or [])],
        )


__all__ = [
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
    "LogLevel",
    "LogEntry",
    "Execution",
    "new_execution_id",
    "utcnow_iso",
]
