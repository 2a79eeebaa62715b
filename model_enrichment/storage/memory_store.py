"""
In-memory stores (ENRICHMENT_STORAGE=memory).

Same semantics as the Firestore stores, including dotted-path partial
updates and refusal to overwrite an existing execution. Used by the test
suite and for local dry runs.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Iterable, List, Optional

from model_enrichment import config as settings
from model_enrichment.errors import NotFound, StorageError
from model_enrichment.jobs.models import TERMINAL_STATUSES, Execution, ExecutionStatus, LogEntry
from model_enrichment.storage.base import ExecutionStore, ModelStore, check_writable


def set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate maps."""
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


class InMemoryModelStore(ModelStore):

    def __init__(self, models: Optional[Iterable[Dict[str, Any]]] = None):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self.update_calls: List[Dict[str, Any]] = []
        for model in models or []:
            self.put(model)

    def put(self, model: Dict[str, Any]) -> None:
        with self._lock:
            self._docs[model["id"]] = copy.deepcopy(model)

    def delete(self, entity_id: str) -> None:
        with self._lock:
            self._docs.pop(entity_id, None)

    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(entity_id)
            return copy.deepcopy(doc) if doc is not None else None

    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        with self._lock:
            doc = self._docs.get(entity_id)
            if doc is None:
                raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id})
            for path, value in updates.items():
                set_path(doc, path, copy.deepcopy(value))
            self.update_calls.append({"entity_id": entity_id, "updates": copy.deepcopy(updates)})

    def list(self, provider_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [
                copy.deepcopy(d) for d in self._docs.values()
                if not provider_id or d.get("providerId") == provider_id
            ]
        return docs[:limit] if limit else docs


class InMemoryExecutionStore(ExecutionStore):

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._logs: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        # Set to an exception to simulate backend failure
        self.fail_with: Optional[Exception] = None

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise StorageError(f"In-memory store unavailable: {self.fail_with}")

    def _require(self, execution_id: str) -> Dict[str, Any]:
        doc = self._docs.get(execution_id)
        if doc is None:
            raise NotFound(f"Execution {execution_id} not found", details={"execution_id": execution_id})
        return doc

    def create(self, execution: Execution) -> None:
        with self._lock:
            self._check_available()
            if execution.id in self._docs:
                raise StorageError(f"Execution {execution.id} already exists")
            self._docs[execution.id] = execution.to_dict()
            self._logs[execution.id] = [entry.to_dict() for entry in execution.logs]

    def get(self, execution_id: str) -> Execution:
        with self._lock:
            self._check_available()
            doc = self._require(execution_id)
            logs = self._logs.get(execution_id, [])[-settings.MAX_LOG_ENTRIES:]
            return Execution.from_dict(copy.deepcopy(doc), logs=copy.deepcopy(logs))

    def append_log(self, execution_id: str, entry: LogEntry) -> None:
        with self._lock:
            self._check_available()
            self._require(execution_id)
            self._logs[execution_id].append(entry.to_dict())

    def record_transition(
        self,
        execution_id: str,
        status: ExecutionStatus,
        entry: LogEntry,
        **fields: Any,
    ) -> None:
        check_writable(fields)
        with self._lock:
            self._check_available()
            doc = self._require(execution_id)
            self._logs[execution_id].append(entry.to_dict())
            doc["status"] = status.value
            doc.update(fields)

    def update_progress(self, execution_id: str, counters: Dict[str, Any]) -> None:
        check_writable(counters)
        with self._lock:
            self._check_available()
            self._require(execution_id).update(counters)

    def set_stop_flag(self, execution_id: str, entry: LogEntry) -> bool:
        with self._lock:
            self._check_available()
            doc = self._require(execution_id)
            if doc.get("stop_requested") or ExecutionStatus(doc["status"]) in TERMINAL_STATUSES:
                return False
            doc["stop_requested"] = True
            self._logs[execution_id].append(entry.to_dict())
            return True

    def is_stop_requested(self, execution_id: str) -> bool:
        with self._lock:
            self._check_available()
            return bool(self._require(execution_id).get("stop_requested"))

    def list(self, limit: int = 50, status: Optional[ExecutionStatus] = None) -> List[Execution]:
        with self._lock:
            self._check_available()
            docs = [
                copy.deepcopy(d) for d in self._docs.values()
                if status is None or d["status"] == status.value
            ]
        docs.sort(key=lambda d: d.get("started_at") or "", reverse=True)
        return [Execution.from_dict(d) for d in docs[:limit]]


__all__ = ["InMemoryModelStore", "InMemoryExecutionStore", "set_path"]
