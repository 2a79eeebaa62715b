"""
Firestore-backed stores.

Collections:
- models/{modelId}: Catalog model documents
- workflow_executions/{executionId}: Execution documents
- workflow_executions/{executionId}/logs/{logId}: Execution log entries

Every call carries STORAGE_TIMEOUT_SECS; the client library's default retry
applies on top. google.api_core failures surface as StorageError.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from model_enrichment import config as settings
from model_enrichment.errors import NotFound, StorageError
from model_enrichment.jobs.models import TERMINAL_STATUSES, Execution, ExecutionStatus, LogEntry
from model_enrichment.storage.base import ExecutionStore, ModelStore, check_writable
from model_enrichment.storage.firestore_client import get_db

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _storage_call(func: Callable[..., T]) -> Callable[..., T]:
    """Map google.api_core failures onto StorageError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except gcp_exceptions.NotFound as e:
            raise NotFound(str(e)) from e
        except gcp_exceptions.GoogleAPICallError as e:
            logger.error("Firestore %s failed: %s", func.__name__, e)
            raise StorageError(f"Firestore {func.__name__} failed: {e}") from e

    return wrapper


class FirestoreModelStore(ModelStore):
    """Catalog models in the models collection."""

    def __init__(self, db: Optional[firestore.Client] = None, collection: str = settings.MODELS_COLLECTION):
        self._db = db
        self.collection = collection
        self.timeout = settings.STORAGE_TIMEOUT_SECS

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    @_storage_call
    def get(self, entity_id: str) -> Optional[Dict[str, Any]]:
        doc = self.db.collection(self.collection).document(entity_id).get(timeout=self.timeout)
        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        data["id"] = doc.id
        return data

    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        try:
            self._update(entity_id, updates)
        except NotFound as e:
            raise NotFound(f"Model {entity_id} not found", details={"entity_id": entity_id}) from e

    @_storage_call
    def _update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        # update() takes dotted field paths and fails if the doc is gone
        self.db.collection(self.collection).document(entity_id).update(updates, timeout=self.timeout)

    @_storage_call
    def list(self, provider_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = self.db.collection(self.collection)
        if provider_id:
            query = query.where(filter=FieldFilter("providerId", "==", provider_id))
        if limit:
            query = query.limit(limit)
        results = []
        for doc in query.stream(timeout=self.timeout):
            data = doc.to_dict() or {}
            data["id"] = doc.id
            results.append(data)
        return results


class FirestoreExecutionStore(ExecutionStore):
    """Executions in workflow_executions with a logs subcollection."""

    def __init__(self, db: Optional[firestore.Client] = None, collection: str = settings.EXECUTIONS_COLLECTION):
        self._db = db
        self.collection = collection
        self.timeout = settings.STORAGE_TIMEOUT_SECS

    @property
    def db(self) -> firestore.Client:
        return self._db or get_db()

    def _doc(self, execution_id: str):
        return self.db.collection(self.collection).document(execution_id)

    def _logs(self, execution_id: str):
        return self._doc(execution_id).collection(settings.EXECUTION_LOGS_SUBCOLLECTION)

    @_storage_call
    def create(self, execution: Execution) -> None:
        batch = self.db.batch()
        # create() refuses to overwrite an existing record
        batch.create(self._doc(execution.id), execution.to_dict())
        for entry in execution.logs:
            batch.set(self._logs(execution.id).document(entry.id), entry.to_dict())
        batch.commit(timeout=self.timeout)
        logger.info("Created execution: %s, entities=%d", execution.id, execution.total_entities)

    @_storage_call
    def get(self, execution_id: str) -> Execution:
        doc = self._doc(execution_id).get(timeout=self.timeout)
        if not doc.exists:
            raise NotFound(f"Execution {execution_id} not found", details={"execution_id": execution_id})
        query = (
            self._logs(execution_id)
            .order_by("timestamp", direction=firestore.Query.DESCENDING)
            .limit(settings.MAX_LOG_ENTRIES)
        )
        logs = [d.to_dict() for d in query.stream(timeout=self.timeout)]
        logs.reverse()
        return Execution.from_dict(doc.to_dict(), logs=logs)

    @_storage_call
    def append_log(self, execution_id: str, entry: LogEntry) -> None:
        self._logs(execution_id).document(entry.id).set(entry.to_dict(), timeout=self.timeout)

    @_storage_call
    def record_transition(
        self,
        execution_id: str,
        status: ExecutionStatus,
        entry: LogEntry,
        **fields: Any,
    ) -> None:
        check_writable(fields)
        # One commit, so the stop transaction never sees the entry without the status
        batch = self.db.batch()
        batch.set(self._logs(execution_id).document(entry.id), entry.to_dict())
        batch.update(self._doc(execution_id), {"status": status.value, **fields})
        batch.commit(timeout=self.timeout)

    @_storage_call
    def update_progress(self, execution_id: str, counters: Dict[str, Any]) -> None:
        check_writable(counters)
        self._doc(execution_id).update(counters, timeout=self.timeout)

    @_storage_call
    def set_stop_flag(self, execution_id: str, entry: LogEntry) -> bool:
        doc_ref = self._doc(execution_id)
        log_ref = self._logs(execution_id).document(entry.id)

        @firestore.transactional
        def stop_transaction(transaction, doc_ref):
            doc = doc_ref.get(transaction=transaction)
            if not doc.exists:
                raise NotFound(f"Execution {execution_id} not found", details={"execution_id": execution_id})
            data = doc.to_dict()
            if data.get("stop_requested") or ExecutionStatus(data.get("status")) in TERMINAL_STATUSES:
                return False
            transaction.update(doc_ref, {"stop_requested": True})
            transaction.set(log_ref, entry.to_dict())
            return True

        return stop_transaction(self.db.transaction(), doc_ref)

    @_storage_call
    def is_stop_requested(self, execution_id: str) -> bool:
        doc = self._doc(execution_id).get(field_paths=["stop_requested"], timeout=self.timeout)
        if not doc.exists:
            raise NotFound(f"Execution {execution_id} not found", details={"execution_id": execution_id})
        return bool((doc.to_dict() or {}).get("stop_requested"))

    @_storage_call
    def list(self, limit: int = 50, status: Optional[ExecutionStatus] = None) -> List[Execution]:
        query = self.db.collection(self.collection)
        if status is not None:
            query = query.where(filter=FieldFilter("status", "==", status.value))
        query = query.order_by("started_at", direction=firestore.Query.DESCENDING).limit(limit)
        return [Execution.from_dict(doc.to_dict()) for doc in query.stream(timeout=self.timeout)]


__all__ = ["FirestoreModelStore", "FirestoreExecutionStore"]
