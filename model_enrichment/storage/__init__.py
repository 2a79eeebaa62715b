"""
Storage Package - model and execution stores.

This package provides:
- base: ModelStore / ExecutionStore interfaces
- firestore_client: process-wide Firestore client (init_db / get_db / close_db)
- firestore_store: Firestore implementations
- memory_store: in-memory implementations (ENRICHMENT_STORAGE=memory)
"""

from typing import Optional, Tuple

from model_enrichment import config as settings
from model_enrichment.storage.base import ExecutionStore, ModelStore
from model_enrichment.storage.memory_store import InMemoryExecutionStore, InMemoryModelStore


def get_stores(backend: Optional[str] = None) -> Tuple[ModelStore, ExecutionStore]:
    """
    Factory for the configured storage backend.

    Args:
        backend: "firestore" or "memory" (default: ENRICHMENT_STORAGE)
    """
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "memory":
        return InMemoryModelStore(), InMemoryExecutionStore()
    if backend != "firestore":
        raise ValueError(f"Unknown storage backend: {backend}")

    from model_enrichment.storage.firestore_client import init_db
    from model_enrichment.storage.firestore_store import FirestoreExecutionStore, FirestoreModelStore

    db = init_db()
    return FirestoreModelStore(db), FirestoreExecutionStore(db)


__all__ = [
    "ModelStore",
    "ExecutionStore",
    "InMemoryModelStore",
    "InMemoryExecutionStore",
    "get_stores",
]
