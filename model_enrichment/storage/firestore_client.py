"""Process-wide Firestore client with an explicit lifecycle."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from google.cloud import firestore

from model_enrichment import config as settings

logger = logging.getLogger(__name__)

_db: Optional[firestore.Client] = None
_lock = threading.Lock()


def init_db(project: Optional[str] = None) -> firestore.Client:
    """Create the Firestore client (idempotent)."""
    global _db
    with _lock:
        if _db is None:
            project = project or settings.PROJECT_ID or None
            _db = firestore.Client(project=project)
            logger.info("Firestore client initialised (project=%s)", _db.project)
        return _db


def get_db() -> firestore.Client:
    """Get or initialize Firestore client."""
    if _db is None:
        return init_db()
    return _db


def close_db() -> None:
    """Close the client; the next get_db() creates a fresh one."""
    global _db
    with _lock:
        if _db is not None:
            _db.close()
            _db = None
            logger.info("Firestore client closed")


__all__ = ["init_db", "get_db", "close_db"]
