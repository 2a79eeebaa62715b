"""
Jobs Package - execution models, state machine and batch scheduling.

This package provides:
- models: Execution and log entry data models
- state: Execution state machine and stop requests
- selection: Eligible-model selection and enrichment listing
- scheduler: Batch scheduler (start, run, stop)
- stats: Aggregate workflow statistics
"""

from model_enrichment.jobs.models import (
    Execution,
    ExecutionStatus,
    LogEntry,
    LogLevel,
)


__all__ = [
    "Execution",
    "ExecutionStatus",
    "LogEntry",
    "LogLevel",
]
