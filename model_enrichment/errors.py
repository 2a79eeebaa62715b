"""
Error taxonomy for the enrichment engine.

Run-level errors (fatal to an execution):
- ConfigError: bad/missing start parameters, the run is never created
- CostExceeded: cost ceiling hit, run fails, partial results are kept
- InvalidCredentials: credential check failed, run fails before any entity

Entity-level errors (logged, run continues):
- UpstreamError / RateLimited: research call failed after retries
- ValidationRejected: AI response rejected by the validator
- NotFound: entity vanished mid-run

StorageError is fatal to the step it occurs in.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EnrichmentError(Exception):
    """Base class for enrichment engine errors."""

    code = "enrichment_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in execution records and API payloads."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigError(EnrichmentError):
    """Raised when start parameters are missing or invalid."""

    code = "config_error"
    http_status = 400


class CostExceeded(EnrichmentError):
    """Raised when projected or accumulated cost passes a ceiling."""

    code = "cost_exceeded"
    http_status = 400


class UpstreamError(EnrichmentError):
    """Network/HTTP failure talking to the AI provider (timeouts included)."""

    code = "upstream_error"
    http_status = 502

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.retryable = retryable
        self.status_code = status_code


class RateLimited(UpstreamError):
    """Provider returned 429 / RESOURCE_EXHAUSTED."""

    code = "rate_limited"
    http_status = 429

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, retryable=True, status_code=429, details=details)


class InvalidCredentials(EnrichmentError):
    """API key rejected by the provider."""

    code = "invalid_credentials"
    http_status = 400


class ValidationRejected(EnrichmentError):
    """AI response failed validation."""

    code = "validation_rejected"
    http_status = 422

    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class NotFound(EnrichmentError):
    """Entity or execution does not exist."""

    code = "not_found"
    http_status = 404


class StorageError(EnrichmentError):
    """Storage read/write failed."""

    code = "storage_error"
    http_status = 500


__all__ = [
    "EnrichmentError",
    "ConfigError",
    "CostExceeded",
    "UpstreamError",
    "RateLimited",
    "InvalidCredentials",
    "ValidationRejected",
    "NotFound",
    "StorageError",
]
