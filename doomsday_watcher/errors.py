"""
Error taxonomy for Doomsday Watcher.

Every error carries a stable code for programmatic handling and maps to one
HTTP status in the API layer. Lifecycle and bulk operations raise these
before any row is mutated, or from inside a transaction that is rolled back.
"""

from typing import Any, Dict, Optional


class WatcherError(Exception):
    """
    Base class for all domain errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        details: Optional structured context (field names, bounds, ids)
    """

    code = "WATCHER_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return {"error": payload}


class ValidationError(WatcherError):
    """Bad bounds or shape in caller input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class OwnershipError(WatcherError):
    """The caller does not own the watcher or candidate."""

    code = "OWNERSHIP_VIOLATION"
    status_code = 403


class NotFoundError(WatcherError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(WatcherError):
    """Duplicate identity or a disallowed lifecycle transition."""

    code = "CONFLICT"
    status_code = 409


class CredentialMissing(WatcherError):
    """
    No credential resolved for a destructive action.

    Recoverable: the client should prompt for a credential and retry.
    """

    code = "CREDENTIAL_REQUIRED"
    status_code = 428
    recoverable = True

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["error"]["recoverable"] = True
        return payload


class UpstreamError(WatcherError):
    """The workflow engine was unreachable or answered with a non-success status."""

    code = "UPSTREAM_ERROR"
    status_code = 502


class OperationTimeoutError(WatcherError):
    """A persistence or remote call exceeded its explicit timeout."""

    code = "TIMEOUT"
    status_code = 504
