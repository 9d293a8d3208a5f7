"""
Error taxonomy for the catalog sync engine.

Every error carries a machine-readable ``code``, a human-readable message and
the HTTP-equivalent ``status_code`` a trigger surface reports when a run
aborts with it.
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base class for all catalog sync errors."""

    default_code = 'SYNC_ERROR'
    default_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'message': self.message,
            'status_code': self.status_code,
            'details': self.details,
        }


class RemoteServiceFailure(SyncError):
    """The ERP kept failing after all retry attempts."""

    default_code = 'REMOTE_SERVICE_FAILURE'
    default_status = 503


class ServiceUnavailable(RemoteServiceFailure):
    """No connection to the ERP could be established."""

    default_code = 'SERVICE_UNAVAILABLE'


class DeadlineExceeded(RemoteServiceFailure):
    default_code = 'DEADLINE_EXCEEDED'
    default_status = 504


class AuthenticationFailure(SyncError):
    """Credentials were rejected. Never retried."""

    default_code = 'AUTHENTICATION_FAILURE'
    default_status = 401


class DataShapeFailure(SyncError):
    """A result envelope did not have the expected structure."""

    default_code = 'DATA_SHAPE_FAILURE'
    default_status = 502


class StoreWriteFailure(SyncError):
    """The persistence layer rejected a whole batch."""

    default_code = 'STORE_WRITE_FAILURE'
    default_status = 500


class RateSourceFailure(SyncError):
    default_code = 'RATE_SOURCE_FAILURE'
    default_status = 502


class PartialCategoryFailure(SyncError):
    """Children of one category could not be fetched; the branch is skipped."""

    default_code = 'PARTIAL_CATEGORY_FAILURE'
    default_status = 502

    def __init__(self, parent_code: str, level: int, message: str):
        super().__init__(
            f"Failed to fetch level {level} children of {parent_code}: {message}",
            details={'parent_code': parent_code, 'level': level},
        )
        self.parent_code = parent_code
        self.level = level


class SyncAlreadyRunning(SyncError):
    default_code = 'SYNC_ALREADY_RUNNING'
    default_status = 409

    def __init__(self, stream: str):
        super().__init__(
            f"A sync run for '{stream}' is already in progress.",
            details={'stream': stream},
        )
        self.stream = stream


class SyncDisabled(SyncError):
    default_code = 'SYNC_DISABLED'
    default_status = 403
