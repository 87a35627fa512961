"""
Custom Exceptions for SleepVision

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class SleepVisionError(Exception):
    """Base exception for all SleepVision errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(SleepVisionError):
    """Raised when input validation fails."""
    pass


class DatabaseError(SleepVisionError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class StorageError(SleepVisionError):
    """Raised when the tiered persistence layer cannot complete an operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        kind: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if kind:
            details["kind"] = kind
        super().__init__(message, details, original_error)


class RemoteStoreError(StorageError):
    """Raised for non-transient remote store failures (bad query, constraint)."""
    pass


class RemoteUnavailableError(StorageError):
    """Raised when an entitled user's remote data cannot be reached. Retryable."""

    def __init__(
        self,
        message: str = "Couldn't reach your data, please retry",
        operation: Optional[str] = None,
        kind: Optional[str] = None,
        retry_after: int = 5,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, operation, kind, original_error)
        self.retry_after = retry_after
        self.details["retryable"] = True
        self.details["retry_after_seconds"] = retry_after


class LocalStorageFullError(StorageError):
    """Raised when the local cache medium is exhausted. The write was dropped."""
    pass


class MigrationError(SleepVisionError):
    """Raised when a local -> remote migration did not copy every record."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        copied: int = 0,
        failed: int = 0,
        original_error: Optional[Exception] = None
    ):
        details = {"copied": copied, "failed": failed}
        if job_id:
            details["job_id"] = job_id
        super().__init__(message, details, original_error)


class ConfigurationError(SleepVisionError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
