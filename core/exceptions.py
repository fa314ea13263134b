"""
Custom exceptions for the ingestion pipeline with structured error context.

Each exception carries context information for debugging and for the
checkpoint error log, so an operator can diagnose a degraded run from
`status` alone.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── ThrottledError          (retryable, possibly after a restart)
    │   ├── TransientNetworkError   (retryable, bounded)
    │   └── FatalAuthError          (non-retryable)
    ├── TransformationError
    │   └── TransformError          (programming defect)
    ├── LoadError
    │   └── UpsertError
    ├── CheckpointError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (data type, page, url, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that may succeed if attempted again later.

    Use this for transient errors like:
    - Network timeouts and connection resets
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """
    pass


class NonRetryableError(ETLException):
    """
    Mixin for errors that must NOT be retried.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Programming defects in the transformer
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for provider fetch failures."""
    pass


class ThrottledError(RetryableError, ExtractionError):
    """
    The provider throttled us (HTTP 429) beyond what the run is willing to wait.

    Raised when the retry hint exceeds the configured ceiling, or when the
    request is still throttled after the retry bound. The run halts with its
    checkpoint intact and can be resumed once `retry_after` has elapsed.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class TransientNetworkError(RetryableError, ExtractionError):
    """
    Request failed after the bounded number of attempts.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if any)
        - retry_count: Number of attempts made
    """
    pass


class FatalAuthError(NonRetryableError, ExtractionError):
    """Authentication failures (HTTP 401, 403). Retrying only wastes quota."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Base exception for record transformation failures."""
    pass


class TransformError(NonRetryableError, TransformationError):
    """
    The transformer raised on a source record.

    The transformer is total, so this always indicates a defect. It is
    absorbed per record and written to the checkpoint error log.

    Context should include:
        - fdc_id: External id of the offending record
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for sink failures."""
    pass


class UpsertError(LoadError):
    """
    Exception raised when a batch upsert fails.

    Context should include:
        - batch_size: Number of records in the batch
        - conflict_fields: Fields used for conflict resolution
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(ETLException):
    """
    The checkpoint store could not be read or written.

    This is fatal for a run: progress cannot continue without durable state.

    Context should include:
        - backend: "file" or "database"
        - operation: read, write or delete
    """
    pass
