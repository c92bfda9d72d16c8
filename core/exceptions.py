"""
Custom exceptions for the transfer engine with structured error context.

This module provides the exception hierarchy for handling errors throughout
extraction, ingestion and the remote connection layer. Each exception
carries context information for debugging and monitoring.

Exception Hierarchy:
    TransferException (base)
    ├── InputError
    │   └── PredicateLengthError
    ├── ExtractionError
    ├── IngestError
    │   ├── SubmissionError
    │   ├── PartialIngestError
    │   ├── JobFailedError
    │   ├── JobTimeoutError
    │   ├── JobStateError
    │   └── CorrelationError
    ├── RemoteAPIError
    │   ├── APIResponseError
    │   └── RetryableError / NonRetryableError (mixins)
    └── LedgerError
"""

from typing import Optional, Dict, Any
from datetime import datetime


class TransferException(Exception):
    """
    Base exception for all transfer-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (object, job id, etc.)
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
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
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
# Input Errors
# ============================================================================

class InputError(TransferException):
    """
    Exception raised for invalid caller input, before any network call.

    Context should include:
        - parameter: Name of the offending parameter
        - value: The offending value (truncated if large)
    """
    pass


class PredicateLengthError(InputError):
    """
    Exception raised when a single literal or clause cannot fit into any
    predicate expression within the length budget.

    Context should include:
        - field: Field name of the IN clause (if applicable)
        - value: The serialized literal or clause
        - max_length: The length budget
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(TransferException):
    """
    Exception raised when a query against an endpoint fails.

    The destination file may contain a prefix of already written pages and
    must be treated as unusable.

    Context should include:
        - connection: Label of the queried connection
        - file_path: Destination file
        - records_seen: Records retrieved before the failure
    """
    pass


# ============================================================================
# Ingest Errors
# ============================================================================

class IngestError(TransferException):
    """Base exception for failures while submitting records to the target."""
    pass


class SubmissionError(IngestError):
    """
    Exception raised when the submission is rejected before any record was
    accepted (job creation rejected, or the first direct call failed).

    No status records are produced.
    """
    pass


class PartialIngestError(IngestError):
    """
    Exception raised when a direct-call chunk fails after earlier chunks
    succeeded. Status records exist for the succeeded chunks.
    """

    def __init__(
        self,
        message: str,
        chunks_succeeded: int,
        chunks_total: int,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.chunks_succeeded = chunks_succeeded
        self.chunks_total = chunks_total
        self.context["chunks_succeeded"] = chunks_succeeded
        self.context["chunks_total"] = chunks_total


class JobFailedError(IngestError):
    """
    Exception raised when a bulk job reaches the Failed or Aborted state.

    Status records for whatever the job returned have already been written.
    """

    def __init__(
        self,
        message: str,
        job: Any = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.job = job


class JobTimeoutError(IngestError):
    """
    Exception raised when polling a bulk job exceeds the configured timeout.

    The remote job is not aborted and may still complete out-of-band.
    """

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.job_id = job_id
        self.timeout = timeout
        self.context["job_id"] = job_id
        self.context["timeout"] = timeout


class JobStateError(IngestError):
    """Exception raised on an attempt to mutate a job in a terminal state."""
    pass


class CorrelationError(IngestError):
    """
    Exception raised when job results cannot be matched to uploaded rows in
    upload order.

    Context should include:
        - job_id: The bulk job
        - unmatched_results: Results that matched no uploaded row
    """
    pass


# ============================================================================
# Remote API Errors
# ============================================================================

class RemoteAPIError(TransferException):
    """
    Base exception for failed calls against a record endpoint.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
    """
    pass


class APIResponseError(RemoteAPIError):
    """Exception raised for rejected requests and unparseable responses."""
    pass


class RetryableError(RemoteAPIError):
    """
    Mixin for errors that may succeed when repeated.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 503)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(RemoteAPIError):
    """
    Mixin for errors that will fail again when repeated.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    """
    pass


class NetworkError(RetryableError):
    """Network-related errors (timeouts, connection resets, 5xx)."""
    pass


class RateLimitError(RetryableError):
    """Rate limiting errors (HTTP 429)."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class ResourceNotFoundError(NonRetryableError):
    """Resource not found errors (HTTP 404)."""
    pass


# ============================================================================
# Ledger Errors
# ============================================================================

class LedgerError(TransferException):
    """
    Exception raised when the transfer run ledger cannot be written.

    Context should include:
        - operation: Database operation (INSERT, UPDATE)
        - run_id: Ledger run id (if assigned)
    """
    pass
