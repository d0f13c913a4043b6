"""
Custom exceptions for the ingestion pipeline with structured error context.

This module provides the exception hierarchy used throughout the service.
Each exception carries context information for debugging and monitoring,
and an HTTP status code used by the API layer to build the error envelope.

Exception Hierarchy:
    IngestionException (base, 500)
    ├── ValidationError (400)
    │   └── NormalizationError
    ├── AuthenticationError (401)
    ├── ForbiddenError (403)
    │   └── SourceNotActiveError
    ├── ResourceNotFoundError (404)
    │   ├── SourceNotFoundError
    │   ├── JobNotFoundError
    │   ├── ProductNotFoundError
    │   └── ReviewItemNotFoundError
    ├── ConflictError (409)
    │   ├── SourceBusyError
    │   └── InvalidStatusTransitionError
    ├── RateLimitError (429)
    ├── ExtractionError (upstream fetch)
    │   ├── APIExtractionError
    │   └── ScrapeError
    ├── AIServiceError
    ├── LoadError
    │   └── UpsertError
    ├── IngestionFailedError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class IngestionException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, job, etc.)
        original_exception: The original exception that was caught (if any)
        status_code: HTTP status the API layer responds with
    """

    status_code: int = 500

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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionException):
    """
    Mixin for errors that a caller may retry later.

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


class NonRetryableError(IngestionException):
    """
    Mixin for errors that should NOT be retried.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Malformed input
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Request Errors
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Request or record failed validation before any side effect.

    Context should include:
        - field_name: Name of the field that failed validation
        - field_value: Value that failed validation (if safe to echo)
    """
    status_code = 400


class NormalizationError(ValidationError):
    """
    Raw product record is fundamentally malformed (not a mapping, or
    missing its identifier).

    Context should include:
        - source_type: Type of data source
        - field_errors: Dictionary of field-level errors
    """
    pass


class AuthenticationError(NonRetryableError):
    """Missing or invalid API key, webhook secret or upstream credentials."""
    status_code = 401


class ForbiddenError(NonRetryableError):
    """Caller is authenticated but the operation is not allowed."""
    status_code = 403


class SourceNotActiveError(ForbiddenError):
    """Ingestion was requested against a source whose status is not active."""
    pass


class ResourceNotFoundError(NonRetryableError):
    """Referenced resource is absent (HTTP 404)."""
    status_code = 404


class SourceNotFoundError(ResourceNotFoundError):
    pass


class JobNotFoundError(ResourceNotFoundError):
    pass


class ProductNotFoundError(ResourceNotFoundError):
    pass


class ReviewItemNotFoundError(ResourceNotFoundError):
    """Duplicate detection or consistency alert id is unknown."""
    pass


class ConflictError(NonRetryableError):
    """Request conflicts with the current state of a resource."""
    status_code = 409


class SourceBusyError(ConflictError):
    """Another ingestion job already holds the source."""
    pass


class InvalidStatusTransitionError(ConflictError):
    """
    Job status change rejected by the transition table.

    Context should include:
        - job_id: The job being moved
        - current_status: Status before the attempted move
        - target_status: Requested status
    """
    pass


class RateLimitError(RetryableError):
    """Rate limiting errors (HTTP 429); the caller should back off and retry."""

    status_code = 429

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


# ============================================================================
# Upstream Errors
# ============================================================================

class ExtractionError(IngestionException):
    """Base exception for failures fetching from an external data source."""
    pass


class APIExtractionError(ExtractionError):
    """
    Exception raised when fetching from a source endpoint fails.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
        - retry_count: Number of retries attempted
    """
    pass


class NetworkError(RetryableError, APIExtractionError):
    """Network-related errors that were retried and still failed."""
    pass


class UpstreamAuthenticationError(NonRetryableError, APIExtractionError):
    """Source endpoint rejected our credentials (HTTP 401, 403)."""
    pass


class UpstreamNotFoundError(NonRetryableError, APIExtractionError):
    """Source endpoint answered HTTP 404."""
    pass


class ScrapeError(ExtractionError):
    """
    Exception raised when a product page cannot be fetched or parsed.

    Context should include:
        - url: Page URL
    """
    pass


class AIServiceError(IngestionException):
    """
    AI completion call failed or returned unparseable output.

    Callers degrade instead of propagating where partial data is acceptable.
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(IngestionException):
    """Base exception for catalog write failures."""
    pass


class UpsertError(LoadError):
    """
    Exception raised when a catalog upsert fails.

    Context should include:
        - data_source_id: Owning source
        - external_id: Natural key of the record
    """
    pass


class IngestionFailedError(IngestionException):
    """
    A job was marked failed because its fetch phase failed.

    Context should include:
        - job_id: The failed job
        - data_source_id: Its source
    """
    pass
