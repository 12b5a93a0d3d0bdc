"""
Custom exceptions for the sync pipeline with structured error context.

This module provides the exception hierarchy used by the API clients,
queue workers, webhook ingress and import tracker. Each exception carries
context information for debugging and log correlation.

Exception Hierarchy:
    SyncException (base)
    ├── ExternalAPIError
    │   ├── NotionAPIError
    │   └── GoogleSheetsAPIError
    ├── ConfigurationError
    │   ├── AutomationNotFoundError
    │   ├── MappingNotFoundError
    │   ├── AccountNotFoundError
    │   ├── SpreadsheetNotFoundError
    │   └── EntityNotFoundError
    ├── JobError
    │   └── UnknownJobTypeError
    ├── QueueError
    ├── WebhookError
    │   ├── SignatureVerificationError
    │   └── WebhookPayloadError
    ├── ImportStateError
    │   └── ImportInProgressError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (automation id, job id, etc.)
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
# External API Errors
# ============================================================================

class ExternalAPIError(SyncException):
    """
    Base exception for Notion / Google API failures.

    Context should include:
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated)
    """
    pass


class NotionAPIError(ExternalAPIError):
    """Notion API call failed."""
    pass


class GoogleSheetsAPIError(ExternalAPIError):
    """Google Sheets, Drive or OAuth call failed."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(SyncException):
    """
    An automation is missing a record it needs to run.

    Retrying will not fix these, but they still go through the queue's
    retry budget before the job is marked failed.
    """
    pass


class AutomationNotFoundError(ConfigurationError):
    pass


class MappingNotFoundError(ConfigurationError):
    pass


class AccountNotFoundError(ConfigurationError):
    pass


class SpreadsheetNotFoundError(ConfigurationError):
    pass


class EntityNotFoundError(ConfigurationError):
    """A Notion record is not present in the entity cache."""
    pass


# ============================================================================
# Queue / Job Errors
# ============================================================================

class JobError(SyncException):
    """
    Handler failure wrapped with job context.

    Context should include:
        - queue: Queue name
        - job_type: Job type discriminant
        - job_id: Job id (idempotency key)
    """
    pass


class UnknownJobTypeError(JobError):
    pass


class QueueError(SyncException):
    """Queue storage operation failed."""
    pass


# ============================================================================
# Webhook Errors
# ============================================================================

class WebhookError(SyncException):
    pass


class SignatureVerificationError(WebhookError):
    pass


class WebhookPayloadError(WebhookError):
    pass


# ============================================================================
# Import State Errors
# ============================================================================

class ImportStateError(SyncException):
    pass


class ImportInProgressError(ImportStateError):
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for transient errors (network, HTTP 429, HTTP 5xx).
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


class NonRetryableError(SyncException):
    """
    Mixin for permanent errors (HTTP 401/403, HTTP 404, bad payloads).
    """
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class NetworkError(RetryableError, ExternalAPIError):
    """Network-related errors and 5xx responses."""
    pass


class RateLimitError(RetryableError, ExternalAPIError):
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


# ============================================================================
# Specific Non-Retryable Errors
# ============================================================================

class AuthenticationError(NonRetryableError, ExternalAPIError):
    """Authentication failures (HTTP 401, 403)."""
    pass


class ResourceNotFoundError(NonRetryableError, ExternalAPIError):
    """Resource not found errors (HTTP 404)."""
    pass
