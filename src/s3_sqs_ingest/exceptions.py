# src/s3_sqs_ingest/exceptions.py

"""
Shared custom exceptions for the S3/SQS ingest consumer.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- IngestError (base)
  - RetryableError (the message is retried on a later delivery)
    - QueueServiceError
    - S3ThrottlingError
    - S3TimeoutError
    - S3DownloadError
  - NonRetryableError (retrying the same input cannot succeed)
    - S3AccessDeniedError
    - S3ObjectNotFoundError
    - ConfigurationError
  - ProcessingError
    - DecompressionError
"""

from typing import Any, Dict, Optional


class IngestError(Exception):
    """Base exception for all ingest consumer errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "error_message": self.message,
            "context": self.context,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(IngestError):
    """Base class for errors that can be retried."""

    pass


class NonRetryableError(IngestError):
    """Base class for errors that should not be retried."""

    pass


# === Queue Errors ===


class QueueServiceError(RetryableError):
    """Raised when an SQS call fails with a service or transport error."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"SQS {operation} failed: {reason}"
        context = {}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        context.update({"operation": operation})
        kwargs.setdefault("error_code", "SQS_SERVICE_ERROR")
        super().__init__(message, context=context, **kwargs)


# === S3-Related Errors ===


class S3Error(IngestError):
    """Base class for S3-related errors."""

    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs
        )


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="S3_ACCESS_DENIED", context=context, **kwargs
        )


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    pass


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations time out or the endpoint is unreachable."""

    pass


class S3DownloadError(S3Error, RetryableError):
    """Raised for any other failure while fetching or deleting an object."""

    pass


# === Processing Errors ===


class ProcessingError(IngestError):
    """Base class for errors raised while reading a staged file."""

    pass


class DecompressionError(ProcessingError):
    """Raised when a gzip stream is corrupt or truncated."""

    def __init__(self, path: str, reason: str, **kwargs):
        message = f"Cannot uncompress gzip file {path}: {reason}"
        context = {"path": path, "reason": reason}
        super().__init__(
            message, error_code="GZIP_DECOMPRESSION_FAILED", context=context, **kwargs
        )


# === Configuration Errors ===


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: Exception) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, IngestError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "error_message": str(error),
            "retryable": False,  # Unknown errors default to non-retryable
        }
