# backend/placescout/core/exceptions.py
"""
Domain-specific exceptions for PlaceScout.

Provider errors carry enough information (status code, provider name)
for the retry executor to classify them as transient or fatal. The API
layer converts any DomainException into an ``{"error": ...}`` body.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from .constants import RETRYABLE_STATUS_CODES


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when request validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ServiceException(DomainException):
    """Raised when a service operation fails."""


class ConfigurationError(DomainException):
    """Raised at startup when collaborators are configured inconsistently."""


# Provider errors


class ProviderError(DomainException):
    """A provider adapter call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.provider = provider
        self.http_status = status_code
        merged = {"provider": provider, **(details or {})}
        if status_code is not None:
            merged["status_code"] = status_code
        super().__init__(f"{provider}: {message}", details=merged)


class ProviderTransientError(ProviderError):
    """Timeouts, connection resets and retryable HTTP statuses."""


class ProviderRateLimitError(ProviderTransientError):
    """HTTP 429 from a provider; retried like other transient errors."""


class ProviderAuthError(ProviderError):
    """Missing or rejected credentials. Never retried."""


class ProviderResponseError(ProviderError):
    """Unexpected status or unparseable payload. Never retried."""


def provider_error_for_status(
    provider: str, status_code: int, body: str = ""
) -> ProviderError:
    """Map a non-2xx provider response onto the provider error taxonomy."""
    snippet = body[:200]
    if status_code == 429:
        return ProviderRateLimitError(provider, "rate limited", status_code, {"body": snippet})
    if status_code in RETRYABLE_STATUS_CODES:
        return ProviderTransientError(
            provider, f"transient HTTP {status_code}", status_code, {"body": snippet}
        )
    if status_code in (401, 403):
        return ProviderAuthError(provider, "credentials rejected", status_code)
    return ProviderResponseError(
        provider, f"unexpected HTTP {status_code}", status_code, {"body": snippet}
    )


# Execution errors


class RetryExhaustedError(ServiceException):
    """All attempts of a retryable operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            details={"operation": operation, "attempts": attempts},
        )


class DeadlineExceededError(ServiceException):
    """The caller-supplied deadline expired before the operation finished."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class AggregationError(ServiceException):
    """Every attempted provider failed."""

    def __init__(self, message: str, failures: Optional[Dict[str, str]] = None) -> None:
        self.failures = dict(failures or {})
        super().__init__(message, details={"failures": self.failures})


class StorageError(ServiceException):
    """A vector store operation failed."""


class InvalidJobTransition(ServiceException):
    """An ingestion job was asked to leave a terminal state."""
