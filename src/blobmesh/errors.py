"""Custom exceptions for blobmesh.

This module defines typed exceptions for better error handling and clearer
error messages throughout the application. Every exception carries an
``ErrorCategory`` assigned where the failure happens (usually by mapping an
HTTP status through ``STATUS_CATEGORIES``), so retry and reporting decisions
never depend on the wording of a message.
"""

from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from .models import EndpointOutcome


class ErrorCategory(str, Enum):
    """Category of a failure, used for retry and reporting decisions."""
    NETWORK = "network"                # connection, timeout
    SERVER = "server"                  # 5xx
    AUTHENTICATION = "authentication"  # token rejected or expired
    VALIDATION = "validation"          # bad hash, URL or request
    CONFIGURATION = "configuration"    # missing endpoints or signer
    PERMISSION = "permission"          # 403 from endpoint

    @property
    def retryable(self) -> bool:
        return self in (ErrorCategory.NETWORK, ErrorCategory.SERVER)


class BlobMeshError(RuntimeError):
    """Base class for all blobmesh errors."""
    category: ErrorCategory = ErrorCategory.VALIDATION

    @property
    def retryable(self) -> bool:
        return self.category.retryable


# Endpoint Errors
class EndpointError(BlobMeshError):
    """Base class for errors reported by (or while talking to) one endpoint."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class NetworkError(EndpointError):
    """Network connectivity issue with an endpoint."""
    category = ErrorCategory.NETWORK


class DeadlineExceededError(NetworkError):
    """Operation deadline fired before the endpoint call settled."""

    def __init__(self, endpoint: Optional[str] = None, deadline: Optional[float] = None):
        self.deadline = deadline
        detail = f" after {deadline:g}s" if deadline is not None else ""
        super().__init__(f"Deadline exceeded{detail}", endpoint=endpoint)


class ServerError(EndpointError):
    """Endpoint failed to process the request (5xx)."""
    category = ErrorCategory.SERVER


class AuthError(EndpointError):
    """Authorization token rejected, expired or could not be issued."""
    category = ErrorCategory.AUTHENTICATION


class PermissionDeniedError(EndpointError):
    """Endpoint refused the operation for this identity (403)."""
    category = ErrorCategory.PERMISSION


class NotFoundError(EndpointError):
    """Resource not found on the endpoint (404)."""
    category = ErrorCategory.VALIDATION


class RequestRejectedError(EndpointError):
    """Endpoint rejected the request as malformed or unacceptable (4xx)."""
    category = ErrorCategory.VALIDATION


# Validation Errors
class ValidationError(BlobMeshError):
    """Input failed local validation before any network call."""
    category = ErrorCategory.VALIDATION


class InvalidHashError(ValidationError):
    """Value is not a 64 character sha-256 hex digest."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Not a sha256 content hash: {value!r}")


class InvalidEndpointError(ValidationError):
    """Endpoint URL is malformed or uses an unsupported scheme."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid endpoint URL {url!r}: {reason}")


class DigestMismatchError(ValidationError):
    """Downloaded bytes do not hash to the expected content hash."""

    def __init__(self, source: str, expected: str, actual: str):
        self.source = source
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Digest verification failed for {source}\n"
            f"  Expected: {expected}\n"
            f"  Got:      {actual}\n"
            f"The blob may be corrupted or tampered with."
        )


# Configuration Errors
class ConfigError(BlobMeshError):
    """Base class for configuration errors."""
    category = ErrorCategory.CONFIGURATION


# Aggregate Errors
class AllEndpointsFailedError(BlobMeshError):
    """Every endpoint contacted for an operation failed.

    Carries the full per-endpoint outcome list so callers can show
    "tried N endpoints, all failed, here's why" without re-running anything.
    """
    category = ErrorCategory.NETWORK

    def __init__(self, operation: str, outcomes: Sequence["EndpointOutcome"]):
        self.operation = operation
        self.outcomes: List["EndpointOutcome"] = list(outcomes)
        failed = [o for o in self.outcomes if not o.succeeded]
        details = "; ".join(f"{o.endpoint}: {o.error}" for o in failed)
        super().__init__(
            f"{operation} failed on all {len(self.outcomes)} endpoints. Errors: {details}"
        )

    @property
    def reasons(self) -> Dict[str, str]:
        """Map of endpoint URL to failure reason."""
        return {o.endpoint: o.error or "" for o in self.outcomes if not o.succeeded}


# HTTP status -> category table. Statuses not listed fall back by class.
STATUS_CATEGORIES: Dict[int, ErrorCategory] = {
    400: ErrorCategory.VALIDATION,
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.PERMISSION,
    404: ErrorCategory.VALIDATION,
    408: ErrorCategory.NETWORK,
    409: ErrorCategory.VALIDATION,
    411: ErrorCategory.VALIDATION,
    413: ErrorCategory.VALIDATION,
    415: ErrorCategory.VALIDATION,
    429: ErrorCategory.SERVER,
    500: ErrorCategory.SERVER,
    502: ErrorCategory.SERVER,
    503: ErrorCategory.SERVER,
    504: ErrorCategory.NETWORK,
}


def classify_status(status_code: int) -> ErrorCategory:
    """Map an HTTP status code to an error category."""
    if status_code in STATUS_CATEGORIES:
        return STATUS_CATEGORIES[status_code]
    if status_code >= 500:
        return ErrorCategory.SERVER
    return ErrorCategory.VALIDATION


def error_for_status(
    status_code: int,
    message: str,
    endpoint: Optional[str] = None,
) -> EndpointError:
    """Build the typed exception for a non-2xx response."""
    if status_code == 404:
        return NotFoundError(message, endpoint=endpoint, status_code=status_code)
    if status_code == 403:
        return PermissionDeniedError(message, endpoint=endpoint, status_code=status_code)
    if status_code == 401:
        return AuthError(message, endpoint=endpoint, status_code=status_code)

    category = classify_status(status_code)
    if category is ErrorCategory.NETWORK:
        return NetworkError(message, endpoint=endpoint, status_code=status_code)
    if category is ErrorCategory.SERVER:
        return ServerError(message, endpoint=endpoint, status_code=status_code)
    return RequestRejectedError(message, endpoint=endpoint, status_code=status_code)


def category_of(error: BaseException) -> Optional[ErrorCategory]:
    """Category of an error, or None for exceptions outside the hierarchy."""
    if isinstance(error, BlobMeshError):
        return error.category
    return None
