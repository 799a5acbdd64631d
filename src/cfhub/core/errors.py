"""
Error taxonomy shared by the registry and every integration.

Each kind carries a stable machine ``code``, a ``severity`` and a ``retryable`` flag:

- Auth errors (authentication failed, expired token, missing permissions): never retried.
- Transient errors (network, timeout, server error, rate limit): retried by the transport.
- State, execution, setup and validation errors: surfaced to the caller.
- Backend errors: vendor error codes wrapped as-is.
- Unknown/internal errors: critical catch-all.

``retryable`` must agree with ``cfhub.clients.base.is_retryable_error``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Iterable

from cfhub.clients.base import (
    DecodingFailed,
    EncodingFailed,
    HTTPClientError,
    HTTPError,
    InvalidURL,
    MaxRetriesExceeded,
    NetworkError,
    RequestTimeoutError,
)

if TYPE_CHECKING:
    from cfhub.core.actions import Action, ActionType
    from cfhub.core.resource import ResourceStatus, ResourceType
    from cfhub.integrations.base import Permission


class ErrorSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def priority(self) -> int:
        return _SEVERITY_PRIORITY[self]


_SEVERITY_PRIORITY = {
    ErrorSeverity.LOW: 1,
    ErrorSeverity.MEDIUM: 2,
    ErrorSeverity.HIGH: 3,
    ErrorSeverity.CRITICAL: 4,
}


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    code: str | None = None


class IntegrationError(Exception):
    """Base exception for every reconciliation failure."""

    code: str = "UNKNOWN_ERROR"
    severity: ErrorSeverity = ErrorSeverity.CRITICAL
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        return self.retryable

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "severity": str(self.severity),
            "retryable": self.retryable,
            "details": self.details,
        }


# Authentication


class AuthenticationFailed(IntegrationError):
    code = "AUTH_FAILED"
    severity = ErrorSeverity.HIGH

    def __init__(self, reason: str):
        super().__init__(f"Authentication failed: {reason}")
        self.reason = reason


class TokenExpired(IntegrationError):
    code = "TOKEN_EXPIRED"
    severity = ErrorSeverity.HIGH

    def __init__(self) -> None:
        super().__init__("Authentication token has expired. Please sign in again.")


class InsufficientPermissions(IntegrationError):
    code = "INSUFFICIENT_PERMISSIONS"
    severity = ErrorSeverity.HIGH

    def __init__(self, required: Iterable[Permission] = ()):
        self.required = list(required)
        scopes = ", ".join(f"{p.scope}:{p.level}" for p in self.required) or "unknown"
        super().__init__(f"Insufficient permissions. Required: {scopes}")


# Transient


class RateLimited(IntegrationError):
    code = "RATE_LIMITED"
    severity = ErrorSeverity.LOW
    retryable = True

    def __init__(self, retry_after: float | None = None):
        if retry_after is not None:
            message = f"Rate limited. Try again in {int(retry_after)} seconds."
        else:
            message = "Rate limited. Please try again later."
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class NetworkUnavailable(IntegrationError):
    code = "NETWORK_UNAVAILABLE"
    severity = ErrorSeverity.MEDIUM
    retryable = True

    def __init__(self, reason: str | None = None) -> None:
        super().__init__("Network unavailable. Check your internet connection.", {"reason": reason})


class RequestTimeout(IntegrationError):
    code = "REQUEST_TIMEOUT"
    severity = ErrorSeverity.MEDIUM
    retryable = True

    def __init__(self, duration: float):
        super().__init__(f"Request timed out after {duration} seconds.")
        self.duration = duration


class ServerError(IntegrationError):
    code = "SERVER_ERROR"
    severity = ErrorSeverity.HIGH
    retryable = True

    def __init__(self, status_code: int, message: str | None = None):
        super().__init__(f"Server error ({status_code}): {message or 'Unknown error'}")
        self.status_code = status_code


class InvalidResponse(IntegrationError):
    code = "INVALID_RESPONSE"
    severity = ErrorSeverity.HIGH

    def __init__(self, expected: str, received: str):
        super().__init__(f"Invalid response. Expected {expected}, received {received}.")
        self.expected = expected
        self.received = received


# Resource state


class ResourceNotFound(IntegrationError):
    code = "RESOURCE_NOT_FOUND"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, resource_id: str, resource_type: ResourceType | None = None):
        label = resource_type.display_name if resource_type is not None else "Resource"
        super().__init__(f"{label} with ID '{resource_id}' not found.")
        self.resource_id = resource_id
        self.resource_type = resource_type


class ResourceAlreadyExists(IntegrationError):
    code = "RESOURCE_ALREADY_EXISTS"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, resource_id: str, resource_type: ResourceType | None = None):
        label = resource_type.display_name if resource_type is not None else "Resource"
        super().__init__(f"{label} with ID '{resource_id}' already exists.")
        self.resource_id = resource_id
        self.resource_type = resource_type


class ResourceInInvalidState(IntegrationError):
    code = "RESOURCE_INVALID_STATE"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, resource_id: str, current: ResourceStatus, required: ResourceStatus):
        super().__init__(
            f"Resource '{resource_id}' is in state '{current}' but requires '{required}'."
        )
        self.resource_id = resource_id
        self.current = current
        self.required = required


class ResourceLocked(IntegrationError):
    code = "RESOURCE_LOCKED"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, resource_id: str, lock_holder: str | None = None):
        if lock_holder:
            message = f"Resource '{resource_id}' is locked by '{lock_holder}'."
        else:
            message = f"Resource '{resource_id}' is locked."
        super().__init__(message)
        self.resource_id = resource_id
        self.lock_holder = lock_holder


# Execution


class ActionNotSupported(IntegrationError):
    code = "ACTION_NOT_SUPPORTED"
    severity = ErrorSeverity.HIGH

    def __init__(self, action_type: ActionType, resource_type: ResourceType):
        super().__init__(
            f"Action '{action_type}' is not supported for {resource_type.display_name}."
        )
        self.action_type = action_type
        self.resource_type = resource_type


class ActionFailed(IntegrationError):
    code = "ACTION_FAILED"
    severity = ErrorSeverity.HIGH

    def __init__(self, action: Action | None, underlying_error: str):
        label = action.operation.display_name if action is not None else "fetch"
        super().__init__(f"Action '{label}' failed: {underlying_error}")
        self.action = action
        self.underlying_error = underlying_error


class DependencyNotMet(IntegrationError):
    code = "DEPENDENCY_NOT_MET"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, action_id: str, missing_dependency: str):
        super().__init__(
            f"Action '{action_id}' cannot proceed. Missing dependency: '{missing_dependency}'"
        )
        self.action_id = action_id
        self.missing_dependency = missing_dependency


class ConcurrentModification(IntegrationError):
    code = "CONCURRENT_MODIFICATION"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, resource_id: str):
        super().__init__(f"Resource '{resource_id}' was modified by another process. Please retry.")
        self.resource_id = resource_id


# Setup


class InvalidConfiguration(IntegrationError):
    code = "INVALID_CONFIGURATION"
    severity = ErrorSeverity.HIGH

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid configuration for '{field}': {reason}")
        self.field = field
        self.reason = reason


class MissingRequiredField(IntegrationError):
    code = "MISSING_REQUIRED_FIELD"
    severity = ErrorSeverity.HIGH

    def __init__(self, field: str):
        super().__init__(f"Required field '{field}' is missing.")
        self.field = field


class ConfigurationConflict(IntegrationError):
    code = "CONFIGURATION_CONFLICT"
    severity = ErrorSeverity.HIGH

    def __init__(self, field1: str, field2: str, reason: str):
        super().__init__(f"Configuration conflict between '{field1}' and '{field2}': {reason}")
        self.fields = (field1, field2)
        self.reason = reason


# Validation


class ValidationFailed(IntegrationError):
    code = "VALIDATION_FAILED"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, errors: Iterable[ValidationIssue]):
        self.errors = list(errors)
        super().__init__("Validation failed: " + "; ".join(e.message for e in self.errors))


class UnsupportedOperation(IntegrationError):
    code = "UNSUPPORTED_OPERATION"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, operation: str, context: str):
        super().__init__(f"Operation '{operation}' is not supported in context '{context}'.")
        self.operation = operation
        self.context = context


class QuotaExceeded(IntegrationError):
    code = "QUOTA_EXCEEDED"
    severity = ErrorSeverity.HIGH

    def __init__(self, resource: str, limit: int, current: int):
        super().__init__(f"Quota exceeded for '{resource}'. Limit: {limit}, Current: {current}.")
        self.resource = resource
        self.limit = limit
        self.current = current


# Backend specific


class BackendError(IntegrationError):
    code = "BACKEND_ERROR"
    severity = ErrorSeverity.MEDIUM
    backend = "Backend"

    def __init__(self, error_code: str, message: str):
        super().__init__(f"{self.backend} API error ({error_code}): {message}")
        self.error_code = error_code
        self.backend_message = message


class CloudflareError(BackendError):
    code = "CLOUDFLARE_ERROR"
    backend = "Cloudflare"


class GitHubError(BackendError):
    code = "GITHUB_ERROR"
    backend = "GitHub"


# Registry


class IntegrationNotFound(IntegrationError):
    code = "INTEGRATION_NOT_FOUND"
    severity = ErrorSeverity.MEDIUM

    def __init__(self, identifier: str):
        super().__init__(f"Integration '{identifier}' not found")
        self.identifier = identifier


# Catch-all


class UnknownError(IntegrationError):
    code = "UNKNOWN_ERROR"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str):
        super().__init__(f"Unknown error: {message}")


class InternalError(IntegrationError):
    code = "INTERNAL_ERROR"
    severity = ErrorSeverity.CRITICAL

    def __init__(self, location: str, message: str = "Unexpected error occurred"):
        super().__init__(f"Internal error in {location}: {message}")
        self.location = location


def _retry_after(headers: dict[str, str]) -> float | None:
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return float(value)
            except ValueError:
                return None
    return None


def error_from_transport(exc: BaseException) -> IntegrationError:
    """Translate a transport failure into the integration taxonomy."""
    if isinstance(exc, IntegrationError):
        return exc
    if isinstance(exc, MaxRetriesExceeded):
        if exc.cause is None:
            return UnknownError(str(exc))
        return error_from_transport(exc.cause)
    if isinstance(exc, HTTPError):
        status = exc.status_code
        if status == 401:
            return AuthenticationFailed(exc.text or "unauthorized")
        if status == 403:
            return InsufficientPermissions()
        if status == 404:
            return ResourceNotFound(exc.url or "unknown")
        if status == 409:
            return ResourceAlreadyExists(exc.url or "unknown")
        if status == 422:
            return ValidationFailed([ValidationIssue(field="body", message=exc.text)])
        if status == 429:
            return RateLimited(_retry_after(exc.headers))
        if status >= 500:
            return ServerError(status, exc.text or None)
        return UnknownError(f"HTTP {status}: {exc.text}")
    if isinstance(exc, RequestTimeoutError):
        return RequestTimeout(exc.timeout)
    if isinstance(exc, NetworkError):
        return NetworkUnavailable(str(exc))
    if isinstance(exc, DecodingFailed):
        received = exc.raw_body[:200].decode("utf-8", errors="replace")
        return InvalidResponse("decodable JSON", received)
    if isinstance(exc, (EncodingFailed, InvalidURL)):
        return InvalidConfiguration("request", str(exc))
    if isinstance(exc, HTTPClientError):
        return UnknownError(str(exc))
    return UnknownError(str(exc) or type(exc).__name__)


__all__ = [
    "ActionFailed",
    "ActionNotSupported",
    "AuthenticationFailed",
    "BackendError",
    "CloudflareError",
    "ConcurrentModification",
    "ConfigurationConflict",
    "DependencyNotMet",
    "ErrorSeverity",
    "GitHubError",
    "InsufficientPermissions",
    "IntegrationError",
    "IntegrationNotFound",
    "InternalError",
    "InvalidConfiguration",
    "InvalidResponse",
    "MissingRequiredField",
    "NetworkUnavailable",
    "QuotaExceeded",
    "RateLimited",
    "RequestTimeout",
    "ResourceAlreadyExists",
    "ResourceInInvalidState",
    "ResourceLocked",
    "ResourceNotFound",
    "ServerError",
    "TokenExpired",
    "UnknownError",
    "UnsupportedOperation",
    "ValidationFailed",
    "ValidationIssue",
    "error_from_transport",
]
