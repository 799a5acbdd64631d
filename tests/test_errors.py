"""Tests for core/errors.py.

Taxonomy attributes and the transport-to-taxonomy mapping.
"""

import pytest

from cfhub.clients.base import (
    DecodingFailed,
    EncodingFailed,
    HTTPError,
    MaxRetriesExceeded,
    NetworkError,
    RequestTimeoutError,
    is_retryable_error,
)
from cfhub.core.actions import ActionType
from cfhub.core.errors import (
    ActionNotSupported,
    AuthenticationFailed,
    CloudflareError,
    ErrorSeverity,
    GitHubError,
    InsufficientPermissions,
    IntegrationNotFound,
    InvalidConfiguration,
    InvalidResponse,
    NetworkUnavailable,
    RateLimited,
    RequestTimeout,
    ResourceAlreadyExists,
    ResourceNotFound,
    ServerError,
    UnknownError,
    ValidationFailed,
    ValidationIssue,
    error_from_transport,
)
from cfhub.core.resource import ResourceType
from cfhub.integrations.base import Permission, PermissionLevel


class TestTaxonomy:
    """Codes, severities and retryability of error kinds."""

    def test_severity_priority_is_ordered(self):
        priorities = [severity.priority for severity in ErrorSeverity]
        assert priorities == [1, 2, 3, 4]

    def test_rate_limited_is_low_and_retryable(self):
        error = RateLimited(30)

        assert error.code == "RATE_LIMITED"
        assert error.severity is ErrorSeverity.LOW
        assert error.is_retryable
        assert error.retry_after == 30
        assert "30 seconds" in error.message

    def test_rate_limited_without_hint(self):
        assert RateLimited().message == "Rate limited. Please try again later."

    def test_auth_errors_are_high_and_final(self):
        error = AuthenticationFailed("bad token")

        assert error.severity is ErrorSeverity.HIGH
        assert not error.is_retryable
        assert str(error) == "Authentication failed: bad token"

    def test_transient_errors_are_retryable(self):
        assert NetworkUnavailable().is_retryable
        assert RequestTimeout(5).is_retryable
        assert ServerError(502).is_retryable

    def test_resource_not_found_mentions_type(self):
        error = ResourceNotFound("docs", ResourceType.CLOUDFLARE_PAGES)

        assert error.message == "Cloudflare Pages with ID 'docs' not found."
        assert error.resource_type is ResourceType.CLOUDFLARE_PAGES

    def test_action_not_supported(self):
        error = ActionNotSupported(ActionType.SCALE, ResourceType.GITHUB_REPOSITORY)

        assert error.code == "ACTION_NOT_SUPPORTED"
        assert error.severity is ErrorSeverity.HIGH

    def test_insufficient_permissions_lists_scopes(self):
        error = InsufficientPermissions([Permission("repo", PermissionLevel.WRITE, "Write")])

        assert "repo:write" in error.message

    def test_backend_errors(self):
        cloudflare = CloudflareError("1000", "Invalid name")
        github = GitHubError("422", "Repository creation failed")

        assert cloudflare.code == "CLOUDFLARE_ERROR"
        assert cloudflare.error_code == "1000"
        assert "Cloudflare API error (1000): Invalid name" == cloudflare.message
        assert github.code == "GITHUB_ERROR"
        assert not github.is_retryable
        assert github.severity is ErrorSeverity.MEDIUM

    def test_integration_not_found(self):
        error = IntegrationNotFound("gitlab")

        assert error.code == "INTEGRATION_NOT_FOUND"
        assert error.identifier == "gitlab"

    def test_to_dict(self):
        data = RateLimited(10).to_dict()

        assert data["code"] == "RATE_LIMITED"
        assert data["severity"] == "low"
        assert data["retryable"] is True
        assert data["details"] == {"retry_after": 10}

    def test_validation_failed_keeps_issues(self):
        issue = ValidationIssue(field="name", message="required")
        error = ValidationFailed([issue])

        assert error.errors == [issue]


class TestErrorFromTransport:
    """Mapping transport failures into the taxonomy."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (401, AuthenticationFailed),
            (403, InsufficientPermissions),
            (404, ResourceNotFound),
            (409, ResourceAlreadyExists),
            (422, ValidationFailed),
            (429, RateLimited),
            (500, ServerError),
            (503, ServerError),
            (418, UnknownError),
        ],
    )
    def test_status_codes(self, status, expected):
        error = error_from_transport(HTTPError(status, b"", {}, url="https://x.test/a"))

        assert isinstance(error, expected)

    def test_retryability_agrees_with_transport(self):
        for status in (400, 401, 403, 404, 409, 422, 429, 500, 502, 503):
            exc = HTTPError(status, b"", {})
            assert error_from_transport(exc).is_retryable == is_retryable_error(exc)

    def test_not_found_carries_url(self):
        error = error_from_transport(HTTPError(404, b"", {}, url="https://x.test/items/9"))

        assert error.resource_id == "https://x.test/items/9"

    def test_retry_after_header(self):
        error = error_from_transport(HTTPError(429, b"", {"retry-after": "12"}))

        assert error.retry_after == 12.0

    def test_server_error_keeps_status(self):
        error = error_from_transport(HTTPError(502, b"bad gateway", {}))

        assert error.status_code == 502
        assert "bad gateway" in error.message

    def test_exhausted_retries_map_the_cause(self):
        exc = MaxRetriesExceeded(3, HTTPError(503, b"", {}))

        assert isinstance(error_from_transport(exc), ServerError)

    def test_other_transport_failures(self):
        assert isinstance(error_from_transport(RequestTimeoutError(5)), RequestTimeout)
        assert isinstance(error_from_transport(NetworkError("reset")), NetworkUnavailable)
        assert isinstance(
            error_from_transport(DecodingFailed(ValueError("x"), b"<html>")), InvalidResponse
        )
        assert isinstance(
            error_from_transport(EncodingFailed(TypeError("x"))), InvalidConfiguration
        )

    def test_taxonomy_errors_pass_through(self):
        original = GitHubError("422", "nope")

        assert error_from_transport(original) is original

    def test_arbitrary_exception_is_unknown(self):
        error = error_from_transport(RuntimeError("boom"))

        assert isinstance(error, UnknownError)
        assert "boom" in error.message
