from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Awaitable, Callable, ClassVar, Mapping, Protocol, Self, Union

import structlog

from cfhub.clients.base import DEFAULT_TIMEOUT, HTTPClient, InvalidURL, RetryPolicy
from cfhub.core.actions import Action, ApplyResult
from cfhub.core.errors import (
    ActionFailed,
    AuthenticationFailed,
    IntegrationError,
    InvalidConfiguration,
    UnsupportedOperation,
    ValidationFailed,
    ValidationIssue,
    error_from_transport,
)
from cfhub.core.resource import Resource, ResourceType
from cfhub.reconcile.apply import apply_actions
from cfhub.reconcile.diff import plan_actions

logger = structlog.get_logger()


@dataclass(frozen=True)
class BearerToken:
    token: str = field(repr=False)


@dataclass(frozen=True)
class OAuthToken:
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class APIKey:
    key: str = field(repr=False)
    secret: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class NoAuth:
    pass


Authentication = Union[BearerToken, OAuthToken, APIKey, NoAuth]


@dataclass(frozen=True)
class IntegrationConfiguration:
    """Activation input. Assembled by the caller, never inspected for provenance."""

    base_url: str
    authentication: Authentication = field(default_factory=NoAuth)
    timeout: float = DEFAULT_TIMEOUT
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy.default)
    options: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise InvalidConfiguration("base_url", "must not be empty")
        if self.timeout <= 0:
            raise InvalidConfiguration("timeout", "must be positive")
        object.__setattr__(self, "options", dict(self.options))


class PermissionLevel(StrEnum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


@dataclass(frozen=True)
class Permission:
    """Declared capability. Informational, the engine does not enforce it."""

    scope: str
    level: PermissionLevel
    description: str


@dataclass(frozen=True)
class HealthStatus:
    is_healthy: bool
    latency: float | None = None
    last_check: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, str] = field(default_factory=dict)


class Integration(Protocol):
    """Capability surface every backend exposes to the registry and its callers."""

    identifier: ClassVar[str]
    display_name: ClassVar[str]
    version: ClassVar[str]
    required_permissions: ClassVar[tuple[Permission, ...]]

    async def get_actual_state(self) -> list[Resource]:
        ...

    async def plan(self, desired: list[Resource]) -> list[Action]:
        ...

    async def apply(self, actions: list[Action]) -> ApplyResult:
        ...

    async def rollback(self) -> None:
        ...

    async def health_check(self) -> HealthStatus:
        ...


IntegrationFactory = Callable[[IntegrationConfiguration], Awaitable[Integration]]
ResourceFetcher = Callable[[], Awaitable[list[Resource]]]


class BaseIntegration:
    """Default plumbing for HTTP-backed integrations.

    Subclasses provide authentication headers, the resource fetchers, a liveness
    probe and an action executor. Construction goes through :meth:`create`, which
    fails with ``AuthenticationFailed`` before returning an unverified instance.
    """

    identifier: ClassVar[str]
    display_name: ClassVar[str]
    version: ClassVar[str] = "1.0.0"
    required_permissions: ClassVar[tuple[Permission, ...]] = ()
    managed_types: ClassVar[frozenset[ResourceType]] = frozenset()

    def __init__(self, configuration: IntegrationConfiguration, client: HTTPClient) -> None:
        self._configuration = configuration
        self._client = client

    @classmethod
    async def create(cls, configuration: IntegrationConfiguration) -> Self:
        headers = cls.authentication_headers(configuration.authentication)
        headers.setdefault("User-Agent", f"cfhub-{cls.identifier}/{cls.version}")
        try:
            client = HTTPClient(
                configuration.base_url,
                default_headers=headers,
                retry_policy=configuration.retry_policy,
                timeout=configuration.timeout,
            )
        except InvalidURL as exc:
            raise InvalidConfiguration(
                "base_url", f"Invalid base URL: {configuration.base_url}"
            ) from exc
        integration = cls(configuration, client)
        await integration.verify_authentication()
        return integration

    @classmethod
    def authentication_headers(cls, authentication: Authentication) -> dict[str, str]:
        raise NotImplementedError

    @property
    def configuration(self) -> IntegrationConfiguration:
        return self._configuration

    @property
    def client(self) -> HTTPClient:
        return self._client

    async def verify_authentication(self) -> None:
        health = await self.health_check()
        if not health.is_healthy:
            reason = health.details.get("error", "health check failed")
            logger.warning("integration_auth_failed", integration=self.identifier, reason=reason)
            raise AuthenticationFailed(f"Health check failed: {reason}")

    def resource_fetchers(self) -> list[ResourceFetcher]:
        raise NotImplementedError

    async def probe(self) -> dict[str, str]:
        """Cheap identity call; returns details for the health status."""
        raise NotImplementedError

    async def execute_action(self, action: Action) -> None:
        raise NotImplementedError

    async def get_actual_state(self) -> list[Resource]:
        results = await asyncio.gather(
            *(fetch() for fetch in self.resource_fetchers()),
            return_exceptions=True,
        )
        resources: list[Resource] = []
        for outcome in results:
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                error = error_from_transport(outcome)
                logger.error(
                    "actual_state_fetch_failed",
                    integration=self.identifier,
                    code=error.code,
                    error=error.message,
                )
                raise ActionFailed(None, error.message) from outcome
            resources.extend(outcome)
        return resources

    def validate_desired(self, desired: list[Resource]) -> None:
        if not self.managed_types:
            return
        issues = [
            ValidationIssue(
                field=f"resources[{index}].type",
                message=f"{resource.type.display_name} is not managed by {self.display_name}",
                code="unmanaged_type",
            )
            for index, resource in enumerate(desired)
            if resource.type not in self.managed_types
        ]
        if issues:
            raise ValidationFailed(issues)

    async def plan(self, desired: list[Resource]) -> list[Action]:
        self.validate_desired(desired)
        actual = await self.get_actual_state()
        actions = plan_actions(actual, desired)
        logger.info(
            "plan_computed",
            integration=self.identifier,
            actual=len(actual),
            desired=len(desired),
            actions=len(actions),
        )
        return actions

    async def apply(self, actions: list[Action]) -> ApplyResult:
        return await apply_actions(
            actions,
            self.execute_action,
            metadata={"integration": self.identifier, "version": self.version},
        )

    async def rollback(self) -> None:
        raise UnsupportedOperation("rollback", f"{self.display_name} rollback not supported")

    async def health_check(self) -> HealthStatus:
        started = time.monotonic()
        try:
            details = await self.probe()
        except Exception as exc:  # noqa: BLE001 - health checks never raise
            message = exc.message if isinstance(exc, IntegrationError) else str(exc)
            return HealthStatus(
                is_healthy=False,
                latency=time.monotonic() - started,
                details={"integration": self.identifier, "error": message or type(exc).__name__},
            )
        return HealthStatus(
            is_healthy=True,
            latency=time.monotonic() - started,
            details={"integration": self.identifier} | details,
        )


def describe_authentication(authentication: Authentication) -> str:
    """Variant name for log and error messages; never includes secrets."""
    return type(authentication).__name__


def options_list(options: Mapping[str, Any], key: str) -> list[str]:
    raw = options.get(key) or ""
    return [item.strip() for item in str(raw).split(",") if item.strip()]
