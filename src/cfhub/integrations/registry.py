from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from cfhub.core.errors import IntegrationError, IntegrationNotFound
from cfhub.integrations.base import (
    HealthStatus,
    Integration,
    IntegrationConfiguration,
    IntegrationFactory,
    Permission,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class IntegrationSpec:
    """Metadata describing a registered (not yet activated) integration."""

    identifier: str
    display_name: str
    version: str
    required_permissions: tuple[Permission, ...]
    factory: IntegrationFactory


@dataclass(frozen=True)
class IntegrationMetadata:
    identifier: str
    display_name: str
    version: str
    required_permissions: tuple[Permission, ...]
    is_active: bool


class IntegrationRegistry:
    """Holds integration factories and the live instance per identifier.

    Construct one per process at the composition root and pass it to callers.
    Every read and mutation goes through one lock; factory calls and health checks
    run outside it so a slow backend never blocks the map.
    """

    def __init__(self) -> None:
        self._specs: dict[str, IntegrationSpec] = {}
        self._active: dict[str, Integration] = {}
        self._lock = asyncio.Lock()

    async def register(
        self,
        integration_type: Any,
        factory: IntegrationFactory | None = None,
    ) -> None:
        """Register ``integration_type`` under its ``identifier``; re-registering overwrites.

        ``factory`` defaults to the type's async ``create`` classmethod.
        """
        identifier = getattr(integration_type, "identifier", None)
        if not identifier:
            raise ValueError("Integration identifier is required")
        if factory is None:
            factory = integration_type.create
        spec = IntegrationSpec(
            identifier=identifier,
            display_name=getattr(integration_type, "display_name", identifier),
            version=getattr(integration_type, "version", "0.0.0"),
            required_permissions=tuple(getattr(integration_type, "required_permissions", ())),
            factory=factory,
        )
        async with self._lock:
            self._specs[identifier] = spec
        logger.debug("integration_registered", integration=identifier, version=spec.version)

    async def activate(
        self,
        identifier: str,
        configuration: IntegrationConfiguration,
    ) -> Integration:
        async with self._lock:
            spec = self._specs.get(identifier)
        if spec is None:
            raise IntegrationNotFound(identifier)

        integration = await spec.factory(configuration)

        async with self._lock:
            replaced = identifier in self._active
            self._active[identifier] = integration
        logger.info("integration_activated", integration=identifier, replaced=replaced)
        return integration

    async def deactivate(self, identifier: str) -> None:
        async with self._lock:
            removed = self._active.pop(identifier, None)
        if removed is not None:
            logger.info("integration_deactivated", integration=identifier)

    async def get(self, identifier: str) -> Integration | None:
        async with self._lock:
            return self._active.get(identifier)

    async def get_active_integrations(self) -> dict[str, Integration]:
        async with self._lock:
            return dict(self._active)

    async def get_registered_integrations(self) -> list[IntegrationMetadata]:
        async with self._lock:
            return [
                IntegrationMetadata(
                    identifier=spec.identifier,
                    display_name=spec.display_name,
                    version=spec.version,
                    required_permissions=spec.required_permissions,
                    is_active=spec.identifier in self._active,
                )
                for spec in self._specs.values()
            ]

    async def is_available(self, identifier: str) -> bool:
        async with self._lock:
            return identifier in self._specs

    async def is_active(self, identifier: str) -> bool:
        async with self._lock:
            return identifier in self._active

    async def health_check_all(self) -> dict[str, HealthStatus]:
        """Check every active integration concurrently; failures become unhealthy entries."""
        active = await self.get_active_integrations()
        identifiers = list(active)
        outcomes = await asyncio.gather(
            *(active[identifier].health_check() for identifier in identifiers),
            return_exceptions=True,
        )

        results: dict[str, HealthStatus] = {}
        for identifier, outcome in zip(identifiers, outcomes):
            if isinstance(outcome, HealthStatus):
                results[identifier] = outcome
                continue
            if isinstance(outcome, IntegrationError):
                message = outcome.message
            else:
                message = str(outcome) or type(outcome).__name__
            logger.warning("integration_health_check_failed", integration=identifier, error=message)
            results[identifier] = HealthStatus(is_healthy=False, details={"error": message})
        return results
