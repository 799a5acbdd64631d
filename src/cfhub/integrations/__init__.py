"""Integration contract, registry and the built-in backends."""

from cfhub.integrations.base import (
    APIKey,
    BaseIntegration,
    BearerToken,
    HealthStatus,
    Integration,
    IntegrationConfiguration,
    NoAuth,
    OAuthToken,
)
from cfhub.integrations.cloudflare import CloudflareIntegration
from cfhub.integrations.github import GitHubIntegration
from cfhub.integrations.registry import IntegrationRegistry


async def register_default_integrations(registry: IntegrationRegistry) -> None:
    """Register the built-in Cloudflare and GitHub integrations."""
    await registry.register(CloudflareIntegration)
    await registry.register(GitHubIntegration)


__all__ = [
    "APIKey",
    "BaseIntegration",
    "BearerToken",
    "CloudflareIntegration",
    "GitHubIntegration",
    "HealthStatus",
    "Integration",
    "IntegrationConfiguration",
    "IntegrationRegistry",
    "NoAuth",
    "OAuthToken",
    "register_default_integrations",
]
