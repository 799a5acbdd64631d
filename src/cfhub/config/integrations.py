"""
Turn settings into activation input for the built-in integrations.

The authentication variant is picked from whichever credentials are present; with none
the configuration carries ``NoAuth`` and activation rejects it.
"""

from __future__ import annotations

import structlog

from cfhub.clients.base import RetryPolicy
from cfhub.config.settings import Settings, get_settings
from cfhub.integrations.base import (
    APIKey,
    Authentication,
    BearerToken,
    IntegrationConfiguration,
    NoAuth,
    OAuthToken,
)
from cfhub.integrations import register_default_integrations
from cfhub.integrations.registry import IntegrationRegistry
from cfhub.logging import configure_logging

logger = structlog.get_logger()


def retry_policy_from_settings(settings: Settings | None = None) -> RetryPolicy:
    settings = settings or get_settings()
    return RetryPolicy(
        max_attempts=settings.http_max_retries,
        initial_delay=settings.http_retry_initial_delay,
        backoff_multiplier=settings.http_retry_backoff_multiplier,
        max_delay=settings.http_retry_max_delay,
    )


def cloudflare_configuration(settings: Settings | None = None) -> IntegrationConfiguration:
    settings = settings or get_settings()
    authentication: Authentication
    if settings.cloudflare_api_token:
        authentication = BearerToken(settings.cloudflare_api_token)
    elif settings.cloudflare_api_key:
        authentication = APIKey(settings.cloudflare_api_key, settings.cloudflare_email)
    else:
        authentication = NoAuth()

    options: dict[str, str] = {}
    if settings.cloudflare_account_id:
        options["account_id"] = settings.cloudflare_account_id

    return IntegrationConfiguration(
        base_url=settings.cloudflare_base_url,
        authentication=authentication,
        timeout=settings.http_timeout,
        retry_policy=retry_policy_from_settings(settings),
        options=options,
    )


def github_configuration(settings: Settings | None = None) -> IntegrationConfiguration:
    settings = settings or get_settings()
    authentication: Authentication
    if settings.github_token:
        authentication = BearerToken(settings.github_token)
    elif settings.github_oauth_token:
        authentication = OAuthToken(settings.github_oauth_token)
    else:
        authentication = NoAuth()

    options: dict[str, str] = {}
    if settings.github_repositories:
        options["repositories"] = settings.github_repositories
    if settings.github_organizations:
        options["organizations"] = settings.github_organizations

    return IntegrationConfiguration(
        base_url=settings.github_base_url,
        authentication=authentication,
        timeout=settings.http_timeout,
        retry_policy=retry_policy_from_settings(settings),
        options=options,
    )


async def activate_configured_integrations(
    registry: IntegrationRegistry,
    settings: Settings | None = None,
) -> list[str]:
    """Activate every registered built-in integration that has credentials configured.

    Returns the identifiers that were activated. Activation errors propagate.
    """
    settings = settings or get_settings()
    candidates = {
        "cloudflare": cloudflare_configuration(settings),
        "github": github_configuration(settings),
    }
    activated: list[str] = []
    for identifier, configuration in candidates.items():
        if isinstance(configuration.authentication, NoAuth):
            logger.info("integration_not_configured", integration=identifier)
            continue
        if not await registry.is_available(identifier):
            continue
        await registry.activate(identifier, configuration)
        activated.append(identifier)
    return activated


async def bootstrap(settings: Settings | None = None) -> IntegrationRegistry:
    """Configure logging from settings and return a registry with the built-ins active.

    Integrations without credentials are registered but left inactive.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    registry = IntegrationRegistry()
    await register_default_integrations(registry)
    activated = await activate_configured_integrations(registry, settings)
    logger.info("cfhub_bootstrapped", active=activated)
    return registry


__all__ = [
    "activate_configured_integrations",
    "bootstrap",
    "cloudflare_configuration",
    "github_configuration",
    "retry_policy_from_settings",
]
