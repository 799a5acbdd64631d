"""Resource model, actions and the integration error taxonomy."""

from cfhub.core.actions import Action, ActionType, ApplyResult, FailedAction
from cfhub.core.errors import IntegrationError, error_from_transport
from cfhub.core.resource import (
    Resource,
    ResourceConfiguration,
    ResourceMetadata,
    ResourceStatus,
    ResourceType,
)

__all__ = [
    "Action",
    "ActionType",
    "ApplyResult",
    "FailedAction",
    "IntegrationError",
    "Resource",
    "ResourceConfiguration",
    "ResourceMetadata",
    "ResourceStatus",
    "ResourceType",
    "error_from_transport",
]
