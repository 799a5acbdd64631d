"""Actions produced by planning and the result of applying them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Union

from cfhub.core.errors import IntegrationError
from cfhub.core.resource import ResourceConfiguration, ResourceType


class ActionType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DEPLOY = "deploy"
    ROLLBACK = "rollback"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    SCALE = "scale"


@dataclass(frozen=True)
class CreateResource:
    configuration: ResourceConfiguration

    display_name = "Create resource"


@dataclass(frozen=True)
class UpdateResource:
    configuration: ResourceConfiguration

    display_name = "Update resource"


@dataclass(frozen=True)
class DeleteResource:
    display_name = "Delete resource"


@dataclass(frozen=True)
class Deploy:
    ref: str
    environment: str | None = None

    display_name = "Deploy"


@dataclass(frozen=True)
class Rollback:
    to_version: str | None = None

    display_name = "Rollback"


@dataclass(frozen=True)
class Start:
    display_name = "Start"


@dataclass(frozen=True)
class Stop:
    display_name = "Stop"


@dataclass(frozen=True)
class Restart:
    display_name = "Restart"


@dataclass(frozen=True)
class Scale:
    replicas: int

    display_name = "Scale"


Operation = Union[
    CreateResource, UpdateResource, DeleteResource, Deploy, Rollback, Start, Stop, Restart, Scale
]


def _new_action_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Action:
    """A single proposed mutation against one resource."""

    type: ActionType
    resource_id: str
    resource_type: ResourceType
    operation: Operation
    id: str = field(default_factory=_new_action_id)
    created_at: datetime = field(default_factory=_utcnow, compare=False)

    @classmethod
    def create(
        cls,
        resource_id: str,
        resource_type: ResourceType,
        configuration: ResourceConfiguration,
    ) -> Action:
        return cls(ActionType.CREATE, resource_id, resource_type, CreateResource(configuration))

    @classmethod
    def update(
        cls,
        resource_id: str,
        resource_type: ResourceType,
        configuration: ResourceConfiguration,
    ) -> Action:
        return cls(ActionType.UPDATE, resource_id, resource_type, UpdateResource(configuration))

    @classmethod
    def delete(cls, resource_id: str, resource_type: ResourceType) -> Action:
        return cls(ActionType.DELETE, resource_id, resource_type, DeleteResource())

    def describe(self) -> str:
        return f"{self.type} {self.resource_type}/{self.resource_id}"


@dataclass(frozen=True)
class FailedAction:
    action: Action
    error: IntegrationError
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ApplyResult:
    """Outcome of one apply batch. Every input action lands in exactly one list."""

    successful: list[Action] = field(default_factory=list)
    failed: list[FailedAction] = field(default_factory=list)
    duration: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def success(self) -> bool:
        return not self.failed

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": len(self.successful),
            "failed": len(self.failed),
            "duration_seconds": round(self.duration, 3),
            "errors": [
                {"action": f.action.describe(), "code": f.error.code, "message": f.error.message}
                for f in self.failed
            ],
        }


__all__ = [
    "Action",
    "ActionType",
    "ApplyResult",
    "CreateResource",
    "DeleteResource",
    "Deploy",
    "FailedAction",
    "Operation",
    "Restart",
    "Rollback",
    "Scale",
    "Start",
    "Stop",
    "UpdateResource",
]
