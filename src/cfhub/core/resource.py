"""
Resource model shared by every integration.

Resources are immutable snapshots of one manageable unit of infrastructure
(a Pages project, a DNS zone, a repository...). Backend-specific fields live only
in ``configuration``, a map of tagged scalar values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Iterator, Mapping, TypeVar

V = TypeVar("V")


class ResourceType(StrEnum):
    CLOUDFLARE_PAGES = "cloudflare_pages"
    CLOUDFLARE_WORKER = "cloudflare_worker"
    CLOUDFLARE_DNS = "cloudflare_dns"
    CLOUDFLARE_R2 = "cloudflare_r2"
    CLOUDFLARE_KV = "cloudflare_kv"

    GITHUB_REPOSITORY = "github_repository"
    GITHUB_ACTION = "github_action"
    GITHUB_ENVIRONMENT = "github_environment"
    GITHUB_DEPLOYMENT = "github_deployment"

    DEPLOYMENT = "deployment"
    ENVIRONMENT = "environment"
    DOMAIN = "domain"

    @property
    def integration_identifier(self) -> str:
        """Identifier of the integration that owns this kind."""
        if self.value.startswith("cloudflare_"):
            return "cloudflare"
        if self.value.startswith("github_"):
            return "github"
        return "core"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ResourceType.CLOUDFLARE_PAGES: "Cloudflare Pages",
    ResourceType.CLOUDFLARE_WORKER: "Cloudflare Worker",
    ResourceType.CLOUDFLARE_DNS: "Cloudflare DNS",
    ResourceType.CLOUDFLARE_R2: "Cloudflare R2",
    ResourceType.CLOUDFLARE_KV: "Cloudflare KV",
    ResourceType.GITHUB_REPOSITORY: "GitHub Repository",
    ResourceType.GITHUB_ACTION: "GitHub Action",
    ResourceType.GITHUB_ENVIRONMENT: "GitHub Environment",
    ResourceType.GITHUB_DEPLOYMENT: "GitHub Deployment",
    ResourceType.DEPLOYMENT: "Deployment",
    ResourceType.ENVIRONMENT: "Environment",
    ResourceType.DOMAIN: "Domain",
}


class ResourceStatus(StrEnum):
    """Backend-reported lifecycle state. Never inferred by the engine."""

    CREATING = "creating"
    ACTIVE = "active"
    UPDATING = "updating"
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"

    @property
    def is_healthy(self) -> bool:
        return self is ResourceStatus.ACTIVE

    @property
    def is_transitional(self) -> bool:
        return self in (ResourceStatus.CREATING, ResourceStatus.UPDATING, ResourceStatus.DELETING)


class ValueKind(StrEnum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STRING_ARRAY = "string_array"


@dataclass(frozen=True)
class ConfigurationValue:
    """One configuration entry: a string, int, float, bool or list of strings."""

    kind: ValueKind
    value: str | int | float | bool | tuple[str, ...]

    def __post_init__(self) -> None:
        if not _matches(self.kind, self.value):
            raise TypeError(f"{self.value!r} is not a valid {self.kind} configuration value")

    @classmethod
    def of(cls, value: Any) -> ConfigurationValue:
        if isinstance(value, ConfigurationValue):
            return value
        # bool is checked before int, it is an int subclass
        if isinstance(value, bool):
            return cls(ValueKind.BOOL, value)
        if isinstance(value, int):
            return cls(ValueKind.INT, value)
        if isinstance(value, float):
            return cls(ValueKind.FLOAT, value)
        if isinstance(value, str):
            return cls(ValueKind.STRING, value)
        if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
            return cls(ValueKind.STRING_ARRAY, tuple(value))
        raise TypeError(f"Unsupported configuration value type: {type(value).__name__}")

    @property
    def python_value(self) -> str | int | float | bool | list[str]:
        if self.kind is ValueKind.STRING_ARRAY:
            return list(self.value)  # type: ignore[arg-type]
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "value": self.python_value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConfigurationValue:
        try:
            kind = ValueKind(data["kind"])
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown configuration value variant: {data.get('kind')!r}") from exc
        if "value" not in data:
            raise ValueError("Configuration value is missing 'value'")
        raw = data["value"]
        if kind is ValueKind.STRING_ARRAY and isinstance(raw, list):
            raw = tuple(raw)
        elif kind is ValueKind.FLOAT and isinstance(raw, int) and not isinstance(raw, bool):
            raw = float(raw)
        try:
            return cls(kind, raw)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc


def _matches(kind: ValueKind, value: Any) -> bool:
    if kind is ValueKind.BOOL:
        return isinstance(value, bool)
    if kind is ValueKind.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is ValueKind.FLOAT:
        return isinstance(value, float)
    if kind is ValueKind.STRING:
        return isinstance(value, str)
    return isinstance(value, tuple) and all(isinstance(item, str) for item in value)


@dataclass(frozen=True)
class ResourceConfiguration:
    """Immutable string-keyed map of ``ConfigurationValue`` entries."""

    entries: Mapping[str, ConfigurationValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", dict(self.entries))

    @classmethod
    def of(cls, values: Mapping[str, Any] | None = None, **kwargs: Any) -> ResourceConfiguration:
        merged = dict(values or {}) | kwargs
        return cls({key: ConfigurationValue.of(value) for key, value in merged.items()})

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceConfiguration):
            return NotImplemented
        return self.entries == other.entries

    def __hash__(self) -> int:
        return hash(frozenset(self.entries.items()))

    def keys(self) -> list[str]:
        return list(self.entries)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.entries.get(key)
        return entry.python_value if entry is not None else default

    def value(self, key: str, as_type: type[V]) -> V | None:
        """Typed lookup: returns None when absent or of another type."""
        raw = self.get(key)
        if as_type is int and isinstance(raw, bool):
            return None
        return raw if isinstance(raw, as_type) else None

    def with_value(self, key: str, value: Any) -> ResourceConfiguration:
        if value is None:
            return self.without(key)
        return ResourceConfiguration(dict(self.entries) | {key: ConfigurationValue.of(value)})

    def without(self, key: str) -> ResourceConfiguration:
        return ResourceConfiguration({k: v for k, v in self.entries.items() if k != key})

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in self.entries.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> ResourceConfiguration:
        return cls({key: ConfigurationValue.from_dict(raw) for key, raw in data.items()})


@dataclass(frozen=True)
class ResourceMetadata:
    tags: tuple[str, ...] = ()
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)
    owner: str | None = None
    team: str | None = None
    environment: str | None = None
    cost_center: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": list(self.tags),
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "owner": self.owner,
            "team": self.team,
            "environment": self.environment,
            "cost_center": self.cost_center,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResourceMetadata:
        return cls(
            tags=tuple(data.get("tags") or ()),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner=data.get("owner"),
            team=data.get("team"),
            environment=data.get("environment"),
            cost_center=data.get("cost_center"),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Resource:
    """A single manageable unit of infrastructure, unique by (type, id)."""

    id: str
    type: ResourceType
    name: str
    status: ResourceStatus = ResourceStatus.UNKNOWN
    configuration: ResourceConfiguration = field(default_factory=ResourceConfiguration)
    metadata: ResourceMetadata = field(default_factory=ResourceMetadata)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_healthy(self) -> bool:
        return self.status.is_healthy

    @property
    def is_transitional(self) -> bool:
        return self.status.is_transitional

    @property
    def integration_identifier(self) -> str:
        return self.type.integration_identifier

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "name": self.name,
            "status": str(self.status),
            "configuration": self.configuration.to_dict(),
            "metadata": self.metadata.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Resource:
        now = _utcnow()
        created = data.get("created_at")
        updated = data.get("updated_at")
        return cls(
            id=str(data["id"]),
            type=ResourceType(data["type"]),
            name=data.get("name") or str(data["id"]),
            status=ResourceStatus(data.get("status", ResourceStatus.UNKNOWN)),
            configuration=ResourceConfiguration.from_dict(data.get("configuration") or {}),
            metadata=ResourceMetadata.from_dict(data.get("metadata") or {}),
            created_at=datetime.fromisoformat(created) if created else now,
            updated_at=datetime.fromisoformat(updated) if updated else now,
        )


__all__ = [
    "ConfigurationValue",
    "Resource",
    "ResourceConfiguration",
    "ResourceMetadata",
    "ResourceStatus",
    "ResourceType",
    "ValueKind",
]
