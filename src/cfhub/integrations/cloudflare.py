"""
Cloudflare integration.

Manages Pages projects, Worker scripts and DNS zones through the v4 API.
Resource ids are the names Cloudflare addresses them by, prefixed with the kind
(``pages/docs``, ``worker/docs``, ``zone/example.com``) so desired state can be
written before anything exists and a project never matches a script of the same name.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from cfhub.clients.base import HTTPClient, HTTPClientError, HTTPError
from cfhub.core.actions import Action, ActionType
from cfhub.core.errors import (
    ActionNotSupported,
    AuthenticationFailed,
    CloudflareError,
    ConfigurationConflict,
    IntegrationError,
    InvalidConfiguration,
    ResourceNotFound,
    error_from_transport,
)
from cfhub.core.resource import (
    Resource,
    ResourceConfiguration,
    ResourceMetadata,
    ResourceStatus,
    ResourceType,
)
from cfhub.integrations.base import (
    APIKey,
    Authentication,
    BaseIntegration,
    BearerToken,
    IntegrationConfiguration,
    Permission,
    PermissionLevel,
    ResourceFetcher,
    describe_authentication,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"

PAGES_PAGE_SIZE = 10
ZONES_PAGE_SIZE = 50

R = TypeVar("R")


class CloudflareMessage(BaseModel):
    code: int | str = 0
    message: str = ""


class CloudflareResultInfo(BaseModel):
    page: int = 1
    per_page: int = 0
    count: int = 0
    total_count: int | None = None
    total_pages: int | None = None


class CloudflareEnvelope(BaseModel, Generic[R]):
    success: bool = True
    errors: list[CloudflareMessage] = Field(default_factory=list)
    result: R | None = None
    result_info: CloudflareResultInfo | None = None


class CloudflareUser(BaseModel):
    id: str
    email: str | None = None


class CloudflareAccount(BaseModel):
    id: str
    name: str = ""


class PagesBuildConfig(BaseModel):
    build_command: str | None = None
    destination_dir: str | None = None
    root_dir: str | None = None


class PagesSource(BaseModel):
    type: str = ""


class PagesStage(BaseModel):
    name: str = ""
    status: str = ""


class PagesDeployment(BaseModel):
    id: str | None = None
    url: str | None = None
    latest_stage: PagesStage | None = None


class PagesProject(BaseModel):
    id: str
    name: str
    subdomain: str | None = None
    domains: list[str] = Field(default_factory=list)
    production_branch: str | None = None
    source: PagesSource | None = None
    build_config: PagesBuildConfig | None = None
    latest_deployment: PagesDeployment | None = None
    created_on: datetime | None = None


class WorkerRoute(BaseModel):
    pattern: str
    zone_id: str | None = None


class WorkerScript(BaseModel):
    id: str
    usage_model: str | None = None
    routes: list[WorkerRoute] | None = None
    created_on: datetime | None = None
    modified_on: datetime | None = None


class ZonePlan(BaseModel):
    id: str = ""
    name: str = ""


class Zone(BaseModel):
    id: str
    name: str
    status: str = ""
    paused: bool = False
    name_servers: list[str] = Field(default_factory=list)
    plan: ZonePlan | None = None
    development_mode: int = 0
    created_on: datetime | None = None
    modified_on: datetime | None = None


_ID_PREFIXES = {
    ResourceType.CLOUDFLARE_PAGES: "pages",
    ResourceType.CLOUDFLARE_WORKER: "worker",
    ResourceType.CLOUDFLARE_DNS: "zone",
}


def resource_key(resource_type: ResourceType, name: str) -> str:
    return f"{_ID_PREFIXES[resource_type]}/{name}"


def resource_name(resource_type: ResourceType, resource_id: str) -> str:
    """Inverse of :func:`resource_key`."""
    prefix, _, name = resource_id.partition("/")
    if prefix != _ID_PREFIXES.get(resource_type) or not name:
        raise InvalidConfiguration(
            "id", f"expected '{_ID_PREFIXES.get(resource_type, '?')}/<name>', got '{resource_id}'"
        )
    return name


def map_cloudflare_status(status: str | None) -> ResourceStatus:
    match (status or "").lower():
        case "active" | "success":
            return ResourceStatus.ACTIVE
        case "pending" | "initializing" | "idle":
            return ResourceStatus.CREATING
        case "failure" | "canceled":
            return ResourceStatus.FAILED
        case "moved" | "deactivated":
            return ResourceStatus.SUSPENDED
        case "deleted":
            return ResourceStatus.DELETED
        case _:
            return ResourceStatus.UNKNOWN


def _timestamps(created: datetime | None, modified: datetime | None) -> dict[str, datetime]:
    stamps: dict[str, datetime] = {}
    if created is not None:
        stamps["created_at"] = created
    if modified is not None or created is not None:
        stamps["updated_at"] = modified or created  # type: ignore[assignment]
    return stamps


class CloudflareIntegration(BaseIntegration):
    identifier = "cloudflare"
    display_name = "Cloudflare"
    version = "1.0.0"
    required_permissions = (
        Permission("zone", PermissionLevel.READ, "Read DNS zones"),
        Permission("zone", PermissionLevel.WRITE, "Manage DNS records"),
        Permission("page", PermissionLevel.READ, "Read Cloudflare Pages"),
        Permission("page", PermissionLevel.WRITE, "Deploy to Cloudflare Pages"),
        Permission("worker", PermissionLevel.READ, "Read Cloudflare Workers"),
        Permission("worker", PermissionLevel.WRITE, "Deploy Cloudflare Workers"),
    )
    managed_types = frozenset(
        {
            ResourceType.CLOUDFLARE_PAGES,
            ResourceType.CLOUDFLARE_WORKER,
            ResourceType.CLOUDFLARE_DNS,
        }
    )

    def __init__(self, configuration: IntegrationConfiguration, client: HTTPClient) -> None:
        super().__init__(configuration, client)
        self._account_id: str | None = configuration.options.get("account_id") or None
        self._account_lock = asyncio.Lock()

    @classmethod
    def authentication_headers(cls, authentication: Authentication) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if isinstance(authentication, BearerToken):
            headers["Authorization"] = f"Bearer {authentication.token}"
        elif isinstance(authentication, APIKey):
            if not authentication.secret:
                raise AuthenticationFailed("Cloudflare API keys require the account e-mail")
            headers["X-Auth-Key"] = authentication.key
            headers["X-Auth-Email"] = authentication.secret
        else:
            raise AuthenticationFailed(
                "Invalid authentication method for Cloudflare: "
                f"{describe_authentication(authentication)}"
            )
        return headers

    async def _envelope(
        self,
        method: str,
        path: str,
        result_type: Any,
        *,
        query_params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> CloudflareEnvelope[Any] | None:
        """Issue a request and check the ``{success, errors, result}`` envelope."""
        try:
            response = await self._client.request(
                method,
                path,
                query_params=query_params,
                body=body,
                response_type=CloudflareEnvelope[result_type],
            )
        except HTTPClientError as exc:
            raise self._translate(exc) from exc
        envelope = response.body
        if envelope is not None and not envelope.success:
            raise _envelope_error(envelope.errors)
        return envelope

    async def _call(
        self,
        method: str,
        path: str,
        result_type: Any,
        *,
        query_params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        envelope = await self._envelope(
            method, path, result_type, query_params=query_params, body=body
        )
        return envelope.result if envelope is not None else None

    async def _paginate(
        self,
        path: str,
        item_type: Any,
        *,
        per_page: int,
        query_params: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Collect every page of a list endpoint.

        Stops at ``result_info.total_pages`` when the API reports it, otherwise at the
        first batch shorter than ``per_page``.
        """
        items: list[Any] = []
        page = 1
        while True:
            envelope = await self._envelope(
                "GET",
                path,
                list[item_type],
                query_params=dict(query_params or {}) | {"page": page, "per_page": per_page},
            )
            batch = (envelope.result if envelope is not None else None) or []
            items.extend(batch)
            info = envelope.result_info if envelope is not None else None
            if info is not None and info.total_pages is not None:
                if page >= info.total_pages:
                    return items
            elif len(batch) < per_page:
                return items
            if not batch:
                return items
            page += 1

    @staticmethod
    def _translate(exc: HTTPClientError) -> IntegrationError:
        if isinstance(exc, HTTPError) and exc.status_code in (400, 409, 422):
            try:
                envelope = CloudflareEnvelope[Any].model_validate_json(exc.body)
            except ValidationError:
                envelope = None
            if envelope is not None and envelope.errors:
                return _envelope_error(envelope.errors)
        return error_from_transport(exc)

    async def probe(self) -> dict[str, str]:
        user = await self._call("GET", "/user", CloudflareUser)
        return {"api_version": "v4", "user_id": user.id if user else "unknown"}

    async def account_id(self) -> str:
        async with self._account_lock:
            if self._account_id is None:
                accounts = await self._call("GET", "/accounts", list[CloudflareAccount]) or []
                if not accounts:
                    raise ConfigurationConflict(
                        "account", "authentication", "No accessible accounts found"
                    )
                self._account_id = accounts[0].id
                logger.info("cloudflare_account_discovered", account_id=self._account_id)
            return self._account_id

    def resource_fetchers(self) -> list[ResourceFetcher]:
        return [self.fetch_pages, self.fetch_workers, self.fetch_zones]

    async def fetch_pages(self) -> list[Resource]:
        account = await self.account_id()
        projects = await self._paginate(
            f"/accounts/{account}/pages/projects", PagesProject, per_page=PAGES_PAGE_SIZE
        )
        resources = []
        for project in projects:
            deployment = project.latest_deployment
            stage = deployment.latest_stage if deployment else None
            configuration = ResourceConfiguration.of(
                project_id=project.id,
                domains=project.domains,
                production_branch=project.production_branch or "",
                source=project.source.type if project.source else "",
                build_command=_build_command(project),
            )
            resources.append(
                Resource(
                    id=resource_key(ResourceType.CLOUDFLARE_PAGES, project.name),
                    type=ResourceType.CLOUDFLARE_PAGES,
                    name=project.name,
                    status=map_cloudflare_status(stage.status if stage else None),
                    configuration=configuration,
                    metadata=ResourceMetadata(labels={"account_id": account}),
                    **_timestamps(project.created_on, None),
                )
            )
        return resources

    async def fetch_workers(self) -> list[Resource]:
        account = await self.account_id()
        scripts = await self._call(
            "GET", f"/accounts/{account}/workers/scripts", list[WorkerScript]
        ) or []
        return [
            Resource(
                id=resource_key(ResourceType.CLOUDFLARE_WORKER, script.id),
                type=ResourceType.CLOUDFLARE_WORKER,
                name=script.id,
                # Workers expose no lifecycle state
                status=ResourceStatus.ACTIVE,
                configuration=ResourceConfiguration.of(
                    usage_model=script.usage_model or "bundled",
                    routes=[route.pattern for route in script.routes or []],
                ),
                metadata=ResourceMetadata(labels={"account_id": account}),
                **_timestamps(script.created_on, script.modified_on),
            )
            for script in scripts
        ]

    async def fetch_zones(self) -> list[Resource]:
        zones = await self._paginate("/zones", Zone, per_page=ZONES_PAGE_SIZE)
        return [
            Resource(
                id=resource_key(ResourceType.CLOUDFLARE_DNS, zone.name),
                type=ResourceType.CLOUDFLARE_DNS,
                name=zone.name,
                status=(
                    ResourceStatus.SUSPENDED if zone.paused else map_cloudflare_status(zone.status)
                ),
                configuration=ResourceConfiguration.of(
                    zone_id=zone.id,
                    name_servers=zone.name_servers,
                    plan=zone.plan.name if zone.plan else "",
                    development_mode=zone.development_mode,
                ),
                **_timestamps(zone.created_on, zone.modified_on),
            )
            for zone in zones
        ]

    async def execute_action(self, action: Action) -> None:
        handlers = {
            (ActionType.CREATE, ResourceType.CLOUDFLARE_PAGES): self._create_pages_project,
            (ActionType.DELETE, ResourceType.CLOUDFLARE_PAGES): self._delete_pages_project,
            (ActionType.DELETE, ResourceType.CLOUDFLARE_WORKER): self._delete_worker,
            (ActionType.CREATE, ResourceType.CLOUDFLARE_DNS): self._create_zone,
            (ActionType.DELETE, ResourceType.CLOUDFLARE_DNS): self._delete_zone,
        }
        handler = handlers.get((action.type, action.resource_type))
        if handler is None:
            raise ActionNotSupported(action.type, action.resource_type)
        await handler(action)

    async def _create_pages_project(self, action: Action) -> None:
        name = resource_name(action.resource_type, action.resource_id)
        configuration = _action_configuration(action)
        account = await self.account_id()
        payload: dict[str, Any] = {
            "name": name,
            "production_branch": configuration.get("production_branch") or "main",
        }
        build_command = configuration.get("build_command")
        if build_command:
            payload["build_config"] = {
                "build_command": build_command,
                "destination_dir": configuration.get("destination_dir", ""),
            }
        await self._call("POST", f"/accounts/{account}/pages/projects", PagesProject, body=payload)
        logger.info("cloudflare_pages_project_created", project=name)

    async def _delete_pages_project(self, action: Action) -> None:
        name = resource_name(action.resource_type, action.resource_id)
        account = await self.account_id()
        await self._call("DELETE", f"/accounts/{account}/pages/projects/{name}", Any)
        logger.info("cloudflare_pages_project_deleted", project=name)

    async def _delete_worker(self, action: Action) -> None:
        name = resource_name(action.resource_type, action.resource_id)
        account = await self.account_id()
        await self._call("DELETE", f"/accounts/{account}/workers/scripts/{name}", Any)
        logger.info("cloudflare_worker_deleted", script=name)

    async def _create_zone(self, action: Action) -> None:
        name = resource_name(action.resource_type, action.resource_id)
        configuration = _action_configuration(action)
        account = await self.account_id()
        payload = {
            "name": name,
            "account": {"id": account},
            "type": configuration.get("type") or "full",
        }
        await self._call("POST", "/zones", Zone, body=payload)
        logger.info("cloudflare_zone_created", zone=name, account_id=account)

    async def _delete_zone(self, action: Action) -> None:
        name = resource_name(action.resource_type, action.resource_id)
        zones = await self._call("GET", "/zones", list[Zone], query_params={"name": name}) or []
        if not zones:
            raise ResourceNotFound(action.resource_id, ResourceType.CLOUDFLARE_DNS)
        await self._call("DELETE", f"/zones/{zones[0].id}", Any)
        logger.info("cloudflare_zone_deleted", zone=name, zone_id=zones[0].id)


def _envelope_error(errors: list[CloudflareMessage]) -> CloudflareError:
    if not errors:
        return CloudflareError("unknown", "request was not successful")
    first = errors[0]
    return CloudflareError(str(first.code), first.message)


def _build_command(project: PagesProject) -> str:
    if project.build_config is None:
        return ""
    return project.build_config.build_command or ""


def _action_configuration(action: Action) -> ResourceConfiguration:
    return getattr(action.operation, "configuration", None) or ResourceConfiguration()


__all__ = [
    "DEFAULT_BASE_URL",
    "CloudflareIntegration",
    "map_cloudflare_status",
    "resource_key",
    "resource_name",
]
