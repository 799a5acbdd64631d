"""
GitHub integration.

Repositories are keyed by ``owner/name``; environments by ``owner/name/environment``.
Owned repositories are always listed; organization repositories only for the
organizations in the ``organizations`` option. Deployments and environments are only
reconciled for the repositories listed in the ``repositories`` option, fetching them
for every repository would be one request per repository.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from cfhub.clients.base import HTTPClient, HTTPClientError, HTTPError
from cfhub.core.actions import Action, ActionType, Deploy
from cfhub.core.errors import (
    ActionNotSupported,
    AuthenticationFailed,
    GitHubError,
    IntegrationError,
    InvalidConfiguration,
    MissingRequiredField,
    RateLimited,
    ValidationFailed,
    ValidationIssue,
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
    Authentication,
    BaseIntegration,
    BearerToken,
    IntegrationConfiguration,
    OAuthToken,
    Permission,
    PermissionLevel,
    ResourceFetcher,
    describe_authentication,
    options_list,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
PAGE_SIZE = 100


class GitHubUser(BaseModel):
    id: int
    login: str
    name: str | None = None
    email: str | None = None
    type: str = "User"


class GitHubRepository(BaseModel):
    id: int
    name: str
    full_name: str
    owner: GitHubUser
    private: bool = False
    description: str | None = None
    fork: bool = False
    archived: bool = False
    disabled: bool = False
    default_branch: str = "main"
    language: str | None = None
    topics: list[str] = Field(default_factory=list)
    clone_url: str = ""
    html_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GitHubDeployment(BaseModel):
    id: int
    sha: str
    ref: str
    task: str = "deploy"
    environment: str
    description: str | None = None
    creator: GitHubUser | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GitHubEnvironment(BaseModel):
    id: int
    name: str
    html_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class GitHubEnvironmentList(BaseModel):
    total_count: int = 0
    environments: list[GitHubEnvironment] = Field(default_factory=list)


class GitHubErrorBody(BaseModel):
    message: str = ""
    documentation_url: str | None = None


def _timestamps(created: datetime | None, updated: datetime | None) -> dict[str, datetime]:
    stamps: dict[str, datetime] = {}
    if created is not None:
        stamps["created_at"] = created
    if updated is not None:
        stamps["updated_at"] = updated
    return stamps


def split_repository(value: str) -> tuple[str, str]:
    owner, _, name = value.partition("/")
    if not owner or not name or "/" in name:
        raise InvalidConfiguration("repository", f"expected 'owner/name', got '{value}'")
    return owner, name


class GitHubIntegration(BaseIntegration):
    identifier = "github"
    display_name = "GitHub"
    version = "1.0.0"
    required_permissions = (
        Permission("repo", PermissionLevel.READ, "Read repositories"),
        Permission("repo", PermissionLevel.WRITE, "Manage repositories"),
        Permission("actions", PermissionLevel.READ, "Read GitHub Actions"),
        Permission("actions", PermissionLevel.WRITE, "Trigger deployments"),
        Permission("deployments", PermissionLevel.READ, "Read deployments"),
        Permission("deployments", PermissionLevel.WRITE, "Create deployments"),
    )
    managed_types = frozenset(
        {
            ResourceType.GITHUB_REPOSITORY,
            ResourceType.GITHUB_ACTION,
            ResourceType.GITHUB_ENVIRONMENT,
            ResourceType.GITHUB_DEPLOYMENT,
        }
    )

    def __init__(self, configuration: IntegrationConfiguration, client: HTTPClient) -> None:
        super().__init__(configuration, client)
        self._repositories = options_list(configuration.options, "repositories")
        for repository in self._repositories:
            split_repository(repository)
        self._organizations = options_list(configuration.options, "organizations")
        self._login: str | None = None

    @classmethod
    def authentication_headers(cls, authentication: Authentication) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if isinstance(authentication, BearerToken):
            headers["Authorization"] = f"Bearer {authentication.token}"
        elif isinstance(authentication, OAuthToken):
            headers["Authorization"] = f"token {authentication.access_token}"
        else:
            raise AuthenticationFailed(
                "Invalid authentication method for GitHub: "
                f"{describe_authentication(authentication)}"
            )
        return headers

    async def _call(
        self,
        method: str,
        path: str,
        response_type: Any = None,
        *,
        query_params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                query_params=query_params,
                body=body,
                response_type=response_type,
            )
        except HTTPClientError as exc:
            raise _translate(exc) from exc
        return response.body

    async def probe(self) -> dict[str, str]:
        user = await self._call("GET", "/user", GitHubUser)
        if user is not None:
            self._login = user.login
        return {"api_version": API_VERSION, "user_login": user.login if user else "unknown"}

    async def login(self) -> str:
        if self._login is None:
            user = await self._call("GET", "/user", GitHubUser)
            self._login = user.login
        return self._login

    def resource_fetchers(self) -> list[ResourceFetcher]:
        return [self.fetch_repositories, self.fetch_deployments, self.fetch_environments]

    async def _paginate(
        self,
        path: str,
        item_type: Any,
        query_params: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Follow ``page`` until a batch comes back shorter than ``PAGE_SIZE``."""
        items: list[Any] = []
        page = 1
        while True:
            batch = await self._call(
                "GET",
                path,
                list[item_type],
                query_params=dict(query_params or {}) | {"per_page": PAGE_SIZE, "page": page},
            ) or []
            items.extend(batch)
            if len(batch) < PAGE_SIZE:
                return items
            page += 1

    async def plan(self, desired: list[Resource]) -> list[Action]:
        await self.validate_repository_owners(desired)
        return await super().plan(desired)

    async def validate_repository_owners(self, desired: list[Resource]) -> None:
        """Desired repositories must belong to an owner whose repositories are listed.

        Anything else would be created and then never observed, so every later plan
        would try to create it again.
        """
        login = await self.login()
        owners = {owner.lower() for owner in (login, *self._organizations)}
        issues = [
            ValidationIssue(
                field=f"resources[{index}].id",
                message=(
                    f"Repository owner '{resource.id.partition('/')[0]}' is neither the "
                    "authenticated user nor a configured organization"
                ),
                code="unmanaged_owner",
            )
            for index, resource in enumerate(desired)
            if resource.type is ResourceType.GITHUB_REPOSITORY
            and resource.id.partition("/")[0].lower() not in owners
        ]
        if issues:
            raise ValidationFailed(issues)

    async def fetch_repositories(self) -> list[Resource]:
        listings = await asyncio.gather(
            self._paginate("/user/repos", GitHubRepository, {"type": "owner", "sort": "updated"}),
            *(
                self._paginate(
                    f"/orgs/{organization}/repos",
                    GitHubRepository,
                    {"type": "all", "sort": "updated"},
                )
                for organization in self._organizations
            ),
        )
        repositories = {repo.full_name: repo for listing in listings for repo in listing}

        return [
            Resource(
                id=repo.full_name,
                type=ResourceType.GITHUB_REPOSITORY,
                name=repo.name,
                status=ResourceStatus.SUSPENDED if repo.archived else ResourceStatus.ACTIVE,
                configuration=ResourceConfiguration.of(
                    private=repo.private,
                    default_branch=repo.default_branch,
                    clone_url=repo.clone_url,
                    language=repo.language or "",
                    description=repo.description or "",
                ),
                metadata=ResourceMetadata(
                    tags=tuple(repo.topics),
                    labels={"owner": repo.owner.login, "type": repo.owner.type},
                    owner=repo.owner.login,
                ),
                **_timestamps(repo.created_at, repo.updated_at),
            )
            for repo in repositories.values()
        ]

    async def fetch_deployments(self) -> list[Resource]:
        batches = await asyncio.gather(
            *(self._repository_deployments(repository) for repository in self._repositories)
        )
        return [resource for batch in batches for resource in batch]

    async def _repository_deployments(self, repository: str) -> list[Resource]:
        owner, name = split_repository(repository)
        deployments = await self._paginate(
            f"/repos/{owner}/{name}/deployments", GitHubDeployment
        )
        return [
            Resource(
                id=str(deployment.id),
                type=ResourceType.GITHUB_DEPLOYMENT,
                name=f"{name}-{deployment.sha[:7]}",
                # deployment state lives on the statuses endpoint
                status=ResourceStatus.ACTIVE,
                configuration=ResourceConfiguration.of(
                    repository=repository,
                    sha=deployment.sha,
                    ref=deployment.ref,
                    environment=deployment.environment,
                    description=deployment.description or "",
                ),
                metadata=ResourceMetadata(
                    labels={
                        "repository": repository,
                        "creator": deployment.creator.login if deployment.creator else "unknown",
                    },
                    environment=deployment.environment,
                ),
                **_timestamps(deployment.created_at, deployment.updated_at),
            )
            for deployment in deployments
        ]

    async def fetch_environments(self) -> list[Resource]:
        batches = await asyncio.gather(
            *(self._repository_environments(repository) for repository in self._repositories)
        )
        return [resource for batch in batches for resource in batch]

    async def _repository_environments(self, repository: str) -> list[Resource]:
        owner, name = split_repository(repository)
        environments: list[GitHubEnvironment] = []
        page = 1
        while True:
            listing = await self._call(
                "GET",
                f"/repos/{owner}/{name}/environments",
                GitHubEnvironmentList,
                query_params={"per_page": PAGE_SIZE, "page": page},
            )
            batch = listing.environments if listing else []
            environments.extend(batch)
            if len(batch) < PAGE_SIZE or len(environments) >= listing.total_count:
                break
            page += 1
        return [
            Resource(
                id=f"{repository}/{environment.name}",
                type=ResourceType.GITHUB_ENVIRONMENT,
                name=environment.name,
                status=ResourceStatus.ACTIVE,
                configuration=ResourceConfiguration.of(
                    repository=repository,
                    html_url=environment.html_url,
                ),
                metadata=ResourceMetadata(
                    labels={"repository": repository},
                    environment=environment.name,
                ),
                **_timestamps(environment.created_at, environment.updated_at),
            )
            for environment in environments
        ]

    async def execute_action(self, action: Action) -> None:
        handlers = {
            (ActionType.CREATE, ResourceType.GITHUB_REPOSITORY): self._create_repository,
            (ActionType.DELETE, ResourceType.GITHUB_REPOSITORY): self._delete_repository,
            (ActionType.CREATE, ResourceType.GITHUB_ENVIRONMENT): self._create_environment,
            (ActionType.DELETE, ResourceType.GITHUB_ENVIRONMENT): self._delete_environment,
            (ActionType.CREATE, ResourceType.GITHUB_DEPLOYMENT): self._create_deployment,
            (ActionType.DEPLOY, ResourceType.GITHUB_ACTION): self._dispatch_workflow,
        }
        handler = handlers.get((action.type, action.resource_type))
        if handler is None:
            raise ActionNotSupported(action.type, action.resource_type)
        await handler(action)

    async def _create_repository(self, action: Action) -> None:
        owner, name = split_repository(action.resource_id)
        configuration = _action_configuration(action)
        payload: dict[str, Any] = {
            "name": name,
            "private": bool(configuration.get("private", True)),
        }
        description = configuration.get("description")
        if description:
            payload["description"] = description
        if owner == await self.login():
            path = "/user/repos"
        else:
            path = f"/orgs/{owner}/repos"
        await self._call("POST", path, GitHubRepository, body=payload)
        logger.info("github_repository_created", repository=action.resource_id)

    async def _delete_repository(self, action: Action) -> None:
        owner, name = split_repository(action.resource_id)
        await self._call("DELETE", f"/repos/{owner}/{name}")
        logger.info("github_repository_deleted", repository=action.resource_id)

    async def _create_environment(self, action: Action) -> None:
        repository, environment = _split_environment(action.resource_id)
        owner, name = split_repository(repository)
        await self._call("PUT", f"/repos/{owner}/{name}/environments/{environment}", body={})

    async def _delete_environment(self, action: Action) -> None:
        repository, environment = _split_environment(action.resource_id)
        owner, name = split_repository(repository)
        await self._call("DELETE", f"/repos/{owner}/{name}/environments/{environment}")

    async def _create_deployment(self, action: Action) -> None:
        configuration = _action_configuration(action)
        repository = configuration.get("repository")
        ref = configuration.get("ref")
        if not repository:
            raise MissingRequiredField("repository")
        if not ref:
            raise MissingRequiredField("ref")
        owner, name = split_repository(repository)
        payload = {
            "ref": ref,
            "environment": configuration.get("environment") or "production",
            "description": configuration.get("description") or "",
            "auto_merge": False,
        }
        await self._call(
            "POST", f"/repos/{owner}/{name}/deployments", GitHubDeployment, body=payload
        )

    async def _dispatch_workflow(self, action: Action) -> None:
        if not isinstance(action.operation, Deploy):
            raise ActionNotSupported(action.type, action.resource_type)
        repository, _, workflow = action.resource_id.rpartition("/")
        owner, name = split_repository(repository)
        payload: dict[str, Any] = {"ref": action.operation.ref}
        if action.operation.environment:
            payload["inputs"] = {"environment": action.operation.environment}
        await self._call(
            "POST", f"/repos/{owner}/{name}/actions/workflows/{workflow}/dispatches", body=payload
        )
        logger.info(
            "github_workflow_dispatched",
            repository=repository,
            workflow=workflow,
            ref=action.operation.ref,
        )


def _split_environment(resource_id: str) -> tuple[str, str]:
    repository, _, environment = resource_id.rpartition("/")
    if not environment:
        raise InvalidConfiguration(
            "environment", f"expected 'owner/name/environment', got '{resource_id}'"
        )
    return repository, environment


def _action_configuration(action: Action) -> ResourceConfiguration:
    return getattr(action.operation, "configuration", None) or ResourceConfiguration()


def _translate(exc: HTTPClientError) -> IntegrationError:
    if isinstance(exc, HTTPError):
        try:
            message = GitHubErrorBody.model_validate_json(exc.body).message
        except ValidationError:
            message = exc.text
        if exc.status_code == 403 and exc.headers.get("x-ratelimit-remaining") == "0":
            reset = exc.headers.get("x-ratelimit-reset")
            return RateLimited(None if reset is None else _seconds_until(reset))
        if exc.status_code in (400, 409, 422):
            return GitHubError(str(exc.status_code), message)
    return error_from_transport(exc)


def _seconds_until(reset: str) -> float | None:
    try:
        return max(0.0, float(reset) - datetime.now().timestamp())
    except ValueError:
        return None


__all__ = [
    "API_VERSION",
    "DEFAULT_BASE_URL",
    "GitHubIntegration",
    "split_repository",
]
