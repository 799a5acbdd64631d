"""Tests for integrations/cloudflare.py against a mocked v4 API."""

import json

import pytest
import respx
from httpx import Response

from cfhub.clients.base import RetryPolicy
from cfhub.core.actions import Action, ActionType
from cfhub.core.errors import (
    ActionFailed,
    ActionNotSupported,
    AuthenticationFailed,
    CloudflareError,
    InsufficientPermissions,
    InvalidConfiguration,
    ResourceNotFound,
    UnsupportedOperation,
    ValidationFailed,
)
from cfhub.core.resource import (
    Resource,
    ResourceConfiguration,
    ResourceStatus,
    ResourceType,
)
from cfhub.integrations.base import APIKey, BearerToken, IntegrationConfiguration, OAuthToken
from cfhub.integrations.cloudflare import (
    CloudflareIntegration,
    map_cloudflare_status,
    resource_key,
    resource_name,
)

BASE = "https://api.cloudflare.test/client/v4"


def envelope(result, success=True, errors=None):
    return {"success": success, "errors": errors or [], "messages": [], "result": result}


def make_configuration(authentication=None, **options):
    return IntegrationConfiguration(
        base_url=BASE,
        authentication=authentication or BearerToken("cf-token"),
        retry_policy=RetryPolicy(max_attempts=2, initial_delay=0.01),
        options=options,
    )


def mock_user():
    return respx.get(f"{BASE}/user").mock(
        return_value=Response(200, json=envelope({"id": "user-1", "email": "ops@example.com"}))
    )


async def activated(**options):
    return await CloudflareIntegration.create(make_configuration(**options))


PAGES = [
    {
        "id": "p-1",
        "name": "docs",
        "subdomain": "docs.pages.dev",
        "domains": ["docs.example.com"],
        "production_branch": "main",
        "source": {"type": "github"},
        "build_config": {"build_command": "npm run build", "destination_dir": "dist"},
        "latest_deployment": {"id": "d-1", "latest_stage": {"name": "deploy", "status": "success"}},
        "created_on": "2024-01-02T03:04:05Z",
    }
]

WORKERS = [
    {
        "id": "edge-router",
        "usage_model": "unbound",
        "routes": [{"pattern": "example.com/*", "zone_id": "z-1"}],
        "created_on": "2024-01-02T03:04:05Z",
        "modified_on": "2024-02-02T03:04:05Z",
    }
]

ZONES = [
    {
        "id": "z-1",
        "name": "example.com",
        "status": "active",
        "paused": False,
        "name_servers": ["ns1.cloudflare.com"],
        "plan": {"id": "free", "name": "Free Website"},
    },
    {"id": "z-2", "name": "old.example.com", "status": "active", "paused": True},
]


def mock_inventory(account="acc-1"):
    respx.get(f"{BASE}/accounts/{account}/pages/projects").mock(
        return_value=Response(200, json=envelope(PAGES))
    )
    respx.get(f"{BASE}/accounts/{account}/workers/scripts").mock(
        return_value=Response(200, json=envelope(WORKERS))
    )
    respx.get(f"{BASE}/zones").mock(return_value=Response(200, json=envelope(ZONES)))


class TestActivation:
    """Construction validates credentials before returning."""

    @pytest.mark.asyncio
    async def test_bearer_token(self):
        with respx.mock:
            route = mock_user()

            integration = await activated(account_id="acc-1")

            request = route.calls.last.request
            assert request.headers["Authorization"] == "Bearer cf-token"
            assert request.headers["User-Agent"].startswith("cfhub-cloudflare/")
        assert integration.identifier == "cloudflare"

    @pytest.mark.asyncio
    async def test_api_key_with_email(self):
        with respx.mock:
            route = mock_user()

            await CloudflareIntegration.create(
                make_configuration(APIKey("global-key", "ops@example.com"))
            )

            request = route.calls.last.request
            assert request.headers["X-Auth-Key"] == "global-key"
            assert request.headers["X-Auth-Email"] == "ops@example.com"
            assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_unsupported_authentication_is_rejected(self):
        with pytest.raises(AuthenticationFailed):
            await CloudflareIntegration.create(make_configuration(OAuthToken("oauth")))

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        with respx.mock:
            respx.get(f"{BASE}/user").mock(return_value=Response(401, json=envelope(None, False)))

            with pytest.raises(AuthenticationFailed):
                await activated()

    @pytest.mark.asyncio
    async def test_health_check_reports_details(self):
        with respx.mock:
            mock_user()
            integration = await activated()

            health = await integration.health_check()

        assert health.is_healthy
        assert health.latency is not None
        assert health.details["user_id"] == "user-1"
        assert health.details["integration"] == "cloudflare"


class TestActualState:
    @pytest.mark.asyncio
    async def test_fetches_pages_workers_and_zones(self):
        with respx.mock:
            mock_user()
            mock_inventory()
            integration = await activated(account_id="acc-1")

            resources = await integration.get_actual_state()

        by_id = {resource.id: resource for resource in resources}
        assert set(by_id) == {
            "pages/docs",
            "worker/edge-router",
            "zone/example.com",
            "zone/old.example.com",
        }

        docs = by_id["pages/docs"]
        assert docs.type is ResourceType.CLOUDFLARE_PAGES
        assert docs.status is ResourceStatus.ACTIVE
        assert docs.configuration.get("build_command") == "npm run build"
        assert docs.configuration.get("domains") == ["docs.example.com"]
        assert docs.metadata.labels["account_id"] == "acc-1"

        worker = by_id["worker/edge-router"]
        assert worker.type is ResourceType.CLOUDFLARE_WORKER
        assert worker.configuration.get("routes") == ["example.com/*"]

        assert by_id["zone/example.com"].configuration.get("zone_id") == "z-1"
        assert by_id["zone/example.com"].status is ResourceStatus.ACTIVE
        assert by_id["zone/old.example.com"].status is ResourceStatus.SUSPENDED

    @pytest.mark.asyncio
    async def test_account_is_discovered_once(self):
        with respx.mock:
            mock_user()
            accounts = respx.get(f"{BASE}/accounts").mock(
                return_value=Response(200, json=envelope([{"id": "acc-9", "name": "Main"}]))
            )
            mock_inventory(account="acc-9")
            integration = await activated()

            await integration.get_actual_state()
            await integration.get_actual_state()

            assert accounts.call_count == 1

    @pytest.mark.asyncio
    async def test_any_failed_fetch_fails_the_snapshot(self):
        with respx.mock:
            mock_user()
            respx.get(f"{BASE}/accounts/acc-1/pages/projects").mock(
                return_value=Response(200, json=envelope(PAGES))
            )
            respx.get(f"{BASE}/accounts/acc-1/workers/scripts").mock(
                return_value=Response(200, json=envelope([]))
            )
            respx.get(f"{BASE}/zones").mock(return_value=Response(403, json=envelope(None, False)))
            integration = await activated(account_id="acc-1")

            with pytest.raises(ActionFailed) as exc_info:
                await integration.get_actual_state()

        assert isinstance(exc_info.value.__cause__, InsufficientPermissions)

    @pytest.mark.asyncio
    async def test_unsuccessful_envelope_raises_cloudflare_error(self):
        with respx.mock:
            mock_user()
            respx.get(f"{BASE}/zones").mock(
                return_value=Response(
                    200,
                    json=envelope(None, False, [{"code": 9109, "message": "Invalid access token"}]),
                )
            )
            integration = await activated(account_id="acc-1")

            with pytest.raises(CloudflareError) as exc_info:
                await integration.fetch_zones()

        assert exc_info.value.error_code == "9109"


class TestPlanAndApply:
    @pytest.mark.asyncio
    async def test_plan_creates_and_deletes(self):
        desired = [
            Resource(id="pages/docs", type=ResourceType.CLOUDFLARE_PAGES, name="docs"),
            Resource(id="pages/blog", type=ResourceType.CLOUDFLARE_PAGES, name="blog"),
            Resource(id="zone/example.com", type=ResourceType.CLOUDFLARE_DNS, name="example.com"),
        ]
        with respx.mock:
            mock_user()
            mock_inventory()
            integration = await activated(account_id="acc-1")

            actions = await integration.plan(desired)

        assert [(a.type, a.resource_id) for a in actions] == [
            (ActionType.CREATE, "pages/blog"),
            (ActionType.DELETE, "worker/edge-router"),
            (ActionType.DELETE, "zone/old.example.com"),
        ]

    @pytest.mark.asyncio
    async def test_plan_rejects_unmanaged_types(self):
        desired = [Resource(id="acme/site", type=ResourceType.GITHUB_REPOSITORY, name="site")]
        with respx.mock:
            mock_user()
            integration = await activated(account_id="acc-1")

            with pytest.raises(ValidationFailed):
                await integration.plan(desired)

    @pytest.mark.asyncio
    async def test_apply_creates_pages_project(self):
        action = Action.create(
            "pages/blog",
            ResourceType.CLOUDFLARE_PAGES,
            ResourceConfiguration.of(production_branch="release", build_command="make"),
        )
        with respx.mock:
            mock_user()
            route = respx.post(f"{BASE}/accounts/acc-1/pages/projects").mock(
                return_value=Response(200, json=envelope({"id": "p-2", "name": "blog"}))
            )
            integration = await activated(account_id="acc-1")

            result = await integration.apply([action])

            payload = json.loads(route.calls.last.request.content)
        assert result.success
        assert result.metadata == {"integration": "cloudflare", "version": "1.0.0"}
        assert payload["name"] == "blog"
        assert payload["production_branch"] == "release"
        assert payload["build_config"]["build_command"] == "make"

    @pytest.mark.asyncio
    async def test_apply_deletes_zone_by_name(self):
        action = Action.delete("zone/example.com", ResourceType.CLOUDFLARE_DNS)
        with respx.mock:
            mock_user()
            respx.get(f"{BASE}/zones", params={"name": "example.com"}).mock(
                return_value=Response(200, json=envelope([ZONES[0]]))
            )
            delete = respx.delete(f"{BASE}/zones/z-1").mock(
                return_value=Response(200, json=envelope({"id": "z-1"}))
            )
            integration = await activated(account_id="acc-1")

            result = await integration.apply([action])

            assert delete.call_count == 1
        assert result.success

    @pytest.mark.asyncio
    async def test_apply_delete_missing_zone_fails(self):
        action = Action.delete("zone/nope.example.com", ResourceType.CLOUDFLARE_DNS)
        with respx.mock:
            mock_user()
            respx.get(f"{BASE}/zones").mock(return_value=Response(200, json=envelope([])))
            integration = await activated(account_id="acc-1")

            result = await integration.apply([action])

        assert isinstance(result.failed[0].error, ResourceNotFound)

    @pytest.mark.asyncio
    async def test_apply_isolates_failures(self):
        actions = [
            Action.create("zone/example.org", ResourceType.CLOUDFLARE_DNS, ResourceConfiguration()),
            Action.create("worker/edge", ResourceType.CLOUDFLARE_WORKER, ResourceConfiguration()),
            Action.delete("worker/old-worker", ResourceType.CLOUDFLARE_WORKER),
        ]
        with respx.mock:
            mock_user()
            respx.post(f"{BASE}/zones").mock(
                return_value=Response(
                    400,
                    json=envelope(None, False, [{"code": 1061, "message": "already exists"}]),
                )
            )
            delete = respx.delete(f"{BASE}/accounts/acc-1/workers/scripts/old-worker").mock(
                return_value=Response(200, json=envelope(None))
            )
            integration = await activated(account_id="acc-1")

            result = await integration.apply(actions)

            assert delete.call_count == 1
        assert [a.resource_id for a in result.successful] == ["worker/old-worker"]
        assert isinstance(result.failed[0].error, CloudflareError)
        assert result.failed[0].error.error_code == "1061"
        assert isinstance(result.failed[1].error, ActionNotSupported)
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_rollback_is_unsupported(self):
        with respx.mock:
            mock_user()
            integration = await activated(account_id="acc-1")

            with pytest.raises(UnsupportedOperation):
                await integration.rollback()


def test_status_mapping():
    assert map_cloudflare_status("active") is ResourceStatus.ACTIVE
    assert map_cloudflare_status("pending") is ResourceStatus.CREATING
    assert map_cloudflare_status("failure") is ResourceStatus.FAILED
    assert map_cloudflare_status("moved") is ResourceStatus.SUSPENDED
    assert map_cloudflare_status(None) is ResourceStatus.UNKNOWN


def zone(index):
    return {"id": f"z-{index}", "name": f"site{index}.example.com", "status": "active"}


def project(index):
    return {"id": f"p-{index}", "name": f"site-{index}"}


class TestPagination:
    """List endpoints are read until the last page."""

    @pytest.mark.asyncio
    async def test_zones_follow_total_pages(self):
        first = envelope([zone(i) for i in range(50)])
        first["result_info"] = {"page": 1, "per_page": 50, "count": 50, "total_pages": 2}
        second = envelope([zone(50)])
        second["result_info"] = {"page": 2, "per_page": 50, "count": 1, "total_pages": 2}
        with respx.mock:
            mock_user()
            route = respx.get(f"{BASE}/zones").mock(
                side_effect=[Response(200, json=first), Response(200, json=second)]
            )
            integration = await activated(account_id="acc-1")

            zones = await integration.fetch_zones()

            assert route.call_count == 2
            pages = [call.request.url.params["page"] for call in route.calls]
            assert pages == ["1", "2"]
            assert route.calls.last.request.url.params["per_page"] == "50"
        assert len(zones) == 51
        assert zones[-1].id == "zone/site50.example.com"

    @pytest.mark.asyncio
    async def test_full_last_page_stops_at_total_pages(self):
        body = envelope([zone(i) for i in range(50)])
        body["result_info"] = {"page": 1, "per_page": 50, "count": 50, "total_pages": 1}
        with respx.mock:
            mock_user()
            route = respx.get(f"{BASE}/zones").mock(return_value=Response(200, json=body))
            integration = await activated(account_id="acc-1")

            zones = await integration.fetch_zones()

            assert route.call_count == 1
        assert len(zones) == 50

    @pytest.mark.asyncio
    async def test_pages_projects_stop_on_short_page(self):
        with respx.mock:
            mock_user()
            route = respx.get(f"{BASE}/accounts/acc-1/pages/projects").mock(
                side_effect=[
                    Response(200, json=envelope([project(i) for i in range(10)])),
                    Response(200, json=envelope([project(i) for i in range(10, 13)])),
                ]
            )
            integration = await activated(account_id="acc-1")

            projects = await integration.fetch_pages()

            assert route.call_count == 2
            assert route.calls.last.request.url.params["page"] == "2"
        assert [p.id for p in projects][-1] == "pages/site-12"
        assert len(projects) == 13


class TestResourceIds:
    """Each Cloudflare kind has its own id space."""

    def test_key_and_name(self):
        assert resource_key(ResourceType.CLOUDFLARE_WORKER, "edge") == "worker/edge"
        assert resource_name(ResourceType.CLOUDFLARE_DNS, "zone/example.com") == "example.com"

    @pytest.mark.parametrize(
        "resource_type, resource_id",
        [
            (ResourceType.CLOUDFLARE_PAGES, "site"),
            (ResourceType.CLOUDFLARE_PAGES, "worker/site"),
            (ResourceType.CLOUDFLARE_DNS, "zone/"),
        ],
    )
    def test_mismatched_prefix_is_rejected(self, resource_type, resource_id):
        with pytest.raises(InvalidConfiguration):
            resource_name(resource_type, resource_id)

    @pytest.mark.asyncio
    async def test_pages_project_does_not_match_worker_of_same_name(self):
        desired = [Resource(id="pages/site", type=ResourceType.CLOUDFLARE_PAGES, name="site")]
        script = {"id": "site", "usage_model": "bundled"}
        with respx.mock:
            mock_user()
            respx.get(f"{BASE}/accounts/acc-1/pages/projects").mock(
                return_value=Response(200, json=envelope([]))
            )
            respx.get(f"{BASE}/accounts/acc-1/workers/scripts").mock(
                return_value=Response(200, json=envelope([script]))
            )
            respx.get(f"{BASE}/zones").mock(return_value=Response(200, json=envelope([])))
            create = respx.post(f"{BASE}/accounts/acc-1/pages/projects").mock(
                return_value=Response(200, json=envelope({"id": "p-9", "name": "site"}))
            )
            integration = await activated(account_id="acc-1")

            actions = await integration.plan(desired)
            result = await integration.apply([actions[0]])

            payload = json.loads(create.calls.last.request.content)
        assert [(a.type, a.resource_id) for a in actions] == [
            (ActionType.CREATE, "pages/site"),
            (ActionType.DELETE, "worker/site"),
        ]
        assert result.success
        assert payload["name"] == "site"

    @pytest.mark.asyncio
    async def test_unprefixed_id_fails_the_action(self):
        with respx.mock:
            mock_user()
            integration = await activated(account_id="acc-1")

            result = await integration.apply(
                [Action.delete("site", ResourceType.CLOUDFLARE_WORKER)]
            )

        assert isinstance(result.failed[0].error, InvalidConfiguration)
