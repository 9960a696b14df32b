"""Azure Resource Manager REST implementation of the provider clients."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from governed_infra.execution.errors import (
    CredentialError,
    ProviderError,
    ProviderNotFoundError,
)
from governed_infra.providers.base import ProviderClients

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]

_MAX_PAGES = 20

API_VERSIONS: dict[str, str] = {
    "resourcegroups": "2021-04-01",
    "microsoft.web": "2023-01-01",
    "microsoft.keyvault": "2023-07-01",
    "microsoft.storage": "2023-01-01",
    "microsoft.operationalinsights": "2022-10-01",
    "microsoft.network": "2023-09-01",
    "microsoft.insights": "2021-05-01-preview",
}
_FALLBACK_API_VERSION = "2021-04-01"


def api_version_for(resource_id: str) -> str:
    """Pick an API version from the provider namespace inside a resource id."""
    parts = [p for p in resource_id.split("/") if p]
    lowered = [p.lower() for p in parts]
    if "providers" in lowered:
        index = len(lowered) - 1 - lowered[::-1].index("providers")
        if index + 1 < len(lowered):
            return API_VERSIONS.get(lowered[index + 1], _FALLBACK_API_VERSION)
    if "resourcegroups" in lowered:
        return API_VERSIONS["resourcegroups"]
    return _FALLBACK_API_VERSION


class ArmClient:
    """Thin async ARM REST client; raises ``ProviderError`` for non-2xx responses."""

    def __init__(
        self,
        endpoint: str,
        subscription_id: str | None,
        token_provider: TokenProvider,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._subscription_id = subscription_id
        self._token_provider = token_provider
        self._timeout = timeout
        self._transport = transport

    @property
    def subscription_scope(self) -> str:
        if not self._subscription_id:
            raise CredentialError("No subscription id configured (AZURE_SUBSCRIPTION_ID)")
        return f"/subscriptions/{self._subscription_id}"

    def resource_group_scope(self, resource_group: str) -> str:
        return f"{self.subscription_scope}/resourceGroups/{resource_group}"

    async def _token(self) -> str:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise CredentialError("No ARM access token available (ARM_ACCESS_TOKEN)")
        return token

    async def request(
        self,
        method: str,
        path: str,
        api_version: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = path if path.startswith("http") else f"{self._endpoint}{path}"
        params = None if "api-version=" in url else {"api-version": api_version}
        headers = {"Authorization": f"Bearer {await self._token()}"}
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.request(method, url, params=params, json=body, headers=headers)
        return self._parse(method, path, response)

    @staticmethod
    def _parse(method: str, path: str, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json() if response.content else {}
        except ValueError:
            payload = {"raw": response.text}
        if response.status_code < 400:
            return payload if isinstance(payload, dict) else {"value": payload}

        error = payload.get("error") if isinstance(payload, dict) else None
        error = error if isinstance(error, dict) else {}
        message = error.get("message") or f"{method} {path} failed with {response.status_code}"
        kwargs: dict[str, Any] = {
            "status_code": response.status_code,
            "code": error.get("code"),
            "target": error.get("target"),
            "details": error.get("details"),
            "headers": dict(response.headers),
            "body": payload,
        }
        logger.debug("ARM %s %s -> %d", method, path, response.status_code)
        if response.status_code == 404:
            raise ProviderNotFoundError(message, **kwargs)
        raise ProviderError(message, **kwargs)

    async def get(self, path: str, api_version: str) -> dict[str, Any]:
        return await self.request("GET", path, api_version)

    async def put(self, path: str, api_version: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PUT", path, api_version, body)

    async def patch(self, path: str, api_version: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PATCH", path, api_version, body)

    async def list(self, path: str, api_version: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_path: str | None = path
        pages = 0
        while next_path and pages < _MAX_PAGES:
            page = await self.request("GET", next_path, api_version)
            items.extend(item for item in page.get("value", []) if isinstance(item, dict))
            next_path = page.get("nextLink")
            pages += 1
        return items


class ArmResourceGroups:
    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    def _path(self, name: str) -> str:
        return f"{self._arm.subscription_scope}/resourcegroups/{name}"

    async def get(self, name: str) -> dict[str, Any]:
        return await self._arm.get(self._path(name), API_VERSIONS["resourcegroups"])

    async def create(
        self, name: str, location: str, tags: dict[str, str] | None = None
    ) -> dict[str, Any]:
        body = {"location": location, "tags": dict(tags or {})}
        return await self._arm.put(self._path(name), API_VERSIONS["resourcegroups"], body)


class ArmWebApps:
    _API = API_VERSIONS["microsoft.web"]

    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    def _path(self, resource_group: str, name: str) -> str:
        return f"{self._arm.resource_group_scope(resource_group)}/providers/Microsoft.Web/sites/{name}"

    async def get(self, resource_group: str, name: str) -> dict[str, Any]:
        return await self._arm.get(self._path(resource_group, name), self._API)

    async def get_configuration(self, resource_group: str, name: str) -> dict[str, Any]:
        config = await self._arm.get(f"{self._path(resource_group, name)}/config/web", self._API)
        properties = config.get("properties")
        return properties if isinstance(properties, dict) else config

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]:
        scope = self._arm.resource_group_scope(resource_group)
        return await self._arm.list(f"{scope}/providers/Microsoft.Web/sites", self._API)

    async def create(self, spec: dict[str, Any]) -> dict[str, Any]:
        resource_group = spec["resourceGroupName"]
        plan_id = (
            f"{self._arm.resource_group_scope(resource_group)}/providers/Microsoft.Web/"
            f"serverfarms/{spec['appServicePlanName']}"
        )
        # state carried over from an existing site is the base layer; explicit fields win
        site_config = dict(spec.get("siteConfig") or {})
        site_config.update(
            (key, value)
            for key, value in (
                ("minTlsVersion", spec.get("minimumTlsVersion")),
                ("ftpsState", spec.get("ftpsState")),
                ("linuxFxVersion", spec.get("linuxFxVersion")),
            )
            if value is not None
        )
        properties: dict[str, Any] = dict(spec.get("properties") or {})
        properties.update(serverFarmId=plan_id, siteConfig=site_config)
        if spec.get("httpsOnly") is not None:
            properties["httpsOnly"] = bool(spec["httpsOnly"])
        body: dict[str, Any] = {"location": spec["location"], "properties": properties}
        if spec.get("kind"):
            body["kind"] = spec["kind"]
        if spec.get("identity"):
            body["identity"] = dict(spec["identity"])
        if spec.get("tags"):
            body["tags"] = dict(spec["tags"])
        return await self._arm.put(self._path(resource_group, spec["name"]), self._API, body)

    async def update(
        self, resource_group: str, name: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._arm.patch(
            self._path(resource_group, name), self._API, {"properties": patch}
        )

    async def update_configuration(
        self, resource_group: str, name: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._arm.patch(
            f"{self._path(resource_group, name)}/config/web", self._API, {"properties": patch}
        )

    async def enable_system_assigned_identity(
        self, resource_group: str, name: str
    ) -> dict[str, Any]:
        return await self._arm.patch(
            self._path(resource_group, name), self._API, {"identity": {"type": "SystemAssigned"}}
        )


class ArmAppServicePlans:
    _API = API_VERSIONS["microsoft.web"]

    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    def _path(self, resource_group: str, name: str) -> str:
        scope = self._arm.resource_group_scope(resource_group)
        return f"{scope}/providers/Microsoft.Web/serverfarms/{name}"

    async def get(self, resource_group: str, name: str) -> dict[str, Any]:
        return await self._arm.get(self._path(resource_group, name), self._API)

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]:
        scope = self._arm.resource_group_scope(resource_group)
        return await self._arm.list(f"{scope}/providers/Microsoft.Web/serverfarms", self._API)

    async def create(
        self,
        resource_group: str,
        name: str,
        location: str,
        sku: dict[str, Any] | str,
        tags: dict[str, str] | None = None,
        *,
        kind: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        sku_body = {"name": sku} if isinstance(sku, str) else dict(sku)
        properties = dict(properties or {})
        if "zoneRedundant" in sku_body:
            properties["zoneRedundant"] = bool(sku_body.pop("zoneRedundant"))
        body: dict[str, Any] = {"location": location, "sku": sku_body, "properties": properties}
        if kind:
            body["kind"] = kind
        if tags:
            body["tags"] = dict(tags)
        return await self._arm.put(self._path(resource_group, name), self._API, body)

    async def update(
        self, resource_group: str, name: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if "sku" in patch:
            sku = patch["sku"]
            body["sku"] = {"name": sku} if isinstance(sku, str) else dict(sku)
        if "capacity" in patch:
            body.setdefault("sku", {})["capacity"] = patch["capacity"]
        if "zoneRedundant" in patch:
            body["properties"] = {"zoneRedundant": bool(patch["zoneRedundant"])}
        return await self._arm.patch(self._path(resource_group, name), self._API, body)


class ArmNamedResources:
    """GET/PUT/list for single-segment resource types under a provider namespace."""

    def __init__(self, arm: ArmClient, namespace: str, resource_type: str, api_version: str) -> None:
        self._arm = arm
        self._namespace = namespace
        self._resource_type = resource_type
        self._api_version = api_version

    def _collection(self, resource_group: str) -> str:
        scope = self._arm.resource_group_scope(resource_group)
        return f"{scope}/providers/{self._namespace}/{self._resource_type}"

    async def get(self, resource_group: str, name: str) -> dict[str, Any]:
        return await self._arm.get(f"{self._collection(resource_group)}/{name}", self._api_version)

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]:
        return await self._arm.list(self._collection(resource_group), self._api_version)

    async def create(
        self,
        resource_group: str,
        name: str,
        location: str,
        properties: dict[str, Any] | None = None,
        tags: dict[str, str] | None = None,
        *,
        sku: dict[str, Any] | None = None,
        kind: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"location": location, "properties": dict(properties or {})}
        if sku:
            body["sku"] = dict(sku)
        if kind:
            body["kind"] = kind
        if tags:
            body["tags"] = dict(tags)
        return await self._arm.put(
            f"{self._collection(resource_group)}/{name}", self._api_version, body
        )


class ArmNetworks:
    _API = API_VERSIONS["microsoft.network"]

    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    def _collection(self, resource_group: str) -> str:
        scope = self._arm.resource_group_scope(resource_group)
        return f"{scope}/providers/Microsoft.Network/virtualNetworks"

    async def get_vnet(self, resource_group: str, name: str) -> dict[str, Any]:
        return await self._arm.get(f"{self._collection(resource_group)}/{name}", self._API)

    async def list_vnets(self, resource_group: str) -> list[dict[str, Any]]:
        return await self._arm.list(self._collection(resource_group), self._API)


class ArmDiagnosticSettings:
    _API = API_VERSIONS["microsoft.insights"]

    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    async def list(self, resource_id: str) -> list[dict[str, Any]]:
        items = await self._arm.list(
            f"{resource_id}/providers/Microsoft.Insights/diagnosticSettings", self._API
        )
        # Flatten ARM's envelope so callers can read ``workspaceId`` directly
        return [{**item, **(item.get("properties") or {})} for item in items]

    async def create_or_update(
        self, resource_id: str, name: str, settings: dict[str, Any]
    ) -> dict[str, Any]:
        properties = {
            "logs": [{"categoryGroup": "allLogs", "enabled": True}],
            "metrics": [{"category": "AllMetrics", "enabled": True}],
            **settings,
        }
        return await self._arm.put(
            f"{resource_id}/providers/Microsoft.Insights/diagnosticSettings/{name}",
            self._API,
            {"properties": properties},
        )


class ArmGenericResources:
    def __init__(self, arm: ArmClient) -> None:
        self._arm = arm

    async def get_by_id(self, resource_id: str) -> dict[str, Any]:
        return await self._arm.get(resource_id, api_version_for(resource_id))


def build_arm_clients(arm: ArmClient) -> ProviderClients:
    return ProviderClients(
        resource_groups=ArmResourceGroups(arm),
        web_apps=ArmWebApps(arm),
        app_service_plans=ArmAppServicePlans(arm),
        key_vaults=ArmNamedResources(
            arm, "Microsoft.KeyVault", "vaults", API_VERSIONS["microsoft.keyvault"]
        ),
        storage_accounts=ArmNamedResources(
            arm, "Microsoft.Storage", "storageAccounts", API_VERSIONS["microsoft.storage"]
        ),
        log_analytics=ArmNamedResources(
            arm,
            "Microsoft.OperationalInsights",
            "workspaces",
            API_VERSIONS["microsoft.operationalinsights"],
        ),
        networks=ArmNetworks(arm),
        diagnostic_settings=ArmDiagnosticSettings(arm),
        resources=ArmGenericResources(arm),
    )
