from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Any

import pytest

from governed_infra.config import _load_settings_cached
from governed_infra.execution.errors import ProviderNotFoundError
from governed_infra.providers.base import ProviderClients

SUB = "/subscriptions/00000000-0000-0000-0000-000000000001"


def pytest_sessionstart(session: pytest.Session) -> None:
    # Never pick up a real ARM token from the developer's shell.
    os.environ["ARM_ACCESS_TOKEN"] = ""
    os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    _load_settings_cached.cache_clear()
    yield
    _load_settings_cached.cache_clear()


def _succeeded(resource_id: str, name: str, **extra: Any) -> dict[str, Any]:
    return {
        "id": resource_id,
        "name": name,
        "properties": {"provisioningState": "Succeeded"},
        **extra,
    }


class FakeResourceGroups:
    def __init__(self) -> None:
        self.groups: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []

    async def get(self, name: str) -> dict[str, Any]:
        if name not in self.groups:
            raise ProviderNotFoundError(f"Resource group {name} not found")
        return self.groups[name]

    async def create(self, name, location, tags=None):
        self.calls.append(("create", name, location, tags))
        group = _succeeded(f"{SUB}/resourceGroups/{name}", name, location=location, tags=tags or {})
        self.groups[name] = group
        return group


class FakeWebApps:
    """Create-only web app client: no in-place update verbs."""

    def __init__(self) -> None:
        self.sites: dict[tuple[str, str], dict[str, Any]] = {}
        self.configs: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple] = []

    async def get(self, resource_group, name):
        self.calls.append(("get", resource_group, name))
        if (resource_group, name) not in self.sites:
            raise ProviderNotFoundError(f"Web app {name} not found")
        return self.sites[(resource_group, name)]

    async def get_configuration(self, resource_group, name):
        return self.configs.get((resource_group, name), {})

    async def list_by_resource_group(self, resource_group):
        return [site for (rg, _), site in self.sites.items() if rg == resource_group]

    async def create(self, spec):
        self.calls.append(("create", spec))
        rg, name = spec["resourceGroupName"], spec["name"]
        site = _succeeded(
            f"{SUB}/resourceGroups/{rg}/providers/Microsoft.Web/sites/{name}",
            name,
            location=spec.get("location"),
        )
        self.sites[(rg, name)] = site
        return site

    async def enable_system_assigned_identity(self, resource_group, name):
        self.calls.append(("enable_msi", resource_group, name))
        return {"identity": {"type": "SystemAssigned"}}


class UpdatableWebApps(FakeWebApps):
    async def update(self, resource_group, name, patch):
        self.calls.append(("update", resource_group, name, patch))
        return {"name": name, "properties": dict(patch)}

    async def update_configuration(self, resource_group, name, patch):
        self.calls.append(("update_configuration", resource_group, name, patch))
        return {"name": name, "properties": dict(patch)}


class FakePlans:
    def __init__(self) -> None:
        self.plans: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple] = []

    async def get(self, resource_group, name):
        if (resource_group, name) not in self.plans:
            raise ProviderNotFoundError(f"Plan {name} not found")
        return self.plans[(resource_group, name)]

    async def list_by_resource_group(self, resource_group):
        return [plan for (rg, _), plan in self.plans.items() if rg == resource_group]

    async def create(self, resource_group, name, location, sku, tags=None, *, kind=None, properties=None):
        self.calls.append(("create", resource_group, name, location, sku, tags, kind, properties))
        plan = _succeeded(
            f"{SUB}/resourceGroups/{resource_group}/providers/Microsoft.Web/serverfarms/{name}",
            name,
            location=location,
            sku=sku if isinstance(sku, dict) else {"name": sku},
        )
        self.plans[(resource_group, name)] = plan
        return plan


class UpdatablePlans(FakePlans):
    async def update(self, resource_group, name, patch):
        self.calls.append(("update", resource_group, name, patch))
        return {"name": name, "properties": dict(patch)}


class FakeNamedResources:
    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple] = []

    async def get(self, resource_group, name):
        if (resource_group, name) not in self.items:
            raise ProviderNotFoundError(f"{self.resource_type} {name} not found")
        return self.items[(resource_group, name)]

    async def list_by_resource_group(self, resource_group):
        return [item for (rg, _), item in self.items.items() if rg == resource_group]

    async def create(self, resource_group, name, location, properties=None, tags=None, *, sku=None, kind=None):
        self.calls.append(("create", resource_group, name, location, properties, tags, sku, kind))
        item = _succeeded(
            f"{SUB}/resourceGroups/{resource_group}/providers/{self.resource_type}/{name}",
            name,
            location=location,
        )
        item["properties"].update(properties or {})
        self.items[(resource_group, name)] = item
        return item


class FakeNetworks:
    def __init__(self) -> None:
        self.vnets: dict[tuple[str, str], dict[str, Any]] = {}

    async def get_vnet(self, resource_group, name):
        if (resource_group, name) not in self.vnets:
            raise ProviderNotFoundError(f"VNet {name} not found")
        return self.vnets[(resource_group, name)]

    async def list_vnets(self, resource_group):
        return [vnet for (rg, _), vnet in self.vnets.items() if rg == resource_group]


class FakeDiagnostics:
    def __init__(self) -> None:
        self.settings: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple] = []

    async def list(self, resource_id):
        return self.settings.get(resource_id, [])

    async def create_or_update(self, resource_id, name, settings):
        self.calls.append(("create_or_update", resource_id, name, settings))
        return {"name": name, "properties": dict(settings)}


def build_fake_clients(*, updatable: bool) -> ProviderClients:
    return ProviderClients(
        resource_groups=FakeResourceGroups(),
        web_apps=UpdatableWebApps() if updatable else FakeWebApps(),
        app_service_plans=UpdatablePlans() if updatable else FakePlans(),
        key_vaults=FakeNamedResources("Microsoft.KeyVault/vaults"),
        storage_accounts=FakeNamedResources("Microsoft.Storage/storageAccounts"),
        log_analytics=FakeNamedResources("Microsoft.OperationalInsights/workspaces"),
        networks=FakeNetworks(),
        diagnostic_settings=FakeDiagnostics(),
    )


@pytest.fixture
def clients() -> ProviderClients:
    """Provider clients exposing in-place update verbs."""
    return build_fake_clients(updatable=True)


@pytest.fixture
def create_only_clients() -> ProviderClients:
    """Provider clients that can only read and create."""
    return build_fake_clients(updatable=False)


@pytest.fixture
def insecure_site() -> dict[str, Any]:
    """Web app violating all five web app baseline rules."""
    return {
        "id": f"{SUB}/resourceGroups/rg1/providers/Microsoft.Web/sites/app1",
        "name": "app1",
        "location": "eastus",
        "properties": {
            "httpsOnly": False,
            "serverFarmId": f"{SUB}/resourceGroups/rg1/providers/Microsoft.Web/serverfarms/plan1",
            "siteConfig": {"minTlsVersion": "1.0", "ftpsState": "AllAllowed"},
        },
    }
