"""Resource provider client interfaces.

Clients return provider-native dicts and raise ``ProviderError`` subclasses;
callers normalize errors, never re-raise them raw.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class UpdateStrategy(str, Enum):
    PARTIAL_UPDATE_SUPPORTED = "PartialUpdateSupported"
    FULL_RECREATE_ONLY = "FullRecreateOnly"


def resolve_update_strategy(client: object, *method_names: str) -> UpdateStrategy:
    """Probe once for any in-place update verb on ``client``."""
    for name in method_names:
        if callable(getattr(client, name, None)):
            return UpdateStrategy.PARTIAL_UPDATE_SUPPORTED
    return UpdateStrategy.FULL_RECREATE_ONLY


class ResourceGroupsClient(Protocol):
    async def get(self, name: str) -> dict[str, Any]: ...

    async def create(
        self, name: str, location: str, tags: dict[str, str] | None = None
    ) -> dict[str, Any]: ...


class WebAppsClient(Protocol):
    """Optional in-place verbs: ``update(rg, name, patch)`` and
    ``update_configuration(rg, name, patch)``."""

    async def get(self, resource_group: str, name: str) -> dict[str, Any]: ...

    async def get_configuration(self, resource_group: str, name: str) -> dict[str, Any]: ...

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]: ...

    async def create(self, spec: dict[str, Any]) -> dict[str, Any]: ...

    async def enable_system_assigned_identity(
        self, resource_group: str, name: str
    ) -> dict[str, Any]: ...


class AppServicePlansClient(Protocol):
    """Optional in-place verb: ``update(rg, name, patch)``."""

    async def get(self, resource_group: str, name: str) -> dict[str, Any]: ...

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]: ...

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
    ) -> dict[str, Any]: ...


class NamedResourceClient(Protocol):
    """Key vaults, storage accounts and Log Analytics workspaces."""

    async def get(self, resource_group: str, name: str) -> dict[str, Any]: ...

    async def list_by_resource_group(self, resource_group: str) -> list[dict[str, Any]]: ...

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
    ) -> dict[str, Any]: ...


class NetworksClient(Protocol):
    async def get_vnet(self, resource_group: str, name: str) -> dict[str, Any]: ...

    async def list_vnets(self, resource_group: str) -> list[dict[str, Any]]: ...


class DiagnosticSettingsClient(Protocol):
    async def list(self, resource_id: str) -> list[dict[str, Any]]: ...

    async def create_or_update(
        self, resource_id: str, name: str, settings: dict[str, Any]
    ) -> dict[str, Any]: ...


class GenericResourcesClient(Protocol):
    async def get_by_id(self, resource_id: str) -> dict[str, Any]: ...


@dataclass
class ProviderClients:
    resource_groups: ResourceGroupsClient
    web_apps: WebAppsClient
    app_service_plans: AppServicePlansClient
    key_vaults: NamedResourceClient
    storage_accounts: NamedResourceClient
    log_analytics: NamedResourceClient
    networks: NetworksClient
    diagnostic_settings: DiagnosticSettingsClient | None = None
    resources: GenericResourcesClient | None = None
