"""Governed create actions for the baseline resource types.

Every create re-reads the resource it made before reporting success.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from governed_infra.app import get_app_context
from governed_infra.domain.models import ActionRequest
from governed_infra.execution.governed import GovernedAction, is_succeeded, resource_id_of
from governed_infra.mcp_runtime import ToolResult, ToolSpec
from governed_infra.providers.base import ProviderClients
from governed_infra.tools import schemas
from governed_infra.tools.base import ToolInputError, error_result, outcome_result, validate_or_raise

CreateFn = Callable[[ProviderClients, dict[str, Any]], Awaitable[Any]]
RereadFn = Callable[[ProviderClients, "str | None", str], Awaitable[Any]]


def parse_resource_id(resource_id: str | None) -> tuple[str | None, str | None]:
    """``(resource group, name)`` from an ARM id; the name is the last segment."""
    if not resource_id:
        return None, None
    parts = [p for p in resource_id.split("/") if p]
    resource_group = None
    for index, part in enumerate(parts[:-1]):
        if part.lower() == "resourcegroups":
            resource_group = parts[index + 1]
            break
    return resource_group, parts[-1] if parts else None


@dataclass(frozen=True)
class CreateActionDef:
    name: str
    description: str
    input_schema: dict[str, Any]
    create: CreateFn
    reread: RereadFn

    def summary(self, args: dict[str, Any]) -> str:
        target = "/".join(str(args[k]) for k in ("resourceGroupName", "name") if args.get(k))
        extras = {k: v for k, v in args.items() if k not in ("resourceGroupName", "name")}
        return f"{self.name} {target} {json.dumps(extras, sort_keys=True)}"


async def _create_resource_group(clients: ProviderClients, args: dict[str, Any]) -> Any:
    return await clients.resource_groups.create(args["name"], args["location"], args.get("tags"))


async def _create_app_service_plan(clients: ProviderClients, args: dict[str, Any]) -> Any:
    return await clients.app_service_plans.create(
        args["resourceGroupName"],
        args["name"],
        args["location"],
        args.get("sku") or "P1v3",
        args.get("tags"),
    )


async def _create_web_app(clients: ProviderClients, args: dict[str, Any]) -> Any:
    spec = {
        "resourceGroupName": args["resourceGroupName"],
        "name": args["name"],
        "location": args["location"],
        "appServicePlanName": args["appServicePlanName"],
        "httpsOnly": args.get("httpsOnly", True),
        "minimumTlsVersion": args.get("minimumTlsVersion", "1.2"),
        "ftpsState": args.get("ftpsState", "Disabled"),
        "linuxFxVersion": args.get("linuxFxVersion"),
        "tags": args.get("tags"),
    }
    return await clients.web_apps.create(spec)


async def _create_key_vault(clients: ProviderClients, args: dict[str, Any]) -> Any:
    properties = {
        "tenantId": args["tenantId"],
        "sku": {"family": "A", "name": args.get("skuName", "standard")},
        "enableRbacAuthorization": args.get("enableRbacAuthorization", True),
        "enablePurgeProtection": args.get("enablePurgeProtection", True),
        "enableSoftDelete": True,
        "publicNetworkAccess": args.get("publicNetworkAccess", "Disabled"),
    }
    return await clients.key_vaults.create(
        args["resourceGroupName"], args["name"], args["location"], properties, args.get("tags")
    )


async def _create_storage_account(clients: ProviderClients, args: dict[str, Any]) -> Any:
    properties = {
        "supportsHttpsTrafficOnly": True,
        "minimumTlsVersion": "TLS1_2",
        "allowBlobPublicAccess": False,
    }
    return await clients.storage_accounts.create(
        args["resourceGroupName"],
        args["name"],
        args["location"],
        properties,
        args.get("tags"),
        sku={"name": args.get("skuName", "Standard_LRS")},
        kind=args.get("kind", "StorageV2"),
    )


async def _create_log_analytics(clients: ProviderClients, args: dict[str, Any]) -> Any:
    properties = {
        "retentionInDays": args.get("retentionInDays", 30),
        "sku": {"name": args.get("skuName", "PerGB2018")},
    }
    return await clients.log_analytics.create(
        args["resourceGroupName"], args["name"], args["location"], properties, args.get("tags")
    )


CREATE_ACTIONS: tuple[CreateActionDef, ...] = (
    CreateActionDef(
        "create_resource_group",
        "Create a resource group (governed: plan, confirm, execute, verify).",
        schemas.CREATE_RESOURCE_GROUP_SCHEMA,
        _create_resource_group,
        lambda c, rg, name: c.resource_groups.get(name),
    ),
    CreateActionDef(
        "create_app_service_plan",
        "Create an App Service Plan (governed).",
        schemas.CREATE_APP_SERVICE_PLAN_SCHEMA,
        _create_app_service_plan,
        lambda c, rg, name: c.app_service_plans.get(rg, name),
    ),
    CreateActionDef(
        "create_web_app",
        "Create a Web App with HTTPS-only, TLS 1.2 and FTPS disabled (governed).",
        schemas.CREATE_WEB_APP_SCHEMA,
        _create_web_app,
        lambda c, rg, name: c.web_apps.get(rg, name),
    ),
    CreateActionDef(
        "create_key_vault",
        "Create a Key Vault with RBAC and purge protection (governed).",
        schemas.CREATE_KEY_VAULT_SCHEMA,
        _create_key_vault,
        lambda c, rg, name: c.key_vaults.get(rg, name),
    ),
    CreateActionDef(
        "create_storage_account",
        "Create a Storage Account with HTTPS-only, TLS 1.2 and no public blobs (governed).",
        schemas.CREATE_STORAGE_ACCOUNT_SCHEMA,
        _create_storage_account,
        lambda c, rg, name: c.storage_accounts.get(rg, name),
    ),
    CreateActionDef(
        "create_log_analytics_workspace",
        "Create a Log Analytics workspace (governed).",
        schemas.CREATE_LOG_ANALYTICS_SCHEMA,
        _create_log_analytics,
        lambda c, rg, name: c.log_analytics.get(rg, name),
    ),
)


def build_governed_action(definition: CreateActionDef, clients: ProviderClients) -> GovernedAction:
    async def handler(args: dict[str, Any]) -> Any:
        return await definition.create(clients, args)

    async def verify(result: Any) -> bool:
        resource_group, name = parse_resource_id(resource_id_of(result))
        if not name:
            return False
        fetched = await definition.reread(clients, resource_group, name)
        return bool(fetched) and is_succeeded(fetched)

    return GovernedAction(
        name=definition.name,
        description=definition.description,
        input_schema=definition.input_schema,
        handler=handler,
        verify=verify,
        plan_line=definition.summary,
    )


def _governed_tool(definition: CreateActionDef) -> ToolSpec:
    async def _handler(arguments: dict[str, object]) -> ToolResult:
        try:
            validate_or_raise(definition.input_schema, arguments)
        except ToolInputError as exc:
            return error_result("ValidationError", str(exc), details=exc.errors)
        ctx = get_app_context()
        action = build_governed_action(definition, ctx.clients)
        request = ActionRequest.from_tool_arguments(definition.name, dict(arguments))
        outcome = await ctx.executor.run(action, request)
        return outcome_result(outcome)

    return ToolSpec(
        name=definition.name,
        description=definition.description,
        input_schema=definition.input_schema,
        handler=_handler,
    )


create_tools: list[ToolSpec] = [_governed_tool(definition) for definition in CREATE_ACTIONS]
