"""Read-only baseline scan tools."""

from __future__ import annotations

from typing import Any

from governed_infra.app import get_app_context
from governed_infra.mcp_runtime import ToolResult, ToolSpec
from governed_infra.scan.findings import SEVERITY_ORDER
from governed_infra.tools import schemas
from governed_infra.tools.base import (
    ToolInputError,
    error_result,
    result_from_payload,
    validate_or_raise,
)

_WORKLOAD_NAME_KEYS = {
    "appServicePlan": "appServicePlanName",
    "webApp": "webAppName",
    "keyVault": "keyVaultName",
    "storageAccount": "storageAccountName",
    "logAnalytics": "logAnalyticsName",
    "vnet": "vnetName",
}


def _filters(arguments: dict[str, Any]) -> dict[str, Any]:
    return {
        "profile": arguments.get("profile"),
        "min_severity": arguments.get("minSeverity"),
        "exclude_codes": arguments.get("excludeFindingsByCode"),
    }


def summary_text(label: str, payload: dict[str, Any]) -> str | None:
    if payload.get("status") != "done":
        return None
    summary = payload.get("summary") or {}
    by_severity = summary.get("bySeverity") or {}
    ordered = sorted(by_severity.items(), key=lambda kv: -SEVERITY_ORDER.get(kv[0], 0))
    parts = ", ".join(f"{severity}: {count}" for severity, count in ordered) or "none"
    return f"{label} scan ({payload.get('profile')}): {summary.get('total', 0)} finding(s) [{parts}]"


def _single_scan_tool(
    name: str,
    description: str,
    schema: dict[str, Any],
    name_key: str,
    method: str,
    label: str,
) -> ToolSpec:
    async def _handler(arguments: dict[str, object]) -> ToolResult:
        try:
            validate_or_raise(schema, arguments)
        except ToolInputError as exc:
            return error_result("ValidationError", str(exc), details=exc.errors)
        scanner = get_app_context().scanner
        payload = await getattr(scanner, method)(
            arguments["resourceGroupName"],
            arguments[name_key],
            tolerate_missing=bool(arguments.get("tolerateMissing", False)),
            **_filters(arguments),
        )
        return result_from_payload(payload, text=summary_text(label, payload))

    return ToolSpec(name=name, description=description, input_schema=schema, handler=_handler)


async def _scan_workload(arguments: dict[str, object]) -> ToolResult:
    try:
        validate_or_raise(schemas.SCAN_WORKLOAD_SCHEMA, arguments)
    except ToolInputError as exc:
        return error_result("ValidationError", str(exc), details=exc.errors)
    names = {kind: arguments.get(key) for kind, key in _WORKLOAD_NAME_KEYS.items()}
    payload = await get_app_context().scanner.scan_workload(
        str(arguments["resourceGroupName"]),
        {kind: str(value) for kind, value in names.items() if value},
        tolerate_missing=bool(arguments.get("tolerateMissing", True)),
        **_filters(arguments),
    )
    return result_from_payload(payload, text=summary_text("workload", payload))


async def _scan_resource_group(arguments: dict[str, object]) -> ToolResult:
    try:
        validate_or_raise(schemas.SCAN_RESOURCE_GROUP_SCHEMA, arguments)
    except ToolInputError as exc:
        return error_result("ValidationError", str(exc), details=exc.errors)
    payload = await get_app_context().scanner.scan_resource_group(
        str(arguments["resourceGroupName"]),
        include=arguments.get("include"),
        exclude=arguments.get("exclude"),
        limit_per_type=arguments.get("limitPerType"),
        **_filters(arguments),
    )
    return result_from_payload(payload, text=summary_text("resource group", payload))


scan_webapp_tool = _single_scan_tool(
    "scan_webapp_baseline",
    "Scan a Web App for baseline misconfigurations (TLS, HTTPS-only, FTPS, managed identity, "
    "diagnostics) and enrich findings with compliance controls.",
    schemas.SCAN_WEBAPP_SCHEMA,
    "webAppName",
    "scan_webapp",
    "web app",
)

scan_appplan_tool = _single_scan_tool(
    "scan_appplan_baseline",
    "Scan an App Service Plan for baseline misconfigurations (SKU, HTTPS-only, FTPS, managed "
    "identity, diagnostics).",
    schemas.SCAN_APPPLAN_SCHEMA,
    "appServicePlanName",
    "scan_app_plan",
    "app plan",
)

scan_network_tool = _single_scan_tool(
    "scan_network_baseline",
    "Scan a Virtual Network and its subnets (DDoS protection, private endpoint policies).",
    schemas.SCAN_NETWORK_SCHEMA,
    "vnetName",
    "scan_vnet",
    "network",
)

scan_workload_tool = ToolSpec(
    name="scan_workload_baseline",
    description=(
        "Scan a set of named resources (App Service Plan, Web App, Key Vault, Storage Account, "
        "Log Analytics, VNet) in one resource group."
    ),
    input_schema=schemas.SCAN_WORKLOAD_SCHEMA,
    handler=_scan_workload,
)

scan_resource_group_tool = ToolSpec(
    name="scan_resource_group_baseline",
    description="Enumerate supported resources in a resource group and scan each one.",
    input_schema=schemas.SCAN_RESOURCE_GROUP_SCHEMA,
    handler=_scan_resource_group,
)

scan_tools: list[ToolSpec] = [
    scan_webapp_tool,
    scan_appplan_tool,
    scan_network_tool,
    scan_workload_tool,
    scan_resource_group_tool,
]
