from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from governed_infra.app import build_app_context
from governed_infra.config import AuditSettings, PolicySettings, Settings
from governed_infra.mcp_runtime import ToolResult
from governed_infra.remediation.planner import LAW_SUGGESTION, RESCAN_TIP
from governed_infra.tools import get_tool_registry, get_tool_specs, register_tools
from governed_infra.tools.base import (
    ToolInputError,
    error_result,
    result_from_payload,
    validate_or_raise,
)
from governed_infra.tools.resources import CREATE_ACTIONS, parse_resource_id

LAW_ID = "/subscriptions/s/resourceGroups/ops/providers/Microsoft.OperationalInsights/workspaces/law1"

WEBAPP_FINDINGS = [
    {"code": code, "severity": "high", "meta": {"resourceGroupName": "rg1", "webAppName": "app1"}}
    for code in (
        "APP_TLS_MIN_BELOW_1_2",
        "APP_HTTPS_ONLY_DISABLED",
        "APP_FTPS_NOT_DISABLED",
        "APP_MSI_DISABLED",
        "APP_DIAG_NO_LAW",
    )
]


def _context(tmp_path, clients, policy_text: str | None = None):
    policy_path = tmp_path / "policy.yaml"
    if policy_text is not None:
        policy_path.write_text(policy_text, encoding="utf-8")
    settings = Settings(
        audit=AuditSettings(directory=str(tmp_path / "audit")),
        policy=PolicySettings(path=str(policy_path)),
    )
    return build_app_context(settings, clients)


def _audit_lines(tmp_path) -> list[dict]:
    lines: list[dict] = []
    for path in sorted((tmp_path / "audit").glob("audit-*.jsonl")):
        lines.extend(json.loads(line) for line in path.read_text(encoding="utf-8").splitlines())
    return lines


async def _call(name: str, arguments: dict) -> ToolResult:
    return await get_tool_registry()[name].handler(arguments)


@pytest.fixture
def ctx(tmp_path, clients):
    context = _context(tmp_path, clients)
    with patch("governed_infra.tools.resources.get_app_context", return_value=context), patch(
        "governed_infra.tools.scan.get_app_context", return_value=context
    ), patch("governed_infra.tools.remediation.get_app_context", return_value=context):
        yield context


# -- registry and helpers -----------------------------------------------------


def test_tool_registry_names():
    assert sorted(get_tool_registry()) == [
        "autofix_rg_findings",
        "create_app_service_plan",
        "create_key_vault",
        "create_log_analytics_workspace",
        "create_resource_group",
        "create_storage_account",
        "create_web_app",
        "remediate_appplan_baseline",
        "remediate_webapp_baseline",
        "scan_appplan_baseline",
        "scan_network_baseline",
        "scan_resource_group_baseline",
        "scan_webapp_baseline",
        "scan_workload_baseline",
    ]


def test_governed_tools_expose_control_flags():
    governed = {d.name for d in CREATE_ACTIONS} | {
        "remediate_webapp_baseline",
        "remediate_appplan_baseline",
        "autofix_rg_findings",
    }
    for spec in get_tool_specs():
        properties = spec.input_schema["properties"]
        assert spec.input_schema["type"] == "object"
        assert ("confirm" in properties) is (spec.name in governed)


def test_register_tools():
    server = MagicMock()
    with patch("governed_infra.tools.get_logger") as get_logger:
        register_tools(server)
    assert server.add_tool.call_count == len(get_tool_specs())
    get_logger.return_value.info.assert_called_once()


def test_result_helpers():
    result = result_from_payload({"status": "done"}, text="summary")
    assert result.content[0] == {"type": "text", "text": "summary"}
    assert json.loads(result.content[1]["text"]) == {"status": "done"}
    assert result.structured_content == {"status": "done"}

    assert len(result_from_payload({"status": "done"}).content) == 1

    error = error_result("ValidationError", "bad", details=["x"])
    assert error.structured_content == {
        "status": "error",
        "error": {"type": "ValidationError", "message": "bad", "retryable": False, "details": ["x"]},
    }


def test_validate_or_raise():
    schema = {"type": "object", "required": ["name"]}
    validate_or_raise(schema, {"name": "x"})
    with pytest.raises(ToolInputError) as exc_info:
        validate_or_raise(schema, {})
    assert exc_info.value.errors == ["'name' is a required property"]


def test_parse_resource_id():
    assert parse_resource_id(
        "/subscriptions/s/resourceGroups/rg1/providers/Microsoft.Web/sites/app1"
    ) == ("rg1", "app1")
    assert parse_resource_id("/subscriptions/s/resourceGroups/rg1") == ("rg1", "rg1")
    assert parse_resource_id(None) == (None, None)


# -- create tools -------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_web_app_holds_then_executes(ctx, clients, tmp_path):
    arguments = {
        "resourceGroupName": "rg1",
        "name": "app1",
        "location": "eastus",
        "appServicePlanName": "plan1",
    }

    held = await _call("create_web_app", arguments)

    assert held.structured_content["status"] == "pending"
    assert held.structured_content["followup"].startswith("@create_web_app {")
    assert "Plan: create_web_app rg1/app1" in held.content[0]["text"]
    assert clients.web_apps.calls == []

    done = await _call("create_web_app", {**arguments, "confirm": True})

    payload = done.structured_content
    assert payload["status"] == "done"
    assert payload["state"] == "Verified"
    assert payload["idempotencyKey"] == held.structured_content["idempotencyKey"]
    spec = clients.web_apps.calls[0][1]
    assert spec["httpsOnly"] is True
    assert spec["minimumTlsVersion"] == "1.2"
    assert spec["ftpsState"] == "Disabled"
    # verification re-read the created site
    assert ("get", "rg1", "app1") in clients.web_apps.calls

    assert [line["status"] for line in _audit_lines(tmp_path)] == ["pending", "done"]


@pytest.mark.asyncio
async def test_create_storage_and_key_vault_use_secure_defaults(ctx, clients):
    await _call(
        "create_storage_account",
        {"resourceGroupName": "rg1", "name": "stg1", "location": "eastus", "confirm": True},
    )
    _, rg, name, location, properties, tags, sku, kind = clients.storage_accounts.calls[0]
    assert properties == {
        "supportsHttpsTrafficOnly": True,
        "minimumTlsVersion": "TLS1_2",
        "allowBlobPublicAccess": False,
    }
    assert sku == {"name": "Standard_LRS"}
    assert kind == "StorageV2"

    result = await _call(
        "create_key_vault",
        {
            "resourceGroupName": "rg1",
            "name": "kv-app1",
            "location": "eastus",
            "tenantId": "tenant",
            "confirm": True,
        },
    )
    assert result.structured_content["status"] == "done"
    properties = clients.key_vaults.calls[0][4]
    assert properties["enableRbacAuthorization"] is True
    assert properties["enablePurgeProtection"] is True
    assert properties["publicNetworkAccess"] == "Disabled"


@pytest.mark.asyncio
async def test_create_resource_group_verifies_by_id(ctx, clients):
    result = await _call("create_resource_group", {"name": "rg9", "location": "eastus", "confirm": True})
    assert result.structured_content["state"] == "Verified"
    assert "rg9" in clients.resource_groups.groups


@pytest.mark.asyncio
async def test_create_without_resource_id_fails_verification(ctx, clients):
    clients.log_analytics.create = AsyncMock(return_value={"properties": {"provisioningState": "Succeeded"}})

    result = await _call(
        "create_log_analytics_workspace",
        {"resourceGroupName": "rg1", "name": "law1", "location": "eastus", "confirm": True},
    )

    assert result.structured_content["status"] == "error"
    assert result.structured_content["state"] == "VerificationFailed"


@pytest.mark.asyncio
async def test_create_rejects_invalid_input(ctx, clients):
    result = await _call(
        "create_storage_account",
        {"resourceGroupName": "rg1", "name": "Bad_Name", "location": "eastus", "confirm": True},
    )
    assert result.structured_content["error"]["type"] == "ValidationError"
    assert clients.storage_accounts.calls == []

    unknown = await _call("create_resource_group", {"name": "rg1", "location": "eastus", "extra": 1})
    assert unknown.structured_content["status"] == "error"


@pytest.mark.asyncio
async def test_create_denied_by_policy(tmp_path, clients):
    policy = (
        "actions:\n"
        "  create_resource_group:\n"
        "    effect: deny\n"
        "    deny_contains: [prod]\n"
        "    suggest_name: '{{name}}-dev'\n"
    )
    context = _context(tmp_path, clients, policy)
    with patch("governed_infra.tools.resources.get_app_context", return_value=context):
        result = await _call(
            "create_resource_group", {"name": "prod-rg", "location": "eastus", "confirm": True}
        )

    payload = result.structured_content
    assert payload["status"] == "blocked"
    assert payload["governance"]["decision"] == "deny"
    assert payload["governance"]["quickFix"] == {"name": "prod-rg-dev"}
    assert clients.resource_groups.calls == []
    assert _audit_lines(tmp_path)[0]["decision"] == "deny"


@pytest.mark.asyncio
async def test_create_with_warning_executes_and_reports_both(tmp_path, clients):
    policy = (
        "actions:\n"
        "  create_resource_group:\n"
        "    effect: warn\n"
        "    require_tags: [owner]\n"
        "    suggest_tags: {owner: '{{upn}}'}\n"
    )
    context = _context(tmp_path, clients, policy)
    with patch("governed_infra.tools.resources.get_app_context", return_value=context):
        result = await _call(
            "create_resource_group",
            {
                "name": "rg-app",
                "location": "eastus",
                "confirm": True,
                "context": {"upn": "dev@example.com"},
            },
        )

    payload = result.structured_content
    assert payload["status"] == "done"
    assert payload["governance"]["decision"] == "warn"
    assert payload["governance"]["reasons"] == ["missing required tag(s): owner"]
    assert payload["result"]["name"] == "rg-app"
    assert "Governance: WARN" in result.content[0]["text"]
    assert clients.resource_groups.calls == [("create", "rg-app", "eastus", None)]


# -- scan tools ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_scan_webapp_tool(ctx, clients, insecure_site):
    clients.web_apps.sites[("rg1", "app1")] = insecure_site

    result = await _call("scan_webapp_baseline", {"resourceGroupName": "rg1", "webAppName": "app1"})

    assert result.structured_content["summary"]["total"] == 5
    assert result.content[0]["text"] == "web app scan (default): 5 finding(s) [high: 2, medium: 3]"


@pytest.mark.asyncio
async def test_scan_tool_error_payload(ctx):
    result = await _call("scan_network_baseline", {"resourceGroupName": "rg1", "vnetName": "nope"})
    assert result.structured_content["status"] == "error"
    assert len(result.content) == 1

    tolerated = await _call(
        "scan_network_baseline",
        {"resourceGroupName": "rg1", "vnetName": "nope", "tolerateMissing": True},
    )
    assert tolerated.structured_content["findings"][0]["code"] == "VNET_MISSING"


@pytest.mark.asyncio
async def test_scan_tool_validation(ctx):
    result = await _call("scan_appplan_baseline", {"resourceGroupName": "rg1"})
    assert result.structured_content["error"]["type"] == "ValidationError"

    workload = await _call("scan_workload_baseline", {"resourceGroupName": "rg1"})
    assert workload.structured_content["error"]["type"] == "ValidationError"


@pytest.mark.asyncio
async def test_scan_workload_tool(ctx, clients, insecure_site):
    clients.web_apps.sites[("rg1", "app1")] = insecure_site

    result = await _call(
        "scan_workload_baseline",
        {"resourceGroupName": "rg1", "webAppName": "app1", "storageAccountName": "missing1", "minSeverity": "high"},
    )

    payload = result.structured_content
    assert sorted(f["code"] for f in payload["findings"]) == [
        "APP_HTTPS_ONLY_DISABLED",
        "APP_TLS_MIN_BELOW_1_2",
        "STG_MISSING",
    ]
    assert payload["scope"] == {"resourceGroupName": "rg1"}


@pytest.mark.asyncio
async def test_scan_resource_group_tool(ctx, clients):
    clients.networks.vnets[("rg1", "vnet1")] = {"name": "vnet1", "properties": {"subnets": []}}

    result = await _call(
        "scan_resource_group_baseline",
        {"resourceGroupName": "rg1", "include": ["vnet"], "limitPerType": 5},
    )

    assert [f["code"] for f in result.structured_content["findings"]] == ["NET_DDOS_DISABLED"]
    assert result.content[0]["text"].startswith("resource group scan (default): 1 finding(s)")


# -- remediation tools --------------------------------------------------------


@pytest.mark.asyncio
async def test_remediate_webapp_dry_run(ctx, clients):
    result = await _call(
        "remediate_webapp_baseline",
        {"resourceGroupName": "rg1", "name": "app1", "findings": WEBAPP_FINDINGS, "dryRun": True},
    )

    payload = result.structured_content
    assert payload["status"] == "plan"
    assert payload["count"] == 4
    assert [s["action"] for s in payload["steps"]] == [
        "webapps.setMinTls12",
        "webapps.setHttpsOnly",
        "webapps.setFtpsDisabled",
        "webapps.enableMsi",
    ]
    assert LAW_SUGGESTION in payload["report"]["suggestions"]
    assert payload["followup"].startswith("@remediate_webapp_baseline {")
    assert '"dryRun"' not in payload["followup"]
    assert clients.web_apps.calls == []


@pytest.mark.asyncio
async def test_remediate_webapp_with_workspace_plans_five_steps(ctx):
    result = await _call(
        "remediate_webapp_baseline",
        {
            "resourceGroupName": "rg1",
            "name": "app1",
            "findings": WEBAPP_FINDINGS,
            "defaults": {"lawResourceId": LAW_ID},
            "dryRun": True,
        },
    )
    assert result.structured_content["count"] == 5


@pytest.mark.asyncio
async def test_remediate_webapp_holds_without_confirm(ctx, clients):
    result = await _call(
        "remediate_webapp_baseline",
        {"resourceGroupName": "rg1", "name": "app1", "findings": WEBAPP_FINDINGS},
    )

    payload = result.structured_content
    assert payload["status"] == "pending"
    assert len(payload["steps"]) == 4
    assert payload["followup"]
    assert "webapps.setMinTls12" in result.content[0]["text"]
    assert clients.web_apps.calls == []


@pytest.mark.asyncio
async def test_remediate_webapp_confirm_applies(ctx, clients, tmp_path):
    result = await _call(
        "remediate_webapp_baseline",
        {"resourceGroupName": "rg1", "name": "app1", "findings": WEBAPP_FINDINGS, "confirm": True},
    )

    payload = result.structured_content
    assert payload["status"] == "done"
    assert all(r["ok"] for r in payload["results"])
    assert payload["report"]["applied"] == 4
    assert payload["report"]["suggestions"][-1] == RESCAN_TIP
    assert payload["idempotencyKey"].startswith("remediate_webapp_baseline:")
    assert ("enable_msi", "rg1", "app1") in clients.web_apps.calls
    assert _audit_lines(tmp_path)[-1]["action"] == "remediate_webapp_baseline"


@pytest.mark.asyncio
async def test_remediate_webapp_detects_findings(ctx, clients, insecure_site):
    clients.web_apps.sites[("rg1", "app1")] = insecure_site

    result = await _call(
        "remediate_webapp_baseline", {"resourceGroupName": "rg1", "name": "app1", "dryRun": True}
    )
    assert result.structured_content["count"] == 4

    missing = await _call(
        "remediate_webapp_baseline", {"resourceGroupName": "rg1", "name": "ghost", "dryRun": True}
    )
    assert missing.structured_content["status"] == "error"
    assert missing.structured_content["error"]["statusCode"] == 404


@pytest.mark.asyncio
async def test_remediate_missing_webapp_is_audited_once(ctx, tmp_path):
    result = await _call(
        "remediate_webapp_baseline", {"resourceGroupName": "rg1", "name": "ghost", "confirm": True}
    )

    assert result.structured_content["status"] == "error"
    assert result.structured_content["state"] == "Failed"
    lines = _audit_lines(tmp_path)
    assert len(lines) == 1
    assert lines[0]["action"] == "remediate_webapp_baseline"
    assert lines[0]["status"] == "error"


@pytest.mark.asyncio
async def test_remediate_appplan_detects_capacity_findings(ctx, clients):
    clients.app_service_plans.plans[("rg1", "plan1")] = {
        "name": "plan1",
        "sku": {"name": "F1", "tier": "Free", "capacity": 1},
    }

    result = await _call(
        "remediate_appplan_baseline", {"resourceGroupName": "rg1", "name": "plan1", "dryRun": True}
    )

    payload = result.structured_content
    assert [s["action"] for s in payload["steps"]] == ["plans.setSku", "plans.setCapacity"]
    assert payload["steps"][0]["args"]["sku"] == "P1v3"


@pytest.mark.asyncio
async def test_autofix_groups_by_resource_and_filters_codes(ctx):
    findings = WEBAPP_FINDINGS[:2] + [
        {"code": "APPPLAN_SKU_TOO_LOW", "meta": {"appServicePlanName": "plan1"}},
        {"code": "PLAN_WORKER_COUNT_TOO_LOW", "meta": {"appServicePlanName": "plan1"}},
    ]

    result = await _call(
        "autofix_rg_findings", {"resourceGroupName": "rg1", "findings": findings, "dryRun": True}
    )

    payload = result.structured_content
    assert payload["status"] == "plan"
    assert payload["resourceGroupName"] == "rg1"
    assert [s["action"] for s in payload["plans"]["rg1/webapp/app1"]] == [
        "webapps.setMinTls12",
        "webapps.setHttpsOnly",
    ]
    # APPPLAN_SKU_TOO_LOW is not a safe default code
    assert [s["action"] for s in payload["plans"]["rg1/plan/plan1"]] == ["plans.setCapacity"]
    assert payload["report"]["rg1/plan/plan1"]["plannedSteps"] == 1

    explicit = await _call(
        "autofix_rg_findings",
        {
            "resourceGroupName": "rg1",
            "findings": findings,
            "codes": ["appplan_sku_too_low"],
            "dryRun": True,
        },
    )
    assert list(explicit.structured_content["plans"]) == ["rg1/plan/plan1"]
    assert explicit.structured_content["plans"]["rg1/plan/plan1"][0]["action"] == "plans.setSku"


@pytest.mark.asyncio
async def test_autofix_confirm_reports_per_resource(ctx, clients):
    findings = WEBAPP_FINDINGS[1:2] + [
        {"code": "PLAN_ZONE_REDUNDANCY_DISABLED", "meta": {"appServicePlanName": "plan1"}},
    ]

    result = await _call(
        "autofix_rg_findings", {"resourceGroupName": "rg1", "findings": findings, "confirm": True}
    )

    payload = result.structured_content
    assert payload["status"] == "done"
    assert set(payload["results"]) == {"rg1/webapp/app1", "rg1/plan/plan1"}
    assert payload["report"]["rg1/plan/plan1"]["applied"] == 1
    assert ("update", "rg1", "plan1", {"zoneRedundant": True}) in clients.app_service_plans.calls


@pytest.mark.asyncio
async def test_autofix_requires_findings(ctx):
    result = await _call("autofix_rg_findings", {"resourceGroupName": "rg1", "findings": []})
    assert result.structured_content["error"]["type"] == "ValidationError"
