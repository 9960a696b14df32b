"""Baseline rules per resource type.

Each ``check_*`` function is pure: provider-reported state in, unenriched
findings out.
"""

from __future__ import annotations

import re
from typing import Any

from governed_infra.domain.models import Finding
from governed_infra.policy.models import ScanThresholds

_VERSION_NUMBERS = re.compile(r"(\d+)")

# Resource kind -> (profile domain, meta key naming the resource, missing code)
KINDS: dict[str, tuple[str, str, str]] = {
    "appServicePlan": ("appPlan", "appServicePlanName", "APPPLAN_MISSING"),
    "webApp": ("webapp", "webAppName", "APP_MISSING"),
    "keyVault": ("keyVault", "keyVaultName", "KV_MISSING"),
    "storageAccount": ("storageAccount", "storageAccountName", "STG_MISSING"),
    "logAnalytics": ("logAnalytics", "logAnalyticsName", "LAW_MISSING"),
    "vnet": ("network", "vnetName", "VNET_MISSING"),
}


def tls_version_tuple(value: object) -> tuple[int, ...]:
    """``"1.2"``, ``"TLS1_2"`` and ``"tls1.2"`` all become ``(1, 2)``."""
    numbers = _VERSION_NUMBERS.findall(str(value or ""))
    return tuple(int(n) for n in numbers) if numbers else (0,)


def _properties(resource: dict[str, Any] | None) -> dict[str, Any]:
    props = (resource or {}).get("properties")
    return props if isinstance(props, dict) else {}


def _first(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def has_system_identity(resource: dict[str, Any] | None) -> bool:
    identity = (resource or {}).get("identity")
    identity_type = identity.get("type") if isinstance(identity, dict) else None
    return isinstance(identity_type, str) and "systemassigned" in identity_type.lower().replace(
        " ", ""
    )


def has_log_analytics_sink(diagnostics: list[dict[str, Any]] | None) -> bool:
    for setting in diagnostics or []:
        props = _properties(setting)
        if setting.get("workspaceId") or props.get("workspaceId"):
            return True
    return False


def missing_finding(kind: str, resource_group: str, name: str) -> Finding:
    _, meta_key, code = KINDS[kind]
    return Finding(
        code=code,
        severity="high",
        meta={"resourceGroupName": resource_group, meta_key: name},
    )


def check_webapp(
    site: dict[str, Any],
    config: dict[str, Any] | None,
    diagnostics: list[dict[str, Any]] | None,
    *,
    resource_group: str,
    name: str,
    thresholds: ScanThresholds,
) -> list[Finding]:
    props = _properties(site)
    cfg = config or {}
    site_config = props.get("siteConfig") if isinstance(props.get("siteConfig"), dict) else {}
    tls = str(
        _first(
            props.get("minimumTlsVersion"),
            cfg.get("minTlsVersion"),
            site_config.get("minTlsVersion"),
            default="1.0",
        )
    )
    https_only = bool(_first(props.get("httpsOnly"), cfg.get("httpsOnly"), default=False))
    ftps_state = str(
        _first(
            props.get("ftpsState"),
            cfg.get("ftpsState"),
            site_config.get("ftpsState"),
            default="AllAllowed",
        )
    )
    meta = {"resourceGroupName": resource_group, "webAppName": name}

    findings: list[Finding] = []
    if tls_version_tuple(tls) < tls_version_tuple(thresholds.webapp_min_tls_version):
        findings.append(Finding("APP_TLS_MIN_BELOW_1_2", "high", {**meta, "tls": tls}))
    if not https_only:
        findings.append(Finding("APP_HTTPS_ONLY_DISABLED", "high", dict(meta)))
    if ftps_state != "Disabled":
        findings.append(Finding("APP_FTPS_NOT_DISABLED", "medium", {**meta, "ftpsState": ftps_state}))
    if not has_system_identity(site):
        findings.append(Finding("APP_MSI_DISABLED", "medium", dict(meta)))
    if not has_log_analytics_sink(diagnostics):
        findings.append(Finding("APP_DIAG_NO_LAW", "medium", dict(meta)))
    return findings


def check_app_plan(
    plan: dict[str, Any],
    diagnostics: list[dict[str, Any]] | None,
    *,
    resource_group: str,
    name: str,
    thresholds: ScanThresholds,
) -> list[Finding]:
    props = _properties(plan)
    sku_block = plan.get("sku") if isinstance(plan.get("sku"), dict) else {}
    sku = str(sku_block.get("name") or "").lower()
    tier = str(sku_block.get("tier") or "").lower()
    https_only = bool(props.get("httpsOnly", False))
    ftps_state = str(props.get("ftpsState") or "AllAllowed")
    meta = {"resourceGroupName": resource_group, "appServicePlanName": name}

    findings: list[Finding] = []
    disallowed = set(thresholds.app_plan_disallowed_skus)
    if (sku and sku in disallowed) or (tier and tier in disallowed):
        findings.append(Finding("APPPLAN_SKU_TOO_LOW", "high", {**meta, "sku": sku or tier}))
    if not https_only:
        findings.append(Finding("APPPLAN_HTTPS_ONLY_DISABLED", "high", dict(meta)))
    if ftps_state != "Disabled":
        findings.append(
            Finding("APPPLAN_FTPS_NOT_DISABLED", "medium", {**meta, "ftpsState": ftps_state})
        )
    if not has_system_identity(plan):
        findings.append(Finding("APPPLAN_MSI_DISABLED", "medium", dict(meta)))
    if not has_log_analytics_sink(diagnostics):
        findings.append(Finding("APPPLAN_DIAG_NO_LAW", "medium", dict(meta)))
    return findings


def check_plan_capacity(
    plan: dict[str, Any], *, resource_group: str, name: str
) -> list[Finding]:
    """Availability checks used when planning App Service Plan remediation."""
    sku_block = plan.get("sku") if isinstance(plan.get("sku"), dict) else {}
    props = _properties(plan)
    tier = str(sku_block.get("tier") or "")
    sku_name = str(sku_block.get("name") or "")
    capacity = _first(sku_block.get("capacity"), plan.get("capacity"))
    zone_redundant = _first(plan.get("zoneRedundant"), props.get("zoneRedundant"))
    meta = {"resourceGroupName": resource_group, "appServicePlanName": name}

    findings: list[Finding] = []
    if tier[:1].upper() == "F" or sku_name[:1].upper() == "F" or "FREE" in tier.upper():
        findings.append(Finding("PLAN_SKU_IS_FREE", "medium", dict(meta)))
    if isinstance(capacity, int) and capacity < 2:
        findings.append(
            Finding("PLAN_WORKER_COUNT_TOO_LOW", "medium", {**meta, "capacity": capacity})
        )
    if zone_redundant is False:
        findings.append(Finding("PLAN_ZONE_REDUNDANCY_DISABLED", "low", dict(meta)))
    return findings


def check_key_vault(vault: dict[str, Any], *, resource_group: str, name: str) -> list[Finding]:
    props = _properties(vault)
    meta = {"resourceGroupName": resource_group, "keyVaultName": name}

    findings: list[Finding] = []
    if props.get("enableRbacAuthorization") is not True:
        findings.append(Finding("KV_RBAC_NOT_ENABLED", "medium", dict(meta)))
    if props.get("publicNetworkAccess") == "Enabled":
        findings.append(Finding("KV_PUBLIC_NETWORK_ENABLED", "high", dict(meta)))
    if props.get("enablePurgeProtection") is not True:
        findings.append(Finding("KV_PURGE_PROTECTION_DISABLED", "high", dict(meta)))
    if props.get("enableSoftDelete") is False:
        findings.append(Finding("KV_SOFT_DELETE_DISABLED", "medium", dict(meta)))
    return findings


def check_storage_account(
    account: dict[str, Any],
    *,
    resource_group: str,
    name: str,
    thresholds: ScanThresholds,
) -> list[Finding]:
    props = _properties(account) or account
    min_tls = props.get("minimumTlsVersion")
    meta = {"resourceGroupName": resource_group, "storageAccountName": name}

    findings: list[Finding] = []
    if not props.get("supportsHttpsTrafficOnly"):
        findings.append(Finding("STG_HTTPS_ONLY_DISABLED", "high", dict(meta)))
    if isinstance(min_tls, str) and tls_version_tuple(min_tls) < tls_version_tuple(
        thresholds.storage_min_tls_version
    ):
        findings.append(Finding("STG_MIN_TLS_BELOW_1_2", "high", {**meta, "minTls": min_tls}))
    if props.get("allowBlobPublicAccess") is True:
        findings.append(Finding("STG_BLOB_PUBLIC_ACCESS_ENABLED", "high", dict(meta)))
    return findings


def check_log_analytics(
    workspace: dict[str, Any],
    *,
    resource_group: str,
    name: str,
    thresholds: ScanThresholds,
) -> list[Finding]:
    retention = _first(workspace.get("retentionInDays"), _properties(workspace).get("retentionInDays"))
    if isinstance(retention, int) and retention < thresholds.law_min_retention_days:
        return [
            Finding(
                "LAW_RETENTION_TOO_LOW",
                "medium",
                {"resourceGroupName": resource_group, "logAnalyticsName": name, "retention": retention},
            )
        ]
    return []


def check_vnet(vnet: dict[str, Any], *, resource_group: str, name: str) -> list[Finding]:
    props = _properties(vnet)
    ddos_plan = _first(props.get("ddosProtectionPlan"), vnet.get("ddosProtectionPlan"))
    ddos_enabled = bool(
        _first(props.get("enableDdosProtection"), vnet.get("enableDdosProtection"))
        or (isinstance(ddos_plan, dict) and ddos_plan.get("id"))
    )
    meta = {"resourceGroupName": resource_group, "vnetName": name}

    findings: list[Finding] = []
    if not ddos_enabled:
        findings.append(Finding("NET_DDOS_DISABLED", "low", dict(meta)))
    subnets = _first(props.get("subnets"), vnet.get("subnets"), default=[])
    for subnet in subnets if isinstance(subnets, list) else []:
        subnet_props = _properties(subnet)
        policy = str(
            _first(
                subnet_props.get("privateEndpointNetworkPolicies"),
                subnet.get("privateEndpointNetworkPolicies"),
                default="Enabled",
            )
        )
        if policy != "Disabled":
            findings.append(
                Finding(
                    "SUBNET_PENP_NOT_DISABLED",
                    "medium",
                    {**meta, "subnetName": subnet.get("name")},
                )
            )
    return findings


def check_resource_group_tags(
    group: dict[str, Any], *, resource_group: str, thresholds: ScanThresholds
) -> list[Finding]:
    tags = group.get("tags") if isinstance(group.get("tags"), dict) else {}
    missing = [key for key in thresholds.required_tags if not str(tags.get(key) or "").strip()]
    if not missing:
        return []
    return [
        Finding(
            "RG_TAGS_MISSING",
            "medium",
            {"resourceGroupName": resource_group, "missingTags": missing},
        )
    ]
