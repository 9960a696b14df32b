"""Finding -> remediation step planning.

Steps carry resource coordinates and the new value only. Fixes that need an
input the finding cannot supply (a Log Analytics workspace id) are skipped and
reported as suggestions instead.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from governed_infra.domain.models import Finding, RemediationStep
from governed_infra.utils.serialization import canonical_json

DEFAULT_PLAN_SKU = "P1v3"
MIN_PLAN_CAPACITY = 2

WEBAPP_CODES = frozenset(
    {
        "APP_TLS_MIN_BELOW_1_2",
        "APP_HTTPS_ONLY_DISABLED",
        "APP_FTPS_NOT_DISABLED",
        "APP_MSI_DISABLED",
        "APP_DIAG_NO_LAW",
    }
)
SAFE_DEFAULT_CODES = frozenset(
    WEBAPP_CODES | {"PLAN_SKU_IS_FREE", "PLAN_WORKER_COUNT_TOO_LOW", "PLAN_ZONE_REDUNDANCY_DISABLED"}
)

LAW_SUGGESTION = "Provide defaults.lawResourceId to link diagnostics to Log Analytics."
SKU_TIP = "Validate SKU supports workload and budget; consider P1v3 or higher."
CAPACITY_TIP = "Set worker count >= 2 for HA."
RBAC_TIP = "Verify RBAC: Contributor on resource and Microsoft.Web/* permissions."
RESCAN_TIP = "Re-run baseline scans after apply."

# Step args that identify what a step changes, for deduplication
_STEP_KEY_FIELDS = (
    ("name", "name"),
    ("kind", "resourceKind"),
    ("workspaceId", "workspaceId"),
    ("tls", "minimumTlsVersion"),
    ("httpsOnly", "httpsOnly"),
    ("ftpsState", "ftpsState"),
    ("capacity", "capacity"),
    ("sku", "sku"),
    ("zoneRedundant", "zoneRedundant"),
)


@dataclass
class PlannerDefaults:
    law_resource_id: str | None = None
    plan_sku: str | None = None
    capacity: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PlannerDefaults":
        data = data or {}
        capacity = data.get("capacity")
        return cls(
            law_resource_id=data.get("lawResourceId") or None,
            plan_sku=data.get("planSku") or None,
            capacity=int(capacity) if capacity is not None else None,
        )


def step_key(step: RemediationStep) -> str:
    args = step.args
    identity: dict[str, Any] = {"rg": args.get("resourceGroupName") or args.get("rg")}
    for label, arg_name in _STEP_KEY_FIELDS:
        if args.get(arg_name) is not None:
            identity[label] = args[arg_name]
    return canonical_json({"action": step.action, **identity})


def dedupe_steps(steps: Iterable[RemediationStep]) -> list[RemediationStep]:
    """Drop repeated steps, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[RemediationStep] = []
    for step in steps:
        key = step_key(step)
        if key in seen:
            continue
        seen.add(key)
        unique.append(step)
    return unique


def _diagnostics_step(
    resource_group: str,
    name: str,
    kind: str,
    defaults: PlannerDefaults,
    suggestions: list[str],
) -> RemediationStep | None:
    if not defaults.law_resource_id:
        if LAW_SUGGESTION not in suggestions:
            suggestions.append(LAW_SUGGESTION)
        return None
    return RemediationStep(
        "monitor.enableDiagnostics",
        {
            "resourceGroupName": resource_group,
            "name": name,
            "resourceKind": kind,
            "workspaceId": defaults.law_resource_id,
        },
    )


def plan_webapp(
    resource_group: str,
    name: str,
    findings: Iterable[Finding],
    defaults: PlannerDefaults | None = None,
) -> tuple[list[RemediationStep], list[str]]:
    defaults = defaults or PlannerDefaults()
    coords = {"resourceGroupName": resource_group, "name": name}
    steps: list[RemediationStep] = []
    suggestions: list[str] = []
    for finding in findings:
        code = finding.code.upper()
        if code == "APP_TLS_MIN_BELOW_1_2":
            steps.append(RemediationStep("webapps.setMinTls12", {**coords, "minimumTlsVersion": "1.2"}))
        elif code == "APP_HTTPS_ONLY_DISABLED":
            steps.append(RemediationStep("webapps.setHttpsOnly", {**coords, "httpsOnly": True}))
        elif code == "APP_FTPS_NOT_DISABLED":
            steps.append(RemediationStep("webapps.setFtpsDisabled", {**coords, "ftpsState": "Disabled"}))
        elif code == "APP_MSI_DISABLED":
            steps.append(RemediationStep("webapps.enableMsi", dict(coords)))
        elif code == "APP_DIAG_NO_LAW":
            step = _diagnostics_step(resource_group, name, "webapp", defaults, suggestions)
            if step is not None:
                steps.append(step)
    return dedupe_steps(steps), suggestions


def plan_app_plan(
    resource_group: str,
    name: str,
    findings: Iterable[Finding],
    defaults: PlannerDefaults | None = None,
) -> tuple[list[RemediationStep], list[str]]:
    defaults = defaults or PlannerDefaults()
    coords = {"resourceGroupName": resource_group, "name": name}
    steps: list[RemediationStep] = []
    suggestions: list[str] = []
    for finding in findings:
        code = finding.code.upper()
        if code in ("PLAN_SKU_IS_FREE", "APPPLAN_SKU_TOO_LOW"):
            steps.append(
                RemediationStep("plans.setSku", {**coords, "sku": defaults.plan_sku or DEFAULT_PLAN_SKU})
            )
        elif code == "PLAN_WORKER_COUNT_TOO_LOW":
            capacity = max(MIN_PLAN_CAPACITY, defaults.capacity or MIN_PLAN_CAPACITY)
            steps.append(RemediationStep("plans.setCapacity", {**coords, "capacity": capacity}))
        elif code == "PLAN_ZONE_REDUNDANCY_DISABLED":
            steps.append(RemediationStep("plans.setZoneRedundant", {**coords, "zoneRedundant": True}))
        elif code == "APPPLAN_DIAG_NO_LAW":
            step = _diagnostics_step(resource_group, name, "plan", defaults, suggestions)
            if step is not None:
                steps.append(step)

    actions = {step.action for step in steps}
    if "plans.setSku" in actions:
        suggestions.append(SKU_TIP)
    if "plans.setCapacity" in actions:
        suggestions.append(CAPACITY_TIP)
    return dedupe_steps(steps), suggestions


def _meta_kind(meta: dict[str, Any]) -> tuple[str, str] | None:
    kind = str(meta.get("kind") or "").lower()
    webapp = meta.get("webAppName") or meta.get("siteName")
    if webapp or kind == "webapp":
        name = webapp or meta.get("name")
        return ("webapp", str(name)) if name else None
    plan = meta.get("appServicePlanName") or meta.get("planName")
    if plan or kind == "appplan":
        name = plan or meta.get("name")
        return ("plan", str(name)) if name else None
    return None


def group_findings_by_resource(
    findings: Iterable[Finding], resource_group: str
) -> dict[str, dict[str, Any]]:
    """Group findings as ``rg/webapp/name`` or ``rg/plan/name``; unidentifiable ones are dropped."""
    groups: dict[str, dict[str, Any]] = {}
    for finding in findings:
        resolved = _meta_kind(finding.meta)
        if resolved is None:
            continue
        kind, name = resolved
        rg = str(finding.meta.get("resourceGroupName") or resource_group)
        key = f"{rg}/{kind}/{name}"
        group = groups.setdefault(
            key, {"kind": kind, "resourceGroupName": rg, "name": name, "findings": []}
        )
        group["findings"].append(finding)
    return groups


def build_report(
    steps: list[RemediationStep],
    results: list[dict[str, Any]] | None,
    suggestions: list[str],
) -> dict[str, Any]:
    results = results or []
    errors = [r["error"] for r in results if not r.get("ok") and r.get("error") is not None]
    tips = list(suggestions)
    if any(error.get("statusCode") == 403 for error in errors) and RBAC_TIP not in tips:
        tips.append(RBAC_TIP)
    if RESCAN_TIP not in tips:
        tips.append(RESCAN_TIP)
    return {
        "plannedSteps": len(steps),
        "applied": sum(1 for r in results if r.get("ok")),
        "failed": sum(1 for r in results if not r.get("ok")),
        "errors": errors,
        "suggestions": tips,
    }


def describe_steps(steps: Iterable[RemediationStep]) -> str:
    return "; ".join(f"{s.action} {json.dumps(s.args, sort_keys=True)}" for s in steps)
