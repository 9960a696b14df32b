"""Governed remediation tools.

Each tool plans steps from findings (supplied, or read from the live resource)
and hands them to the step applier through the governed executor, so applying
fixes follows the same hold/confirm/audit rules as any other mutation.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from governed_infra.app import AppContext, get_app_context
from governed_infra.domain.models import ActionRequest, Finding, RemediationStep
from governed_infra.mcp_runtime import ToolResult, ToolSpec
from governed_infra.remediation.planner import (
    SAFE_DEFAULT_CODES,
    PlannerDefaults,
    build_report,
    describe_steps,
    group_findings_by_resource,
    plan_app_plan,
    plan_webapp,
)
from governed_infra.scan import rules
from governed_infra.tools import schemas
from governed_infra.tools.base import (
    ToolInputError,
    error_result,
    outcome_result,
    result_from_payload,
    validate_or_raise,
)


@dataclass
class ResourcePlan:
    key: str
    steps: list[RemediationStep] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


Planner = Callable[[AppContext, dict[str, Any]], Awaitable[list[ResourcePlan]]]


def _findings(arguments: dict[str, Any]) -> list[Finding]:
    return [Finding.from_dict(item) for item in arguments.get("findings") or []]


async def _plan_webapp_request(ctx: AppContext, args: dict[str, Any]) -> list[ResourcePlan]:
    rg, name = args["resourceGroupName"], args["name"]
    findings = _findings(args)
    if not findings:
        thresholds = ctx.policy_engine.thresholds(ctx.settings.policy.default_profile)
        findings = await ctx.scanner.inspect("webApp", rg, name, thresholds)
    steps, suggestions = plan_webapp(rg, name, findings, PlannerDefaults.from_dict(args.get("defaults")))
    return [ResourcePlan(f"{rg}/webapp/{name}", steps, suggestions)]


async def _plan_appplan_request(ctx: AppContext, args: dict[str, Any]) -> list[ResourcePlan]:
    rg, name = args["resourceGroupName"], args["name"]
    findings = _findings(args)
    if not findings:
        plan = await ctx.clients.app_service_plans.get(rg, name)
        findings = rules.check_plan_capacity(plan, resource_group=rg, name=name)
    steps, suggestions = plan_app_plan(
        rg, name, findings, PlannerDefaults.from_dict(args.get("defaults"))
    )
    return [ResourcePlan(f"{rg}/plan/{name}", steps, suggestions)]


async def _plan_autofix_request(ctx: AppContext, args: dict[str, Any]) -> list[ResourcePlan]:
    codes = args.get("codes")
    allowed = {str(code).upper() for code in codes} if codes else set(SAFE_DEFAULT_CODES)
    defaults = PlannerDefaults.from_dict(args.get("defaults"))
    selected = [f for f in _findings(args) if f.code.upper() in allowed]

    plans: list[ResourcePlan] = []
    for key, group in group_findings_by_resource(selected, args["resourceGroupName"]).items():
        planner = plan_webapp if group["kind"] == "webapp" else plan_app_plan
        steps, suggestions = planner(
            group["resourceGroupName"], group["name"], group["findings"], defaults
        )
        plans.append(ResourcePlan(key, steps, suggestions))
    return plans


def _single_payload(plans: list[ResourcePlan], applied: dict[str, Any] | None) -> dict[str, Any]:
    plan = plans[0]
    if applied is None:
        return {
            "status": "plan",
            "steps": [step.to_dict() for step in plan.steps],
            "count": len(plan.steps),
            "report": build_report(plan.steps, None, plan.suggestions),
        }
    return dict(applied[plan.key])


def _grouped_payload(
    resource_group: str, plans: list[ResourcePlan], applied: dict[str, Any] | None
) -> dict[str, Any]:
    if applied is None:
        return {
            "status": "plan",
            "resourceGroupName": resource_group,
            "plans": {p.key: [step.to_dict() for step in p.steps] for p in plans},
            "report": {p.key: build_report(p.steps, None, p.suggestions) for p in plans},
        }
    return {
        "status": "done",
        "resourceGroupName": resource_group,
        "results": {key: run["results"] for key, run in applied.items()},
        "report": {key: run["report"] for key, run in applied.items()},
    }


def _remediation_tool(
    name: str,
    description: str,
    schema: dict[str, Any],
    planner: Planner,
    grouped: bool = False,
) -> ToolSpec:
    async def _handler(arguments: dict[str, object]) -> ToolResult:
        try:
            validate_or_raise(schema, arguments)
        except ToolInputError as exc:
            return error_result("ValidationError", str(exc), details=exc.errors)

        ctx = get_app_context()
        request = ActionRequest.from_tool_arguments(name, dict(arguments))
        try:
            plans = await planner(ctx, request.arguments)
        except Exception as exc:
            return outcome_result(ctx.executor.fail(request, exc))

        def render(applied: dict[str, Any] | None) -> dict[str, Any]:
            if grouped:
                return _grouped_payload(request.arguments["resourceGroupName"], plans, applied)
            return _single_payload(plans, applied)

        async def apply(_args: dict[str, Any]) -> dict[str, Any]:
            applied: dict[str, Any] = {}
            for plan in plans:
                applied[plan.key] = await ctx.applier.run(plan.steps, suggestions=plan.suggestions)
            return applied

        all_steps = [step for plan in plans for step in plan.steps]
        outcome = await ctx.executor.execute(
            request,
            apply,
            plan_line=lambda _args: f"{name}: {describe_steps(all_steps) or 'no changes needed'}",
        )

        if outcome.status == "done":
            payload = render(outcome.result)
        elif outcome.status == "pending" and request.dry_run:
            payload = render(None)
        elif outcome.status == "pending":
            payload = outcome.to_payload()
            payload["steps"] = [step.to_dict() for step in all_steps]
            return result_from_payload(payload, text=outcome.text)
        else:
            return outcome_result(outcome)

        payload["idempotencyKey"] = outcome.idempotency_key
        if outcome.governance is not None:
            payload["governance"] = outcome.governance.to_dict()
        if outcome.followup:
            payload["followup"] = outcome.followup
        return result_from_payload(payload, text=outcome.text)

    return ToolSpec(name=name, description=description, input_schema=schema, handler=_handler)


remediate_webapp_tool = _remediation_tool(
    "remediate_webapp_baseline",
    "Fix Web App baseline findings (TLS, HTTPS-only, FTPS, managed identity, diagnostics). "
    "dryRun=true returns the planned steps without touching the resource.",
    schemas.REMEDIATE_WEBAPP_SCHEMA,
    _plan_webapp_request,
)

remediate_appplan_tool = _remediation_tool(
    "remediate_appplan_baseline",
    "Fix App Service Plan baseline findings (SKU, worker count, zone redundancy, diagnostics).",
    schemas.REMEDIATE_APPPLAN_SCHEMA,
    _plan_appplan_request,
)

autofix_rg_tool = _remediation_tool(
    "autofix_rg_findings",
    "Plan or apply fixes for resource group scan findings, grouped per resource. Only codes "
    "in the safe default list are fixed unless 'codes' is given.",
    schemas.AUTOFIX_RG_SCHEMA,
    _plan_autofix_request,
    grouped=True,
)

remediation_tools: list[ToolSpec] = [
    remediate_webapp_tool,
    remediate_appplan_tool,
    autofix_rg_tool,
]
