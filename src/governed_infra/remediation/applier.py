"""Apply remediation steps against the provider clients."""

from __future__ import annotations

import logging
from typing import Any

from governed_infra.domain.models import RemediationStep, StepResult
from governed_infra.execution.errors import ProviderError, normalize_provider_error
from governed_infra.providers.base import ProviderClients, UpdateStrategy, resolve_update_strategy
from governed_infra.remediation.planner import build_report

logger = logging.getLogger(__name__)

# Site properties the recreate path sets explicitly rather than carrying over
_SITE_OVERLAY_KEYS = frozenset(
    {"serverFarmId", "siteConfig", "httpsOnly", "minimumTlsVersion", "ftpsState"}
)


def _tail(resource_id: object) -> str | None:
    if not isinstance(resource_id, str) or not resource_id:
        return None
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


class StepApplier:
    """Runs steps one at a time; a failed step never stops the run."""

    def __init__(self, clients: ProviderClients) -> None:
        self._clients = clients
        # Capability probes happen once, not per step
        self.webapp_strategy = resolve_update_strategy(
            clients.web_apps, "update", "update_configuration"
        )
        self.plan_strategy = resolve_update_strategy(clients.app_service_plans, "update")

    async def run(
        self,
        steps: list[RemediationStep],
        *,
        dry_run: bool = False,
        suggestions: list[str] | None = None,
    ) -> dict[str, Any]:
        suggestions = list(suggestions or [])
        if dry_run:
            return {
                "status": "plan",
                "steps": [step.to_dict() for step in steps],
                "count": len(steps),
                "report": build_report(steps, None, suggestions),
            }
        results = [result.to_dict() for result in await self.apply_steps(steps)]
        return {
            "status": "done",
            "results": results,
            "report": build_report(steps, results, suggestions),
        }

    async def apply_steps(self, steps: list[RemediationStep]) -> list[StepResult]:
        results: list[StepResult] = []
        for step in steps:
            results.append(await self.apply_step(step))
        return results

    async def apply_step(self, step: RemediationStep) -> StepResult:
        try:
            result = await self._dispatch(step)
        except Exception as exc:
            error = normalize_provider_error(exc)["error"]
            logger.warning(
                "Remediation step %s failed: %s (%s)", step.action, error["message"], error["code"]
            )
            return StepResult(step=step, ok=False, error=error)
        return StepResult(step=step, ok=True, result=result)

    async def _dispatch(self, step: RemediationStep) -> Any:
        args = step.args
        rg = args.get("resourceGroupName") or args.get("rg")
        name = args.get("name")
        if not rg or not name:
            raise ProviderError(
                f"{step.action} needs resourceGroupName and name", code="InvalidStep"
            )

        if step.action == "webapps.setMinTls12":
            return await self._update_webapp(rg, name, {"minimumTlsVersion": "1.2"}, config_first=True)
        if step.action == "webapps.setHttpsOnly":
            return await self._update_webapp(rg, name, {"httpsOnly": bool(args.get("httpsOnly", True))})
        if step.action == "webapps.setFtpsDisabled":
            return await self._update_webapp(rg, name, {"ftpsState": "Disabled"})
        if step.action == "webapps.enableMsi":
            return await self._clients.web_apps.enable_system_assigned_identity(rg, name)
        if step.action == "monitor.enableDiagnostics":
            return await self._enable_diagnostics(
                rg, name, args.get("workspaceId"), args.get("resourceKind") or "webapp"
            )
        if step.action == "plans.setSku":
            return await self._update_plan(rg, name, {"sku": args["sku"]})
        if step.action == "plans.setCapacity":
            return await self._update_plan(rg, name, {"capacity": int(args["capacity"])})
        if step.action == "plans.setZoneRedundant":
            return await self._update_plan(rg, name, {"zoneRedundant": bool(args.get("zoneRedundant", True))})
        raise ProviderError(f"Unsupported remediation action: {step.action}", code="UnsupportedAction")

    async def _update_webapp(
        self, rg: str, name: str, change: dict[str, Any], *, config_first: bool = False
    ) -> Any:
        web_apps = self._clients.web_apps
        if self.webapp_strategy is UpdateStrategy.PARTIAL_UPDATE_SUPPORTED:
            update_configuration = getattr(web_apps, "update_configuration", None)
            if config_first and callable(update_configuration):
                return await update_configuration(rg, name, {"minTlsVersion": change["minimumTlsVersion"]})
            update = getattr(web_apps, "update", None)
            if callable(update):
                return await update(rg, name, change)
            if callable(update_configuration):
                return await update_configuration(rg, name, change)
        return await self._recreate_webapp(rg, name, change)

    async def _recreate_webapp(self, rg: str, name: str, change: dict[str, Any]) -> Any:
        """Read the site, overlay ``change`` and write the whole representation back."""
        current = await self._clients.web_apps.get(rg, name)
        props = current.get("properties") or {}
        site_config = props.get("siteConfig") or {}
        plan_name = _tail(props.get("serverFarmId"))
        if not plan_name:
            raise ProviderError(
                f"Cannot recreate {name}: current state has no serverFarmId", code="IncompleteState"
            )
        spec: dict[str, Any] = {
            "resourceGroupName": rg,
            "name": name,
            "location": current.get("location"),
            "appServicePlanName": plan_name,
            "httpsOnly": props.get("httpsOnly"),
            "minimumTlsVersion": props.get("minimumTlsVersion") or site_config.get("minTlsVersion"),
            "ftpsState": props.get("ftpsState") or site_config.get("ftpsState"),
            "linuxFxVersion": site_config.get("linuxFxVersion"),
            "siteConfig": dict(site_config),
            "properties": {k: v for k, v in props.items() if k not in _SITE_OVERLAY_KEYS},
            "kind": current.get("kind"),
            "identity": current.get("identity"),
        }
        if current.get("tags"):
            spec["tags"] = dict(current["tags"])
        spec.update(change)
        logger.info("Recreating web app %s/%s with %s", rg, name, sorted(change))
        return await self._clients.web_apps.create(spec)

    async def _update_plan(self, rg: str, name: str, change: dict[str, Any]) -> Any:
        plans = self._clients.app_service_plans
        if self.plan_strategy is UpdateStrategy.PARTIAL_UPDATE_SUPPORTED:
            return await plans.update(rg, name, change)  # type: ignore[attr-defined]

        current = await plans.get(rg, name)
        sku = dict(current.get("sku") or {})
        if "sku" in change:
            sku["name"] = change["sku"]
            sku.pop("tier", None)
        if "capacity" in change:
            sku["capacity"] = change["capacity"]
        properties = dict(current.get("properties") or {})
        if "zoneRedundant" in change:
            properties["zoneRedundant"] = change["zoneRedundant"]
        logger.info("Recreating plan %s/%s with %s", rg, name, sorted(change))
        return await plans.create(
            rg,
            name,
            current.get("location"),
            sku,
            current.get("tags"),
            kind=current.get("kind"),
            properties=properties,
        )

    async def _enable_diagnostics(
        self, rg: str, name: str, workspace_id: str | None, kind: str
    ) -> Any:
        client = self._clients.diagnostic_settings
        if not workspace_id:
            raise ProviderError("enableDiagnostics needs a workspaceId", code="MissingWorkspace")
        if client is None:
            raise ProviderError("No diagnostic settings client configured", code="Unsupported")
        if kind == "plan":
            resource = await self._clients.app_service_plans.get(rg, name)
        else:
            resource = await self._clients.web_apps.get(rg, name)
        resource_id = resource.get("id")
        if not resource_id:
            raise ProviderError(f"{rg}/{name} has no resource id", code="IncompleteState")
        return await client.create_or_update(resource_id, f"{name}-to-law", {"workspaceId": workspace_id})
