"""Baseline scanner over provisioned resources."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from governed_infra.domain.models import Finding
from governed_infra.execution.errors import normalize_provider_error
from governed_infra.policy.engine import PolicyEngine
from governed_infra.policy.models import ScanThresholds
from governed_infra.providers.base import ProviderClients
from governed_infra.scan import rules
from governed_infra.scan.findings import filter_findings, normalize_severity, scan_summary

logger = logging.getLogger(__name__)

MIN_LIMIT_PER_TYPE = 1
MAX_LIMIT_PER_TYPE = 200

RESOURCE_KINDS: tuple[str, ...] = tuple(rules.KINDS)


def clamp_limit(value: int | None, default: int) -> int:
    limit = default if value is None else int(value)
    return max(MIN_LIMIT_PER_TYPE, min(MAX_LIMIT_PER_TYPE, limit))


def _is_not_found(error: dict[str, Any]) -> bool:
    return error.get("statusCode") == 404


class BaselineScanner:
    def __init__(
        self,
        clients: ProviderClients,
        policy_engine: PolicyEngine,
        *,
        default_profile: str = "default",
        limit_per_type: int = 100,
    ) -> None:
        self._clients = clients
        self._engine = policy_engine
        self._default_profile = default_profile
        self._limit_per_type = clamp_limit(limit_per_type, 100)

    # -- single resource scans -------------------------------------------

    async def scan_webapp(self, resource_group: str, name: str, **options: Any) -> dict[str, Any]:
        return await self._scan_one("webApp", resource_group, name, **options)

    async def scan_app_plan(
        self, resource_group: str, name: str, **options: Any
    ) -> dict[str, Any]:
        return await self._scan_one("appServicePlan", resource_group, name, **options)

    async def scan_key_vault(
        self, resource_group: str, name: str, **options: Any
    ) -> dict[str, Any]:
        return await self._scan_one("keyVault", resource_group, name, **options)

    async def scan_storage_account(
        self, resource_group: str, name: str, **options: Any
    ) -> dict[str, Any]:
        return await self._scan_one("storageAccount", resource_group, name, **options)

    async def scan_log_analytics(
        self, resource_group: str, name: str, **options: Any
    ) -> dict[str, Any]:
        return await self._scan_one("logAnalytics", resource_group, name, **options)

    async def scan_vnet(self, resource_group: str, name: str, **options: Any) -> dict[str, Any]:
        return await self._scan_one("vnet", resource_group, name, **options)

    async def _scan_one(
        self,
        kind: str,
        resource_group: str,
        name: str,
        *,
        profile: str | None = None,
        tolerate_missing: bool = False,
        min_severity: str | None = None,
        exclude_codes: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        profile = profile or self._default_profile
        thresholds = self._engine.thresholds(profile)
        try:
            findings = await self.inspect(kind, resource_group, name, thresholds)
        except Exception as exc:
            payload = normalize_provider_error(exc)
            if not (tolerate_missing and _is_not_found(payload["error"])):
                return payload
            findings = [rules.missing_finding(kind, resource_group, name)]
        self._enrich(findings, profile, rules.KINDS[kind][0])
        return self._report(profile, findings, min_severity, exclude_codes)

    # -- multi resource scans --------------------------------------------

    async def scan_workload(
        self,
        resource_group: str,
        names: dict[str, str | None],
        *,
        profile: str | None = None,
        tolerate_missing: bool = True,
        min_severity: str | None = None,
        exclude_codes: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        """Scan the named resources of one workload; ``names`` maps kind -> name."""
        targets = [(kind, name) for kind, name in names.items() if name]
        if not targets:
            raise ValueError("At least one resource name is required for a workload scan")
        unknown = [kind for kind, _ in targets if kind not in rules.KINDS]
        if unknown:
            raise ValueError(f"Unknown resource kind(s): {', '.join(unknown)}")

        profile = profile or self._default_profile
        thresholds = self._engine.thresholds(profile)
        findings: list[Finding] = []
        errors: list[dict[str, Any]] = []
        for kind, name in targets:
            found = await self._inspect_or_record(
                kind, resource_group, name, thresholds, errors, tolerate_missing=tolerate_missing
            )
            self._enrich(found, profile, rules.KINDS[kind][0])
            findings.extend(found)

        report = self._report(profile, findings, min_severity, exclude_codes)
        report["scope"] = {"resourceGroupName": resource_group}
        report["errors"] = errors
        return report

    async def scan_resource_group(
        self,
        resource_group: str,
        *,
        profile: str | None = None,
        include: Iterable[str] | None = None,
        exclude: Iterable[str] | None = None,
        limit_per_type: int | None = None,
        min_severity: str | None = None,
        exclude_codes: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        profile = profile or self._default_profile
        thresholds = self._engine.thresholds(profile)
        limit = clamp_limit(limit_per_type, self._limit_per_type)
        kinds = self._select_kinds(include, exclude)

        findings: list[Finding] = []
        errors: list[dict[str, Any]] = []
        for kind in kinds:
            try:
                items = await self._list(kind, resource_group)
            except Exception as exc:
                error = normalize_provider_error(exc)["error"]
                logger.warning("Listing %s in %s failed: %s", kind, resource_group, error["message"])
                errors.append({"kind": kind, "error": error})
                continue
            if len(items) > limit:
                logger.info("Capping %s in %s at %d of %d", kind, resource_group, limit, len(items))
            for item in items[:limit]:
                name = str(item.get("name") or "")
                if not name:
                    continue
                found = await self._inspect_or_record(
                    kind, resource_group, name, thresholds, errors, resource=item
                )
                self._enrich(found, profile, rules.KINDS[kind][0])
                findings.extend(found)

        if thresholds.required_tags:
            try:
                group = await self._clients.resource_groups.get(resource_group)
            except Exception as exc:
                errors.append(
                    {"kind": "resourceGroup", "error": normalize_provider_error(exc)["error"]}
                )
            else:
                found = rules.check_resource_group_tags(
                    group, resource_group=resource_group, thresholds=thresholds
                )
                self._enrich(found, profile, "resourceGroup")
                findings.extend(found)

        report = self._report(profile, findings, min_severity, exclude_codes)
        report["scope"] = {"resourceGroupName": resource_group}
        report["errors"] = errors
        return report

    @staticmethod
    def _select_kinds(
        include: Iterable[str] | None, exclude: Iterable[str] | None
    ) -> list[str]:
        wanted = list(include) if include else list(RESOURCE_KINDS)
        unknown = [kind for kind in wanted if kind not in rules.KINDS]
        if unknown:
            raise ValueError(f"Unknown resource kind(s): {', '.join(unknown)}")
        skipped = set(exclude or ())
        return [kind for kind in wanted if kind not in skipped]

    async def _inspect_or_record(
        self,
        kind: str,
        resource_group: str,
        name: str,
        thresholds: ScanThresholds,
        errors: list[dict[str, Any]],
        *,
        resource: dict[str, Any] | None = None,
        tolerate_missing: bool = False,
    ) -> list[Finding]:
        try:
            return await self.inspect(kind, resource_group, name, thresholds, resource=resource)
        except Exception as exc:
            error = normalize_provider_error(exc)["error"]
            if tolerate_missing and _is_not_found(error):
                return [rules.missing_finding(kind, resource_group, name)]
            logger.warning("Scanning %s %s/%s failed: %s", kind, resource_group, name, error["message"])
            errors.append({"kind": kind, "name": name, "error": error})
            return []

    # -- provider access ----------------------------------------------------

    async def inspect(
        self,
        kind: str,
        resource_group: str,
        name: str,
        thresholds: ScanThresholds,
        *,
        resource: dict[str, Any] | None = None,
    ) -> list[Finding]:
        """Unenriched findings for one resource. Provider errors propagate."""
        clients = self._clients
        if kind == "webApp":
            site = await clients.web_apps.get(resource_group, name)
            config = await clients.web_apps.get_configuration(resource_group, name)
            return rules.check_webapp(
                site,
                config,
                await self._diagnostics(site),
                resource_group=resource_group,
                name=name,
                thresholds=thresholds,
            )
        if kind == "appServicePlan":
            plan = resource or await clients.app_service_plans.get(resource_group, name)
            return rules.check_app_plan(
                plan,
                await self._diagnostics(plan),
                resource_group=resource_group,
                name=name,
                thresholds=thresholds,
            )
        if kind == "keyVault":
            vault = resource or await clients.key_vaults.get(resource_group, name)
            return rules.check_key_vault(vault, resource_group=resource_group, name=name)
        if kind == "storageAccount":
            account = resource or await clients.storage_accounts.get(resource_group, name)
            return rules.check_storage_account(
                account, resource_group=resource_group, name=name, thresholds=thresholds
            )
        if kind == "logAnalytics":
            workspace = resource or await clients.log_analytics.get(resource_group, name)
            return rules.check_log_analytics(
                workspace, resource_group=resource_group, name=name, thresholds=thresholds
            )
        if kind == "vnet":
            vnet = resource or await clients.networks.get_vnet(resource_group, name)
            return rules.check_vnet(vnet, resource_group=resource_group, name=name)
        raise ValueError(f"Unknown resource kind: {kind}")

    async def _list(self, kind: str, resource_group: str) -> list[dict[str, Any]]:
        clients = self._clients
        if kind == "webApp":
            return await clients.web_apps.list_by_resource_group(resource_group)
        if kind == "appServicePlan":
            return await clients.app_service_plans.list_by_resource_group(resource_group)
        if kind == "keyVault":
            return await clients.key_vaults.list_by_resource_group(resource_group)
        if kind == "storageAccount":
            return await clients.storage_accounts.list_by_resource_group(resource_group)
        if kind == "logAnalytics":
            return await clients.log_analytics.list_by_resource_group(resource_group)
        return await clients.networks.list_vnets(resource_group)

    async def _diagnostics(self, resource: dict[str, Any]) -> list[dict[str, Any]]:
        client = self._clients.diagnostic_settings
        resource_id = resource.get("id") if isinstance(resource, dict) else None
        if client is None or not resource_id:
            return []
        try:
            return await client.list(resource_id)
        except Exception as exc:
            error = normalize_provider_error(exc)["error"]
            logger.warning("Diagnostic settings unavailable for %s: %s", resource_id, error["message"])
            return []

    # -- output -------------------------------------------------------------

    def _enrich(self, findings: list[Finding], profile: str, domain: str) -> None:
        for finding in findings:
            rule = self._engine.get_rule(domain, profile, finding.code)
            finding.control_ids = list(rule.control_ids)
            finding.suggest = rule.suggest
            if rule.severity:
                finding.severity = normalize_severity(rule.severity)

    @staticmethod
    def _report(
        profile: str,
        findings: list[Finding],
        min_severity: str | None,
        exclude_codes: Iterable[str] | None,
    ) -> dict[str, Any]:
        excluded = sorted({code.upper() for code in exclude_codes or ()})
        kept = filter_findings(findings, min_severity, excluded)
        return {
            "status": "done",
            "profile": profile,
            "findings": [finding.to_dict() for finding in kept],
            "summary": scan_summary(kept),
            "filters": {
                "minSeverity": normalize_severity(min_severity) if min_severity else None,
                "excludeFindingsByCode": excluded,
                "dropped": len(findings) - len(kept),
            },
        }
