"""Policy evaluation engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from governed_infra.domain.models import Decision, PolicyDecision, Suggestion
from governed_infra.policy.models import (
    ActionPolicy,
    AtoProfile,
    PolicyConfig,
    ScanThresholds,
)

_MAX_POLICY_REGEX_LENGTH = 256
_BACKREFERENCE_PATTERN = re.compile(r"\\[1-9]")
_NESTED_QUANTIFIER_PATTERN = re.compile(
    r"\((?:[^()\\]|\\.)*[+*](?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d+(?:,\d*)?\})"
)
_LOOKBEHIND_TOKENS = ("(?<=", "(?<!")
_TEMPLATE_VAR = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

_NAME_KEYS = (
    "name",
    "resourceGroupName",
    "webAppName",
    "appServicePlanName",
    "keyVaultName",
    "storageAccountName",
    "workspaceName",
)

DEFAULT_PROFILE = "default"

# Canonical domain -> accepted spellings in profile documents
DOMAIN_ALIASES: dict[str, tuple[str, ...]] = {
    "webapp": ("webapp", "web_app", "app"),
    "appPlan": ("appPlan", "app_service_plan", "asp", "plan"),
    "network": ("network", "vnet", "virtualNetwork", "virtual_network"),
    "keyVault": ("keyVault", "key_vault", "kv"),
    "storageAccount": ("storageAccount", "storage_account", "sa"),
    "logAnalytics": (
        "logAnalytics",
        "log_analytics",
        "logAnalyticsWorkspace",
        "law",
        "workspace",
    ),
    "resourceGroup": ("resourceGroup", "resource_group", "rg"),
}


@dataclass
class RuleMapping:
    control_ids: list[str] = field(default_factory=list)
    suggest: str | None = None
    severity: str | None = None


@dataclass(frozen=True)
class _CompiledActionPolicy:
    policy: ActionPolicy
    deny_regex: tuple[re.Pattern[str], ...]
    name_regex: re.Pattern[str] | None


def _render(template: str, variables: Mapping[str, Any]) -> str:
    def _sub(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _TEMPLATE_VAR.sub(_sub, template)


class PolicyEngine:
    def __init__(
        self,
        config: PolicyConfig,
        ato_profiles: Mapping[str, AtoProfile] | None = None,
    ) -> None:
        self._config = config
        self._actions = {
            name: self._compile_action(name, policy) for name, policy in config.actions.items()
        }
        self._defaults = (
            self._compile_action("defaults", config.defaults) if config.defaults else None
        )
        self._profiles: dict[str, AtoProfile] = dict(ato_profiles or {})

    @classmethod
    def _compile_action(cls, name: str, policy: ActionPolicy) -> _CompiledActionPolicy:
        deny_regex = tuple(
            cls._compile_pattern(pat, f"{name}:deny_regex", re.IGNORECASE)
            for pat in policy.deny_regex
        )
        name_regex = (
            cls._compile_pattern(policy.name_regex, f"{name}:name_regex")
            if policy.name_regex
            else None
        )
        return _CompiledActionPolicy(policy=policy, deny_regex=deny_regex, name_regex=name_regex)

    @classmethod
    def _compile_pattern(cls, pattern: str, label: str, flags: int = 0) -> re.Pattern[str]:
        cls._validate_pattern_safety(pattern, label)
        try:
            return re.compile(pattern, flags)
        except re.error as exc:
            raise ValueError(f"Invalid regex in {label} policy pattern '{pattern}': {exc}") from exc

    @staticmethod
    def _validate_pattern_safety(pattern: str, label: str) -> None:
        if len(pattern) > _MAX_POLICY_REGEX_LENGTH:
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': exceeds "
                f"{_MAX_POLICY_REGEX_LENGTH} characters"
            )
        if any(token in pattern for token in _LOOKBEHIND_TOKENS):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': look-behind is not allowed"
            )
        if _BACKREFERENCE_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "backreferences are not allowed"
            )
        if _NESTED_QUANTIFIER_PATTERN.search(pattern):
            raise ValueError(
                f"Unsafe regex in {label} policy pattern '{pattern}': "
                "nested quantifiers are not allowed"
            )

    def evaluate(
        self,
        action: str,
        args: Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        compiled = self._actions.get(action, self._defaults)
        if compiled is None:
            return PolicyDecision(Decision.ALLOW)

        policy = compiled.policy
        violations = self._violations(compiled, args)
        if not violations:
            return PolicyDecision(Decision.ALLOW, controls=list(policy.controls))

        variables: dict[str, Any] = {**dict(context or {}), **dict(args)}
        return PolicyDecision(
            decision=Decision(policy.effect),
            reasons=[reason for _, reason in violations],
            suggestions=self._suggestions(policy, variables),
            controls=list(policy.controls),
            policy_ids=list(policy.policy_ids) or [action],
            quick_fix=self._quick_fix(
                policy, args, variables, {field_name for field_name, _ in violations}
            ),
        )

    @staticmethod
    def _name_key(args: Mapping[str, Any]) -> str | None:
        for key in _NAME_KEYS:
            value = args.get(key)
            if isinstance(value, str) and value:
                return key
        return None

    @classmethod
    def _resource_name(cls, args: Mapping[str, Any]) -> str:
        key = cls._name_key(args)
        return str(args[key]) if key else ""

    @classmethod
    def _quick_fix(
        cls,
        policy: ActionPolicy,
        args: Mapping[str, Any],
        variables: Mapping[str, Any],
        violated: set[str],
    ) -> dict[str, Any]:
        """Argument overrides built from the suggest templates for violated fields."""
        fix: dict[str, Any] = {}
        if "name" in violated and policy.suggest_name:
            rendered = _render(policy.suggest_name, variables)
            if rendered:
                fix[cls._name_key(args) or "name"] = rendered
        if "location" in violated and policy.suggest_region:
            rendered = _render(policy.suggest_region, variables)
            if rendered:
                fix["location"] = rendered
        if "tags" in violated and policy.suggest_tags:
            existing = args.get("tags")
            tags = dict(existing) if isinstance(existing, Mapping) else {}
            for key, template in policy.suggest_tags.items():
                if not str(tags.get(key) or "").strip():
                    tags[key] = _render(template, variables)
            fix["tags"] = tags
        return fix

    def _violations(
        self, compiled: _CompiledActionPolicy, args: Mapping[str, Any]
    ) -> list[tuple[str, str]]:
        policy = compiled.policy
        violations: list[tuple[str, str]] = []
        name = self._resource_name(args)
        lowered = name.lower()

        if name and lowered in {n.lower() for n in policy.deny_names}:
            violations.append(("name", f"name '{name}' is denied by policy"))
        if name and any(term.lower() in lowered for term in policy.deny_contains):
            violations.append(
                (
                    "name",
                    f"name '{name}' contains a banned term ({', '.join(policy.deny_contains)})",
                )
            )
        if name and any(regex.search(name) for regex in compiled.deny_regex):
            violations.append(("name", f"name '{name}' matches a denied pattern"))
        if name and compiled.name_regex and not compiled.name_regex.search(name):
            violations.append(
                ("name", f"name '{name}' does not match required pattern {policy.name_regex}")
            )

        location = str(args.get("location") or "")
        allowed = {r.lower() for r in policy.allowed_regions}
        if allowed and location and location.lower() not in allowed:
            violations.append(
                (
                    "location",
                    f"location '{location}' is not in allowed regions: "
                    f"{', '.join(policy.allowed_regions)}",
                )
            )

        if policy.require_tags:
            tags = args.get("tags")
            tags = tags if isinstance(tags, Mapping) else {}
            missing = [key for key in policy.require_tags if not str(tags.get(key) or "").strip()]
            if missing:
                violations.append(("tags", f"missing required tag(s): {', '.join(missing)}"))
        return violations

    @staticmethod
    def _suggestions(policy: ActionPolicy, variables: Mapping[str, Any]) -> list[Suggestion]:
        suggestions: list[Suggestion] = []
        if policy.suggest_name:
            suggestions.append(
                Suggestion(title="Suggested name", text=_render(policy.suggest_name, variables))
            )
        if policy.suggest_region:
            suggestions.append(
                Suggestion(
                    title="Suggested region", text=_render(policy.suggest_region, variables)
                )
            )
        if policy.suggest_tags:
            pairs = [f"{k}: {_render(v, variables)}" for k, v in policy.suggest_tags.items()]
            suggestions.append(Suggestion(title="Suggested tags", text=", ".join(pairs)))
        return suggestions

    def _profile(self, profile: str | None) -> AtoProfile | None:
        return self._profiles.get(profile or DEFAULT_PROFILE) or self._profiles.get(
            DEFAULT_PROFILE
        )

    def get_rule(self, domain: str, profile: str | None, code: str) -> RuleMapping:
        """Control/suggestion lookup for a finding. Absent mappings are not errors."""
        resolved = self._profile(profile)
        if resolved is None:
            return RuleMapping()
        code_key = code.upper()
        for alias in DOMAIN_ALIASES.get(domain, (domain,)):
            section = resolved.domains.get(alias)
            if section is None:
                continue
            rule = section.rules.get(code_key)
            if rule is not None:
                return RuleMapping(
                    control_ids=list(rule.controls),
                    suggest=rule.suggest,
                    severity=rule.severity.lower() if rule.severity else None,
                )
        return RuleMapping()

    def thresholds(self, profile: str | None) -> ScanThresholds:
        resolved = self._profile(profile)
        return resolved.thresholds if resolved is not None else ScanThresholds()

    def profile_names(self) -> list[str]:
        return sorted(self._profiles)
