"""Policy configuration models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, wrap scalars, pass through lists."""
    if v is None:
        return []
    if isinstance(v, (str, bytes)):
        return [v]
    return v


class ActionPolicy(BaseModel):
    """Rules for one governed action. A violated rule yields ``effect``."""

    effect: Literal["deny", "warn"] = Field(default="deny")
    deny_names: list[str] = Field(default_factory=list)
    deny_contains: list[str] = Field(default_factory=list)
    deny_regex: list[str] = Field(default_factory=list)
    name_regex: str | None = Field(default=None)
    allowed_regions: list[str] = Field(default_factory=list)
    require_tags: list[str] = Field(default_factory=list)
    suggest_name: str | None = Field(default=None)
    suggest_region: str | None = Field(default=None)
    suggest_tags: dict[str, str] = Field(default_factory=dict)
    controls: list[str] = Field(default_factory=list)
    policy_ids: list[str] = Field(default_factory=list)

    @field_validator(
        "deny_names",
        "deny_contains",
        "deny_regex",
        "allowed_regions",
        "require_tags",
        "controls",
        "policy_ids",
        mode="before",
    )
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("suggest_tags", mode="before")
    @classmethod
    def _validate_suggest_tags(cls, v: Any) -> dict:
        if v is None:
            return {}
        return {str(k): str(val) for k, val in v.items()} if isinstance(v, dict) else v


class PolicyConfig(BaseModel):
    version: int = Field(default=1)
    defaults: ActionPolicy | None = Field(default=None)
    actions: dict[str, ActionPolicy] = Field(default_factory=dict)

    @field_validator("actions", mode="before")
    @classmethod
    def _validate_actions(cls, v: Any) -> dict:
        if v is None:
            return {}
        # An action key with an empty body means "governed, no rules"
        if isinstance(v, dict):
            return {k: (val if val is not None else {}) for k, val in v.items()}
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> "PolicyConfig":
        return cls.model_validate(data)


class AtoRule(BaseModel):
    controls: list[str] = Field(default_factory=list)
    suggest: str | None = Field(default=None)
    severity: str | None = Field(default=None)

    @field_validator("controls", mode="before")
    @classmethod
    def _validate_controls(cls, v: Any) -> list:
        return _ensure_list(v)


class AtoDomain(BaseModel):
    rules: dict[str, AtoRule] = Field(default_factory=dict)

    @field_validator("rules", mode="before")
    @classmethod
    def _validate_rules(cls, v: Any) -> dict:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(code).upper(): (rule or {}) for code, rule in v.items()}
        return v


class ScanThresholds(BaseModel):
    """Baseline limits a profile may override; defaults are the built-in rules."""

    model_config = ConfigDict(populate_by_name=True)

    app_plan_disallowed_skus: list[str] = Field(
        default_factory=lambda: ["free", "shared", "f1", "d1"], alias="appPlanDisallowedSkus"
    )
    law_min_retention_days: int = Field(default=30, ge=0, alias="lawMinRetentionDays")
    webapp_min_tls_version: str = Field(default="1.2", alias="minTlsVersion")
    storage_min_tls_version: str = Field(default="TLS1_2", alias="storageMinTlsVersion")
    required_tags: list[str] = Field(default_factory=list, alias="requiredTags")

    @field_validator("app_plan_disallowed_skus", mode="before")
    @classmethod
    def _validate_skus(cls, v: Any) -> list:
        return [str(item).lower() for item in _ensure_list(v)]

    @field_validator("required_tags", mode="before")
    @classmethod
    def _validate_required_tags(cls, v: Any) -> list:
        return _ensure_list(v)


class AtoProfile(BaseModel):
    """A named bundle of per-domain rule mappings plus scan thresholds.

    On disk every top-level key other than ``thresholds`` is a domain::

        default:
          thresholds: {lawMinRetentionDays: 90}
          webapp:
            rules:
              APP_TLS_MIN_BELOW_1_2: {controls: [SC-8], suggest: "..."}
    """

    thresholds: ScanThresholds = Field(default_factory=ScanThresholds)
    domains: dict[str, AtoDomain] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_domains(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "domains" in data:
            return data
        thresholds = data.get("thresholds") or {}
        domains = {k: (v or {}) for k, v in data.items() if k != "thresholds"}
        return {"thresholds": thresholds, "domains": domains}
