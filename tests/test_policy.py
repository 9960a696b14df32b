import json

import pytest

from governed_infra.config import PolicySettings
from governed_infra.domain.models import Decision, PolicyDecision
from governed_infra.policy.client import PolicyDecisionClient, PolicyUnavailableError
from governed_infra.policy.engine import PolicyEngine
from governed_infra.policy.loader import (
    load_ato_profiles,
    load_policy,
    load_policy_or_empty,
    parse_ato_profiles,
)
from governed_infra.policy.models import ActionPolicy, PolicyConfig


@pytest.fixture
def policy_config():
    return PolicyConfig.model_validate(
        {
            "actions": {
                "create_web_app": {
                    "effect": "deny",
                    "deny_contains": ["prod"],
                    "suggest_name": "{{name}}-dev",
                    "controls": ["CM-6"],
                },
                "create_resource_group": {
                    "effect": "warn",
                    "allowed_regions": ["eastus", "usgovvirginia"],
                    "require_tags": ["owner"],
                    "suggest_region": "eastus",
                    "suggest_tags": {"owner": "{{upn}}"},
                },
                "create_key_vault": None,
            }
        }
    )


@pytest.fixture
def engine(policy_config):
    return PolicyEngine(policy_config, ato_profiles=load_ato_profiles(PolicySettings()))


def test_deny_with_quick_fix(engine):
    decision = engine.evaluate("create_web_app", {"resourceGroupName": "rg1", "name": "myprodapp"})

    assert decision.denied
    assert decision.reasons == ["name 'myprodapp' contains a banned term (prod)"]
    assert decision.quick_fix == {"name": "myprodapp-dev"}
    assert decision.controls == ["CM-6"]
    assert decision.policy_ids == ["create_web_app"]
    assert decision.suggestions[0].title == "Suggested name"


def test_allow_when_no_violation(engine):
    decision = engine.evaluate("create_web_app", {"resourceGroupName": "rg1", "name": "app1"})
    assert decision.decision is Decision.ALLOW
    assert decision.reasons == []


def test_warn_collects_all_violations(engine):
    decision = engine.evaluate(
        "create_resource_group",
        {"name": "rg1", "location": "westus"},
        {"upn": "dev@example.com"},
    )

    assert decision.warned
    assert len(decision.reasons) == 2
    assert "location 'westus' is not in allowed regions" in decision.reasons[0]
    assert decision.reasons[1] == "missing required tag(s): owner"
    assert decision.quick_fix == {"location": "eastus", "tags": {"owner": "dev@example.com"}}


def test_empty_action_body_is_governed_without_rules(engine):
    assert engine.evaluate("create_key_vault", {"name": "kv-prod"}).decision is Decision.ALLOW


def test_unknown_action_uses_defaults():
    config = PolicyConfig(defaults=ActionPolicy(effect="deny", deny_names=["forbidden"]))
    engine = PolicyEngine(config)

    assert engine.evaluate("anything", {"name": "FORBIDDEN"}).denied
    assert not engine.evaluate("anything", {"name": "fine"}).denied
    assert PolicyEngine(PolicyConfig()).evaluate("anything", {}).decision is Decision.ALLOW


@pytest.mark.parametrize("pattern", ["(a+)+", "(?<=x)y", r"(a)\1", "a" * 300])
def test_unsafe_regex_rejected(pattern):
    config = PolicyConfig(actions={"create_web_app": ActionPolicy(deny_regex=[pattern])})
    with pytest.raises(ValueError, match="Unsafe regex"):
        PolicyEngine(config)


def test_name_regex_required_pattern():
    config = PolicyConfig(actions={"create_web_app": ActionPolicy(name_regex=r"^app-[a-z0-9]+$")})
    engine = PolicyEngine(config)

    assert engine.evaluate("create_web_app", {"name": "app-one"}).decision is Decision.ALLOW
    decision = engine.evaluate("create_web_app", {"name": "One"})
    assert decision.denied
    assert "does not match required pattern" in decision.reasons[0]


def test_get_rule_from_builtin_profile(engine):
    rule = engine.get_rule("webapp", "default", "app_tls_min_below_1_2")
    assert rule.control_ids == ["SC-13", "SC-8"]
    assert rule.suggest

    # Unknown profiles fall back to the default profile
    assert engine.get_rule("webapp", "missing", "APP_MSI_DISABLED").control_ids == ["AC-3", "IA-2"]
    # Unmapped codes are not errors
    unmapped = engine.get_rule("webapp", "default", "NOT_A_CODE")
    assert unmapped.control_ids == []
    assert unmapped.suggest is None


def test_profile_aliases_thresholds_and_severity():
    profiles = parse_ato_profiles(
        {
            "strict": {
                "thresholds": {"lawMinRetentionDays": 90, "appPlanDisallowedSkus": ["B1"]},
                "web_app": {
                    "rules": {"app_msi_disabled": {"controls": "AC-3", "severity": "HIGH"}}
                },
            }
        }
    )
    engine = PolicyEngine(PolicyConfig(), ato_profiles=profiles)

    rule = engine.get_rule("webapp", "strict", "APP_MSI_DISABLED")
    assert rule.control_ids == ["AC-3"]
    assert rule.severity == "high"

    thresholds = engine.thresholds("strict")
    assert thresholds.law_min_retention_days == 90
    assert thresholds.app_plan_disallowed_skus == ["b1"]
    assert thresholds.webapp_min_tls_version == "1.2"
    assert engine.profile_names() == ["strict"]


def test_thresholds_without_profiles_are_builtin():
    thresholds = PolicyEngine(PolicyConfig()).thresholds(None)
    assert thresholds.app_plan_disallowed_skus == ["free", "shared", "f1", "d1"]
    assert thresholds.law_min_retention_days == 30


def test_load_policy(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "version: 1\nactions:\n  create_web_app:\n    effect: warn\n    deny_names: prod\n",
        encoding="utf-8",
    )

    config = load_policy(str(path))
    assert config.actions["create_web_app"].effect == "warn"
    assert config.actions["create_web_app"].deny_names == ["prod"]


def test_load_policy_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_policy(str(tmp_path / "missing.yaml"))
    assert load_policy_or_empty(str(tmp_path / "missing.yaml")).actions == {}


def test_load_policy_rejects_non_mapping(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Expected a mapping"):
        load_policy(str(path))


def test_load_ato_profiles_from_policy_dir(tmp_path):
    (tmp_path / "ato.json").write_text(
        json.dumps({"high": {"keyVault": {"rules": {"KV_MISSING": {"controls": ["CM-8"]}}}}}),
        encoding="utf-8",
    )

    profiles = load_ato_profiles(PolicySettings(policy_dir=str(tmp_path)))
    assert list(profiles) == ["high"]
    assert profiles["high"].domains["keyVault"].rules["KV_MISSING"].controls == ["CM-8"]


def test_load_ato_profiles_explicit_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_ato_profiles(PolicySettings(ato_profiles_path=str(tmp_path / "nope.json")))


def test_load_ato_profiles_builtin():
    profiles = load_ato_profiles(PolicySettings())
    assert "default" in profiles
    assert "APP_DIAG_NO_LAW" in profiles["default"].domains["webapp"].rules


@pytest.mark.asyncio
async def test_client_passes_decision_through():
    decision = PolicyDecision(Decision.ALLOW)
    client = PolicyDecisionClient(lambda action, args, context: decision)
    assert await client.decide("create_web_app", {}) is decision


@pytest.mark.asyncio
async def test_client_coerces_mapping_and_async_evaluators():
    async def evaluate(action, args, context):
        return {
            "decision": "WARN",
            "reasons": ["r1"],
            "suggestions": ["plain", {"title": "t", "text": "x"}],
            "controls": ["AC-2"],
        }

    decision = await PolicyDecisionClient(evaluate).decide("create_web_app", {"name": "a"})

    assert decision.warned
    assert decision.reasons == ["r1"]
    assert [s.to_dict() for s in decision.suggestions] == [
        {"text": "plain"},
        {"text": "x", "title": "t"},
    ]
    assert decision.controls == ["AC-2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "evaluate",
    [
        lambda action, args, context: (_ for _ in ()).throw(RuntimeError("engine down")),
        lambda action, args, context: None,
        lambda action, args, context: {"decision": "maybe"},
    ],
)
async def test_client_fails_closed(evaluate):
    with pytest.raises(PolicyUnavailableError):
        await PolicyDecisionClient(evaluate).decide("create_web_app", {})
