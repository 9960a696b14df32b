"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from governed_infra.audit.recorder import AuditRecorder
from governed_infra.audit.sink import AuditSink, build_audit_sink
from governed_infra.config import Settings, load_settings
from governed_infra.execution.governed import GovernedActionExecutor
from governed_infra.policy.client import PolicyDecisionClient
from governed_infra.policy.engine import PolicyEngine
from governed_infra.policy.loader import load_ato_profiles, load_policy_or_empty
from governed_infra.providers.arm import ArmClient, build_arm_clients
from governed_infra.providers.base import ProviderClients
from governed_infra.remediation.applier import StepApplier
from governed_infra.scan.scanner import BaselineScanner


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once per process; tools reach collaborators only through it.
    """

    settings: Settings
    policy_engine: PolicyEngine
    policy_client: PolicyDecisionClient
    audit_sink: AuditSink
    recorder: AuditRecorder
    clients: ProviderClients
    executor: GovernedActionExecutor
    scanner: BaselineScanner
    applier: StepApplier


def build_app_context(settings: Settings, clients: ProviderClients) -> AppContext:
    """Wire the core services around an explicit set of provider clients."""
    policy_engine = PolicyEngine(
        load_policy_or_empty(settings.policy.path),
        ato_profiles=load_ato_profiles(settings.policy),
    )
    policy_client = PolicyDecisionClient(policy_engine)
    audit_sink = build_audit_sink(settings.audit)
    recorder = AuditRecorder(audit_sink)
    resource_reader = clients.resources.get_by_id if clients.resources is not None else None
    executor = GovernedActionExecutor(policy_client, recorder, resource_reader=resource_reader)
    scanner = BaselineScanner(
        clients,
        policy_engine,
        default_profile=settings.policy.default_profile,
        limit_per_type=settings.scan.limit_per_type,
    )
    return AppContext(
        settings=settings,
        policy_engine=policy_engine,
        policy_client=policy_client,
        audit_sink=audit_sink,
        recorder=recorder,
        clients=clients,
        executor=executor,
        scanner=scanner,
        applier=StepApplier(clients),
    )


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get or create the process-wide application context."""
    settings = load_settings()
    provider = settings.provider
    arm = ArmClient(
        provider.arm_endpoint,
        provider.subscription_id,
        lambda: provider.access_token,
        timeout=provider.timeout_seconds,
    )
    return build_app_context(settings, build_arm_clients(arm))
