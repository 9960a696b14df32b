"""Core dataclasses for governed actions, findings and remediation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

CONTROL_KEYS = frozenset({"confirm", "dryRun", "context"})


class Decision(str, Enum):
    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"


class ActionState(str, Enum):
    DRAFTED = "Drafted"
    BLOCKED = "Blocked"
    PENDING = "Pending"
    EXECUTING = "Executing"
    SUCCEEDED = "Succeeded"
    VERIFYING = "Verifying"
    VERIFIED = "Verified"
    VERIFICATION_FAILED = "VerificationFailed"
    FAILED = "Failed"


@dataclass(frozen=True)
class ActionRequest:
    """One proposed mutating call. Never executed unless confirmed."""

    action: str
    arguments: dict[str, Any]
    confirm: bool = False
    dry_run: bool = False
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def mode(self) -> str:
        if self.dry_run:
            return "dryRun"
        return "execute" if self.confirm else "review"

    @classmethod
    def from_tool_arguments(cls, action: str, raw: dict[str, Any]) -> "ActionRequest":
        """Split tool-call arguments into the action payload and control flags."""
        context = raw.get("context")
        return cls(
            action=action,
            arguments={k: v for k, v in raw.items() if k not in CONTROL_KEYS},
            confirm=bool(raw.get("confirm", False)),
            dry_run=bool(raw.get("dryRun", False)),
            context=dict(context) if isinstance(context, dict) else {},
        )


@dataclass
class Suggestion:
    text: str
    title: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"text": self.text}
        if self.title:
            data["title"] = self.title
        return data


@dataclass
class PolicyDecision:
    decision: Decision
    reasons: list[str] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    controls: list[str] = field(default_factory=list)
    policy_ids: list[str] = field(default_factory=list)
    # Argument overrides that would satisfy the policy, when derivable
    quick_fix: dict[str, Any] = field(default_factory=dict)

    @property
    def denied(self) -> bool:
        return self.decision is Decision.DENY

    @property
    def warned(self) -> bool:
        return self.decision is Decision.WARN

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "decision": self.decision.value,
            "reasons": list(self.reasons),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "controls": list(self.controls),
            "policyIds": list(self.policy_ids),
        }
        if self.quick_fix:
            data["quickFix"] = dict(self.quick_fix)
        return data


@dataclass
class Plan:
    action: str
    payload: dict[str, Any]
    mode: str
    governance: PolicyDecision | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "action": self.action,
            "payload": self.payload,
            "mode": self.mode,
        }
        if self.governance is not None:
            data["governance"] = self.governance.to_dict()
        return data


@dataclass
class ExecutionOutcome:
    """Caller-visible result of one governed action."""

    status: str
    state: ActionState
    plan: Plan
    idempotency_key: str
    result: Any = None
    error: dict[str, Any] | None = None
    followup: str | None = None
    text: str = ""
    # every state passed through, Drafted first and ``state`` last
    history: list[ActionState] = field(default_factory=list)

    @property
    def governance(self) -> PolicyDecision | None:
        return self.plan.governance

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "state": self.state.value,
            "plan": self.plan.to_dict(),
            "idempotencyKey": self.idempotency_key,
        }
        if self.governance is not None:
            payload["governance"] = self.governance.to_dict()
        if self.result is not None:
            payload["result"] = self.result
        if self.error is not None:
            payload["error"] = self.error
        if self.followup:
            payload["followup"] = self.followup
        return payload


SEVERITY_ORDER: dict[str, int] = {
    "unknown": 0,
    "info": 1,
    "low": 2,
    "medium": 3,
    "high": 4,
}


def normalize_severity(value: object) -> str:
    """Lower-cased known severity; anything else is ``unknown``, never dropped."""
    if not isinstance(value, str):
        return "unknown"
    lowered = value.strip().lower()
    return lowered if lowered in SEVERITY_ORDER else "unknown"


@dataclass
class Finding:
    code: str
    severity: str
    meta: dict[str, Any] = field(default_factory=dict)
    control_ids: list[str] = field(default_factory=list)
    suggest: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        return cls(
            code=str(data.get("code", "")),
            severity=normalize_severity(data.get("severity")),
            meta=dict(data.get("meta") or {}),
            control_ids=list(data.get("controlIds") or []),
            suggest=data.get("suggest"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code,
            "severity": self.severity,
            "meta": self.meta,
            "controlIds": self.control_ids,
        }
        if self.suggest:
            data["suggest"] = self.suggest
        return data


@dataclass
class RemediationStep:
    action: str
    args: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "args": dict(self.args)}


@dataclass
class StepResult:
    step: RemediationStep
    ok: bool
    result: Any = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"ok": self.ok, "action": self.step.action}
        if self.ok:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data
