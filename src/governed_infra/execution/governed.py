"""Governed action lifecycle: policy preflight, hold, execute, verify, audit.

Every call to :meth:`GovernedActionExecutor.execute` ends in exactly one audit
record, appended before the outcome is returned to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from governed_infra.audit.recorder import AuditRecorder
from governed_infra.domain.models import (
    ActionRequest,
    ActionState,
    Decision,
    ExecutionOutcome,
    Plan,
    PolicyDecision,
)
from governed_infra.execution.errors import normalize_provider_error
from governed_infra.execution.idempotency import idempotency_key
from governed_infra.policy.client import PolicyDecisionClient, PolicyUnavailableError
from governed_infra.utils.serialization import json_default

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]
Verifier = Callable[[Any], "bool | Awaitable[bool]"]
SuccessCheck = Callable[[Any], bool]
ResourceReader = Callable[[str], Awaitable[Any]]
PlanLine = Callable[[dict[str, Any]], str]


def is_succeeded(result: Any) -> bool:
    """False only when the provider reports a provisioning state other than Succeeded."""
    if not isinstance(result, dict):
        return True
    properties = result.get("properties")
    state = properties.get("provisioningState") if isinstance(properties, dict) else None
    if state is None:
        state = result.get("provisioningState")
    if isinstance(state, str):
        return state.lower() == "succeeded"
    return True


def resource_id_of(result: Any) -> str | None:
    if isinstance(result, dict):
        value = result.get("id")
        if isinstance(value, str) and value:
            return value
    return None


def render_followup(action: str, arguments: dict[str, Any]) -> str:
    """Copy-pasteable resubmission of the same call with ``confirm=true``."""
    payload = {**arguments, "confirm": True}
    return f"@{action} " + json.dumps(payload, sort_keys=True, default=json_default)


@dataclass
class GovernedAction:
    """Registry entry binding a stable action name to its handler and checks."""

    name: str
    description: str
    input_schema: dict[str, object]
    handler: Handler
    verify: Verifier | None = None
    success_check: SuccessCheck | None = None
    plan_line: PlanLine | None = None


class GovernedActionExecutor:
    def __init__(
        self,
        policy: PolicyDecisionClient,
        recorder: AuditRecorder,
        *,
        resource_reader: ResourceReader | None = None,
        auto_verify: bool = False,
        handler_timeout: float | None = None,
    ) -> None:
        self._policy = policy
        self._recorder = recorder
        self._resource_reader = resource_reader
        self._auto_verify = auto_verify
        self._handler_timeout = handler_timeout

    async def run(self, action: GovernedAction, request: ActionRequest) -> ExecutionOutcome:
        return await self.execute(
            request,
            action.handler,
            verify=action.verify,
            success_check=action.success_check,
            plan_line=action.plan_line,
        )

    async def execute(
        self,
        request: ActionRequest,
        handler: Handler,
        verify: Verifier | None = None,
        success_check: SuccessCheck | None = None,
        plan_line: PlanLine | None = None,
    ) -> ExecutionOutcome:
        started = time.monotonic()
        key = idempotency_key(request.action, request.arguments)
        plan = Plan(action=request.action, payload=dict(request.arguments), mode=request.mode)
        summary = (
            plan_line(dict(request.arguments))
            if plan_line
            else f"{request.action} {json.dumps(request.arguments, sort_keys=True, default=json_default)}"
        )

        trail = [ActionState.DRAFTED]
        outcome = await self._run_lifecycle(
            request, plan, key, summary, handler, verify, success_check, trail
        )
        outcome.history = [*trail, outcome.state]

        self._finish(request, outcome, int((time.monotonic() - started) * 1000))
        return outcome

    def fail(self, request: ActionRequest, exc: BaseException) -> ExecutionOutcome:
        """Audit a request whose inputs could not be prepared, as a Failed outcome."""
        error = normalize_provider_error(exc)["error"]
        outcome = ExecutionOutcome(
            status="error",
            state=ActionState.FAILED,
            plan=Plan(action=request.action, payload=dict(request.arguments), mode=request.mode),
            idempotency_key=idempotency_key(request.action, request.arguments),
            error=error,
            text=f"{request.action}: could not prepare the action: {error['message']}",
            history=[ActionState.DRAFTED, ActionState.FAILED],
        )
        self._finish(request, outcome, 0)
        return outcome

    def _finish(self, request: ActionRequest, outcome: ExecutionOutcome, duration_ms: int) -> None:
        try:
            self._recorder.record(request, outcome, duration_ms)
        except Exception:  # the audit path never breaks the action
            logger.exception(
                "Audit recording failed for %s key=%s", request.action, outcome.idempotency_key
            )
        logger.info(
            "GOVERNED action=%s status=%s state=%s key=%s duration_ms=%d",
            request.action,
            outcome.status,
            outcome.state.value,
            outcome.idempotency_key,
            duration_ms,
        )

    async def _run_lifecycle(
        self,
        request: ActionRequest,
        plan: Plan,
        key: str,
        summary: str,
        handler: Handler,
        verify: Verifier | None,
        success_check: SuccessCheck | None,
        trail: list[ActionState],
    ) -> ExecutionOutcome:
        try:
            decision = await self._policy.decide(request.action, request.arguments, request.context)
        except PolicyUnavailableError as exc:
            plan.governance = PolicyDecision(
                Decision.DENY, reasons=[f"Policy engine unavailable: {exc}"]
            )
            return ExecutionOutcome(
                status="blocked",
                state=ActionState.BLOCKED,
                plan=plan,
                idempotency_key=key,
                error={"type": "PolicyUnavailable", "message": str(exc), "retryable": True},
                text=_hold_text(summary, plan.governance, None),
            )
        plan.governance = decision

        if decision.denied:
            return ExecutionOutcome(
                status="blocked",
                state=ActionState.BLOCKED,
                plan=plan,
                idempotency_key=key,
                text=_hold_text(summary, decision, None, request),
            )

        if request.dry_run or not request.confirm:
            followup = render_followup(request.action, request.arguments)
            return ExecutionOutcome(
                status="pending",
                state=ActionState.PENDING,
                plan=plan,
                idempotency_key=key,
                followup=followup,
                text=_hold_text(summary, decision, followup, request),
            )

        trail.append(ActionState.EXECUTING)
        try:
            call = handler(dict(request.arguments))
            if self._handler_timeout is not None:
                result = await asyncio.wait_for(call, timeout=self._handler_timeout)
            else:
                result = await call
        except Exception as exc:
            error = normalize_provider_error(exc)["error"]
            logger.warning(
                "Handler failed for %s key=%s type=%s code=%s",
                request.action,
                key,
                error["type"],
                error["code"],
            )
            return ExecutionOutcome(
                status="error",
                state=ActionState.FAILED,
                plan=plan,
                idempotency_key=key,
                error=error,
                text=f"{summary}: call failed: {error['message']}",
            )

        check = success_check or is_succeeded
        if not check(result):
            return ExecutionOutcome(
                status="error",
                state=ActionState.FAILED,
                plan=plan,
                idempotency_key=key,
                result=result,
                error={
                    "type": "ProviderError",
                    "code": "NotSucceeded",
                    "message": "Provider response did not indicate success",
                    "retryable": False,
                },
                text=f"{summary}: provider response did not indicate success",
            )

        trail.extend((ActionState.SUCCEEDED, ActionState.VERIFYING))
        verified, detail = await self._verify(result, verify)
        if not verified:
            return ExecutionOutcome(
                status="error",
                state=ActionState.VERIFICATION_FAILED,
                plan=plan,
                idempotency_key=key,
                result=result,
                error={
                    "type": "VerificationFailed",
                    "message": detail or "Post-condition check did not pass",
                    "retryable": False,
                },
                text=f"{summary}: executed, but verification did not pass",
            )

        lines = [f"{summary}: done."]
        if decision.warned:
            lines.append("Governance: WARN")
            lines.extend(f"- {reason}" for reason in decision.reasons)
        return ExecutionOutcome(
            status="done",
            state=ActionState.VERIFIED,
            plan=plan,
            idempotency_key=key,
            result=result,
            text="\n".join(lines),
        )

    async def _verify(self, result: Any, verify: Verifier | None) -> tuple[bool, str | None]:
        if verify is not None:
            try:
                passed = verify(result)
                if inspect.isawaitable(passed):
                    passed = await passed
            except Exception as exc:
                error = normalize_provider_error(exc)["error"]
                return False, f"Verification call failed: {error['message']}"
            return bool(passed), None

        resource_id = resource_id_of(result)
        if not self._auto_verify or self._resource_reader is None or resource_id is None:
            return True, None
        try:
            fetched = await self._resource_reader(resource_id)
        except Exception as exc:
            error = normalize_provider_error(exc)["error"]
            return False, f"Could not re-read {resource_id}: {error['message']}"
        return bool(fetched), None if fetched else f"{resource_id} was not found after create"


def _hold_text(
    summary: str,
    decision: PolicyDecision,
    followup: str | None,
    request: ActionRequest | None = None,
) -> str:
    lines = [f"Plan: {summary}", f"Governance: {decision.decision.value.upper()}"]
    if decision.reasons:
        lines.append("Reasons: " + " | ".join(decision.reasons))
    if decision.suggestions:
        lines.append("Suggestions:")
        for suggestion in decision.suggestions:
            prefix = f"{suggestion.title}: " if suggestion.title else ""
            lines.append(f"- {prefix}{suggestion.text}")
    if decision.quick_fix and request is not None:
        fixed = {**request.arguments, **decision.quick_fix}
        lines.append("Quick fix:")
        lines.append(render_followup(request.action, fixed))
    if followup:
        lines.append("")
        lines.append("To proceed, reply with:")
        lines.append(followup)
    return "\n".join(lines)
