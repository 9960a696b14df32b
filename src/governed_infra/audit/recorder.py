"""Builds redacted audit records and hands them to a sink."""

from __future__ import annotations

from typing import Any

from governed_infra.audit.models import AuditRecord
from governed_infra.audit.sink import AuditSink
from governed_infra.domain.models import ActionRequest, ExecutionOutcome
from governed_infra.utils.masking import redact
from governed_infra.utils.time import utc_now_iso


def _actor(context: dict[str, Any]) -> str | None:
    for key in ("upn", "alias", "actor"):
        value = context.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def build_audit_record(
    request: ActionRequest,
    outcome: ExecutionOutcome,
    duration_ms: int | None = None,
) -> AuditRecord:
    governance = outcome.governance
    response: dict[str, Any] = {"status": outcome.status, "state": outcome.state.value}
    if outcome.result is not None:
        response["result"] = outcome.result
    if outcome.error is not None:
        response["error"] = outcome.error
    if governance is not None and governance.reasons:
        response["reasons"] = list(governance.reasons)

    return AuditRecord(
        timestamp=utc_now_iso(),
        action=request.action,
        idempotency_key=outcome.idempotency_key,
        status=outcome.status,
        state=outcome.state.value,
        decision=governance.decision.value if governance is not None else None,
        request=redact(
            {
                "arguments": request.arguments,
                "mode": request.mode,
                "context": request.context,
            }
        ),
        response=redact(response),
        duration_ms=duration_ms,
        actor=_actor(request.context),
    )


class AuditRecorder:
    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    @property
    def sink(self) -> AuditSink:
        return self._sink

    def record(
        self,
        request: ActionRequest,
        outcome: ExecutionOutcome,
        duration_ms: int | None = None,
    ) -> AuditRecord:
        record = build_audit_record(request, outcome, duration_ms)
        self._sink.append(record)
        return record
