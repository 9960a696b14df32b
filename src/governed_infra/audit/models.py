"""Audit data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class AuditRecord:
    timestamp: str
    action: str
    idempotency_key: str
    status: str
    state: str
    decision: str | None
    request: Any
    response: Any
    duration_ms: int | None = None
    actor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["idempotencyKey"] = data.pop("idempotency_key")
        data["durationMs"] = data.pop("duration_ms")
        return data
