"""Tool helpers."""

from __future__ import annotations

import json
from typing import Any

from governed_infra.domain.models import ExecutionOutcome
from governed_infra.mcp_runtime import ToolResult
from governed_infra.utils.jsonschema import validate_payload
from governed_infra.utils.serialization import json_default


class ToolInputError(ValueError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("Input validation failed: " + "; ".join(errors))
        self.errors = errors


def validate_or_raise(schema: dict[str, object], payload: dict[str, object]) -> None:
    errors = validate_payload(schema, payload)
    if errors:
        raise ToolInputError(errors)


def result_from_payload(payload: dict[str, Any], text: str | None = None) -> ToolResult:
    body = json.dumps(payload, ensure_ascii=True, indent=2, default=json_default)
    content = [{"type": "text", "text": text}] if text else []
    content.append({"type": "text", "text": body})
    return ToolResult(content=content, structured_content=payload)


def error_result(error_type: str, message: str, **extra: Any) -> ToolResult:
    error: dict[str, Any] = {"type": error_type, "message": message, "retryable": False}
    error.update(extra)
    return result_from_payload({"status": "error", "error": error})


def outcome_result(outcome: ExecutionOutcome) -> ToolResult:
    """Governed outcome as tool content: human summary first, then the payload."""
    return result_from_payload(outcome.to_payload(), text=outcome.text or None)
