"""Correlation keys for audit trail stitching."""

from __future__ import annotations

from typing import Any, Mapping

from governed_infra.utils.hashing import sha256_text
from governed_infra.utils.serialization import canonical_json

IDEMPOTENCY_KEY_LENGTH = 32


def idempotency_key(action: str, args: Mapping[str, Any]) -> str:
    """Stable ``<action>:<hash>`` over the action name and canonicalized arguments.

    Used only to correlate log lines; it is not a lock and not a dedup token.
    """
    digest = sha256_text(action + canonical_json(dict(args)))
    return f"{action}:{digest[:IDEMPOTENCY_KEY_LENGTH]}"
