"""JSON serialization utilities."""

from __future__ import annotations

import base64
import dataclasses
import datetime
import decimal
import enum
import json


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        if obj == obj.to_integral_value():
            return int(obj)
        return float(obj)
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(obj).decode("utf-8")
    if isinstance(obj, enum.Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    # pydantic models and SDK objects exposing a dict view
    as_dict = getattr(obj, "model_dump", None) or getattr(obj, "as_dict", None)
    if callable(as_dict):
        return as_dict()
    return str(obj)


def canonical_json(value: object) -> str:
    """Stable JSON text: sorted keys, compact separators, ASCII only."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=json_default,
    )
