"""Provider error types and normalization into structured payloads."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping

import httpx

from governed_infra.utils.masking import redact

_THROTTLE_CODE = re.compile(r"thrott", re.IGNORECASE)
_CREDENTIAL_ERROR_NAMES = frozenset(
    {
        "CredentialError",
        "CredentialUnavailableError",
        "AuthenticationError",
        "ClientAuthenticationError",
    }
)
_REQUEST_ID_HEADERS = ("x-ms-request-id", "x-ms-correlation-request-id", "x-request-id")
_MAX_MESSAGE_LENGTH = 2000


class ProviderError(Exception):
    """Error raised by a resource provider client."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        target: str | None = None,
        details: Any = None,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.target = target
        self.details = details
        self.headers = dict(headers or {})
        self.body = body


class ProviderNotFoundError(ProviderError):
    def __init__(self, message: str = "Resource not found", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 404)
        kwargs.setdefault("code", "ResourceNotFound")
        super().__init__(message, **kwargs)


class CredentialError(ProviderError):
    """No usable credential; needs operator action rather than a retry."""


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "statusCode", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _headers(exc: BaseException) -> dict[str, str]:
    raw = getattr(exc, "headers", None)
    if raw is None:
        raw = getattr(getattr(exc, "response", None), "headers", None)
    if raw is None:
        return {}
    try:
        return {str(k).lower(): str(v) for k, v in dict(raw).items()}
    except (TypeError, ValueError):
        return {}


def _error_body(exc: BaseException) -> dict[str, Any]:
    """Provider error document, unwrapped from ARM's ``{"error": {...}}`` shape."""
    body = getattr(exc, "body", None)
    if body is None and isinstance(exc, httpx.HTTPStatusError):
        try:
            body = exc.response.json()
        except ValueError:
            body = None
    if isinstance(body, Mapping):
        inner = body.get("error")
        return dict(inner) if isinstance(inner, Mapping) else dict(body)
    return {}


def _retry_after_ms(headers: Mapping[str, str]) -> int | None:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException))


def _error_type(exc: BaseException, status_code: int | None) -> str:
    names = {cls.__name__ for cls in type(exc).__mro__}
    if names & _CREDENTIAL_ERROR_NAMES:
        return "CredentialError"
    if status_code is not None:
        return "HttpError"
    return "ProviderError"


def normalize_provider_error(exc: BaseException) -> dict[str, Any]:
    """Convert any provider-side exception into ``{"status": "error", "error": {...}}``.

    ``throttled``/``retryable`` are advisory; nothing here retries.
    """
    status_code = _status_code(exc)
    headers = _headers(exc)
    body = _error_body(exc)
    timeout = _is_timeout(exc)

    code = getattr(exc, "code", None) or body.get("code")
    if code is None and timeout:
        code = "Timeout"
    message = getattr(exc, "message", None) or body.get("message") or str(exc)
    if not message:
        message = type(exc).__name__
    request_id = next((headers[h] for h in _REQUEST_ID_HEADERS if headers.get(h)), None)

    throttled = status_code == 429 or bool(code and _THROTTLE_CODE.search(str(code)))
    retryable = (
        throttled
        or timeout
        or status_code == 408
        or (status_code is not None and status_code >= 500)
    )

    error: dict[str, Any] = {
        "type": _error_type(exc, status_code),
        "code": str(code) if code is not None else None,
        "message": str(redact(str(message)[:_MAX_MESSAGE_LENGTH])),
        "statusCode": status_code,
        "requestId": request_id,
        "target": getattr(exc, "target", None) or body.get("target"),
        "details": redact(getattr(exc, "details", None) or body.get("details")),
        "throttled": throttled,
        "retryable": retryable,
        "retryAfterMs": _retry_after_ms(headers),
        "raw": redact(body) if body else None,
    }
    return {"status": "error", "error": error}
