"""Secret redaction for audit records, logs and error payloads.

``redact`` walks dicts and lists recursively:

* values under secret-named keys are replaced with ``REDACTED`` whatever
  their shape;
* strings elsewhere that look like bearer credentials are replaced whole;
* every other string has embedded subscription/tenant GUIDs masked, keeping
  only the last four characters so identifiers stay correlatable.
"""

from __future__ import annotations

import re

REDACTED = "***REDACTED***"

_MAX_REDACT_DEPTH = 20

# Substring match against the lower-cased key with separators removed.
SENSITIVE_KEY_MARKERS: list[str] = [
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "accesskey",
    "privatekey",
    "connectionstring",
    "authorization",
    "credential",
    "signature",
]

# Whole-word match against the camelCase / snake_case split key.
SENSITIVE_KEY_WORDS = frozenset({"pwd", "sas", "sig", "conn", "cookie"})
# "key", "keys", "key1" ... unless the next word names metadata about a key
_KEY_WORD = re.compile(r"^keys?\d*$")
_KEY_METADATA_WORDS = frozenset(
    {"vault", "name", "names", "id", "type", "source", "uri", "url", "version", "expiration", "size"}
)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")

_GUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_GUID_FULL = re.compile(rf"^{_GUID.pattern}$")
_SCOPED_GUID = re.compile(rf"(/(?:subscriptions|tenants)/)({_GUID.pattern})", re.IGNORECASE)
_TOKEN_CHARS = re.compile(r"^[A-Za-z0-9_\-.~+=]+$")
_HAS_LETTER = re.compile(r"[A-Za-z]")
_MIN_TOKEN_LENGTH = 24


def _key_words(key: str) -> list[str]:
    spaced = _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()
    return [word for word in _WORD_SPLIT.split(spaced) if word]


def is_sensitive_key(key: object) -> bool:
    if not isinstance(key, str) or not key:
        return False
    compact = _WORD_SPLIT.sub("", key.lower())
    if any(marker in compact for marker in SENSITIVE_KEY_MARKERS):
        return True
    words = _key_words(key)
    if any(word in SENSITIVE_KEY_WORDS for word in words):
        return True
    for index, word in enumerate(words):
        if _KEY_WORD.match(word):
            following = words[index + 1] if index + 1 < len(words) else None
            if following not in _KEY_METADATA_WORDS:
                return True
    return False


def looks_like_bearer_token(value: str) -> bool:
    """Long run of URL-safe characters containing at least one letter."""
    if len(value) < _MIN_TOKEN_LENGTH or _GUID_FULL.match(value):
        return False
    return bool(_TOKEN_CHARS.match(value)) and bool(_HAS_LETTER.search(value))


def _mask_guid(guid: str) -> str:
    return f"***-****-****-****-********{guid[-4:]}"


def mask_guids(text: str) -> str:
    """Blank subscription/tenant-like GUIDs inside ``text``."""
    masked = _SCOPED_GUID.sub(lambda m: m.group(1) + _mask_guid(m.group(2)), text)
    return _GUID.sub(lambda m: _mask_guid(m.group(0)), masked)


def redact(
    value: object,
    *,
    mask: str = REDACTED,
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Return a redacted deep copy of ``value``.

    When ``max_depth`` is exceeded the entire sub-tree is replaced with
    *mask*.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[object, object] = {}
        for key, val in value.items():
            if is_sensitive_key(key):
                redacted[key] = mask
            else:
                redacted[key] = redact(val, mask=mask, depth=depth + 1, max_depth=max_depth)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact(item, mask=mask, depth=depth + 1, max_depth=max_depth) for item in value]
    if isinstance(value, str):
        return mask if looks_like_bearer_token(value) else mask_guids(value)
    return value
