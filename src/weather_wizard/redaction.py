"""Helpers for redacting API keys from logs and journal payloads."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

_SENSITIVE_KEY_RE = re.compile(
    r"(authorization|token|secret|password|api[_-]?key|appid)",
    re.IGNORECASE,
)
_QUERY_SECRET_RE = re.compile(
    r"""(?ix)
    ([?&])
    (key|apikey|api_key|appid|token)
    =
    ([^&\s#"']+)
    """
)
# Dark Sky embeds the secret key as the first path segment after /forecast/.
_DARKSKY_PATH_KEY_RE = re.compile(
    r"(api\.darksky\.net/forecast/)([^/\s?]+)",
    re.IGNORECASE,
)
_KEY_VALUE_SECRET_RE = re.compile(
    r"""(?ix)
    \b
    (
      api[_-]?key|
      appid|
      token|
      secret|
      password
    )
    \s*[:=]\s*
    ([^\s,;&]+)
    """
)


def sanitize_text(text: str) -> str:
    """Redact API keys embedded in URLs or plain text."""
    sanitized = _QUERY_SECRET_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}={REDACTED}", text)
    sanitized = _DARKSKY_PATH_KEY_RE.sub(lambda m: f"{m.group(1)}{REDACTED}", sanitized)
    sanitized = _KEY_VALUE_SECRET_RE.sub(
        lambda m: m.group(0) if m.group(2) == REDACTED else f"{m.group(1)}={REDACTED}",
        sanitized,
    )
    return sanitized


def sanitize_for_logging(value: Any) -> Any:
    """Recursively redact sensitive values in nested structures."""
    if isinstance(value, dict):
        sanitized: dict[Any, Any] = {}
        for key, child in value.items():
            if _SENSITIVE_KEY_RE.search(str(key)):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_for_logging(child)
        return sanitized
    if isinstance(value, list):
        return [sanitize_for_logging(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_for_logging(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
