"""Scrub secrets out of headers and bodies before they are logged or audited."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-auth-token",
    "x-forwarded-for",
    "x-real-ip",
})

# Compared after lower-casing and dropping "_" / "-"
SENSITIVE_FIELDS = frozenset({
    "password",
    "oldpassword",
    "newpassword",
    "currentpassword",
    "token",
    "accesstoken",
    "refreshtoken",
    "secret",
    "apikey",
})

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _normalize(name: str) -> str:
    return name.lower().replace("_", "").replace("-", "")


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if _normalize(str(key)) in SENSITIVE_FIELDS else redact_value(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    return value


def redact_body(body: bytes, limit: int) -> Optional[str]:
    """
    Render a request body for logs.

    JSON bodies have sensitive fields masked; anything else is dropped,
    since it cannot be scrubbed field by field. Bodies over `limit` bytes
    are not captured at all.
    """
    if not body or len(body) > limit:
        return None
    try:
        parsed = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return f"<{len(body)} bytes not captured>"
    return json.dumps(redact_value(parsed), ensure_ascii=False)
