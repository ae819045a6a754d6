"""Per-request helpers shared by the pipeline stages."""

import uuid
from typing import Any, Optional

from fastapi import Request

from app.core.permissions import Identity

REQUEST_ID_HEADER = "X-Request-ID"


def service(request: Request, name: str) -> Any:
    """Component wired onto app.state by create_app()."""
    return getattr(request.app.state, name)


def ensure_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    # Only accept short printable ids from clients
    if supplied and len(supplied) <= 128 and supplied.isprintable():
        request_id = supplied
    else:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def client_ip(request: Request, trust_forwarded: bool = False) -> str:
    if trust_forwarded:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def current_identity(request: Request) -> Optional[Identity]:
    return getattr(request.state, "identity", None)
