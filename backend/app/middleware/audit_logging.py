"""Fire-and-forget audit of who called what and how it ended."""

import logging
import time
from typing import Callable, Optional

from fastapi import Request, Response

from app.middleware.context import client_ip, current_identity, ensure_request_id, service
from app.services.audit_service import AuditEntry

logger = logging.getLogger(__name__)


def _record(request: Request, status_code: int, started: float, response: Optional[Response], error: Optional[BaseException]) -> None:
    """Hand an entry to the recorder; nothing here may affect the response."""
    try:
        app_settings = service(request, "settings")
        identity = current_identity(request)
        body = getattr(request.state, "logged_body", None)
        if body is not None and len(body) > app_settings.AUDIT_BODY_MAX_BYTES:
            body = body[: app_settings.AUDIT_BODY_MAX_BYTES]
        size = response.headers.get("content-length") if response is not None else None
        entry = AuditEntry(
            request_id=ensure_request_id(request),
            user_id=identity.user_id if identity else None,
            user_role=identity.role if identity else None,
            method=request.method,
            path=request.url.path,
            query_string=request.url.query[:1024] or None,
            request_body=body,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
            response_size=int(size) if size and size.isdigit() else None,
            user_agent=(request.headers.get("user-agent") or "")[:512] or None,
            ip_address=client_ip(request, app_settings.TRUST_FORWARDED_FOR),
            exception=f"{type(error).__name__}: {error}"[:2000] if error is not None else None,
            created_at=service(request, "clock").now(),
        )
        service(request, "audit_recorder").record(entry)
    except Exception:
        logger.exception("Could not queue audit entry for %s %s", request.method, request.url.path)


async def audit_logging_middleware(request: Request, call_next: Callable) -> Response:
    if not service(request, "settings").AUDIT_ENABLED:
        return await call_next(request)

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        status_code = getattr(exc, "status_code", 500)
        _record(request, status_code if isinstance(status_code, int) else 500, started, None, exc)
        raise
    _record(request, response.status_code, started, response, None)
    return response
