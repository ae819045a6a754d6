"""Request/response logging with secret redaction."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

from app.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from app.core.redaction import MUTATING_METHODS, redact_body, redact_headers
from app.middleware.context import ensure_request_id, service

logger = logging.getLogger(__name__)


async def capture_body(request: Request, limit: int):
    """Redacted body of a mutating request, or None when absent or over the limit."""
    if request.method not in MUTATING_METHODS:
        return None
    try:
        declared = int(request.headers.get("content-length", "0"))
    except ValueError:
        return None
    if declared <= 0 or declared > limit:
        return None
    return redact_body(await request.body(), limit)


def route_label(request: Request) -> str:
    """Route template rather than the raw path, so metric labels stay bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


async def request_logging_middleware(request: Request, call_next: Callable) -> Response:
    app_settings = service(request, "settings")
    request_id = ensure_request_id(request)

    body = await capture_body(request, app_settings.LOG_BODY_MAX_BYTES)
    request.state.logged_body = body
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "-> %s %s headers=%s body=%s request_id=%s",
            request.method,
            request.url.path,
            redact_headers(request.headers),
            body,
            request_id,
        )

    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        duration = time.perf_counter() - start
        logger.error(
            "%s %s raised after %.1fms request_id=%s",
            request.method,
            request.url.path,
            duration * 1000,
            request_id,
        )
        raise
    duration = time.perf_counter() - start

    label = route_label(request)
    REQUEST_COUNT.labels(request.method, label, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, label).observe(duration)

    logger.info(
        "%s %s %s %.1fms request_id=%s",
        request.method,
        request.url.path,
        response.status_code,
        duration * 1000,
        request_id,
    )
    if duration > app_settings.SLOW_REQUEST_SECONDS:
        logger.warning(
            "Slow request: %s %s took %.2fs request_id=%s",
            request.method,
            request.url.path,
            duration,
            request_id,
        )
    return response
