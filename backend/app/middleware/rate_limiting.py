"""Per-client fixed-window limits, evaluated before any authentication work."""

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import RateLimitExceededError
from app.core.metrics import RATE_LIMIT_REJECTIONS
from app.core.security import extract_bearer_token
from app.middleware.context import client_ip, service
from app.middleware.headers import apply_rate_limit_headers
from app.middleware.responses import error_response

logger = logging.getLogger(__name__)


def client_key(request: Request) -> str:
    """
    user:<id> for a bearer token that passes signature and lifetime checks,
    ip:<address> otherwise. Revocation is not consulted here.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token:
        user_id = service(request, "token_service").peek_subject(token)
        if user_id is not None:
            return f"user:{user_id}"
    return f"ip:{client_ip(request, service(request, 'settings').TRUST_FORWARDED_FOR)}"


async def _peek(request: Request, key: str):
    """Informational quota state; an unreachable store must not fail exempt paths."""
    try:
        return await run_in_threadpool(service(request, "rate_limiter").peek, key)
    except Exception as exc:
        logger.warning("Rate limit status unavailable for %s: %s", key, exc)
        return None


async def rate_limiting_middleware(request: Request, call_next: Callable) -> Response:
    app_settings = service(request, "settings")
    key = client_key(request)
    if not app_settings.RATE_LIMIT_ENABLED or request.url.path in app_settings.RATE_LIMIT_EXEMPT_PATHS:
        # Headers still report the client's quota; nothing is counted
        decision = await _peek(request, key)
        request.state.rate_limit = decision
        response = await call_next(request)
        return apply_rate_limit_headers(response, decision)

    decision = await run_in_threadpool(service(request, "rate_limiter").hit, key)
    request.state.rate_limit = decision

    if not decision.allowed:
        RATE_LIMIT_REJECTIONS.inc()
        logger.warning(
            "Rate limit exceeded for %s on %s %s (retry after %ss)",
            key,
            request.method,
            request.url.path,
            decision.retry_after,
        )
        return error_response(request, RateLimitExceededError(decision.retry_after))

    response = await call_next(request)
    return apply_rate_limit_headers(response, decision)
