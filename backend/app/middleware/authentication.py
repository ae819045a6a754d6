"""Bearer-token authentication stage."""

import logging
from typing import Callable

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import TokenInvalidError, exception_for
from app.core.permissions import Identity
from app.core.security import extract_bearer_token
from app.middleware.context import ensure_request_id, service
from app.middleware.responses import error_response

logger = logging.getLogger(__name__)


def _validate(request: Request, token: str):
    db = service(request, "session_factory")()
    try:
        return service(request, "auth_service").validate_token(db, token)
    finally:
        db.close()


async def authentication_middleware(request: Request, call_next: Callable) -> Response:
    """
    Populate request.state.identity from a valid bearer token

    No token: continue anonymously and let the endpoint's access rule decide.
    A token that was presented but fails validation: 401, whatever the reason.
    """
    request.state.identity = None
    token = extract_bearer_token(request.headers.get("Authorization"))
    request.state.access_token = token

    if token is None or request.url.path in service(request, "settings").AUTH_PASSTHROUGH_PATHS:
        return await call_next(request)

    if not token:
        return error_response(request, TokenInvalidError())

    result = await run_in_threadpool(_validate, request, token)
    if not result.ok:
        logger.info(
            "Rejected bearer token (%s) on %s %s request_id=%s",
            result.error.value,
            request.method,
            request.url.path,
            ensure_request_id(request),
        )
        return error_response(request, exception_for(result))

    claims = result.value
    request.state.identity = Identity(
        user_id=claims.user_id,
        role=claims.role,
        permissions=frozenset(claims.permissions),
        jti=claims.jti,
        token=token,
        expires_at=claims.expires_at,
    )
    return await call_next(request)
