"""Map access-rule failures raised while routing to 401/403 responses."""

import logging
from typing import Callable

from fastapi import Request, Response

from app.core.exceptions import AuthenticationRequiredError, AuthorizationError
from app.middleware.context import current_identity
from app.middleware.responses import error_response

logger = logging.getLogger(__name__)


async def authorization_middleware(request: Request, call_next: Callable) -> Response:
    """
    The rule itself is checked by the `enforce_access_rule` dependency once
    the router has resolved the endpoint; this stage renders its failures.
    """
    try:
        return await call_next(request)
    except AuthorizationError as exc:
        identity = current_identity(request)
        logger.warning(
            "Access denied for user %s (role %s) on %s %s",
            identity.user_id if identity else None,
            identity.role if identity else None,
            request.method,
            request.url.path,
        )
        return error_response(request, exc)
    except AuthenticationRequiredError as exc:
        return error_response(request, exc)
