"""Outermost stage: turn anything raised further in into a JSON error."""

import logging
from typing import Callable

from fastapi import Request, Response
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BaseAPIException, DatabaseError
from app.middleware.context import ensure_request_id, service
from app.middleware.responses import error_response

logger = logging.getLogger(__name__)


async def exception_boundary_middleware(request: Request, call_next: Callable) -> Response:
    """
    Catch every exception escaping the inner stages and the handler

    Expected API errors keep their status and message. Anything else
    becomes a generic 500; the exception text is attached only outside
    production.
    """
    request_id = ensure_request_id(request)
    try:
        return await call_next(request)
    except BaseAPIException as exc:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API exception %s on %s %s: %s request_id=%s",
            exc.code,
            request.method,
            request.url.path,
            exc.message,
            request_id,
        )
        return error_response(request, exc)
    except SQLAlchemyError as exc:
        logger.error(
            "Database error on %s %s request_id=%s",
            request.method,
            request.url.path,
            request_id,
            exc_info=True,
        )
        return error_response(request, DatabaseError("A database error occurred. Please try again later."),
                              debug=_debug_text(request, exc))
    except Exception as exc:
        logger.critical(
            "Unhandled exception on %s %s request_id=%s",
            request.method,
            request.url.path,
            request_id,
            exc_info=True,
        )
        return error_response(request, BaseAPIException("An unexpected error occurred"),
                              debug=_debug_text(request, exc))


def _debug_text(request: Request, exc: Exception):
    if service(request, "settings").is_production:
        return None
    return f"{type(exc).__name__}: {exc}"
