"""JSON error bodies produced at the edge of the pipeline."""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.exceptions import BaseAPIException
from app.middleware.context import ensure_request_id, service
from app.middleware.headers import finalize_response


def error_body(request: Request, exc: BaseAPIException, debug: Optional[str] = None) -> dict:
    body = {
        "success": False,
        "error": exc.message,
        "code": exc.code,
        "details": exc.details or None,
        "path": request.url.path,
        "request_id": ensure_request_id(request),
        "timestamp": service(request, "clock").now().isoformat(),
    }
    if debug is not None:
        body["debug"] = debug
    return body


def error_response(request: Request, exc: BaseAPIException, debug: Optional[str] = None) -> JSONResponse:
    """Render an API exception with every header a normal response would carry."""
    response = JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc, debug),
        headers=exc.headers or None,
    )
    return finalize_response(request, response)
