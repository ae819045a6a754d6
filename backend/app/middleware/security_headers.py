"""Security headers and the request id on every response that passes back through this stage."""

from typing import Callable

from fastapi import Request, Response

from app.middleware.context import REQUEST_ID_HEADER, ensure_request_id
from app.middleware.headers import apply_security_headers


async def security_headers_middleware(request: Request, call_next: Callable) -> Response:
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = ensure_request_id(request)
    return apply_security_headers(request, response)
