"""Request pipeline assembly."""

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware

from app.middleware.audit_logging import audit_logging_middleware
from app.middleware.authentication import authentication_middleware
from app.middleware.authorization import authorization_middleware
from app.middleware.exception_boundary import exception_boundary_middleware
from app.middleware.rate_limiting import rate_limiting_middleware
from app.middleware.request_logging import request_logging_middleware
from app.middleware.security_headers import security_headers_middleware

# Outermost first; each stage wraps every stage after it
PIPELINE_STAGES = (
    exception_boundary_middleware,
    request_logging_middleware,
    rate_limiting_middleware,
    security_headers_middleware,
    authentication_middleware,
    authorization_middleware,
    audit_logging_middleware,
)


def install_pipeline(app: FastAPI) -> None:
    # add_middleware prepends, so register innermost first
    for stage in reversed(PIPELINE_STAGES):
        app.add_middleware(BaseHTTPMiddleware, dispatch=stage)
