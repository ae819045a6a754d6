"""Headers stamped onto every outbound response."""

from typing import Optional

from fastapi import Request, Response

from app.middleware.context import REQUEST_ID_HEADER, ensure_request_id
from app.services.rate_limiter import RateLimitDecision

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; object-src 'none'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=(), payment=(), usb=()",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cache-Control": "no-store",
}

# Swagger UI pulls scripts and styles from a CDN
DOCS_CSP = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
    "img-src 'self' data: https://fastapi.tiangolo.com; "
    "frame-ancestors 'none'"
)


def apply_security_headers(request: Request, response: Response) -> Response:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    if request.url.path.startswith("/api/docs") or request.url.path.startswith("/api/redoc"):
        response.headers["Content-Security-Policy"] = DOCS_CSP
    if request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


def apply_rate_limit_headers(response: Response, decision: Optional[RateLimitDecision]) -> Response:
    if decision is None:
        return response
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_epoch)
    if not decision.allowed:
        response.headers["Retry-After"] = str(decision.retry_after)
    return response


def finalize_response(request: Request, response: Response) -> Response:
    """Give a short-circuit response the headers the stages it skipped would have added."""
    apply_security_headers(request, response)
    apply_rate_limit_headers(response, getattr(request.state, "rate_limit", None))
    response.headers[REQUEST_ID_HEADER] = ensure_request_id(request)
    return response
