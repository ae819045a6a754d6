"""API dependencies - sessions, services and the caller identity"""

from fastapi import Request
from sqlalchemy.orm import Session
from typing import Generator, Optional

from app.core.exceptions import AuthenticationRequiredError, AuthorizationError
from app.core.permissions import Identity, access_rule_of
from app.middleware.context import client_ip
from app.services.auth_service import AuthService


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency for getting a database session from the app's session factory

    Yields:
        Session: Database session
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_optional_identity(request: Request) -> Optional[Identity]:
    """Identity set by the authentication stage, or None for anonymous callers"""
    return getattr(request.state, "identity", None)


def get_identity(request: Request) -> Identity:
    """
    Identity of an authenticated caller

    Raises:
        AuthenticationRequiredError: If the request carried no valid bearer token
    """
    identity = get_optional_identity(request)
    if identity is None:
        raise AuthenticationRequiredError()
    return identity


def get_bearer_token(request: Request) -> Optional[str]:
    """Raw bearer credential as extracted by the authentication stage"""
    return getattr(request.state, "access_token", None) or None


def get_client_ip(request: Request) -> str:
    return client_ip(request, request.app.state.settings.TRUST_FORWARDED_FOR)


async def enforce_access_rule(request: Request) -> None:
    """
    Enforce the @requires rule of the endpoint the router resolved

    Installed as an application-wide dependency, so it runs once routing
    has matched and ahead of the endpoint's own dependencies.

    Raises:
        AuthenticationRequiredError: Rule present and the caller is anonymous
        AuthorizationError: Caller lacks a required role or permission
    """
    route = request.scope.get("route")
    endpoint = getattr(route, "endpoint", None) or request.scope.get("endpoint")
    rule = access_rule_of(endpoint)
    if rule is None:
        return
    identity = get_optional_identity(request)
    if identity is None:
        raise AuthenticationRequiredError()
    if not rule.allows(identity):
        raise AuthorizationError()
