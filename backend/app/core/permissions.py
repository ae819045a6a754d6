"""Roles, permissions and endpoint access rules."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, Iterable, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from app.models.user import User

WILDCARD = "*"


class UserRole(str, Enum):
    """User role enumeration"""
    ADMIN = "admin"
    USER = "user"
    VIEWER = "viewer"


ROLE_PERMISSIONS = {
    UserRole.ADMIN.value: frozenset({WILDCARD}),
    UserRole.USER.value: frozenset({
        "jobs:read",
        "jobs:write",
        "executions:read",
        "executions:write",
        "automations:read",
        "automations:write",
        "schedules:read",
        "schedules:write",
        "kpi:read",
    }),
    UserRole.VIEWER.value: frozenset({
        "jobs:read",
        "executions:read",
        "automations:read",
        "schedules:read",
        "kpi:read",
    }),
}


def parse_extra_permissions(raw: Optional[str]) -> List[str]:
    """Decode the JSON list stored in `users.extra_permissions`."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def permissions_for(user: "User") -> List[str]:
    """Role permissions merged with the user's direct grants, sorted."""
    granted = set(ROLE_PERMISSIONS.get(user.role, frozenset()))
    granted.update(parse_extra_permissions(user.extra_permissions))
    return sorted(granted)


def has_permission(granted: Iterable[str], permission: str) -> bool:
    granted = set(granted)
    return WILDCARD in granted or permission in granted


@dataclass(frozen=True)
class Identity:
    """Request-scoped caller identity populated by the authentication stage."""

    user_id: int
    role: str
    permissions: FrozenSet[str]
    jti: str
    token: str
    expires_at: datetime

    def can(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)


@dataclass(frozen=True)
class AccessRule:
    """Roles/permissions an endpoint declares; an empty rule means 'any authenticated caller'."""

    roles: FrozenSet[str] = field(default_factory=frozenset)
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def allows(self, identity: Identity) -> bool:
        if self.roles and identity.role not in self.roles:
            return False
        return all(identity.can(permission) for permission in self.permissions)


ACCESS_RULE_ATTR = "access_rule"


def requires(*roles: str, permissions: Iterable[str] = ()) -> Callable:
    """
    Declare the access rule enforced by the authorization stage.

    Usage:
        @router.get("/")
        @requires("admin", permissions=["users:read"])
        def list_users(...): ...
    """
    rule = AccessRule(roles=frozenset(roles), permissions=frozenset(permissions))

    def decorator(endpoint: Callable) -> Callable:
        setattr(endpoint, ACCESS_RULE_ATTR, rule)
        return endpoint

    return decorator


def access_rule_of(endpoint: Optional[Callable]) -> Optional[AccessRule]:
    if endpoint is None:
        return None
    return getattr(endpoint, ACCESS_RULE_ATTR, None)
