from __future__ import annotations

"""Role to permission mapping for collaborator-facing endpoints."""
from enum import Enum
from typing import Callable, Set

from fastapi import Depends, HTTPException, status

from .auth import Principal, get_current_principal


class Permission(str, Enum):
    TOKEN_ISSUE = "token:issue"
    ASSISTANT_QUERY = "assistant:query"
    TELEMETRY_READ = "telemetry:read"
    ADMIN = "admin:*"


ROLE_PERMISSIONS = {
    "service": {Permission.TOKEN_ISSUE, Permission.ASSISTANT_QUERY},
    "operator": {Permission.ASSISTANT_QUERY, Permission.TELEMETRY_READ},
    "admin": {Permission.ADMIN},
}


def _permissions(principal: Principal) -> Set[Permission]:
    perms: Set[Permission] = set()
    for role in principal.roles:
        perms |= ROLE_PERMISSIONS.get(role, set())
    return perms


def _is_authorized(principal: Principal, required: Permission) -> bool:
    perms = _permissions(principal)
    if Permission.ADMIN in perms:
        return True
    return required in perms


def require_permission(required: Permission) -> Callable[[Principal], Principal]:
    """FastAPI dependency to enforce a single permission on a route."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not _is_authorized(principal, required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return principal

    return dependency
