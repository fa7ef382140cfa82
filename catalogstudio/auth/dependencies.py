"""FastAPI dependencies enforcing tenant membership and role."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from catalogstudio.auth.jwt import TENANT_ROLES, AuthContext
from catalogstudio.auth.middleware import AUTH_CONTEXT_KEY


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


def require_tenant_role(*allowed_roles: str) -> Callable[[AuthContext], AuthContext]:
    unknown = sorted(set(allowed_roles) - set(TENANT_ROLES))
    if not allowed_roles or unknown:
        raise ValueError(f"Unknown tenant roles: {', '.join(unknown) or '(none given)'}")
    allowed = tuple(role for role in TENANT_ROLES if role in allowed_roles)

    def dependency(auth: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if not auth.has_role(*allowed):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "forbidden", "required_roles": list(allowed)},
            )
        return auth

    return dependency
