"""Tenant-scoped access tokens.

Tokens carry the tenant and role of the caller. Every generation route derives
its tenant from the token only; request bodies never name a tenant.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from catalogstudio.core.config import get_settings


TENANT_ROLES = ("owner", "admin", "member", "viewer")
TOKEN_SCOPE = "tenant"


class TokenError(RuntimeError):
    """Raised when an access token cannot be turned into an auth context."""


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    tenant_id: str
    role: str
    email: str = ""

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


def create_access_token(context: AuthContext, *, now: Optional[datetime] = None) -> tuple[str, int]:
    if context.role not in TENANT_ROLES:
        raise TokenError(f"token_role_unknown role={context.role}")
    settings = get_settings()
    expires_in = settings.access_token_exp_minutes * 60
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "iss": settings.app_name,
        "scope": TOKEN_SCOPE,
        "sub": context.user_id,
        "email": context.email,
        "tenant_id": context.tenant_id,
        "role": context.role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(seconds=expires_in)).timestamp()),
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, expires_in


def decode_access_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.app_name,
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("token_expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("token_invalid") from exc

    tenant_id = str(payload.get("tenant_id") or "").strip()
    role = str(payload.get("role") or "")
    if payload.get("scope") != TOKEN_SCOPE or not tenant_id:
        raise TokenError("token_claims_invalid")
    if role not in TENANT_ROLES:
        raise TokenError(f"token_role_unknown role={role}")
    return AuthContext(
        user_id=str(payload["sub"]),
        tenant_id=tenant_id,
        role=role,
        email=str(payload.get("email", "")),
    )
