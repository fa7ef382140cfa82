"""Resolve the caller's auth context from the Authorization header."""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from catalogstudio.auth.jwt import AuthContext, TokenError, decode_access_token
from catalogstudio.core.logger import get_logger


AUTH_CONTEXT_KEY = "auth_context"

logger = get_logger("catalogstudio.auth")


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


def resolve_request_auth_context(request: Request) -> Optional[AuthContext]:
    """Anonymous requests and rejected tokens both resolve to None; routes decide what that means."""

    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        return None
    try:
        return decode_access_token(token)
    except TokenError as exc:
        logger.info("auth_token_rejected", reason=str(exc), path=request.url.path)
        return None
