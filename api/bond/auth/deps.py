"""
Authentication dependencies for FastAPI.

Supports two auth modes:
1. Cookie-based session (primary for web): httpOnly cookie contains access token
2. Bearer token (for API clients): Authorization header with Bearer token

The organization is always resolved from the user record, never from the token.
"""

import logging
import uuid
from typing import Any

from fastapi import Cookie, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from bond import config, repo
from bond.auth.security import decode_access_token
from bond.deps import get_session_factory

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "auth-token"


class AuthErrorDetail(BaseModel):
    message: str = "unauthorized"
    reason: str
    trace_id: str


class AuthError(Exception):
    """Raised when authentication fails with detailed reason."""

    def __init__(self, reason: str, detail: str = "unauthorized"):
        self.reason = reason
        self.detail = detail
        self.trace_id = str(uuid.uuid4())
        super().__init__(detail)


def _log_auth_failure(
    reason: str,
    trace_id: str,
    token_prefix: str | None = None,
    auth_source: str | None = None,
    payload: dict[str, Any] | None = None,
    user_id: str | None = None,
) -> None:
    log_data = {
        "trace_id": trace_id,
        "reason": reason,
        "auth_source": auth_source,
        "token_prefix": token_prefix,
        "token_user_id": payload.get("sub") if payload else None,
        "resolved_user_id": user_id,
    }
    logger.warning(f"[AUTH_FAILURE] {log_data}")


def _auth_exception(status_code: int, message: str, reason: str, trace_id: str) -> HTTPException:
    if config.DEV_MODE:
        detail: dict[str, Any] = AuthErrorDetail(message=message, reason=reason, trace_id=trace_id).model_dump()
    else:
        detail = {"message": message, "trace_id": trace_id}
    return HTTPException(status_code=status_code, detail=detail)


def _extract_bearer(authorization: str | None) -> str:
    if not authorization:
        raise AuthError(reason="missing_token", detail="Missing Authorization header")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError(reason="malformed_token", detail="Invalid Authorization header")
    return parts[1].strip()


def _validate_token_and_get_user(token: str, trace_id: str, auth_source: str, session_factory) -> dict[str, Any]:
    token_prefix = token[:8] + "..." if len(token) > 8 else token

    try:
        payload = decode_access_token(token)
    except HTTPException as e:
        if e.status_code != 401:
            raise
        reason = "token_expired" if "expired" in str(e.detail).lower() else "signature_invalid"
        _log_auth_failure(reason, trace_id, token_prefix, auth_source)
        raise _auth_exception(401, "unauthorized", reason, trace_id)

    user_id = str(payload.get("sub", ""))
    if not user_id:
        _log_auth_failure("token_missing_subject", trace_id, token_prefix, auth_source, payload)
        raise _auth_exception(401, "unauthorized", "token_missing_subject", trace_id)

    with session_factory() as db:
        user = repo.get_user_by_id(db, user_id)
    if not user:
        _log_auth_failure("token_user_not_found", trace_id, token_prefix, auth_source, payload, user_id)
        raise _auth_exception(401, "unauthorized", "token_user_not_found", trace_id)

    if user.get("disabled_at"):
        _log_auth_failure("account_disabled", trace_id, token_prefix, auth_source, payload, user_id)
        raise _auth_exception(403, "Account disabled", "account_disabled", trace_id)

    logger.debug(f"[auth] SUCCESS user_id={user_id} source={auth_source}")

    return {
        "id": str(user["id"]),
        "email": user["email"],
        "username": user.get("username"),
        "name": user.get("display_name"),
        "avatar_url": user.get("avatar_url"),
        "is_email_verified": bool(user["is_email_verified"]),
        "organization_id": str(user["organization_id"]) if user.get("organization_id") else None,
    }


def get_current_user(
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    authorization: str | None = Header(default=None, alias="Authorization"),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> dict[str, Any]:
    """
    Get current user from cookie session or bearer token.

    Priority:
    1. Cookie session token (httpOnly cookie set by login)
    2. Bearer token in Authorization header
    """
    trace_id = str(uuid.uuid4())

    if session_token:
        return _validate_token_and_get_user(session_token, trace_id, "cookie", session_factory)

    if authorization:
        try:
            token = _extract_bearer(authorization)
        except AuthError as e:
            _log_auth_failure(e.reason, e.trace_id, auth_source="bearer")
            raise _auth_exception(401, e.detail, e.reason, e.trace_id)
        return _validate_token_and_get_user(token, trace_id, "bearer", session_factory)

    _log_auth_failure("missing_token", trace_id, auth_source="none")
    raise _auth_exception(401, "Authentication required", "missing_token", trace_id)


def require_verified_user(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    """Only verified members may browse, crush or see matches."""
    if not current_user.get("is_email_verified"):
        raise HTTPException(status_code=403, detail="Please verify your email first")
    return current_user
