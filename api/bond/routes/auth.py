import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import sessionmaker

from .. import repo
from ..auth.deps import SESSION_COOKIE_NAME, get_current_user
from ..auth.security import create_access_token, create_one_time_token, hash_password, verify_password
from ..config import (
    ACCESS_TOKEN_TTL_MINUTES,
    APP_URL,
    COOKIE_SECURE,
    DEV_MODE,
    RL_AUTH_LOGIN_LIMIT,
    RL_AUTH_REGISTER_LIMIT,
    RL_AUTH_VERIFY_EMAIL_LIMIT,
    RL_WINDOW_SECONDS,
    VERIFICATION_TOKEN_TTL_HOURS,
)
from ..deps import get_session_factory
from ..http_helpers import normalize_email, sanitize_display_name, username_from_email, validate_registration_input
from ..records import coerce_datetime
from ..services.events import record_activity
from ..services.organizations import resolve_organization_for_email
from ..services.rate_limit import rate_limit_dependency

logger = logging.getLogger(__name__)

router = APIRouter()

RL_AUTH_REGISTER = rate_limit_dependency("auth_register", RL_AUTH_REGISTER_LIMIT, RL_WINDOW_SECONDS, per_session=False)
RL_AUTH_LOGIN = rate_limit_dependency("auth_login", RL_AUTH_LOGIN_LIMIT, RL_WINDOW_SECONDS, per_session=False)
RL_AUTH_VERIFY_EMAIL = rate_limit_dependency(
    "auth_verify_email", RL_AUTH_VERIFY_EMAIL_LIMIT, RL_WINDOW_SECONDS, per_session=False
)


def _issue_token(user: dict[str, Any]) -> dict[str, Any]:
    access_token = create_access_token(
        user_id=str(user["id"]),
        email=str(user["email"]),
        username=user.get("username"),
        is_email_verified=bool(user["is_email_verified"]),
        organization_id=str(user["organization_id"]) if user.get("organization_id") else None,
        ttl_minutes=ACCESS_TOKEN_TTL_MINUTES,
    )
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_TTL_MINUTES * 60,
    }


def _is_bearer_mode(request: Request) -> bool:
    """Check if client requested bearer token mode (for mobile clients)."""
    auth_mode = str(request.headers.get("X-Auth-Mode") or "").strip().lower()
    return auth_mode == "bearer"


def _set_session_cookie(response: Response, access_token: str) -> None:
    """Set the httpOnly session cookie with the access token."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=access_token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        path="/",
        max_age=ACCESS_TOKEN_TTL_MINUTES * 60,
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def _issue_email_verification_token(db, user_id: str, email: str) -> dict[str, Any]:
    token = create_one_time_token()
    expires_at = datetime.now(timezone.utc) + timedelta(hours=VERIFICATION_TOKEN_TTL_HOURS)
    repo.invalidate_active_verification_tokens(db, user_id)
    repo.create_email_verification_token(db, user_id=user_id, token=token, expires_at=expires_at)
    db.commit()

    verify_url = f"{APP_URL}/verify-email?token={token}"
    if DEV_MODE:
        logger.info("[auth] verification link for %s: %s", email, verify_url)

    response: dict[str, Any] = {
        "message": "Check your email to verify your account.",
    }
    if DEV_MODE:
        response["dev_only"] = {"verification_token": token, "verify_url": verify_url}
    return response


def _user_out(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(user["id"]),
        "email": str(user["email"]),
        "username": user.get("username"),
        "name": user.get("display_name") or user.get("name"),
        "is_email_verified": bool(user["is_email_verified"]),
        "organization_id": str(user["organization_id"]) if user.get("organization_id") else None,
    }


@router.post("/register", status_code=201)
def auth_register(
    payload: dict[str, Any],
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_AUTH_REGISTER,
) -> dict[str, Any]:
    email, password = validate_registration_input(str(payload.get("email", "")), str(payload.get("password", "")))
    display_name = sanitize_display_name(payload.get("name"))

    with session_factory() as db:
        if repo.get_user_by_email(db, email):
            raise HTTPException(status_code=409, detail="User already exists")
        try:
            organization = resolve_organization_for_email(db, email)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        created = repo.create_user(
            db,
            email=email,
            username=username_from_email(email),
            organization_id=str(organization["id"]),
            password_hash=hash_password(password),
            display_name=display_name,
        )
        if not created:
            raise HTTPException(status_code=409, detail="User already exists")

        verification = _issue_email_verification_token(db, str(created["id"]), email)

    logger.info("[auth] registered user_id=%s organization_id=%s", created["id"], organization["id"])
    record_activity(
        session_factory,
        request,
        action="user_register",
        user_id=str(created["id"]),
        details={"email": email, "organization_id": str(organization["id"])},
    )
    return {"user": _user_out(created), **verification}


@router.post("/verify-email")
def auth_verify_email(
    payload: dict[str, Any],
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_AUTH_VERIFY_EMAIL,
) -> dict[str, Any]:
    token = str(payload.get("token", "")).strip()
    if not token:
        raise HTTPException(status_code=400, detail="Verification token required")

    with session_factory() as db:
        row = repo.get_verification_token(db, token)
        if not row or row.get("used_at") is not None:
            raise HTTPException(status_code=400, detail="Invalid or expired verification token")
        expires_at = coerce_datetime(row.get("expires_at"))
        if expires_at is None or expires_at < datetime.now(timezone.utc):
            repo.mark_token_used(db, str(row["id"]))
            db.commit()
            raise HTTPException(status_code=400, detail="Invalid or expired verification token")

        user_id = str(row["user_id"])
        repo.set_user_verified(db, user_id)
        repo.mark_token_used(db, str(row["id"]))
        db.commit()

    record_activity(session_factory, request, action="email_verified", user_id=user_id)
    return {"message": "Email verified successfully"}


@router.post("/verify-email/resend")
def auth_verify_email_resend(
    payload: dict[str, Any],
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_AUTH_VERIFY_EMAIL,
) -> dict[str, Any]:
    email = normalize_email(str(payload.get("email", "")))
    if not email:
        raise HTTPException(status_code=400, detail="Email required")

    with session_factory() as db:
        user = repo.get_user_by_email(db, email)
        if not user or user.get("disabled_at"):
            return {"message": "If the account exists, a new verification link was sent."}
        if bool(user.get("is_email_verified")):
            return {"message": "Email already verified"}
        return _issue_email_verification_token(db, str(user["id"]), email)


@router.post("/login")
def auth_login(
    payload: dict[str, Any],
    request: Request,
    response: Response,
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_AUTH_LOGIN,
) -> dict[str, Any]:
    """Login endpoint that sets httpOnly session cookie."""
    email = normalize_email(str(payload.get("email", "")))
    password = str(payload.get("password", ""))
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    with session_factory() as db:
        user = repo.get_user_by_email(db, email)

    if not user or not verify_password(password, user.get("password_hash")):
        record_activity(
            session_factory,
            request,
            action="login_failed",
            user_id=str(user["id"]) if user else None,
            details={"email": email, "reason": "invalid_credentials"},
        )
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("disabled_at"):
        raise HTTPException(status_code=403, detail="Account disabled")
    if not bool(user.get("is_email_verified")):
        raise HTTPException(status_code=403, detail="Please verify your email before logging in")

    with session_factory() as db:
        repo.update_last_login(db, str(user["id"]))
        db.commit()
    record_activity(session_factory, request, action="user_login", user_id=str(user["id"]), details={"email": email})

    tokens = _issue_token(user)
    _set_session_cookie(response, tokens["access_token"])

    if _is_bearer_mode(request):
        return tokens
    return {"user": _user_out(user)}


@router.post("/logout")
def auth_logout(response: Response) -> dict[str, Any]:
    _clear_session_cookie(response)
    return {"message": "Logged out"}


@router.get("/me")
def auth_me(current_user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return {"user": _user_out(current_user)}
