import re
from typing import Any

from fastapi import HTTPException

from bond.services.errors import CrushError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def username_from_email(email: str) -> str:
    return normalize_email(email).split("@", 1)[0]


def validate_password(password: str) -> str:
    if len(password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password):
        raise HTTPException(status_code=400, detail="Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise HTTPException(status_code=400, detail="Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise HTTPException(status_code=400, detail="Password must contain at least one number")
    return password


def validate_registration_input(email: str, password: str) -> tuple[str, str]:
    e = normalize_email(email)
    if not e or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    if len(e) > 254:
        raise HTTPException(status_code=400, detail="Email too long")
    if not _EMAIL_RE.match(e):
        raise HTTPException(status_code=400, detail="Invalid email format")
    return e, validate_password(password)


def sanitize_display_name(raw_name: Any) -> str | None:
    if raw_name is None:
        return None
    name = str(raw_name).strip() or None
    if name and len(name) > 80:
        raise HTTPException(status_code=400, detail="name must be 80 characters or fewer")
    return name


def require_user_id(raw: Any, field: str = "crush_user_id") -> str:
    value = str(raw or "").strip()
    if not value:
        raise HTTPException(status_code=400, detail=f"{field} is required")
    if len(value) > 64:
        raise HTTPException(status_code=400, detail=f"{field} is invalid")
    return value


def crush_error_to_http(exc: CrushError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
