import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bond.records import UserSummary

_SUMMARY_COLUMNS = "id, username, display_name, email, avatar_url, organization_id, is_email_verified"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_user(
    db,
    *,
    email: str,
    username: str,
    organization_id: str,
    password_hash: str | None,
    display_name: str | None = None,
) -> dict[str, Any] | None:
    user_id = str(uuid.uuid4())
    now = _now_utc()
    try:
        db.execute(
            text(
                """
                INSERT INTO user_account (
                  id, email, username, display_name, password_hash, organization_id,
                  is_email_verified, created_at, updated_at
                )
                VALUES (:id, :email, :username, :display_name, :password_hash, :organization_id, :verified, :now, :now)
                """
            ),
            {
                "id": user_id,
                "email": email,
                "username": username,
                "display_name": display_name,
                "password_hash": password_hash,
                "organization_id": organization_id,
                "verified": False,
                "now": now,
            },
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    return get_user_by_id(db, user_id)


def get_user_by_email(db, email: str) -> dict[str, Any] | None:
    row = db.execute(text("SELECT * FROM user_account WHERE email=:email"), {"email": email}).mappings().first()
    return dict(row) if row else None


def get_user_by_id(db, user_id: str) -> dict[str, Any] | None:
    row = db.execute(text("SELECT * FROM user_account WHERE id=:id"), {"id": user_id}).mappings().first()
    return dict(row) if row else None


def fetch_user_summary(db, user_id: str) -> UserSummary | None:
    """Active (not disabled) user as a typed summary, or None."""
    row = db.execute(
        text(f"SELECT {_SUMMARY_COLUMNS} FROM user_account WHERE id=:id AND disabled_at IS NULL"),
        {"id": str(user_id)},
    ).mappings().first()
    return UserSummary.from_row(row) if row else None


def list_organization_members(db, organization_id: str, exclude_user_id: str | None = None) -> list[UserSummary]:
    rows = db.execute(
        text(
            f"""
            SELECT {_SUMMARY_COLUMNS}
            FROM user_account
            WHERE organization_id = :organization_id
              AND is_email_verified = :verified
              AND disabled_at IS NULL
              AND (:exclude_user_id IS NULL OR id <> :exclude_user_id)
            ORDER BY COALESCE(display_name, username) ASC
            """
        ),
        {"organization_id": organization_id, "verified": True, "exclude_user_id": exclude_user_id},
    ).mappings().all()
    return [UserSummary.from_row(r) for r in rows]


def set_user_verified(db, user_id: str) -> None:
    db.execute(
        text("UPDATE user_account SET is_email_verified=:verified, updated_at=:now WHERE id=:id"),
        {"id": user_id, "verified": True, "now": _now_utc()},
    )


def update_last_login(db, user_id: str) -> None:
    db.execute(
        text("UPDATE user_account SET last_login_at=:now WHERE id=:id"),
        {"id": user_id, "now": _now_utc()},
    )


def create_email_verification_token(db, *, user_id: str, token: str, expires_at: datetime) -> dict[str, Any]:
    row = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "token": token,
        "expires_at": expires_at,
        "created_at": _now_utc(),
    }
    db.execute(
        text(
            """
            INSERT INTO email_verification_token (id, user_id, token, expires_at, created_at)
            VALUES (:id, :user_id, :token, :expires_at, :created_at)
            """
        ),
        row,
    )
    return {**row, "used_at": None}


def get_verification_token(db, token: str) -> dict[str, Any] | None:
    row = db.execute(
        text("SELECT id, user_id, token, expires_at, used_at FROM email_verification_token WHERE token=:token"),
        {"token": token},
    ).mappings().first()
    return dict(row) if row else None


def invalidate_active_verification_tokens(db, user_id: str) -> None:
    db.execute(
        text("UPDATE email_verification_token SET used_at=:now WHERE user_id=:user_id AND used_at IS NULL"),
        {"user_id": user_id, "now": _now_utc()},
    )


def mark_token_used(db, token_id: str) -> None:
    db.execute(
        text("UPDATE email_verification_token SET used_at=:now WHERE id=:id"),
        {"id": token_id, "now": _now_utc()},
    )


def crush_exists(db, user_id: str, crush_user_id: str) -> bool:
    row = db.execute(
        text("SELECT 1 FROM crushes WHERE user_id=:user_id AND crush_user_id=:crush_user_id"),
        {"user_id": str(user_id), "crush_user_id": str(crush_user_id)},
    ).first()
    return row is not None
