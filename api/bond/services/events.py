import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


def client_ip(request) -> str:
    xff = request.headers.get("x-forwarded-for", "").strip()
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def log_activity(
    db,
    *,
    action: str,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    details = details or {}
    db.execute(
        text(
            """
            INSERT INTO audit_log (id, user_id, action, details, ip_address, user_agent, created_at)
            VALUES (:id, :user_id, :action, :details, :ip_address, :user_agent, :created_at)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "action": action,
            "details": json.dumps(details),
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": datetime.now(timezone.utc),
        },
    )


def record_activity(session_factory, request, *, action: str, user_id: str | None = None, details: dict[str, Any] | None = None) -> None:
    """Write an audit row in its own transaction; a failed write is logged, never raised."""
    try:
        with session_factory() as db:
            log_activity(
                db,
                action=action,
                user_id=user_id,
                details=details,
                ip_address=client_ip(request) if request is not None else None,
                user_agent=request.headers.get("user-agent", "unknown") if request is not None else None,
            )
            db.commit()
    except SQLAlchemyError:
        logger.exception("[audit] failed to log activity action=%s user_id=%s", action, user_id)
