import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bond.config import APP_URL, NOTIFICATION_MAX_ATTEMPTS
from bond.records import UserSummary, canonical_pair, coerce_datetime

logger = logging.getLogger(__name__)

MATCH_CREATED = "match_created"
RETRY_BACKOFF_MINUTES = (2, 5, 15, 30)


def build_match_idempotency_key(user_a: str, user_b: str, recipient_id: str) -> str:
    user1_id, user2_id = canonical_pair(user_a, user_b)
    return f"match:{user1_id}:{user2_id}:{recipient_id}"


def build_match_payload(recipient: UserSummary, partner: UserSummary) -> dict[str, Any]:
    return {
        "recipient_email": recipient.email,
        "matched_user_id": partner.id,
        "matched_user_name": partner.display_name,
        "subject": "You have a new match!",
        "message": f"{partner.display_name} has chosen you as their crush too!",
        "url": f"{APP_URL}/matches",
    }


def _json_value(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        parsed = json.loads(value)
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _retry_delay(attempt_count: int) -> timedelta:
    index = min(max(attempt_count, 0), len(RETRY_BACKOFF_MINUTES) - 1)
    return timedelta(minutes=RETRY_BACKOFF_MINUTES[index])


def deliver_in_app(db, row: dict[str, Any]) -> None:
    db.execute(
        text(
            """
            INSERT INTO notifications_in_app (id, user_id, notification_type, payload_json, created_at)
            VALUES (:id, :user_id, :notification_type, :payload_json, :now)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": str(row["user_id"]),
            "notification_type": str(row.get("notification_type") or "generic"),
            "payload_json": json.dumps(_json_value(row.get("payload_json"))),
            "now": datetime.now(timezone.utc),
        },
    )


class NotificationDispatcher:
    def __init__(self, session_factory, *, max_attempts: int = NOTIFICATION_MAX_ATTEMPTS, deliver=deliver_in_app) -> None:
        self._session_factory = session_factory
        self.max_attempts = max_attempts
        self._deliver = deliver

    def notify_match(self, user: UserSummary, partner: UserSummary) -> int:
        """Queue one match notification per party. Never raises."""
        queued = 0
        for recipient, other in ((user, partner), (partner, user)):
            try:
                if self._enqueue(
                    user_id=recipient.id,
                    notification_type=MATCH_CREATED,
                    payload=build_match_payload(recipient, other),
                    idempotency_key=build_match_idempotency_key(user.id, partner.id, recipient.id),
                ):
                    queued += 1
            except Exception:
                logger.exception(
                    "[notify] failed to queue match notification recipient=%s partner=%s",
                    recipient.id,
                    other.id,
                )
        logger.info("[notify] match notifications queued=%s user=%s partner=%s", queued, user.id, partner.id)
        return queued

    def _enqueue(self, *, user_id: str, notification_type: str, payload: dict[str, Any], idempotency_key: str) -> bool:
        now = datetime.now(timezone.utc)
        with self._session_factory() as db:
            try:
                db.execute(
                    text(
                        """
                        INSERT INTO notifications_outbox (
                          id, user_id, notification_type, payload_json, status, attempt_count,
                          idempotency_key, scheduled_for, created_at, updated_at
                        )
                        VALUES (
                          :id, :user_id, :notification_type, :payload_json, 'pending', 0,
                          :idempotency_key, :now, :now, :now
                        )
                        """
                    ),
                    {
                        "id": str(uuid.uuid4()),
                        "user_id": user_id,
                        "notification_type": notification_type,
                        "payload_json": json.dumps(payload),
                        "idempotency_key": idempotency_key,
                        "now": now,
                    },
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("[notify] duplicate notification skipped key=%s", idempotency_key)
                return False
        return True

    def list_outbox(self, *, status: str = "pending", user_id: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT id, user_id, notification_type, payload_json, status, attempt_count,
                           last_error, idempotency_key, scheduled_for, created_at
                    FROM notifications_outbox
                    WHERE (:status = '' OR status = :status)
                      AND (:user_id IS NULL OR user_id = :user_id)
                    ORDER BY scheduled_for ASC, created_at ASC
                    LIMIT :limit
                    """
                ),
                {"status": (status or "").strip().lower(), "user_id": user_id, "limit": max(1, min(500, int(limit)))},
            ).mappings().all()
        return [{**dict(r), "payload_json": _json_value(r.get("payload_json"))} for r in rows]

    def due_rows(self, *, limit: int = 100, now: datetime | None = None) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT id, user_id, notification_type, payload_json, attempt_count
                    FROM notifications_outbox
                    WHERE status = 'pending'
                      AND scheduled_for <= :now
                    ORDER BY scheduled_for ASC, created_at ASC
                    LIMIT :limit
                    """
                ),
                {"now": now or datetime.now(timezone.utc), "limit": max(1, min(500, int(limit)))},
            ).mappings().all()
        return [dict(r) for r in rows]

    def process_row(self, row: dict[str, Any], *, now: datetime | None = None) -> str:
        """Claim and deliver one outbox row. Returns 'sent', 'failed' or 'skipped'."""
        now = now or datetime.now(timezone.utc)
        previous = int(row.get("attempt_count") or 0)
        attempts = previous + 1
        with self._session_factory() as db:
            try:
                claimed = db.execute(
                    text(
                        """
                        UPDATE notifications_outbox
                        SET status='processing', updated_at=:now
                        WHERE id=:id AND status='pending' AND attempt_count=:previous
                        """
                    ),
                    {"id": str(row["id"]), "previous": previous, "now": now},
                )
                if claimed.rowcount == 0:
                    db.rollback()
                    return "skipped"
                self._deliver(db, row)
                db.execute(
                    text(
                        """
                        UPDATE notifications_outbox
                        SET status='sent', attempt_count=:attempts, last_error=NULL, updated_at=:now
                        WHERE id=:id
                        """
                    ),
                    {"id": str(row["id"]), "attempts": attempts, "now": now},
                )
                db.commit()
                return "sent"
            except Exception as exc:
                db.rollback()
                error = exc

            logger.warning("[notify] delivery failed id=%s attempt=%s error=%s", row["id"], attempts, error)
            give_up = attempts >= self.max_attempts
            db.execute(
                text(
                    """
                    UPDATE notifications_outbox
                    SET attempt_count=:attempts,
                        status=:status,
                        last_error=:last_error,
                        scheduled_for=:scheduled_for,
                        updated_at=:now
                    WHERE id=:id AND status='pending' AND attempt_count=:previous
                    """
                ),
                {
                    "id": str(row["id"]),
                    "previous": previous,
                    "attempts": attempts,
                    "status": "failed" if give_up else "pending",
                    "last_error": str(error)[:1000],
                    "scheduled_for": now if give_up else now + _retry_delay(previous),
                    "now": now,
                },
            )
            db.commit()
        return "failed"

    def process_outbox(self, *, limit: int = 100) -> dict[str, int]:
        """Move due rows into the in-app inbox, one transaction per row.

        A row is claimed inside its delivery transaction, so a row another
        worker already took is skipped rather than delivered twice.
        """
        now = datetime.now(timezone.utc)
        counts = {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}
        for row in self.due_rows(limit=limit, now=now):
            counts["processed"] += 1
            counts[self.process_row(row, now=now)] += 1

        logger.info(
            "[notify] outbox processed=%s sent=%s failed=%s skipped=%s",
            counts["processed"],
            counts["sent"],
            counts["failed"],
            counts["skipped"],
        )
        return counts

    def list_in_app(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT id, notification_type, payload_json, created_at, read_at
                    FROM notifications_in_app
                    WHERE user_id = :user_id
                    ORDER BY created_at DESC
                    LIMIT :limit
                    """
                ),
                {"user_id": str(user_id), "limit": max(1, min(200, int(limit)))},
            ).mappings().all()
        return [
            {
                "id": str(r["id"]),
                "type": str(r["notification_type"]),
                "payload": _json_value(r.get("payload_json")),
                "created_at": coerce_datetime(r.get("created_at")).isoformat() if r.get("created_at") else None,
                "read": r.get("read_at") is not None,
            }
            for r in rows
        ]
