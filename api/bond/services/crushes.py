"""Crush ledger: one-directional declarations, capped per user.

The cap check and the insert share one transaction that first touches the
acting user's ``user_account`` row. That UPDATE takes the row lock (Postgres)
or the write lock (SQLite), so concurrent declares from the same user run one
after another and each sees the previous one's committed count.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bond import repo
from bond.config import ALLOW_CROSS_ORGANIZATION_CRUSH, CRUSH_CAP
from bond.records import CrushRecord, MatchOutcome, UserSummary
from bond.services.errors import (
    CapExceededError,
    DuplicateError,
    NotFoundError,
    SelfReferenceError,
    UnverifiedUserError,
)
from bond.services.matching import MatchDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Declaration:
    crush: CrushRecord
    actor: UserSummary
    target: UserSummary
    created: bool


@dataclass(frozen=True)
class DeclareResult:
    crush: CrushRecord
    actor: UserSummary
    target: UserSummary
    created: bool
    outcome: MatchOutcome

    @property
    def is_match(self) -> bool:
        return self.outcome in {MatchOutcome.MATCH_CREATED, MatchOutcome.ALREADY_MATCHED}


class CrushLedger:
    def __init__(
        self,
        session_factory,
        *,
        cap: int = CRUSH_CAP,
        allow_cross_organization: bool = ALLOW_CROSS_ORGANIZATION_CRUSH,
    ) -> None:
        if cap < 1:
            raise ValueError("crush cap must be at least 1")
        self._session_factory = session_factory
        self.cap = cap
        self.allow_cross_organization = allow_cross_organization

    def declare(self, user_id: str, target_id: str) -> CrushRecord:
        declaration = self.declare_resolved(user_id, target_id)
        if not declaration.created:
            raise DuplicateError()
        return declaration.crush

    def declare_resolved(self, user_id: str, target_id: str) -> Declaration:
        """Declare a crush and return it with both resolved parties.

        An existing ordered pair comes back with ``created=False`` instead of
        raising, so callers can treat a repeat as success.
        """
        user_id, target_id = str(user_id), str(target_id)
        if user_id == target_id:
            raise SelfReferenceError()

        with self._session_factory() as db:
            actor = repo.fetch_user_summary(db, user_id)
            if not actor or not actor.is_email_verified:
                raise UnverifiedUserError()
            target = repo.fetch_user_summary(db, target_id)
            self._ensure_visible(actor, target)

            try:
                db.execute(
                    text("UPDATE user_account SET updated_at=:now WHERE id=:id"),
                    {"id": user_id, "now": datetime.now(timezone.utc)},
                )
                existing = self._fetch_crush(db, user_id, target_id)
                if existing:
                    db.rollback()
                    return Declaration(crush=existing, actor=actor, target=target, created=False)

                active = self._count(db, user_id)
                if active >= self.cap:
                    db.rollback()
                    logger.info("[crush] cap reached user_id=%s active=%s cap=%s", user_id, active, self.cap)
                    raise CapExceededError(self.cap)

                row = {
                    "id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "crush_user_id": target_id,
                    "created_at": datetime.now(timezone.utc),
                }
                db.execute(
                    text(
                        """
                        INSERT INTO crushes (id, user_id, crush_user_id, created_at)
                        VALUES (:id, :user_id, :crush_user_id, :created_at)
                        """
                    ),
                    row,
                )
                db.commit()
            except IntegrityError:
                # Same pair inserted by a concurrent retry.
                db.rollback()
                existing = self._fetch_crush(db, user_id, target_id)
                if not existing:
                    raise
                return Declaration(crush=existing, actor=actor, target=target, created=False)

        logger.info("[crush] added user_id=%s crush_user_id=%s", user_id, target_id)
        return Declaration(crush=CrushRecord.from_row(row), actor=actor, target=target, created=True)

    def withdraw(self, user_id: str, target_id: str) -> bool:
        with self._session_factory() as db:
            result = db.execute(
                text("DELETE FROM crushes WHERE user_id=:user_id AND crush_user_id=:crush_user_id"),
                {"user_id": str(user_id), "crush_user_id": str(target_id)},
            )
            db.commit()
        removed = result.rowcount > 0
        logger.info("[crush] withdraw user_id=%s crush_user_id=%s removed=%s", user_id, target_id, removed)
        return removed

    def list(self, user_id: str) -> list[UserSummary]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT ua.id, ua.username, ua.display_name, ua.email, ua.avatar_url,
                           ua.organization_id, ua.is_email_verified
                    FROM crushes c
                    JOIN user_account ua ON ua.id = c.crush_user_id
                    WHERE c.user_id = :user_id
                    ORDER BY c.created_at DESC
                    """
                ),
                {"user_id": str(user_id)},
            ).mappings().all()
        return [UserSummary.from_row(r) for r in rows]

    def count(self, user_id: str) -> int:
        with self._session_factory() as db:
            return self._count(db, str(user_id))

    def _ensure_visible(self, actor: UserSummary, target: UserSummary | None) -> None:
        if not target or not target.is_email_verified:
            raise NotFoundError()
        if not self.allow_cross_organization and target.organization_id != actor.organization_id:
            logger.info(
                "[crush] cross-organization target rejected user_id=%s crush_user_id=%s",
                actor.id,
                target.id,
            )
            raise NotFoundError()

    @staticmethod
    def _count(db, user_id: str) -> int:
        return int(
            db.execute(text("SELECT COUNT(1) FROM crushes WHERE user_id=:user_id"), {"user_id": user_id}).scalar() or 0
        )

    @staticmethod
    def _fetch_crush(db, user_id: str, target_id: str) -> CrushRecord | None:
        row = db.execute(
            text(
                """
                SELECT id, user_id, crush_user_id, created_at
                FROM crushes
                WHERE user_id=:user_id AND crush_user_id=:crush_user_id
                """
            ),
            {"user_id": user_id, "crush_user_id": target_id},
        ).mappings().first()
        return CrushRecord.from_row(row) if row else None


class CrushService:
    """Declare path used by the API: ledger insert, then reciprocity check."""

    def __init__(self, ledger: CrushLedger, detector: MatchDetector) -> None:
        self.ledger = ledger
        self.detector = detector

    def declare(self, user_id: str, target_id: str) -> DeclareResult:
        declaration = self.ledger.declare_resolved(user_id, target_id)
        # Runs for repeats too, so a declare whose match step failed earlier is healed.
        outcome = self.detector.try_materialize(user_id, target_id)
        return DeclareResult(
            crush=declaration.crush,
            actor=declaration.actor,
            target=declaration.target,
            created=declaration.created,
            outcome=outcome,
        )
