"""Reciprocity detection and match materialization.

A match row is written once per unordered pair, in canonical order, and is
never deleted. The unique index on ``(user1_id, user2_id)`` is the only guard
against two reciprocal declarations racing each other: whichever insert
commits first wins, the other sees the violation and reports
``ALREADY_MATCHED``.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from bond import repo
from bond.records import MatchOutcome, MatchRecord, PairState, UserSummary, canonical_pair
from bond.services.errors import ConstraintRaceError
from bond.services.state_machine import derive_pair_state

logger = logging.getLogger(__name__)


class MatchDetector:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def try_materialize(self, user_id: str, target_id: str) -> MatchOutcome:
        user_id, target_id = str(user_id), str(target_id)
        with self._session_factory() as db:
            reverse = repo.crush_exists(db, target_id, user_id)
        if not reverse:
            return MatchOutcome.NO_MATCH

        user1_id, user2_id = canonical_pair(user_id, target_id)
        try:
            inserted = self._insert_match(user1_id, user2_id)
        except ConstraintRaceError:
            logger.info("[match] pair already matched user1=%s user2=%s", user1_id, user2_id)
            return MatchOutcome.ALREADY_MATCHED

        if not inserted:
            # One side withdrew between the reverse check and the insert.
            logger.info("[match] reciprocity vanished before insert user1=%s user2=%s", user1_id, user2_id)
            return MatchOutcome.NO_MATCH

        logger.info("[match] created user1=%s user2=%s trigger=%s", user1_id, user2_id, user_id)
        return MatchOutcome.MATCH_CREATED

    def _insert_match(self, user1_id: str, user2_id: str) -> bool:
        with self._session_factory() as db:
            try:
                result = db.execute(
                    text(
                        """
                        INSERT INTO matches (id, user1_id, user2_id, created_at)
                        SELECT :id, :user1_id, :user2_id, :now
                        WHERE EXISTS (
                            SELECT 1 FROM crushes WHERE user_id = :user1_id AND crush_user_id = :user2_id
                          )
                          AND EXISTS (
                            SELECT 1 FROM crushes WHERE user_id = :user2_id AND crush_user_id = :user1_id
                          )
                        """
                    ),
                    {
                        "id": str(uuid.uuid4()),
                        "user1_id": user1_id,
                        "user2_id": user2_id,
                        "now": datetime.now(timezone.utc),
                    },
                )
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConstraintRaceError() from exc
        return result.rowcount == 1

    def get_match(self, user_a: str, user_b: str) -> MatchRecord | None:
        user1_id, user2_id = canonical_pair(user_a, user_b)
        with self._session_factory() as db:
            row = db.execute(
                text("SELECT id, user1_id, user2_id, created_at FROM matches WHERE user1_id=:user1_id AND user2_id=:user2_id"),
                {"user1_id": user1_id, "user2_id": user2_id},
            ).mappings().first()
        return MatchRecord.from_row(row) if row else None

    def is_matched(self, user_a: str, user_b: str) -> bool:
        if str(user_a) == str(user_b):
            return False
        return self.get_match(user_a, user_b) is not None

    def list_matches(self, user_id: str) -> list[UserSummary]:
        with self._session_factory() as db:
            rows = db.execute(
                text(
                    """
                    SELECT ua.id, ua.username, ua.display_name, ua.email, ua.avatar_url,
                           ua.organization_id, ua.is_email_verified
                    FROM matches m
                    JOIN user_account ua
                      ON ua.id = CASE WHEN m.user1_id = :user_id THEN m.user2_id ELSE m.user1_id END
                    WHERE (m.user1_id = :user_id OR m.user2_id = :user_id)
                      AND ua.disabled_at IS NULL
                    ORDER BY m.created_at DESC
                    """
                ),
                {"user_id": str(user_id)},
            ).mappings().all()
        return [UserSummary.from_row(r) for r in rows]

    def pair_state(self, user_a: str, user_b: str) -> PairState:
        user_a, user_b = str(user_a), str(user_b)
        matched = self.is_matched(user_a, user_b)
        with self._session_factory() as db:
            a_to_b = repo.crush_exists(db, user_a, user_b)
            b_to_a = repo.crush_exists(db, user_b, user_a)
        return derive_pair_state(matched, a_to_b, b_to_a)
