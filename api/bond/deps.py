"""Request-scoped providers for the storage handle and the crush services.

Everything that touches the database receives the session factory through
``get_session_factory``; tests swap it with ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from bond import config
from bond.database import SessionLocal
from bond.services.crushes import CrushLedger, CrushService
from bond.services.matching import MatchDetector
from bond.services.notifications import NotificationDispatcher


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_crush_ledger(session_factory: sessionmaker = Depends(get_session_factory)) -> CrushLedger:
    return CrushLedger(
        session_factory,
        cap=config.CRUSH_CAP,
        allow_cross_organization=config.ALLOW_CROSS_ORGANIZATION_CRUSH,
    )


def get_match_detector(session_factory: sessionmaker = Depends(get_session_factory)) -> MatchDetector:
    return MatchDetector(session_factory)


def get_crush_service(
    ledger: CrushLedger = Depends(get_crush_ledger),
    detector: MatchDetector = Depends(get_match_detector),
) -> CrushService:
    return CrushService(ledger, detector)


def get_notification_dispatcher(session_factory: sessionmaker = Depends(get_session_factory)) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, max_attempts=config.NOTIFICATION_MAX_ATTEMPTS)
