import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..auth.deps import require_verified_user
from ..deps import get_match_detector, get_session_factory
from ..http_helpers import require_user_id
from ..records import PairState
from ..schemas import MatchListResponse, MatchStatusResponse
from ..services.events import record_activity
from ..services.matching import MatchDetector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/matches", response_model=MatchListResponse)
def list_matches(
    request: Request,
    current_user: dict[str, Any] = Depends(require_verified_user),
    detector: MatchDetector = Depends(get_match_detector),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    try:
        matches = detector.list_matches(user_id)
    except SQLAlchemyError as exc:
        logger.exception("[match] storage error operation=list user_id=%s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch matches") from exc
    record_activity(
        session_factory,
        request,
        action="matches_viewed",
        user_id=user_id,
        details={"matches_count": len(matches)},
    )
    return {"matches": [m.public() for m in matches]}


@router.get("/matches/{other_user_id}", response_model=MatchStatusResponse)
def get_match_status(
    other_user_id: str,
    current_user: dict[str, Any] = Depends(require_verified_user),
    detector: MatchDetector = Depends(get_match_detector),
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    other_user_id = require_user_id(other_user_id, field="user_id")
    try:
        state = detector.pair_state(user_id, other_user_id)
    except SQLAlchemyError as exc:
        logger.exception("[match] storage error operation=status user_id=%s other=%s", user_id, other_user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch match status") from exc
    return {"user_id": other_user_id, "matched": state == PairState.MATCHED, "state": state.value}
