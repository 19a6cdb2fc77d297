import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..auth.deps import require_verified_user
from ..config import RL_CRUSH_ADD_LIMIT, RL_CRUSH_REMOVE_LIMIT, RL_WINDOW_SECONDS
from ..deps import get_crush_ledger, get_crush_service, get_notification_dispatcher, get_session_factory
from ..http_helpers import crush_error_to_http, require_user_id
from ..records import MatchOutcome, UserSummary
from ..schemas import AddCrushRequest, AddCrushResponse, CrushListResponse
from ..services.crushes import CrushLedger, CrushService
from ..services.errors import CrushError
from ..services.events import record_activity
from ..services.notifications import NotificationDispatcher
from ..services.rate_limit import rate_limit_dependency

logger = logging.getLogger(__name__)

router = APIRouter()

RL_CRUSH_ADD = rate_limit_dependency("crush_add", RL_CRUSH_ADD_LIMIT, RL_WINDOW_SECONDS)
RL_CRUSH_REMOVE = rate_limit_dependency("crush_remove", RL_CRUSH_REMOVE_LIMIT, RL_WINDOW_SECONDS)


def _notify_match(dispatcher: NotificationDispatcher, actor: UserSummary, target: UserSummary) -> None:
    """Queue both match notifications and deliver whatever is due."""
    dispatcher.notify_match(actor, target)
    try:
        dispatcher.process_outbox()
    except SQLAlchemyError:
        logger.exception("[notify] outbox delivery failed user=%s partner=%s", actor.id, target.id)


@router.get("/crushes", response_model=CrushListResponse)
def list_crushes(
    current_user: dict[str, Any] = Depends(require_verified_user),
    ledger: CrushLedger = Depends(get_crush_ledger),
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    try:
        crushes = ledger.list(user_id)
    except SQLAlchemyError as exc:
        logger.exception("[crush] storage error operation=list user_id=%s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch crushes") from exc
    count = len(crushes)
    return {
        "crushes": [c.public() for c in crushes],
        "count": count,
        "cap": ledger.cap,
        "remaining": max(0, ledger.cap - count),
    }


@router.post("/crushes", response_model=AddCrushResponse)
def add_crush(
    payload: AddCrushRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: dict[str, Any] = Depends(require_verified_user),
    service: CrushService = Depends(get_crush_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_CRUSH_ADD,
) -> dict[str, Any]:
    user_id = str(current_user["id"])
    target_id = require_user_id(payload.crush_user_id)
    try:
        result = service.declare(user_id, target_id)
    except CrushError as exc:
        logger.info("[crush] rejected user_id=%s crush_user_id=%s reason=%s", user_id, target_id, exc.reason)
        raise crush_error_to_http(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("[crush] storage error operation=declare user_id=%s crush_user_id=%s", user_id, target_id)
        raise HTTPException(status_code=500, detail="Failed to add crush") from exc

    if result.outcome == MatchOutcome.MATCH_CREATED:
        background_tasks.add_task(_notify_match, dispatcher, result.actor, result.target)

    record_activity(
        session_factory,
        request,
        action="crush_added",
        user_id=user_id,
        details={
            "crush_user_id": target_id,
            "is_mutual": result.is_match,
            "outcome": result.outcome.value,
            "already_exists": not result.created,
        },
    )

    if result.is_match:
        message = "It's a match! 🎉"
    elif not result.created:
        message = "You already have this person as a crush"
    else:
        message = "Crush added successfully"
    return {
        "message": message,
        "is_match": result.is_match,
        "outcome": result.outcome.value,
        "already_exists": not result.created,
        "crush": result.crush.to_dict(),
    }


def _withdraw(request: Request, user_id: str, target_id: str, ledger: CrushLedger, session_factory) -> dict[str, Any]:
    try:
        removed = ledger.withdraw(user_id, target_id)
    except SQLAlchemyError as exc:
        logger.exception("[crush] storage error operation=withdraw user_id=%s crush_user_id=%s", user_id, target_id)
        raise HTTPException(status_code=500, detail="Failed to remove crush") from exc
    record_activity(
        session_factory,
        request,
        action="crush_removed",
        user_id=user_id,
        details={"crush_user_id": target_id, "removed": removed},
    )
    return {"message": "Crush removed successfully", "removed": removed}


@router.delete("/crushes/{crush_user_id}")
def remove_crush(
    crush_user_id: str,
    request: Request,
    current_user: dict[str, Any] = Depends(require_verified_user),
    ledger: CrushLedger = Depends(get_crush_ledger),
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_CRUSH_REMOVE,
) -> dict[str, Any]:
    return _withdraw(request, str(current_user["id"]), require_user_id(crush_user_id), ledger, session_factory)


@router.delete("/crushes")
def remove_crush_by_query(
    request: Request,
    crush_user_id: str | None = None,
    crush_user_id_camel: str | None = Query(None, alias="crushUserId"),
    current_user: dict[str, Any] = Depends(require_verified_user),
    ledger: CrushLedger = Depends(get_crush_ledger),
    session_factory: sessionmaker = Depends(get_session_factory),
    _: None = RL_CRUSH_REMOVE,
) -> dict[str, Any]:
    target_id = require_user_id(crush_user_id or crush_user_id_camel)
    return _withdraw(request, str(current_user["id"]), target_id, ledger, session_factory)
