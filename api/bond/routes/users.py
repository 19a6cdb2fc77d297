import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .. import repo
from ..auth.deps import require_verified_user
from ..deps import get_session_factory
from ..services.events import record_activity

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users")
def list_users(
    request: Request,
    current_user: dict[str, Any] = Depends(require_verified_user),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> dict[str, Any]:
    """Verified members of the caller's organization."""
    user_id = str(current_user["id"])
    organization_id = current_user.get("organization_id")
    if not organization_id:
        return {"users": []}
    try:
        with session_factory() as db:
            members = repo.list_organization_members(db, organization_id, exclude_user_id=user_id)
            crushed = {m.id for m in members if repo.crush_exists(db, user_id, m.id)}
    except SQLAlchemyError as exc:
        logger.exception("[users] storage error user_id=%s", user_id)
        raise HTTPException(status_code=500, detail="Failed to fetch users") from exc

    record_activity(
        session_factory,
        request,
        action="users_viewed",
        user_id=user_id,
        details={"users_count": len(members)},
    )
    return {"users": [{**m.public(), "has_crush": m.id in crushed} for m in members]}
