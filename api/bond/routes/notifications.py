from typing import Any

from fastapi import APIRouter, Depends

from ..auth.deps import require_verified_user
from ..deps import get_notification_dispatcher
from ..services.notifications import NotificationDispatcher

router = APIRouter()


@router.get("/notifications")
def list_notifications(
    limit: int = 50,
    current_user: dict[str, Any] = Depends(require_verified_user),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> dict[str, Any]:
    return {"notifications": dispatcher.list_in_app(str(current_user["id"]), limit=limit)}
