from fastapi import FastAPI

from .auth import router as auth_router
from .crushes import router as crushes_router
from .match import router as match_router
from .notifications import router as notifications_router
from .users import router as users_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(users_router, tags=["users"])
    app.include_router(crushes_router, tags=["crushes"])
    app.include_router(match_router, tags=["matches"])
    app.include_router(notifications_router, tags=["notifications"])


__all__ = ["include_modular_routers"]
