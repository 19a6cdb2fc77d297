from typing import Any
from pydantic import BaseModel, Field


class UserSummaryOut(BaseModel):
    id: str
    username: str
    name: str | None = None
    email: str
    avatar_url: str | None = None


class AddCrushRequest(BaseModel):
    crush_user_id: str | None = Field(default=None, alias="crushUserId")

    model_config = {"populate_by_name": True}


class CrushListResponse(BaseModel):
    crushes: list[UserSummaryOut]
    count: int
    cap: int
    remaining: int


class AddCrushResponse(BaseModel):
    message: str
    is_match: bool
    outcome: str
    already_exists: bool = False
    crush: dict[str, Any]


class MatchListResponse(BaseModel):
    matches: list[UserSummaryOut]


class MatchStatusResponse(BaseModel):
    user_id: str
    matched: bool
    state: str
