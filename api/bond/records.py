"""Typed records returned by the crush/match storage layer.

Rows come back from raw SQL as mappings whose column types depend on the
driver (Postgres hands back ``datetime`` objects, SQLite hands back ISO
strings). The ``from_row`` constructors normalize that and reject rows that
are missing required columns, so nothing past the storage boundary handles
untyped dicts.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping


class MatchOutcome(str, enum.Enum):
    NO_MATCH = "no_match"
    MATCH_CREATED = "match_created"
    ALREADY_MATCHED = "already_matched"


class PairState(str, enum.Enum):
    NO_RELATION = "no_relation"
    ONE_SIDED = "one_sided"
    MATCHED = "matched"


def coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require(row: Mapping[str, Any], *keys: str) -> None:
    missing = [k for k in keys if row.get(k) in (None, "")]
    if missing:
        raise ValueError(f"row is missing required columns: {', '.join(missing)}")


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    a, b = str(user_a), str(user_b)
    return (a, b) if a < b else (b, a)


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str
    email: str
    organization_id: str
    is_email_verified: bool
    name: str | None = None
    avatar_url: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.username

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UserSummary:
        _require(row, "id", "username", "email", "organization_id")
        return cls(
            id=str(row["id"]),
            username=str(row["username"]),
            email=str(row["email"]),
            organization_id=str(row["organization_id"]),
            is_email_verified=bool(row.get("is_email_verified")),
            name=(str(row["display_name"]) if row.get("display_name") else None),
            avatar_url=(str(row["avatar_url"]) if row.get("avatar_url") else None),
        )

    def public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "avatar_url": self.avatar_url,
        }


@dataclass(frozen=True)
class CrushRecord:
    id: str
    user_id: str
    crush_user_id: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CrushRecord:
        _require(row, "id", "user_id", "crush_user_id", "created_at")
        if str(row["user_id"]) == str(row["crush_user_id"]):
            raise ValueError("crush row references the same user twice")
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            crush_user_id=str(row["crush_user_id"]),
            created_at=coerce_datetime(row["created_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["created_at"] = self.created_at.isoformat()
        return out


@dataclass(frozen=True)
class MatchRecord:
    id: str
    user1_id: str
    user2_id: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> MatchRecord:
        _require(row, "id", "user1_id", "user2_id", "created_at")
        user1_id, user2_id = str(row["user1_id"]), str(row["user2_id"])
        if not user1_id < user2_id:
            raise ValueError("match row is not in canonical order")
        return cls(id=str(row["id"]), user1_id=user1_id, user2_id=user2_id, created_at=coerce_datetime(row["created_at"]))
