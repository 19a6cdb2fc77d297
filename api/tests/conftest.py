import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bond import models, repo
from bond.records import UserSummary
from bond.services.organizations import get_or_create_organization

PASSWORD = "Sup3rSecret!"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    models.Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def make_user(session_factory):
    """Create a user in the domain's organization; verified unless told otherwise."""

    def _make(
        email: str,
        *,
        verified: bool = True,
        name: str | None = None,
        password_hash: str | None = None,
        factory=None,
    ) -> UserSummary:
        with (factory or session_factory)() as db:
            org = get_or_create_organization(db, email.rsplit("@", 1)[-1])
            created = repo.create_user(
                db,
                email=email,
                username=email.split("@", 1)[0],
                organization_id=str(org["id"]),
                password_hash=password_hash,
                display_name=name,
            )
            assert created is not None
            if verified:
                repo.set_user_verified(db, str(created["id"]))
                db.commit()
            row = repo.get_user_by_id(db, str(created["id"]))
        return UserSummary.from_row(row)

    return _make


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite with one connection per thread, for lock and race tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'bond.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    models.Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def client(session_factory, monkeypatch):
    pytest.importorskip("fastapi")
    from fastapi.testclient import TestClient

    import bond.main as m
    from bond import config
    from bond.deps import get_session_factory
    from bond.services.rate_limit import limiter

    monkeypatch.setattr(config, "JWT_SECRET", "test-secret")
    limiter.reset()
    m.app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(m.app)
    m.app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from bond.auth.security import create_access_token

    def _headers(user: UserSummary) -> dict[str, str]:
        token = create_access_token(
            user_id=user.id,
            email=user.email,
            username=user.username,
            is_email_verified=user.is_email_verified,
            organization_id=user.organization_id,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
