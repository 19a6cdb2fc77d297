from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


def extract_domain(email: str) -> str:
    email_norm = str(email or "").strip().lower()
    return email_norm.rsplit("@", 1)[-1] if "@" in email_norm else ""


def get_organization_by_domain(db, domain: str) -> dict[str, Any] | None:
    row = db.execute(
        text("SELECT id, domain, name, created_at FROM organization WHERE domain=:domain LIMIT 1"),
        {"domain": domain},
    ).mappings().first()
    return dict(row) if row else None


def get_or_create_organization(db, domain: str) -> dict[str, Any]:
    """Resolve the organization for an email domain, creating it on first sight.

    Two registrations from a new domain can race; the loser hits the unique
    index on ``domain`` and re-reads the winner's row.
    """
    domain = str(domain or "").strip().lower()
    if not domain:
        raise ValueError("Email domain required")

    existing = get_organization_by_domain(db, domain)
    if existing:
        return existing

    try:
        db.execute(
            text("INSERT INTO organization (id, domain, name, created_at) VALUES (:id, :domain, :name, :now)"),
            {"id": str(uuid.uuid4()), "domain": domain, "name": domain, "now": datetime.now(timezone.utc)},
        )
        db.commit()
        logger.info("[organization] created domain=%s", domain)
    except IntegrityError:
        db.rollback()
        logger.info("[organization] concurrent create for domain=%s, re-reading", domain)

    row = get_organization_by_domain(db, domain)
    if not row:
        raise RuntimeError(f"Unable to initialize organization for {domain}")
    return row


def resolve_organization_for_email(db, email: str) -> dict[str, Any]:
    return get_or_create_organization(db, extract_domain(email))
