import uuid
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from .database import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organization"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    domain = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class UserAccount(Base):
    __tablename__ = "user_account"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    email = Column(String, nullable=False, unique=True)
    username = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    organization_id = Column(String(36), ForeignKey("organization.id"), nullable=False)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    avatar_url = Column(String, nullable=True)
    disabled_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_user_account_organization", "organization_id", "is_email_verified"),
    )


class EmailVerificationToken(Base):
    __tablename__ = "email_verification_token"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String, nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Crush(Base):
    __tablename__ = "crushes"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    crush_user_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "crush_user_id", name="uq_crush_pair"),
        CheckConstraint("user_id <> crush_user_id", name="chk_crush_no_self"),
        Index("idx_crushes_crush_user_id", "crush_user_id"),
    )


class Match(Base):
    """Canonical pair: user1_id < user2_id is guaranteed by the writer, not the store."""

    __tablename__ = "matches"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user1_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    user2_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_match_pair"),
        Index("idx_matches_user2_id", "user2_id"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), nullable=True, index=True)
    action = Column(String, nullable=False)
    details = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NotificationOutbox(Base):
    __tablename__ = "notifications_outbox"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False)
    notification_type = Column(String, nullable=False)
    payload_json = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="pending")
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    idempotency_key = Column(String, nullable=False, unique=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_outbox_status", "status", "scheduled_for"),
    )


class NotificationInApp(Base):
    __tablename__ = "notifications_in_app"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_id = Column(String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_type = Column(String, nullable=False)
    payload_json = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    read_at = Column(DateTime(timezone=True), nullable=True)
