from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base


class _LegacyAnnotations:
    # Column attributes carry plain type hints rather than Mapped[].
    __allow_unmapped__ = True


Base = declarative_base(cls=_LegacyAnnotations)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    __tablename__ = "profiles"

    id: int = Column(Integer, primary_key=True, index=True)
    email: str = Column(String(255), unique=True, nullable=False, index=True)
    full_name: str = Column(String(255), nullable=False)
    role: str = Column(String(32), nullable=False, index=True)
    department: str = Column(String(32), nullable=False, index=True)
    is_active: bool = Column(Boolean, default=True, nullable=False)
    hashed_password: str = Column(String(255), nullable=False)
    created_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="ck_batches_max_capacity_positive"),
        CheckConstraint(
            "current_count >= 0 AND current_count <= max_capacity",
            name="ck_batches_current_count_range",
        ),
    )

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String(255), nullable=False)
    description: str | None = Column(Text, nullable=True)
    max_capacity: int = Column(Integer, nullable=False)
    current_count: int = Column(Integer, nullable=False, default=0)
    department: str = Column(String(32), nullable=False, index=True)
    status: str = Column(String(32), nullable=False, default="open")
    coordinator: str | None = Column(String(255), nullable=True)
    start_date: date | None = Column(Date, nullable=True)
    end_date: date | None = Column(Date, nullable=True)
    created_by: int | None = Column(
        Integer,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class WebhookConfig(Base):
    __tablename__ = "webhook_configs"

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String(255), nullable=False)
    webhook_url: str = Column(String(2048), nullable=False)
    department: str = Column(String(32), nullable=False, index=True)
    is_active: bool = Column(Boolean, default=True, nullable=False)
    created_by: int | None = Column(
        Integer,
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class NotificationRecord(Base):
    """Outcome of one webhook delivery, written once and never updated.

    The one exception is ``batch_id``/``webhook_config_id``: deleting the
    referenced batch or webhook nulls them in the same commit as the delete.
    """

    __tablename__ = "notifications"

    id: int = Column(Integer, primary_key=True, index=True)
    batch_id: int | None = Column(
        Integer,
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    webhook_config_id: int | None = Column(
        Integer,
        ForeignKey("webhook_configs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    message: str = Column(Text, nullable=False)
    status: str = Column(String(32), nullable=False, default="pending")
    sent_at: datetime | None = Column(DateTime(timezone=True), nullable=True)
    error_message: str | None = Column(Text, nullable=True)
    attempts: int = Column(Integer, nullable=False, default=0)
    response_status_code: int | None = Column(Integer, nullable=True)
    created_at: datetime = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
