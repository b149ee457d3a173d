"""SQLAlchemy ORM models for CVForge."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
DocumentJSON = JSON().with_variant(JSONB(), "postgresql")

ACTIVITY_TYPES = (
    "cv_create",
    "cv_view",
    "cv_edit",
    "cv_delete",
    "profile_update",
)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class CVDocument(Base):
    """A user's CV; section content is stored as one JSON document."""

    __tablename__ = "cv_documents"
    __table_args__ = (
        Index("idx_cv_documents_owner_created", "owner_id", "created_at"),
        Index("idx_cv_documents_status", "status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    template: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        server_default=text("'modern'"),
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default=text("'draft'"),
    )
    cv_language: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
        server_default=text("'tr'"),
    )
    content: Mapped[dict[str, Any]] = mapped_column(DocumentJSON, nullable=False)
    view_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class UserProfile(Base):
    """Profile details for a principal issued by the identity provider."""

    __tablename__ = "user_profiles"

    principal_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class ActivityEvent(Base):
    """Audit trail of user actions against their CVs and profile."""

    __tablename__ = "activity_events"
    __table_args__ = (
        CheckConstraint(
            "activity_type IN (" + ", ".join(f"'{name}'" for name in ACTIVITY_TYPES) + ")",
            name="ck_activity_events_type",
        ),
        Index("idx_activity_events_principal_created", "principal_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(DocumentJSON, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
