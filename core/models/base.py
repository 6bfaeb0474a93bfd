"""Base model and mixins for all SQLAlchemy models.

Provides:
- Base: Declarative base class for all models
- SalonMixin: UUID primary key, salon_id and audit timestamps

Salon-owned rows carry an indexed ``salon_id``; repositories always filter
on it. Timestamps are timezone-aware.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all salon models."""
    pass


class TimestampMixin:
    """UUID primary key plus created/updated timestamps."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class SalonMixin(TimestampMixin):
    """Adds the owning salon to ``TimestampMixin``."""

    salon_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        index=True,
        nullable=False,
    )
