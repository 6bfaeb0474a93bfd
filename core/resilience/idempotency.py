"""
Idempotency Store: prevent duplicate processing.

Ensures externally delivered events (payment webhooks) are applied at most
once, even when the processor redelivers them. The check and the record
are one INSERT guarded by a unique constraint, so two concurrent deliveries
of the same event cannot both pass. The caller applies the event's effects
in the same transaction: if they fail, the record rolls back with them and
a redelivery is processed normally.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, String, UniqueConstraint, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, TimestampMixin, utcnow

logger = logging.getLogger(__name__)


class IdempotencyStatus(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    IGNORED = "ignored"


class ProcessedEvent(TimestampMixin, Base):
    """One row per external event id that has been applied."""

    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("event_id", name="uq_webhook_events_event_id"),)

    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="stripe")
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "event_id": self.event_id,
            "source": self.source,
            "event_type": self.event_type,
            "status": self.status,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


def generate_idempotency_key(operation: str, **kwargs: Any) -> str:
    """
    Generate a deterministic idempotency key from operation + params.
    Same inputs always produce the same key.
    """
    data = json.dumps({"op": operation, **kwargs}, sort_keys=True, default=str)
    return hashlib.sha256(data.encode()).hexdigest()[:32]


class IdempotencyStore:
    """Database-backed idempotency store bound to the caller's session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check(self, event_id: str) -> ProcessedEvent | None:
        """Return the record if ``event_id`` was already applied."""
        result = await self.session.execute(
            select(ProcessedEvent).where(ProcessedEvent.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def claim(
        self,
        event_id: str,
        event_type: str,
        *,
        source: str = "stripe",
        status: IdempotencyStatus = IdempotencyStatus.PROCESSED,
        payload: dict | None = None,
    ) -> bool:
        """
        Record ``event_id`` inside a SAVEPOINT.
        Returns False if it is already recorded (duplicate delivery).
        """
        record = ProcessedEvent(
            event_id=event_id,
            source=source,
            event_type=event_type,
            status=status.value,
            payload=payload,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()
        except IntegrityError:
            logger.info("Duplicate event skipped", extra={"event_id": event_id, "event_type": event_type})
            return False
        return True

    async def mark(self, event_id: str, status: IdempotencyStatus) -> None:
        record = await self.check(event_id)
        if record is not None:
            record.status = status.value
            await self.session.flush()
