"""Domain event outbox ORM model.

Rows are written in the same transaction as the state change they describe;
an external notifier reads undispatched rows and delivers them.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.common.constants import EventType
from leave_engine.database import Base


class DomainEvent(Base):
    __tablename__ = "domain_events"
    __table_args__ = (
        sa.Index("ix_domain_events_undispatched", "dispatched_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    event_type: Mapped[EventType] = mapped_column(
        sa.Enum(EventType, name="event_type", native_enum=False),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    recipient_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
