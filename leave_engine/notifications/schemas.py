"""Outbox Pydantic schemas for the notifier feed."""


import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from leave_engine.common.constants import EventType


class DomainEventOut(BaseModel):
    """Single outbox event as handed to the notifier."""

    id: uuid.UUID
    event_type: EventType
    entity_type: str
    entity_id: Optional[uuid.UUID] = None
    recipient_ids: list[uuid.UUID] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    dispatched_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DispatchAck(BaseModel):
    """Body of ``POST /events/dispatched``."""

    event_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)
