"""Notification sink — outbox writes and cross-module helper emitters."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import EventType
from leave_engine.notifications.models import DomainEvent

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async outbox operations."""

    @staticmethod
    async def emit(
        db: AsyncSession,
        *,
        event_type: EventType,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        recipient_ids: Iterable[uuid.UUID] = (),
        payload: Optional[dict[str, Any]] = None,
    ) -> DomainEvent:
        """Append an event to the outbox and flush to DB."""
        event = DomainEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            recipient_ids=[str(r) for r in dict.fromkeys(recipient_ids)],
            payload=payload or {},
        )
        db.add(event)
        await db.flush()
        logger.debug("Emitted %s for %s %s", event_type.value, entity_type, entity_id)
        return event

    @staticmethod
    async def pending_events(
        db: AsyncSession,
        *,
        limit: int = 100,
    ) -> list[DomainEvent]:
        """Oldest undispatched events first."""
        result = await db.execute(
            select(DomainEvent)
            .where(DomainEvent.dispatched_at.is_(None))
            .order_by(DomainEvent.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def mark_dispatched(
        db: AsyncSession,
        event_ids: list[uuid.UUID],
    ) -> int:
        """Mark events as delivered. Returns count updated."""
        if not event_ids:
            return 0
        result = await db.execute(
            update(DomainEvent)
            .where(DomainEvent.id.in_(event_ids), DomainEvent.dispatched_at.is_(None))
            .values(dispatched_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]


# ── Cross-module helper emitters ────────────────────────────────────
# Imported by the request, workflow and accrual services. They accept the
# ORM object directly to avoid tight schema coupling.


def _request_payload(leave_request) -> dict[str, Any]:
    return {
        "employee_id": str(leave_request.employee_id),
        "leave_type": leave_request.leave_type,
        "start_date": leave_request.start_date.isoformat(),
        "end_date": leave_request.end_date.isoformat(),
        "total_days": str(leave_request.total_days),
        "status": leave_request.status.value,
    }


async def notify_request_submitted(
    db: AsyncSession,
    leave_request,  # leave_engine.requests.models.LeaveRequest
    approver_ids: Iterable[uuid.UUID],
) -> DomainEvent:
    """Tell the first active approvers a request awaits them."""
    return await NotificationService.emit(
        db,
        event_type=EventType.request_submitted,
        entity_type="leave_request",
        entity_id=leave_request.id,
        recipient_ids=approver_ids,
        payload=_request_payload(leave_request),
    )


async def notify_request_approved(
    db: AsyncSession,
    leave_request,  # leave_engine.requests.models.LeaveRequest
) -> DomainEvent:
    return await NotificationService.emit(
        db,
        event_type=EventType.request_approved,
        entity_type="leave_request",
        entity_id=leave_request.id,
        recipient_ids=[leave_request.employee_id],
        payload=_request_payload(leave_request),
    )


async def notify_request_rejected(
    db: AsyncSession,
    leave_request,  # leave_engine.requests.models.LeaveRequest
    level: int,
    comments: Optional[str],
) -> DomainEvent:
    payload = _request_payload(leave_request)
    payload.update(level=level, comments=comments)
    return await NotificationService.emit(
        db,
        event_type=EventType.request_rejected,
        entity_type="leave_request",
        entity_id=leave_request.id,
        recipient_ids=[leave_request.employee_id],
        payload=payload,
    )


async def notify_request_cancelled(
    db: AsyncSession,
    leave_request,  # leave_engine.requests.models.LeaveRequest
    approver_ids: Iterable[uuid.UUID],
) -> DomainEvent:
    """Tell the employee and anyone still holding the request that it was withdrawn."""
    return await NotificationService.emit(
        db,
        event_type=EventType.request_cancelled,
        entity_type="leave_request",
        entity_id=leave_request.id,
        recipient_ids=[leave_request.employee_id, *approver_ids],
        payload=_request_payload(leave_request),
    )


async def notify_step_escalated(
    db: AsyncSession,
    record,  # leave_engine.workflow.models.ApprovalRecord
    new_approver_ids: list[uuid.UUID],
    escalated_to_role: str,
) -> DomainEvent:
    return await NotificationService.emit(
        db,
        event_type=EventType.step_escalated,
        entity_type="approval_record",
        entity_id=record.id,
        recipient_ids=new_approver_ids,
        payload={
            "request_id": str(record.request_id),
            "level": record.level,
            "escalated_to_role": escalated_to_role,
        },
    )


async def notify_allocation_completed(
    db: AsyncSession,
    year: int,
    employee_ids: list[uuid.UUID],
    summary: dict[str, Any],
) -> DomainEvent:
    return await NotificationService.emit(
        db,
        event_type=EventType.allocation_completed,
        entity_type="leave_allocation",
        recipient_ids=employee_ids,
        payload={"year": year, **summary},
    )
