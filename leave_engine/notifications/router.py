"""Outbox endpoints — the notifier polls undispatched events and acknowledges them."""


from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import require_role
from leave_engine.common.constants import UserRole
from leave_engine.database import get_db
from leave_engine.directory.models import Employee
from leave_engine.notifications.schemas import DispatchAck, DomainEventOut
from leave_engine.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["events"])


# ── GET / — undispatched events, oldest first ───────────────────────

@router.get("", response_model=list[DomainEventOut])
async def list_pending_events(
    limit: int = Query(100, ge=1, le=500),
    _: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    events = await NotificationService.pending_events(db, limit=limit)
    return [DomainEventOut.model_validate(e) for e in events]


# ── POST /dispatched — acknowledge delivery ─────────────────────────

@router.post("/dispatched")
async def mark_dispatched(
    body: DispatchAck,
    _: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Mark events as delivered; already-acknowledged ids are ignored."""
    count = await NotificationService.mark_dispatched(db, body.event_ids)
    return {"message": "Events marked as dispatched", "data": {"count": count}}
