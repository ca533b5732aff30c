"""Leave request router — apply, decide, cancel, read; balances and team conflicts.

All endpoints require authentication. Reads of other employees' data are
limited to their managers and HR roles.
"""


import uuid
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.auth.dependencies import current_role, get_current_user
from leave_engine.common.constants import UserRole
from leave_engine.common.exceptions import ForbiddenException
from leave_engine.common.rate_limit import limiter
from leave_engine.config import settings
from leave_engine.database import get_db
from leave_engine.directory.models import Employee
from leave_engine.directory.service import Directory
from leave_engine.overlap.service import OverlapService, TeamConflictReport
from leave_engine.requests.schemas import (
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from leave_engine.requests.service import LeaveRequestService
from leave_engine.workflow.schemas import DecisionCreate

router = APIRouter(prefix="", tags=["leave"])

_HR_ROLES = {UserRole.hr, UserRole.hr_admin, UserRole.system_admin}


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=201)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def create_request(
    request: Request,
    body: LeaveRequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates rules and balance, then binds the approval chain."""
    return await LeaveRequestService.create_request(db, employee.id, body)


# ── POST /requests/{id}/decisions ───────────────────────────────────

@router.post("/requests/{request_id}/decisions", response_model=LeaveRequestOut)
async def decide(
    request_id: uuid.UUID,
    body: DecisionCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject at one level; the caller must be assigned to it."""
    return await LeaveRequestService.decide(db, request_id, employee.id, body)


# ── POST /requests/{id}/cancel ──────────────────────────────────────

@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    body: Optional[LeaveCancelRequest] = None,
    employee: Employee = Depends(get_current_user),
    role: UserRole = Depends(current_role),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.cancel(
        db,
        request_id,
        employee.id,
        actor_role=role.value,
        reason=body.reason if body else None,
    )


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    role: UserRole = Depends(current_role),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.get_request(db, request_id, employee.id, role)


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def get_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    employee: Employee = Depends(get_current_user),
    role: UserRole = Depends(current_role),
    db: AsyncSession = Depends(get_db),
):
    """Balances for one year (default: current year) with pending days."""
    if employee_id != employee.id and role not in _HR_ROLES:
        target = await Directory.get_employee(db, employee_id)
        if target.manager_id != employee.id:
            raise ForbiddenException("You can only view your own or your team's balances.")
    year = year or datetime.now(timezone.utc).year
    return await LeaveRequestService.get_balances(db, employee_id, year)


# ── GET /teams/{team_id}/conflicts ──────────────────────────────────

@router.get("/teams/{team_id}/conflicts", response_model=TeamConflictReport)
async def team_conflicts(
    team_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    employee: Employee = Depends(get_current_user),
    role: UserRole = Depends(current_role),
    db: AsyncSession = Depends(get_db),
):
    """Days on which approved absence in the manager's team exceeds the threshold."""
    if team_id != employee.id and role not in _HR_ROLES:
        raise ForbiddenException("Only the team's manager or HR can view team conflicts.")
    return await OverlapService.find_team_conflicts(db, team_id, start, end)
