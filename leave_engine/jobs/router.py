"""Job endpoints — HR_ADMIN triggers for the periodic sweeps."""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.accrual.schemas import (
    AllocationResult,
    BatchAllocationSummary,
    CarryForwardSummary,
    ExpirySummary,
    MonthlyAccrualBatchSummary,
    MonthlyAccrualResult,
)
from leave_engine.accrual.service import AccrualEngine
from leave_engine.auth.dependencies import require_role
from leave_engine.common.constants import UserRole
from leave_engine.database import get_db
from leave_engine.directory.models import Employee
from leave_engine.workflow.schemas import EscalationSummary
from leave_engine.workflow.state_machine import ApprovalStateMachine

router = APIRouter(prefix="", tags=["jobs"])

_admin = require_role(UserRole.hr_admin)


# ── POST /escalations ───────────────────────────────────────────────

@router.post("/escalations", response_model=EscalationSummary)
async def run_escalations(
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Reassign approval steps whose escalation window has elapsed."""
    return await ApprovalStateMachine.check_escalations(db)


# ── POST /allocations/{year} ────────────────────────────────────────

@router.post("/allocations/{year}", response_model=BatchAllocationSummary)
async def run_allocation_batch(
    year: int,
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualEngine.allocate_batch(db, year)


# ── POST /allocations/{year}/{employee_id} ──────────────────────────

@router.post("/allocations/{year}/{employee_id}", response_model=AllocationResult)
async def run_allocation(
    year: int,
    employee_id: uuid.UUID,
    leave_type: Optional[str] = Query(None, max_length=40),
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Allocate one employee, e.g. a mid-year joiner."""
    return await AccrualEngine.allocate(
        db, employee_id, year, leave_type.upper() if leave_type else None,
    )


# ── POST /accruals/{year}/{month} ───────────────────────────────────

@router.post("/accruals/{year}/{month}", response_model=MonthlyAccrualBatchSummary)
async def run_monthly_accrual_batch(
    year: int,
    month: int = Path(..., ge=1, le=12),
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Credit one month of accrual to every active employee."""
    return await AccrualEngine.accrue_month_batch(db, year, month)


# ── POST /accruals/{year}/{month}/{employee_id} ─────────────────────

@router.post("/accruals/{year}/{month}/{employee_id}", response_model=MonthlyAccrualResult)
async def run_monthly_accrual(
    year: int,
    employee_id: uuid.UUID,
    month: int = Path(..., ge=1, le=12),
    leave_type: Optional[str] = Query(None, max_length=40),
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualEngine.accrue_month(
        db, employee_id, year, month, leave_type.upper() if leave_type else None,
    )


# ── POST /carry-forward/{year} ──────────────────────────────────────

@router.post("/carry-forward/{year}", response_model=CarryForwardSummary)
async def run_carry_forward(
    year: int,
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Move unused ``year`` balances into the next year."""
    return await AccrualEngine.apply_carry_forward(db, year)


# ── POST /carry-forward-expiry/{year} ───────────────────────────────

@router.post("/carry-forward-expiry/{year}", response_model=ExpirySummary)
async def run_carry_forward_expiry(
    year: int,
    as_of: Optional[date] = Query(None),
    _: Employee = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await AccrualEngine.expire_carry_forward(db, year, as_of)
