"""Accrual Pydantic v2 schemas — results of allocation, monthly accrual and year-end runs."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from leave_engine.common.constants import AllocationStatus


# ═════════════════════════════════════════════════════════════════════
# Allocation
# ═════════════════════════════════════════════════════════════════════


class LeaveAllocation(BaseModel):
    """Outcome for one leave type of one employee."""

    leave_type: str
    status: AllocationStatus
    allocated_days: Decimal = Decimal("0")
    total_entitlement: Optional[Decimal] = None


class AllocationResult(BaseModel):
    employee_id: uuid.UUID
    year: int
    status: AllocationStatus
    entries: list[LeaveAllocation] = Field(default_factory=list)
    error: Optional[str] = None


class BatchAllocationSummary(BaseModel):
    year: int
    total: int = 0
    allocated: int = 0
    already_allocated: int = 0
    not_eligible: int = 0
    failed: int = 0
    results: list[AllocationResult] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Carry-forward and expiry
# ═════════════════════════════════════════════════════════════════════


class CarryForwardEntry(BaseModel):
    employee_id: uuid.UUID
    leave_type: str
    available: Decimal
    transferred: Decimal
    forfeited: Decimal


class CarryForwardSummary(BaseModel):
    year: int
    processed: int = 0
    failed: int = 0
    transferred_days: Decimal = Decimal("0")
    forfeited_days: Decimal = Decimal("0")
    entries: list[CarryForwardEntry] = Field(default_factory=list)


class ExpiryEntry(BaseModel):
    employee_id: uuid.UUID
    leave_type: str
    carry_forward: Decimal
    expired: Decimal


class ExpirySummary(BaseModel):
    year: int
    as_of: date
    processed: int = 0
    failed: int = 0
    expired_days: Decimal = Decimal("0")
    entries: list[ExpiryEntry] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Monthly accrual
# ═════════════════════════════════════════════════════════════════════


class MonthlyAccrualEntry(BaseModel):
    """Credit for one leave type in one month."""

    leave_type: str
    status: AllocationStatus
    days: Decimal = Decimal("0")
    pro_rated: bool = False


class MonthlyAccrualResult(BaseModel):
    employee_id: uuid.UUID
    year: int
    month: int
    status: AllocationStatus
    entries: list[MonthlyAccrualEntry] = Field(default_factory=list)
    error: Optional[str] = None


class MonthlyAccrualBatchSummary(BaseModel):
    year: int
    month: int
    total: int = 0
    accrued: int = 0
    already_accrued: int = 0
    not_eligible: int = 0
    failed: int = 0
    accrued_days: Decimal = Decimal("0")
    results: list[MonthlyAccrualResult] = Field(default_factory=list)
