"""Enums and constants for the leave engine — matching the persisted string values."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Directory ───────────────────────────────────────────────────────

class EmploymentStatus(str, enum.Enum):
    active = "active"
    notice_period = "notice_period"
    relieved = "relieved"
    inactive = "inactive"


class UserRole(str, enum.Enum):
    """Roles carried in access tokens; hierarchy lives in ``dependencies``."""

    employee = "EMPLOYEE"
    manager = "MANAGER"
    hr = "HR"
    hr_admin = "HR_ADMIN"
    system_admin = "SYSTEM_ADMIN"


# ── Approver roles resolved relative to the requester ───────────────

REPORTING_MANAGER = "REPORTING_MANAGER"
SECOND_LEVEL_MANAGER = "SECOND_LEVEL_MANAGER"


# ── Leave requests ──────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"
    cancelled = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not LeaveStatus.pending


class RequestPhase(str, enum.Enum):
    """Aggregate request state exposed to callers."""

    submitted = "SUBMITTED"
    in_progress = "IN_PROGRESS"
    approved = "APPROVED"
    rejected = "REJECTED"
    cancelled = "CANCELLED"


class LeaveDayType(str, enum.Enum):
    full_day = "full_day"
    first_half = "first_half"
    second_half = "second_half"
    quarter_day = "quarter_day"
    hourly = "hourly"


DAY_FRACTIONS: dict[LeaveDayType, Decimal] = {
    LeaveDayType.full_day: Decimal("1"),
    LeaveDayType.first_half: Decimal("0.5"),
    LeaveDayType.second_half: Decimal("0.5"),
    LeaveDayType.quarter_day: Decimal("0.25"),
}


# ── Approval workflow ───────────────────────────────────────────────

class ApprovalDecision(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"


class ExecutionMode(str, enum.Enum):
    sequential = "SEQUENTIAL"
    any_of = "ANY_OF"
    all_of = "ALL_OF"


# ── Accrual ─────────────────────────────────────────────────────────

class AllocationStatus(str, enum.Enum):
    allocated = "ALLOCATED"
    already_allocated = "ALREADY_ALLOCATED"
    not_eligible = "NOT_ELIGIBLE"
    failed = "FAILED"


# ── Team overlap ────────────────────────────────────────────────────

class OverlapCalculation(str, enum.Enum):
    absolute = "ABSOLUTE"
    percentage = "PERCENTAGE"


# ── Events (outbox) ─────────────────────────────────────────────────

class EventType(str, enum.Enum):
    request_submitted = "request_submitted"
    request_approved = "request_approved"
    request_rejected = "request_rejected"
    request_cancelled = "request_cancelled"
    step_escalated = "step_escalated"
    allocation_completed = "allocation_completed"


# ── Misc constants ──────────────────────────────────────────────────

DAYS_QUANTUM = Decimal("0.01")
MONTHS_PER_YEAR = 12
MID_MONTH_DAY = 15
