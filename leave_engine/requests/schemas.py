"""Leave request Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from leave_engine.common.constants import LeaveDayType, LeaveStatus, RequestPhase
from leave_engine.overlap.detector import Conflict
from leave_engine.workflow.schemas import ApprovalRecordOut


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class DayDetail(BaseModel):
    """Duration unit for a single date; ``hours`` only for hourly leave."""

    type: LeaveDayType = LeaveDayType.full_day
    hours: Optional[Decimal] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value):
        if isinstance(value, str):
            return {"type": value}
        return value

    @model_validator(mode="after")
    def _hours_for_hourly(self) -> DayDetail:
        if self.type == LeaveDayType.hourly and self.hours is None:
            raise ValueError("hours is required for hourly leave")
        if self.type != LeaveDayType.hourly and self.hours is not None:
            raise ValueError("hours is only allowed for hourly leave")
        return self


class LeaveRequestCreate(BaseModel):
    """Body of ``POST /requests``."""

    leave_type: str = Field(min_length=1, max_length=40)
    start_date: date
    end_date: date
    day_details: Optional[dict[date, DayDetail]] = None
    reason: Optional[str] = Field(default=None, max_length=2000)
    attachment_id: Optional[str] = Field(default=None, max_length=200)

    @field_validator("leave_type")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def _check_dates(self) -> LeaveRequestCreate:
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class LeaveRequestOut(BaseModel):
    """Leave request with its approval chain state."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    day_details: dict[str, str] = Field(default_factory=dict)
    total_days: Decimal
    reason: Optional[str] = None
    attachment_id: Optional[str] = None
    status: LeaveStatus
    workflow_id: Optional[uuid.UUID] = None
    workflow_name: Optional[str] = None
    version: int
    created_at: datetime
    decided_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None

    # Computed
    phase: Optional[RequestPhase] = None
    current_level: Optional[int] = None
    approval_records: list[ApprovalRecordOut] = Field(default_factory=list)
    warnings: list[Conflict] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type with pending days alongside."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    leave_type: str
    year: int
    total_entitlement: Decimal
    used: Decimal
    carry_forward: Decimal
    available: Decimal
    pending: Decimal = Decimal("0")
    allocated_at: Optional[datetime] = None
    carry_forward_forfeited: Decimal = Decimal("0")
    carry_forward_expired: Decimal = Decimal("0")
