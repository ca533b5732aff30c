"""Leave request ORM model."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import LeaveStatus
from leave_engine.database import Base


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    leave_type: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    day_details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachment_id: Mapped[Optional[str]] = mapped_column(sa.String(200))
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", native_enum=False),
        default=LeaveStatus.pending,
    )

    # Workflow binding snapshot
    workflow_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("workflow_configurations.id")
    )
    workflow_name: Mapped[Optional[str]] = mapped_column(sa.String(200))

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    approval_records: Mapped[list["ApprovalRecord"]] = relationship(
        back_populates="request",
        order_by="ApprovalRecord.level",
        cascade="all, delete-orphan",
    )

    @property
    def year(self) -> int:
        return self.start_date.year

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.leave_type} "
            f"{self.start_date}..{self.end_date} {self.status.value}>"
        )
