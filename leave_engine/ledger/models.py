"""Ledger ORM model: LeaveBalance."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base

ZERO = Decimal("0")


class LeaveBalance(Base):
    """Balance of one employee for one leave type and year.

    ``total_entitlement`` already includes carried-forward days; ``available``
    is generated by the database and is never assigned from Python.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "year", name="uq_leave_balance"
        ),
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
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_entitlement: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, default=ZERO
    )
    used: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False, default=ZERO)
    carry_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, default=ZERO
    )
    # available is a GENERATED ALWAYS column — read-only in ORM
    available: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2),
        sa.Computed("total_entitlement - used"),
    )

    # Accrual bookkeeping
    allocated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    carry_forward_processed_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    carry_forward_forfeited: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, default=ZERO
    )
    carry_forward_expired: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), nullable=False, default=ZERO
    )
    carry_forward_expired_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance {self.employee_id} {self.leave_type}/{self.year} "
            f"total={self.total_entitlement} used={self.used}>"
        )
