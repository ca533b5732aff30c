"""Accrual ORM model: MonthlyAccrual (one credited month per employee and leave type)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base


class MonthlyAccrual(Base):
    """History row written with each monthly credit.

    The unique key makes a month claimable exactly once, so reruns of the
    monthly job never credit twice.
    """

    __tablename__ = "monthly_accruals"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "year", "month", name="uq_monthly_accrual"
        ),
        sa.Index("ix_monthly_accruals_period", "year", "month"),
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
    month: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    pro_rated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return (
            f"<MonthlyAccrual {self.employee_id} {self.leave_type} "
            f"{self.year}-{self.month:02d} days={self.days}>"
        )
