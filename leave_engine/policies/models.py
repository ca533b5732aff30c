"""Policy ORM models: LeaveTypeConfiguration, LeavePolicy, Holiday."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from leave_engine.database import Base


class LeaveTypeConfiguration(Base):
    """Per-region rules for one leave type over an effective window."""

    __tablename__ = "leave_type_configurations"
    __table_args__ = (
        sa.UniqueConstraint(
            "leave_type", "region", "effective_from", name="uq_leave_type_config",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    region: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    default_entitlement: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), default=Decimal("0"),
    )

    # Negative balance
    allow_negative_balance: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    negative_balance_limit: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), default=Decimal("0"),
    )

    # Application rules
    requires_documentation: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    documentation_threshold_days: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    min_advance_notice_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)

    # Duration granularity
    full_day_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    half_day_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    quarter_day_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    hourly_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    hours_per_day: Mapped[Decimal] = mapped_column(sa.Numeric(4, 2), default=Decimal("8"))

    # Carry-forward
    carry_forward_eligible: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    carry_forward_expiry_month: Mapped[Optional[int]] = mapped_column(sa.Integer)
    carry_forward_expiry_day: Mapped[Optional[int]] = mapped_column(sa.Integer)

    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)

    @property
    def balance_floor(self) -> Decimal:
        """Lowest ``available`` a debit may leave behind."""
        if self.allow_negative_balance:
            return -(self.negative_balance_limit or Decimal("0"))
        return Decimal("0")

    def carry_forward_expiry(self, year: int) -> Optional[date]:
        """Last day carried-forward days can be used in ``year``, if they expire."""
        if not self.carry_forward_expiry_month or not self.carry_forward_expiry_day:
            return None
        return date(year, self.carry_forward_expiry_month, self.carry_forward_expiry_day)

    def __repr__(self) -> str:
        return f"<LeaveTypeConfiguration {self.leave_type}/{self.region}>"


class LeavePolicy(Base):
    """Entitlement rule for a leave type in a region, optionally per role."""

    __tablename__ = "leave_policies"
    __table_args__ = (
        sa.Index("ix_leave_policies_lookup", "leave_type", "region", "role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    region: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(sa.String(50))
    annual_entitlement: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)
    max_carry_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 2), default=Decimal("0"),
    )
    # Days credited per month; when set the leave type accrues monthly
    # instead of receiving ``annual_entitlement`` up front.
    accrual_rate: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(6, 2))
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)


class Holiday(Base):
    __tablename__ = "holidays"
    __table_args__ = (
        sa.UniqueConstraint("region", "date", name="uq_holiday_region_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    region: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    is_optional: Mapped[bool] = mapped_column(sa.Boolean, default=False)
