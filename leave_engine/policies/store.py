"""Policy store: read-only lookups of leave type rules, entitlements and holidays."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.exceptions import PolicyNotFound
from leave_engine.policies.models import Holiday, LeavePolicy, LeaveTypeConfiguration


class Entitlement(BaseModel):
    """Effective entitlement for one employee profile and leave type."""

    model_config = ConfigDict(frozen=True)

    leave_type: str
    annual_entitlement: Decimal
    max_carry_forward: Decimal
    accrual_rate: Optional[Decimal] = None
    policy_id: Optional[uuid.UUID] = None


def _valid_at(model, as_of: date):
    return (
        model.is_active.is_(True),
        model.effective_from <= as_of,
        or_(model.effective_to.is_(None), model.effective_to >= as_of),
    )


class PolicyStore:
    """Async queries over policy tables. Never mutates them."""

    @staticmethod
    async def get_leave_type_config(
        db: AsyncSession,
        leave_type: str,
        region: str,
        as_of: Optional[date] = None,
    ) -> LeaveTypeConfiguration:
        """Configuration in force at ``as_of``; raises PolicyNotFound otherwise."""
        as_of = as_of or date.today()
        result = await db.execute(
            select(LeaveTypeConfiguration)
            .where(
                LeaveTypeConfiguration.leave_type == leave_type,
                LeaveTypeConfiguration.region == region,
                *_valid_at(LeaveTypeConfiguration, as_of),
            )
            .order_by(LeaveTypeConfiguration.effective_from.desc())
            .limit(1)
        )
        config = result.scalars().first()
        if config is None:
            raise PolicyNotFound(leave_type, region)
        return config

    @staticmethod
    async def list_leave_type_configs(
        db: AsyncSession,
        region: str,
        as_of: Optional[date] = None,
    ) -> list[LeaveTypeConfiguration]:
        """Every active leave type configured for a region, one per leave type."""
        as_of = as_of or date.today()
        result = await db.execute(
            select(LeaveTypeConfiguration)
            .where(
                LeaveTypeConfiguration.region == region,
                *_valid_at(LeaveTypeConfiguration, as_of),
            )
            .order_by(
                LeaveTypeConfiguration.leave_type,
                LeaveTypeConfiguration.effective_from.desc(),
            )
        )
        latest: dict[str, LeaveTypeConfiguration] = {}
        for config in result.scalars().all():
            latest.setdefault(config.leave_type, config)
        return list(latest.values())

    @staticmethod
    async def get_entitlement(
        db: AsyncSession,
        leave_type: str,
        region: str,
        role: Optional[str],
        as_of: Optional[date] = None,
    ) -> Entitlement:
        """Resolve the entitlement rule for a role in a region.

        A policy row naming the role wins over the role-agnostic row. Without
        any policy row the leave type's default entitlement applies and
        nothing carries forward.
        """
        as_of = as_of or date.today()
        result = await db.execute(
            select(LeavePolicy)
            .where(
                LeavePolicy.leave_type == leave_type,
                LeavePolicy.region == region,
                or_(LeavePolicy.role.is_(None), LeavePolicy.role == role),
                *_valid_at(LeavePolicy, as_of),
            )
            .order_by(LeavePolicy.effective_from.desc())
        )
        policies = list(result.scalars().all())
        specific = [p for p in policies if p.role is not None and p.role == role]
        generic = [p for p in policies if p.role is None]
        chosen = (specific or generic or [None])[0]
        if chosen is not None:
            return Entitlement(
                leave_type=leave_type,
                annual_entitlement=Decimal(chosen.annual_entitlement),
                max_carry_forward=Decimal(chosen.max_carry_forward or 0),
                accrual_rate=(
                    Decimal(chosen.accrual_rate) if chosen.accrual_rate is not None else None
                ),
                policy_id=chosen.id,
            )

        config = await PolicyStore.get_leave_type_config(db, leave_type, region, as_of)
        return Entitlement(
            leave_type=leave_type,
            annual_entitlement=Decimal(config.default_entitlement or 0),
            max_carry_forward=Decimal("0"),
        )

    @staticmethod
    async def get_holiday_dates(
        db: AsyncSession,
        region: str,
        from_date: date,
        to_date: date,
    ) -> set[date]:
        """Mandatory holidays for a region within [from_date, to_date]."""
        result = await db.execute(
            select(Holiday.date).where(
                Holiday.region == region,
                Holiday.date >= from_date,
                Holiday.date <= to_date,
                Holiday.is_optional.is_(False),
            )
        )
        return {row[0] for row in result.all()}
