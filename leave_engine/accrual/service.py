"""Accrual engine — annual allocation, monthly accrual, year-end carry-forward and expiry.

Business logic:
  - Annual allocation, pro-rated to the half day for employees joining mid-year
  - Batch allocation that never aborts on a single employee's failure
  - Monthly accrual for policies with an accrual rate, one credit per month
  - Year-end carry-forward capped by the role/region policy; excess forfeited
  - Expiry of unused carried-forward days after the leave type's expiry date

Every balance change goes through ``BalanceLedger.conditional_update`` with a
guard column (``allocated_at``, ``carry_forward_processed_at``,
``carry_forward_expired_at``) or a unique ``monthly_accruals`` row, which
makes each run safe to repeat.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.accrual.models import MonthlyAccrual
from leave_engine.accrual.schemas import (
    AllocationResult,
    BatchAllocationSummary,
    CarryForwardEntry,
    CarryForwardSummary,
    ExpiryEntry,
    ExpirySummary,
    LeaveAllocation,
    MonthlyAccrualBatchSummary,
    MonthlyAccrualEntry,
    MonthlyAccrualResult,
)
from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import (
    DAYS_QUANTUM,
    MID_MONTH_DAY,
    MONTHS_PER_YEAR,
    AllocationStatus,
)
from leave_engine.common.exceptions import (
    AppException,
    LedgerInvariantError,
    PolicyNotFound,
    ValidationException,
)
from leave_engine.directory.models import Employee
from leave_engine.directory.service import Directory
from leave_engine.ledger.models import ZERO, LeaveBalance
from leave_engine.ledger.service import BalanceLedger
from leave_engine.notifications.service import notify_allocation_completed
from leave_engine.policies.models import LeaveTypeConfiguration
from leave_engine.policies.store import Entitlement, PolicyStore

logger = logging.getLogger(__name__)


def prorate(annual_entitlement: Decimal, date_of_joining: date, year: int) -> Optional[Decimal]:
    """Entitlement for ``year`` given a join date, rounded to the nearest half day.

    Joining in January (month index 0) yields the full year. Returns None
    when the employee joins after ``year``.
    """
    annual = Decimal(annual_entitlement)
    if date_of_joining.year < year:
        return annual
    if date_of_joining.year > year:
        return None
    remaining_months = MONTHS_PER_YEAR - (date_of_joining.month - 1)
    doubled = annual * remaining_months / MONTHS_PER_YEAR * 2
    return doubled.quantize(Decimal("1"), rounding=ROUND_HALF_UP) / 2


def monthly_credit(
    rate: Decimal, date_of_joining: date, year: int, month: int,
) -> Optional[Decimal]:
    """Days credited for ``month``; None before the employee joins.

    Joining after the 15th of the month earns half the rate for that month.
    """
    joined = (date_of_joining.year, date_of_joining.month)
    if joined > (year, month):
        return None
    if joined == (year, month) and date_of_joining.day > MID_MONTH_DAY:
        return (Decimal(rate) / 2).quantize(DAYS_QUANTUM)
    return Decimal(rate)


def _accrues_monthly(entitlement: Entitlement) -> bool:
    return entitlement.accrual_rate is not None and entitlement.accrual_rate > ZERO


def _check_month(month: int) -> None:
    if not 1 <= month <= MONTHS_PER_YEAR:
        raise ValidationException({"month": ["Must be between 1 and 12."]})


def _aggregate(statuses: set[AllocationStatus]) -> AllocationStatus:
    if AllocationStatus.allocated in statuses:
        return AllocationStatus.allocated
    if statuses == {AllocationStatus.already_allocated}:
        return AllocationStatus.already_allocated
    return AllocationStatus.not_eligible


class AccrualEngine:
    """Async scheduler entry points for accrual and year-end processing."""

    # ─────────────────────────────────────────────────────────────────
    # Allocation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def allocate(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        leave_type: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
        emit_event: bool = True,
    ) -> AllocationResult:
        """Allocate ``year``'s entitlement for every leave type in the employee's region.

        Already-applied allocations are reported as ALREADY_ALLOCATED and left
        alone. A row that exists only because carry-forward created it is
        topped up with the allocation.
        """
        now = now or datetime.now(timezone.utc)
        employee = await Directory.get_employee(db, employee_id)

        if not employee.is_eligible or employee.date_of_joining.year > year:
            logger.info("Employee %s not eligible for %s allocation", employee_id, year)
            return AllocationResult(
                employee_id=employee_id, year=year, status=AllocationStatus.not_eligible,
            )

        as_of = max(date(year, 1, 1), employee.date_of_joining)
        if leave_type is not None:
            configs = [await PolicyStore.get_leave_type_config(db, leave_type, employee.region, as_of)]
        else:
            configs = await PolicyStore.list_leave_type_configs(db, employee.region, as_of)

        entries: list[LeaveAllocation] = []
        for config in configs:
            entries.append(
                await AccrualEngine._allocate_one(db, employee, config, year, as_of, now)
            )

        result = AllocationResult(
            employee_id=employee_id,
            year=year,
            status=_aggregate({e.status for e in entries}),
            entries=entries,
            error=None if configs else f"No leave types configured for region {employee.region}",
        )
        if emit_event and result.status == AllocationStatus.allocated:
            await notify_allocation_completed(
                db, year, [employee_id],
                {"employee_id": str(employee_id), "leave_types": [
                    e.leave_type for e in entries if e.status == AllocationStatus.allocated
                ]},
            )
        return result

    @staticmethod
    async def _allocate_one(
        db: AsyncSession,
        employee: Employee,
        config: LeaveTypeConfiguration,
        year: int,
        as_of: date,
        now: datetime,
    ) -> LeaveAllocation:
        entitlement = await PolicyStore.get_entitlement(
            db, config.leave_type, employee.region, employee.role, as_of,
        )
        amount = prorate(entitlement.annual_entitlement, employee.date_of_joining, year)
        if amount is None or _accrues_monthly(entitlement):
            return LeaveAllocation(
                leave_type=config.leave_type, status=AllocationStatus.not_eligible,
            )

        balance = await BalanceLedger.ensure_balance(db, employee.id, config.leave_type, year)
        if balance.allocated_at is not None:
            return LeaveAllocation(
                leave_type=config.leave_type,
                status=AllocationStatus.already_allocated,
                total_entitlement=balance.total_entitlement,
            )

        applied = await BalanceLedger.conditional_update(
            db, employee.id, config.leave_type, year,
            (LeaveBalance.allocated_at.is_(None),),
            total_entitlement=LeaveBalance.total_entitlement + amount,
            allocated_at=now,
        )
        balance = await BalanceLedger.get_balance(db, employee.id, config.leave_type, year)
        if not applied:
            return LeaveAllocation(
                leave_type=config.leave_type,
                status=AllocationStatus.already_allocated,
                total_entitlement=balance.total_entitlement,
            )

        await create_audit_entry(
            db,
            action="allocate",
            entity_type="leave_balance",
            entity_id=balance.id,
            new_values={
                "year": year,
                "allocated": str(amount),
                "total_entitlement": str(balance.total_entitlement),
            },
        )
        logger.info(
            "Allocated %s %s days to %s for %s", amount, config.leave_type, employee.id, year,
        )
        return LeaveAllocation(
            leave_type=config.leave_type,
            status=AllocationStatus.allocated,
            allocated_days=amount,
            total_entitlement=balance.total_entitlement,
        )

    @staticmethod
    async def allocate_batch(
        db: AsyncSession,
        year: int,
        *,
        now: Optional[datetime] = None,
    ) -> BatchAllocationSummary:
        """Allocate for every active employee; failures are collected, not raised."""
        now = now or datetime.now(timezone.utc)
        employees = await Directory.list_active_employees(db)
        summary = BatchAllocationSummary(year=year, total=len(employees))

        for employee in employees:
            employee_id = employee.id
            try:
                async with db.begin_nested():
                    result = await AccrualEngine.allocate(
                        db, employee_id, year, now=now, emit_event=False,
                    )
            except (AppException, SQLAlchemyError) as exc:
                logger.exception("Allocation failed for employee %s (%s)", employee_id, year)
                result = AllocationResult(
                    employee_id=employee_id,
                    year=year,
                    status=AllocationStatus.failed,
                    error=getattr(exc, "detail", None) or str(exc),
                )
            summary.results.append(result)

        counts = {status: 0 for status in AllocationStatus}
        for result in summary.results:
            counts[result.status] += 1
        summary.allocated = counts[AllocationStatus.allocated]
        summary.already_allocated = counts[AllocationStatus.already_allocated]
        summary.not_eligible = counts[AllocationStatus.not_eligible]
        summary.failed = counts[AllocationStatus.failed]

        await notify_allocation_completed(
            db, year,
            [r.employee_id for r in summary.results if r.status == AllocationStatus.allocated],
            {
                "total": summary.total,
                "allocated": summary.allocated,
                "already_allocated": summary.already_allocated,
                "not_eligible": summary.not_eligible,
                "failed": summary.failed,
            },
        )
        logger.info(
            "Allocation batch %s: %d employees, %d allocated, %d already, %d not eligible, %d failed",
            year, summary.total, summary.allocated, summary.already_allocated,
            summary.not_eligible, summary.failed,
        )
        return summary

    # ─────────────────────────────────────────────────────────────────
    # Monthly accrual
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def accrue_month(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        month: int,
        leave_type: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
        emit_event: bool = True,
    ) -> MonthlyAccrualResult:
        """Credit one month of accrual for every monthly-accruing leave type.

        Leave types whose policy has no accrual rate are reported as
        NOT_ELIGIBLE; a month credited before is ALREADY_ALLOCATED.
        """
        _check_month(month)
        now = now or datetime.now(timezone.utc)
        employee = await Directory.get_employee(db, employee_id)

        joined = (employee.date_of_joining.year, employee.date_of_joining.month)
        if not employee.is_eligible or joined > (year, month):
            logger.info("Employee %s not eligible for %s-%02d accrual", employee_id, year, month)
            return MonthlyAccrualResult(
                employee_id=employee_id, year=year, month=month,
                status=AllocationStatus.not_eligible,
            )

        as_of = max(date(year, month, 1), employee.date_of_joining)
        if leave_type is not None:
            configs = [await PolicyStore.get_leave_type_config(db, leave_type, employee.region, as_of)]
        else:
            configs = await PolicyStore.list_leave_type_configs(db, employee.region, as_of)

        entries: list[MonthlyAccrualEntry] = []
        for config in configs:
            entries.append(
                await AccrualEngine._accrue_one(db, employee, config.leave_type, year, month, as_of, now)
            )

        result = MonthlyAccrualResult(
            employee_id=employee_id,
            year=year,
            month=month,
            status=_aggregate({e.status for e in entries}),
            entries=entries,
            error=None if configs else f"No leave types configured for region {employee.region}",
        )
        if emit_event and result.status == AllocationStatus.allocated:
            await notify_allocation_completed(
                db, year, [employee_id],
                {"employee_id": str(employee_id), "month": month, "leave_types": [
                    e.leave_type for e in entries if e.status == AllocationStatus.allocated
                ]},
            )
        return result

    @staticmethod
    async def _accrue_one(
        db: AsyncSession,
        employee: Employee,
        leave_type: str,
        year: int,
        month: int,
        as_of: date,
        now: datetime,
    ) -> MonthlyAccrualEntry:
        entitlement = await PolicyStore.get_entitlement(
            db, leave_type, employee.region, employee.role, as_of,
        )
        if not _accrues_monthly(entitlement):
            return MonthlyAccrualEntry(leave_type=leave_type, status=AllocationStatus.not_eligible)

        existing = (await db.execute(
            select(MonthlyAccrual).where(
                MonthlyAccrual.employee_id == employee.id,
                MonthlyAccrual.leave_type == leave_type,
                MonthlyAccrual.year == year,
                MonthlyAccrual.month == month,
            )
        )).scalars().first()
        if existing is not None:
            return MonthlyAccrualEntry(
                leave_type=leave_type,
                status=AllocationStatus.already_allocated,
                days=existing.days,
                pro_rated=existing.pro_rated,
            )

        days = monthly_credit(entitlement.accrual_rate, employee.date_of_joining, year, month)
        pro_rated = days < entitlement.accrual_rate
        try:
            async with db.begin_nested():
                # The history row claims the month; a concurrent run loses on the unique key
                db.add(MonthlyAccrual(
                    employee_id=employee.id,
                    leave_type=leave_type,
                    year=year,
                    month=month,
                    days=days,
                    pro_rated=pro_rated,
                    created_at=now,
                ))
                await db.flush()
                await BalanceLedger.ensure_balance(db, employee.id, leave_type, year)
                applied = await BalanceLedger.conditional_update(
                    db, employee.id, leave_type, year,
                    total_entitlement=LeaveBalance.total_entitlement + days,
                )
                if not applied:
                    raise LedgerInvariantError(
                        f"Balance row {employee.id}/{leave_type}/{year} missing during accrual."
                    )
        except IntegrityError:
            logger.info(
                "Accrual %s-%02d for %s %s claimed concurrently",
                year, month, employee.id, leave_type,
            )
            return MonthlyAccrualEntry(leave_type=leave_type, status=AllocationStatus.already_allocated)

        balance = await BalanceLedger.get_balance(db, employee.id, leave_type, year)
        await create_audit_entry(
            db,
            action="accrue_month",
            entity_type="leave_balance",
            entity_id=balance.id,
            new_values={
                "year": year,
                "month": month,
                "accrued": str(days),
                "total_entitlement": str(balance.total_entitlement),
            },
        )
        logger.info(
            "Accrued %s %s days to %s for %s-%02d", days, leave_type, employee.id, year, month,
        )
        return MonthlyAccrualEntry(
            leave_type=leave_type,
            status=AllocationStatus.allocated,
            days=days,
            pro_rated=pro_rated,
        )

    @staticmethod
    async def accrue_month_batch(
        db: AsyncSession,
        year: int,
        month: int,
        *,
        now: Optional[datetime] = None,
    ) -> MonthlyAccrualBatchSummary:
        """Monthly accrual for every active employee; failures are collected."""
        _check_month(month)
        now = now or datetime.now(timezone.utc)
        employees = await Directory.list_active_employees(db)
        summary = MonthlyAccrualBatchSummary(year=year, month=month, total=len(employees))

        for employee in employees:
            employee_id = employee.id
            try:
                async with db.begin_nested():
                    result = await AccrualEngine.accrue_month(
                        db, employee_id, year, month, now=now, emit_event=False,
                    )
            except (AppException, SQLAlchemyError) as exc:
                logger.exception("Accrual failed for employee %s (%s-%02d)", employee_id, year, month)
                result = MonthlyAccrualResult(
                    employee_id=employee_id,
                    year=year,
                    month=month,
                    status=AllocationStatus.failed,
                    error=getattr(exc, "detail", None) or str(exc),
                )
            summary.results.append(result)
            if result.status == AllocationStatus.allocated:
                summary.accrued += 1
                summary.accrued_days += sum(
                    (e.days for e in result.entries if e.status == AllocationStatus.allocated),
                    ZERO,
                )
            elif result.status == AllocationStatus.already_allocated:
                summary.already_accrued += 1
            elif result.status == AllocationStatus.not_eligible:
                summary.not_eligible += 1
            else:
                summary.failed += 1

        await notify_allocation_completed(
            db, year,
            [r.employee_id for r in summary.results if r.status == AllocationStatus.allocated],
            {
                "month": month,
                "total": summary.total,
                "accrued": summary.accrued,
                "already_accrued": summary.already_accrued,
                "not_eligible": summary.not_eligible,
                "failed": summary.failed,
            },
        )
        logger.info(
            "Accrual batch %s-%02d: %d employees, %d accrued (%s days), %d already, %d failed",
            year, month, summary.total, summary.accrued, summary.accrued_days,
            summary.already_accrued, summary.failed,
        )
        return summary

    # ─────────────────────────────────────────────────────────────────
    # Year-end carry-forward
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _config_for(
        db: AsyncSession,
        leave_type: str,
        region: str,
        as_of: date,
    ) -> Optional[LeaveTypeConfiguration]:
        try:
            return await PolicyStore.get_leave_type_config(db, leave_type, region, as_of)
        except PolicyNotFound:
            return None

    @staticmethod
    async def apply_carry_forward(
        db: AsyncSession,
        year: int,
        *,
        now: Optional[datetime] = None,
    ) -> CarryForwardSummary:
        """Move unused ``year`` balances into ``year + 1``, capped per policy.

        ``transferred = min(available, max_carry_forward)``; the rest is
        forfeited. A zero cap forfeits everything without creating a
        ``year + 1`` row. Each balance is processed once.
        """
        now = now or datetime.now(timezone.utc)
        as_of = date(year, 12, 31)
        result = await db.execute(
            select(LeaveBalance, Employee)
            .join(Employee, Employee.id == LeaveBalance.employee_id)
            .where(
                LeaveBalance.year == year,
                LeaveBalance.carry_forward_processed_at.is_(None),
                LeaveBalance.available > 0,
            )
            .order_by(Employee.employee_code, LeaveBalance.leave_type)
            .execution_options(populate_existing=True)
        )
        rows = [
            (balance.employee_id, balance.leave_type, employee.region, employee.role)
            for balance, employee in result.all()
        ]

        summary = CarryForwardSummary(year=year)
        for employee_id, leave_type, region, role in rows:
            config = await AccrualEngine._config_for(db, leave_type, region, as_of)
            if config is None or not config.carry_forward_eligible:
                continue
            try:
                async with db.begin_nested():
                    entry = await AccrualEngine._carry_one(
                        db, employee_id, leave_type, year, region, role, as_of, now,
                    )
            except (AppException, SQLAlchemyError):
                summary.failed += 1
                logger.exception(
                    "Carry-forward failed for %s %s/%s", employee_id, leave_type, year,
                )
                continue
            if entry is None:
                continue
            summary.processed += 1
            summary.transferred_days += entry.transferred
            summary.forfeited_days += entry.forfeited
            summary.entries.append(entry)

        logger.info(
            "Carry-forward %s→%s: %d balances, %s transferred, %s forfeited, %d failed",
            year, year + 1, summary.processed, summary.transferred_days,
            summary.forfeited_days, summary.failed,
        )
        return summary

    @staticmethod
    async def _carry_one(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        region: str,
        role: Optional[str],
        as_of: date,
        now: datetime,
    ) -> Optional[CarryForwardEntry]:
        entitlement = await PolicyStore.get_entitlement(db, leave_type, region, role, as_of)
        cap = max(Decimal(entitlement.max_carry_forward), ZERO)

        # Forfeit is computed from the row as the UPDATE sees it, so a debit
        # committed after the sweep's read is never carried forward.
        available = LeaveBalance.total_entitlement - LeaveBalance.used
        claimed = await BalanceLedger.conditional_update(
            db, employee_id, leave_type, year,
            (LeaveBalance.carry_forward_processed_at.is_(None),),
            carry_forward_processed_at=now,
            carry_forward_forfeited=sa.case((available > cap, available - cap), else_=ZERO),
        )
        if not claimed:
            return None

        # The claimed row stays locked until commit; this read matches the UPDATE.
        source = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
        remaining = Decimal(source.available)
        forfeited = Decimal(source.carry_forward_forfeited)
        transferred = max(remaining - forfeited, ZERO)

        if transferred > ZERO:
            await BalanceLedger.ensure_balance(db, employee_id, leave_type, year + 1)
            await BalanceLedger.conditional_update(
                db, employee_id, leave_type, year + 1,
                carry_forward=LeaveBalance.carry_forward + transferred,
                total_entitlement=LeaveBalance.total_entitlement + transferred,
            )

        await create_audit_entry(
            db,
            action="carry_forward",
            entity_type="leave_balance",
            entity_id=source.id,
            new_values={
                "to_year": year + 1,
                "transferred": str(transferred),
                "forfeited": str(forfeited),
            },
        )
        return CarryForwardEntry(
            employee_id=employee_id,
            leave_type=leave_type,
            available=remaining,
            transferred=transferred,
            forfeited=forfeited,
        )

    # ─────────────────────────────────────────────────────────────────
    # Carried-forward expiry
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def expire_carry_forward(
        db: AsyncSession,
        year: int,
        as_of: Optional[date] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ExpirySummary:
        """Remove unused carried-forward days once their expiry date has passed.

        The unused part is ``max(0, carry_forward - used)``: days taken in
        ``year`` are counted against the carried days first.
        """
        now = now or datetime.now(timezone.utc)
        as_of = as_of or now.date()
        result = await db.execute(
            select(LeaveBalance, Employee)
            .join(Employee, Employee.id == LeaveBalance.employee_id)
            .where(
                LeaveBalance.year == year,
                LeaveBalance.carry_forward > 0,
                LeaveBalance.carry_forward_expired_at.is_(None),
            )
            .order_by(Employee.employee_code, LeaveBalance.leave_type)
            .execution_options(populate_existing=True)
        )
        rows = [
            (balance.id, balance.employee_id, balance.leave_type, employee.region)
            for balance, employee in result.all()
        ]

        # Evaluated against the row the UPDATE locks, never a copy read earlier.
        unused_expr = sa.case(
            (
                LeaveBalance.carry_forward > LeaveBalance.used,
                LeaveBalance.carry_forward - LeaveBalance.used,
            ),
            else_=ZERO,
        )

        summary = ExpirySummary(year=year, as_of=as_of)
        for balance_id, employee_id, leave_type, region in rows:
            config = await AccrualEngine._config_for(db, leave_type, region, date(year, 1, 1))
            expiry = config.carry_forward_expiry(year) if config is not None else None
            if expiry is None or expiry >= as_of:
                continue

            try:
                async with db.begin_nested():
                    applied = await BalanceLedger.conditional_update(
                        db, employee_id, leave_type, year,
                        (LeaveBalance.carry_forward_expired_at.is_(None),),
                        total_entitlement=LeaveBalance.total_entitlement - unused_expr,
                        carry_forward_expired=unused_expr,
                        carry_forward_expired_at=now,
                    )
                    if applied:
                        balance = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
                        carry_forward = Decimal(balance.carry_forward)
                        unused = Decimal(balance.carry_forward_expired)
                        await create_audit_entry(
                            db,
                            action="expire_carry_forward",
                            entity_type="leave_balance",
                            entity_id=balance_id,
                            new_values={"expired": str(unused), "expiry_date": expiry.isoformat()},
                        )
            except (AppException, SQLAlchemyError):
                summary.failed += 1
                logger.exception(
                    "Carry-forward expiry failed for %s %s/%s", employee_id, leave_type, year,
                )
                continue
            if not applied:
                continue
            summary.processed += 1
            summary.expired_days += unused
            summary.entries.append(ExpiryEntry(
                employee_id=employee_id,
                leave_type=leave_type,
                carry_forward=carry_forward,
                expired=unused,
            ))

        logger.info(
            "Carry-forward expiry %s (as of %s): %d balances, %s days expired",
            year, as_of, summary.processed, summary.expired_days,
        )
        return summary
