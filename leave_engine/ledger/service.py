"""Balance ledger — the only writer of ``leave_balances`` rows.

Every mutation is a single conditional UPDATE keyed by
(employee_id, leave_type, year). The guard lives in the WHERE clause, so two
concurrent debits on the same key cannot both pass it: the second one
re-evaluates the predicate against the first one's committed result.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import DAYS_QUANTUM
from leave_engine.common.exceptions import (
    InsufficientBalance,
    LedgerInvariantError,
    ValidationException,
)
from leave_engine.directory.service import Directory
from leave_engine.ledger.models import ZERO, LeaveBalance
from leave_engine.policies.store import PolicyStore

logger = logging.getLogger(__name__)


def _key(employee_id: uuid.UUID, leave_type: str, year: int) -> tuple:
    return (
        LeaveBalance.employee_id == employee_id,
        LeaveBalance.leave_type == leave_type,
        LeaveBalance.year == year,
    )


def _days(value: Decimal | int | float | str) -> Decimal:
    days = Decimal(str(value)).quantize(DAYS_QUANTUM)
    if days <= ZERO:
        raise ValidationException({"days": ["Must be greater than zero."]})
    return days


class BalanceLedger:
    """Async, stateless ledger operations."""

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> Optional[LeaveBalance]:
        """Fresh copy of a balance row (identity map refreshed from the database)."""
        result = await db.execute(
            select(LeaveBalance)
            .where(*_key(employee_id, leave_type, year))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
            .order_by(LeaveBalance.leave_type)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Row creation and guarded updates
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def ensure_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> LeaveBalance:
        """Return the balance row, creating an empty one if it does not exist.

        A concurrent creator may win the unique constraint; the insert runs in
        a savepoint so the loser simply reads the winner's row.
        """
        existing = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
        if existing is not None:
            return existing
        try:
            async with db.begin_nested():
                db.add(LeaveBalance(employee_id=employee_id, leave_type=leave_type, year=year))
        except IntegrityError:
            logger.info(
                "Balance %s/%s/%s created concurrently; reusing it",
                employee_id, leave_type, year,
            )
        balance = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
        if balance is None:
            raise LedgerInvariantError(
                f"Balance row {employee_id}/{leave_type}/{year} vanished after creation."
            )
        return balance

    @staticmethod
    async def conditional_update(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        conditions: tuple = (),
        **values: Any,
    ) -> bool:
        """Apply ``values`` to one balance row if ``conditions`` hold.

        Returns False when the row is missing or a condition failed; the row
        is left untouched in that case. Bumps ``version`` on success.
        """
        stmt = (
            update(LeaveBalance)
            .where(*_key(employee_id, leave_type, year), *conditions)
            .values(
                version=LeaveBalance.version + 1,
                updated_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    # ─────────────────────────────────────────────────────────────────
    # Debit / credit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def balance_floor(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        as_of: Optional[date] = None,
    ) -> Decimal:
        """0, or minus the negative-balance limit, for the employee's region."""
        employee = await Directory.get_employee(db, employee_id)
        config = await PolicyStore.get_leave_type_config(db, leave_type, employee.region, as_of)
        return config.balance_floor

    @staticmethod
    async def debit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        reference_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Consume ``days`` from a balance.

        Raises InsufficientBalance, leaving the row unchanged, when the
        result would fall below the leave type's floor. A missing row is only
        created when an empty balance could absorb the debit.
        """
        days = _days(days)
        floor = await BalanceLedger.balance_floor(db, employee_id, leave_type)
        guard = (LeaveBalance.total_entitlement - LeaveBalance.used - days >= floor,)

        applied = await BalanceLedger.conditional_update(
            db, employee_id, leave_type, year, guard, used=LeaveBalance.used + days,
        )
        if not applied:
            current = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
            if current is not None or ZERO - days < floor:
                available = current.available if current is not None else ZERO
                logger.warning(
                    "Debit refused for %s %s/%s: available=%s requested=%s floor=%s",
                    employee_id, leave_type, year, available, days, floor,
                )
                raise InsufficientBalance(leave_type, year, available, days)

            await BalanceLedger.ensure_balance(db, employee_id, leave_type, year)
            applied = await BalanceLedger.conditional_update(
                db, employee_id, leave_type, year, guard, used=LeaveBalance.used + days,
            )
            if not applied:
                current = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
                raise InsufficientBalance(leave_type, year, current.available, days)

        balance = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
        await create_audit_entry(
            db,
            action="debit",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            new_values={
                "days": str(days),
                "used": str(balance.used),
                "available": str(balance.available),
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        logger.info(
            "Debited %s %s days from %s/%s (available=%s)",
            days, leave_type, employee_id, year, balance.available,
        )
        return balance

    @staticmethod
    async def credit(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        days: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        reference_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Reverse a prior debit.

        Crediting more than has been used means a reversal was applied twice
        and raises LedgerInvariantError.
        """
        days = _days(days)
        applied = await BalanceLedger.conditional_update(
            db, employee_id, leave_type, year,
            (LeaveBalance.used >= days,),
            used=LeaveBalance.used - days,
        )
        if not applied:
            current = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
            used = current.used if current is not None else ZERO
            logger.error(
                "Credit of %s exceeds used=%s for %s %s/%s",
                days, used, employee_id, leave_type, year,
            )
            raise LedgerInvariantError(
                f"Cannot credit {days} {leave_type} days for {year}: only {used} used."
            )

        balance = await BalanceLedger.get_balance(db, employee_id, leave_type, year)
        await create_audit_entry(
            db,
            action="credit",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            new_values={
                "days": str(days),
                "used": str(balance.used),
                "available": str(balance.available),
                "reference_id": str(reference_id) if reference_id else None,
            },
        )
        logger.info(
            "Credited %s %s days to %s/%s (available=%s)",
            days, leave_type, employee_id, year, balance.available,
        )
        return balance
