"""Directory service: employee lookups, approver resolution, team membership."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import REPORTING_MANAGER, SECOND_LEVEL_MANAGER
from leave_engine.common.exceptions import NotFoundException
from leave_engine.directory.models import Employee

logger = logging.getLogger(__name__)


class Directory:
    """Read-only async queries against the employee directory."""

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        active_only: bool = False,
    ) -> Employee:
        """Load an employee or raise NotFoundException."""
        query = select(Employee).where(Employee.id == employee_id)
        if active_only:
            query = query.where(Employee.is_active.is_(True))
        employee = (await db.execute(query)).scalars().first()
        if employee is None:
            raise NotFoundException("Employee", str(employee_id))
        return employee

    @staticmethod
    async def list_active_employees(
        db: AsyncSession,
        *,
        region: Optional[str] = None,
    ) -> list[Employee]:
        query = (
            select(Employee)
            .where(Employee.is_active.is_(True))
            .order_by(Employee.employee_code)
        )
        if region is not None:
            query = query.where(Employee.region == region)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def _active_by_id(
        db: AsyncSession,
        employee_id: Optional[uuid.UUID],
    ) -> Optional[Employee]:
        if employee_id is None:
            return None
        result = await db.execute(
            select(Employee).where(
                Employee.id == employee_id,
                Employee.is_active.is_(True),
            )
        )
        return result.scalars().first()

    @staticmethod
    async def resolve_approvers(
        db: AsyncSession,
        approver_role: str,
        requester: Employee,
    ) -> list[uuid.UUID]:
        """Return the ids of the employees who hold ``approver_role`` for a requester.

        ``REPORTING_MANAGER`` and ``SECOND_LEVEL_MANAGER`` are resolved through
        the requester's reporting line; any other value is treated as a
        directory role and expands to every active holder except the
        requester. An empty list means nobody can act on the step.
        """
        if approver_role == REPORTING_MANAGER:
            manager = await Directory._active_by_id(db, requester.manager_id)
            return [manager.id] if manager else []

        if approver_role == SECOND_LEVEL_MANAGER:
            if requester.manager_id is None:
                return []
            first = (await db.execute(
                select(Employee.manager_id).where(Employee.id == requester.manager_id)
            )).scalar()
            second = await Directory._active_by_id(db, first)
            return [second.id] if second else []

        result = await db.execute(
            select(Employee.id)
            .where(
                Employee.role == approver_role,
                Employee.is_active.is_(True),
                Employee.id != requester.id,
            )
            .order_by(Employee.employee_code)
        )
        approvers = list(result.scalars().all())
        if not approvers:
            logger.warning(
                "No active holder of role %s can approve for employee %s",
                approver_role, requester.id,
            )
        return approvers

    @staticmethod
    async def team_members(
        db: AsyncSession,
        team_id: uuid.UUID,
    ) -> list[Employee]:
        """Active direct reports of the manager identified by ``team_id``."""
        result = await db.execute(
            select(Employee)
            .where(
                Employee.manager_id == team_id,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.employee_code)
        )
        return list(result.scalars().all())
