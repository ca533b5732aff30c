"""Team conflict service — feeds approved team leaves into the overlap detector."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveStatus, OverlapCalculation
from leave_engine.common.exceptions import ValidationException
from leave_engine.config import settings
from leave_engine.directory.models import Employee
from leave_engine.directory.service import Directory
from leave_engine.overlap.detector import Conflict, LeaveInterval, find_conflicts
from leave_engine.requests.models import LeaveRequest

logger = logging.getLogger(__name__)


class TeamConflictReport(BaseModel):
    team_id: uuid.UUID
    start: date
    end: date
    team_size: int
    calculation: OverlapCalculation
    threshold: Decimal
    conflicts: list[Conflict] = Field(default_factory=list)


def _calculation() -> OverlapCalculation:
    return OverlapCalculation(settings.OVERLAP_CALCULATION.upper())


class OverlapService:

    @staticmethod
    async def _approved_intervals(
        db: AsyncSession,
        employee_ids: list[uuid.UUID],
        start: date,
        end: date,
    ) -> list[LeaveInterval]:
        if not employee_ids:
            return []
        query = select(LeaveRequest).where(
            LeaveRequest.employee_id.in_(employee_ids),
            LeaveRequest.status == LeaveStatus.approved,
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        excluded = settings.overlap_excluded_leave_types
        if excluded:
            query = query.where(LeaveRequest.leave_type.not_in(excluded))
        result = await db.execute(query.order_by(LeaveRequest.start_date))
        return [
            LeaveInterval(
                employee_id=r.employee_id,
                start=r.start_date,
                end=r.end_date,
                leave_type=r.leave_type,
            )
            for r in result.scalars().all()
        ]

    @staticmethod
    async def find_team_conflicts(
        db: AsyncSession,
        team_id: uuid.UUID,
        start: date,
        end: date,
    ) -> TeamConflictReport:
        """Over-threshold days for the direct reports of manager ``team_id``."""
        if end < start:
            raise ValidationException({"end": ["End date must not be before start date."]})

        members = await Directory.team_members(db, team_id)
        report = TeamConflictReport(
            team_id=team_id,
            start=start,
            end=end,
            team_size=len(members),
            calculation=_calculation(),
            threshold=settings.OVERLAP_THRESHOLD,
        )
        if len(members) < settings.OVERLAP_MINIMUM_TEAM_SIZE:
            return report

        intervals = await OverlapService._approved_intervals(
            db, [m.id for m in members], start, end,
        )
        report.conflicts = find_conflicts(
            intervals,
            settings.OVERLAP_THRESHOLD,
            team_size=len(members),
            calculation=report.calculation,
            window=(start, end),
        )
        return report

    @staticmethod
    async def check_application(
        db: AsyncSession,
        employee: Employee,
        leave_type: str,
        start: date,
        end: date,
    ) -> list[Conflict]:
        """Conflicts a new request would cause within the applicant's team.

        Returned as warnings, or raised as a ValidationException when
        ``OVERLAP_BLOCK_APPLICATION`` is set.
        """
        if (
            not settings.OVERLAP_ENABLED
            or employee.manager_id is None
            or leave_type.upper() in settings.overlap_excluded_leave_types
        ):
            return []

        members = await Directory.team_members(db, employee.manager_id)
        if len(members) < settings.OVERLAP_MINIMUM_TEAM_SIZE:
            return []

        intervals = await OverlapService._approved_intervals(
            db, [m.id for m in members], start, end,
        )
        intervals.append(LeaveInterval(
            employee_id=employee.id, start=start, end=end, leave_type=leave_type,
        ))
        conflicts = [
            c for c in find_conflicts(
                intervals,
                settings.OVERLAP_THRESHOLD,
                team_size=len(members),
                calculation=_calculation(),
                window=(start, end),
            )
            if employee.id in c.employee_ids
        ]
        if conflicts and settings.OVERLAP_BLOCK_APPLICATION:
            raise ValidationException({"dates": [
                f"Team absence would exceed the allowed threshold on "
                f"{', '.join(c.day.isoformat() for c in conflicts)}."
            ]})
        if conflicts:
            logger.info(
                "Request by %s overlaps team leave on %d day(s)", employee.id, len(conflicts),
            )
        return conflicts
