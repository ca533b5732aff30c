"""Team leave overlap detection over closed date intervals. No I/O."""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from decimal import Decimal
from itertools import combinations
from typing import Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from leave_engine.common.constants import OverlapCalculation


class LeaveInterval(BaseModel):
    """One employee's leave, inclusive of both ends."""

    employee_id: uuid.UUID
    start: date
    end: date
    leave_type: Optional[str] = None

    @model_validator(mode="after")
    def _ordered(self) -> LeaveInterval:
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def covers(self, day: date) -> bool:
        return self.start <= day <= self.end


class Conflict(BaseModel):
    """A day on which team absence exceeds the threshold."""

    day: date
    density: int
    employee_ids: list[uuid.UUID] = Field(default_factory=list)
    pairs: list[tuple[uuid.UUID, uuid.UUID]] = Field(default_factory=list)


def intervals_overlap(a: LeaveInterval, b: LeaveInterval) -> bool:
    return a.start <= b.end and b.start <= a.end


def _over_threshold(
    density: int,
    threshold: Decimal,
    team_size: Optional[int],
    calculation: OverlapCalculation,
) -> bool:
    if calculation == OverlapCalculation.absolute:
        return Decimal(density) > threshold
    if not team_size:
        raise ValueError("team_size is required for percentage thresholds")
    return Decimal(density) * 100 / Decimal(team_size) > threshold


def find_conflicts(
    intervals: Iterable[LeaveInterval],
    threshold: Decimal | int,
    *,
    team_size: Optional[int] = None,
    calculation: OverlapCalculation = OverlapCalculation.absolute,
    window: Optional[tuple[date, date]] = None,
) -> list[Conflict]:
    """Days on which the number of employees on leave exceeds ``threshold``.

    ``threshold`` is a head count for ABSOLUTE and a percentage of
    ``team_size`` for PERCENTAGE. Density counts distinct employees, so one
    person's back-to-back requests never conflict with each other. Each
    reported day lists the absent employees and every pair of them.
    """
    items = list(intervals)
    if not items:
        return []
    threshold = Decimal(threshold)

    first = min(i.start for i in items)
    last = max(i.end for i in items)
    if window is not None:
        first, last = max(first, window[0]), min(last, window[1])

    conflicts: list[Conflict] = []
    day = first
    while day <= last:
        absent = sorted(
            {i.employee_id for i in items if i.covers(day)},
            key=str,
        )
        if absent and _over_threshold(len(absent), threshold, team_size, calculation):
            conflicts.append(Conflict(
                day=day,
                density=len(absent),
                employee_ids=absent,
                pairs=list(combinations(absent, 2)),
            ))
        day += timedelta(days=1)
    return conflicts
