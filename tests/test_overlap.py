"""Team overlap tests — interval detector and the team conflict service."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import LeaveStatus, OverlapCalculation
from leave_engine.common.exceptions import ValidationException
from leave_engine.config import settings
from leave_engine.overlap.detector import LeaveInterval, find_conflicts, intervals_overlap
from leave_engine.overlap.service import OverlapService
from leave_engine.requests.models import LeaveRequest
from tests.factories import seed_employee

A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
B = uuid.UUID("00000000-0000-0000-0000-00000000000b")
C = uuid.UUID("00000000-0000-0000-0000-00000000000c")


def _iv(employee_id: uuid.UUID, start: date, end: date) -> LeaveInterval:
    return LeaveInterval(employee_id=employee_id, start=start, end=end)


# ═════════════════════════════════════════════════════════════════════
# Detector (pure)
# ═════════════════════════════════════════════════════════════════════


class TestIntervals:

    def test_closed_intervals_touching_overlap(self):
        assert intervals_overlap(
            _iv(A, date(2026, 1, 10), date(2026, 1, 12)),
            _iv(B, date(2026, 1, 12), date(2026, 1, 14)),
        )

    def test_adjacent_intervals_do_not_overlap(self):
        assert not intervals_overlap(
            _iv(A, date(2026, 1, 10), date(2026, 1, 12)),
            _iv(B, date(2026, 1, 13), date(2026, 1, 15)),
        )

    def test_reversed_interval_rejected(self):
        with pytest.raises(ValueError):
            _iv(A, date(2026, 1, 12), date(2026, 1, 10))


class TestFindConflicts:

    def test_two_people_over_threshold_of_one(self):
        conflicts = find_conflicts(
            [
                _iv(A, date(2026, 1, 10), date(2026, 1, 12)),
                _iv(B, date(2026, 1, 11), date(2026, 1, 14)),
            ],
            1,
        )
        assert [c.day for c in conflicts] == [date(2026, 1, 11), date(2026, 1, 12)]
        assert conflicts[0].density == 2
        assert conflicts[0].pairs == [(A, B)]

    def test_no_conflict_without_shared_days(self):
        conflicts = find_conflicts(
            [
                _iv(A, date(2026, 1, 10), date(2026, 1, 12)),
                _iv(B, date(2026, 1, 13), date(2026, 1, 15)),
            ],
            1,
        )
        assert conflicts == []

    def test_same_employee_counts_once(self):
        conflicts = find_conflicts(
            [
                _iv(A, date(2026, 1, 10), date(2026, 1, 12)),
                _iv(A, date(2026, 1, 12), date(2026, 1, 13)),
            ],
            1,
        )
        assert conflicts == []

    def test_percentage_of_team(self):
        intervals = [
            _iv(A, date(2026, 2, 2), date(2026, 2, 3)),
            _iv(B, date(2026, 2, 3), date(2026, 2, 4)),
            _iv(C, date(2026, 2, 3), date(2026, 2, 3)),
        ]
        conflicts = find_conflicts(
            intervals, 50, team_size=4, calculation=OverlapCalculation.percentage,
        )
        # 3 of 4 absent on the 3rd; 1 of 4 on the others
        assert [c.day for c in conflicts] == [date(2026, 2, 3)]
        assert conflicts[0].density == 3
        assert len(conflicts[0].pairs) == 3

    def test_percentage_needs_team_size(self):
        with pytest.raises(ValueError):
            find_conflicts(
                [_iv(A, date(2026, 2, 2), date(2026, 2, 3))],
                50,
                calculation=OverlapCalculation.percentage,
            )

    def test_window_limits_reported_days(self):
        conflicts = find_conflicts(
            [
                _iv(A, date(2026, 3, 1), date(2026, 3, 10)),
                _iv(B, date(2026, 3, 1), date(2026, 3, 10)),
            ],
            Decimal("1"),
            window=(date(2026, 3, 4), date(2026, 3, 5)),
        )
        assert [c.day for c in conflicts] == [date(2026, 3, 4), date(2026, 3, 5)]


# ═════════════════════════════════════════════════════════════════════
# Team service
# ═════════════════════════════════════════════════════════════════════


async def _approved_leave(db: AsyncSession, employee, start: date, end: date, leave_type="ANNUAL"):
    now = datetime.now(timezone.utc)
    req = LeaveRequest(
        employee_id=employee.id,
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        total_days=Decimal((end - start).days + 1),
        status=LeaveStatus.approved,
        created_at=now,
        updated_at=now,
        decided_at=now,
    )
    db.add(req)
    await db.flush()
    return req


class TestOverlapService:

    @pytest.fixture(autouse=True)
    def _half_team_threshold(self, monkeypatch):
        monkeypatch.setattr(settings, "OVERLAP_THRESHOLD", Decimal("50"))

    async def test_team_conflicts_for_direct_reports(self, db: AsyncSession):
        lead = await seed_employee(db, name="Lead", role="MANAGER")
        a = await seed_employee(db, name="A", manager=lead)
        b = await seed_employee(db, name="B", manager=lead)
        await seed_employee(db, name="C", manager=lead)
        await _approved_leave(db, a, date(2026, 1, 10), date(2026, 1, 12))
        await _approved_leave(db, b, date(2026, 1, 11), date(2026, 1, 14))

        report = await OverlapService.find_team_conflicts(
            db, lead.id, date(2026, 1, 1), date(2026, 1, 31),
        )

        # More than half of a team of 3 means two people away
        assert report.team_size == 3
        assert report.calculation == OverlapCalculation.percentage
        assert [c.day for c in report.conflicts] == [date(2026, 1, 11), date(2026, 1, 12)]

    async def test_excluded_leave_types_ignored(self, db: AsyncSession):
        lead = await seed_employee(db, name="Lead", role="MANAGER")
        a = await seed_employee(db, name="A", manager=lead)
        b = await seed_employee(db, name="B", manager=lead)
        await _approved_leave(db, a, date(2026, 1, 10), date(2026, 1, 12))
        await _approved_leave(db, b, date(2026, 1, 10), date(2026, 1, 12), "LEAVE_WITHOUT_PAY")

        report = await OverlapService.find_team_conflicts(
            db, lead.id, date(2026, 1, 1), date(2026, 1, 31),
        )
        assert report.conflicts == []

    async def test_small_team_never_conflicts(self, db: AsyncSession):
        lead = await seed_employee(db, name="Lead", role="MANAGER")
        solo = await seed_employee(db, name="Solo", manager=lead)
        await _approved_leave(db, solo, date(2026, 1, 10), date(2026, 1, 12))

        report = await OverlapService.find_team_conflicts(
            db, lead.id, date(2026, 1, 1), date(2026, 1, 31),
        )
        assert report.team_size == 1
        assert report.conflicts == []

    async def test_inverted_window_rejected(self, db: AsyncSession):
        with pytest.raises(ValidationException):
            await OverlapService.find_team_conflicts(
                db, uuid.uuid4(), date(2026, 2, 1), date(2026, 1, 1),
            )

    async def test_application_warns_by_default(self, db: AsyncSession):
        lead = await seed_employee(db, name="Lead", role="MANAGER")
        a = await seed_employee(db, name="A", manager=lead)
        b = await seed_employee(db, name="B", manager=lead)
        await _approved_leave(db, a, date(2026, 1, 10), date(2026, 1, 12))

        warnings = await OverlapService.check_application(
            db, b, "ANNUAL", date(2026, 1, 12), date(2026, 1, 13),
        )
        assert [w.day for w in warnings] == [date(2026, 1, 12)]
        assert b.id in warnings[0].employee_ids

    async def test_application_blocked_when_configured(self, db: AsyncSession, monkeypatch):
        monkeypatch.setattr(settings, "OVERLAP_BLOCK_APPLICATION", True)
        lead = await seed_employee(db, name="Lead", role="MANAGER")
        a = await seed_employee(db, name="A", manager=lead)
        b = await seed_employee(db, name="B", manager=lead)
        await _approved_leave(db, a, date(2026, 1, 10), date(2026, 1, 12))

        with pytest.raises(ValidationException):
            await OverlapService.check_application(
                db, b, "ANNUAL", date(2026, 1, 12), date(2026, 1, 13),
            )
