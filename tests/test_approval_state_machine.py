"""Approval state machine tests — sequential and parallel chains, quorum,
error cases, escalation sweeps and the balance debit on final approval.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import (
    ApprovalDecision,
    EventType,
    LeaveStatus,
    RequestPhase,
)
from leave_engine.common.exceptions import (
    AlreadyDecided,
    InsufficientBalance,
    InvalidApprover,
    InvalidLevel,
)
from leave_engine.ledger.service import BalanceLedger
from leave_engine.notifications.models import DomainEvent
from leave_engine.requests.schemas import LeaveRequestCreate
from leave_engine.requests.service import LeaveRequestService
from leave_engine.workflow.schemas import DecisionCreate
from leave_engine.workflow.state_machine import ApprovalStateMachine
from tests.factories import seed_balance, seed_employee, seed_leave_type, seed_workflow, step

T0 = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
TODAY = T0.date()
START, END = date(2026, 11, 2), date(2026, 11, 4)  # Mon–Wed, 3 working days

APPROVED = ApprovalDecision.approved
REJECTED = ApprovalDecision.rejected


@pytest.fixture
async def org(db: AsyncSession) -> SimpleNamespace:
    """Director → manager → requester, plus an HR admin and 12 days of ANNUAL leave."""
    director = await seed_employee(db, name="Director", role="MANAGER")
    manager = await seed_employee(db, name="Manager", role="MANAGER", manager=director)
    requester = await seed_employee(db, name="Requester", manager=manager)
    hr_admin = await seed_employee(db, name="HR Admin", role="HR_ADMIN")
    await seed_leave_type(db)
    await seed_balance(db, requester, total=Decimal("12"))
    return SimpleNamespace(
        director=director, manager=manager, requester=requester, hr_admin=hr_admin,
    )


async def _submit(db: AsyncSession, requester):
    return await LeaveRequestService.create_request(
        db,
        requester.id,
        LeaveRequestCreate(leave_type="ANNUAL", start_date=START, end_date=END),
        today=TODAY,
        now=T0,
    )


async def _decide(db: AsyncSession, request_id, level, approver, decision=APPROVED, *, now=None):
    return await LeaveRequestService.decide(
        db,
        request_id,
        approver.id,
        DecisionCreate(level=level, decision=decision),
        now=now or T0 + timedelta(hours=1),
    )


async def _events(db: AsyncSession, event_type: EventType) -> list[DomainEvent]:
    result = await db.execute(select(DomainEvent).where(DomainEvent.event_type == event_type))
    return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Sequential chains
# ═════════════════════════════════════════════════════════════════════


class TestSequentialChain:

    @pytest.fixture(autouse=True)
    async def _three_levels(self, db: AsyncSession):
        await seed_workflow(db, steps=[
            step(1, "REPORTING_MANAGER"),
            step(2, "SECOND_LEVEL_MANAGER"),
            step(3, "HR_ADMIN"),
        ])

    async def test_binds_one_record_per_level(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)

        assert out.status == LeaveStatus.pending
        assert out.phase == RequestPhase.submitted
        assert out.current_level == 1
        assert [r.level for r in out.approval_records] == [1, 2, 3]
        assert out.approval_records[0].assigned_approvers == [org.manager.id]
        assert out.approval_records[1].assigned_approvers == [org.director.id]
        assert out.approval_records[2].assigned_approvers == [org.hr_admin.id]
        assert out.approval_records[0].activated_at is not None
        assert out.approval_records[1].activated_at is None

        submitted = await _events(db, EventType.request_submitted)
        assert submitted[0].recipient_ids == [str(org.manager.id)]

    async def test_full_approval_debits_balance(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)

        step1 = await _decide(db, out.id, 1, org.manager)
        assert step1.phase == RequestPhase.in_progress
        assert step1.current_level == 2
        await _decide(db, out.id, 2, org.director)
        final = await _decide(db, out.id, 3, org.hr_admin)

        assert final.status == LeaveStatus.approved
        assert final.phase == RequestPhase.approved
        assert final.current_level is None
        assert all(r.decision == APPROVED for r in final.approval_records)

        balance = await BalanceLedger.get_balance(db, org.requester.id, "ANNUAL", 2026)
        assert balance.used == Decimal("3")
        assert len(await _events(db, EventType.request_approved)) == 1

    async def test_rejection_at_first_level_ends_chain(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)

        rejected = await _decide(db, out.id, 1, org.manager, REJECTED)

        assert rejected.status == LeaveStatus.rejected
        assert [r.decision for r in rejected.approval_records] == [
            REJECTED, ApprovalDecision.pending, ApprovalDecision.pending,
        ]
        with pytest.raises(AlreadyDecided):
            await _decide(db, out.id, 2, org.director)

        balance = await BalanceLedger.get_balance(db, org.requester.id, "ANNUAL", 2026)
        assert balance.used == Decimal("0")
        events = await _events(db, EventType.request_rejected)
        assert events[0].recipient_ids == [str(org.requester.id)]

    async def test_later_level_cannot_decide_first(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)
        with pytest.raises(InvalidLevel):
            await _decide(db, out.id, 2, org.director)

    async def test_unassigned_approver_rejected(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)
        with pytest.raises(InvalidApprover):
            await _decide(db, out.id, 1, org.hr_admin)

    async def test_level_cannot_be_decided_twice(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)
        await _decide(db, out.id, 1, org.manager)
        with pytest.raises(InvalidLevel):
            await _decide(db, out.id, 1, org.manager, REJECTED)

    async def test_unknown_level(self, db: AsyncSession, org):
        out = await _submit(db, org.requester)
        with pytest.raises(InvalidLevel):
            await _decide(db, out.id, 9, org.manager)


# ═════════════════════════════════════════════════════════════════════
# Parallel quorum
# ═════════════════════════════════════════════════════════════════════


class TestParallelQuorum:

    @pytest.fixture
    async def hr_team(self, db: AsyncSession) -> list:
        return [await seed_employee(db, name=f"HR {n}", role="HR") for n in "ABC"]

    async def test_any_of_first_approval_wins(self, db: AsyncSession, org, hr_team):
        await seed_workflow(db, steps=[step(1, "HR", "ANY_OF")])
        a, b, c = hr_team
        out = await _submit(db, org.requester)

        final = await _decide(db, out.id, 1, b)

        assert final.status == LeaveStatus.approved
        assert final.approval_records[0].decided_by == b.id
        votes = {v.approver_id: v.decision for v in await ApprovalStateMachine.load_votes(db, out.id)}
        assert votes == {
            a.id: ApprovalDecision.pending,
            b.id: APPROVED,
            c.id: ApprovalDecision.pending,
        }

    async def test_all_of_needs_every_approver(self, db: AsyncSession, org, hr_team):
        await seed_workflow(db, steps=[step(1, "HR", "ALL_OF")])
        a, b, c = hr_team
        out = await _submit(db, org.requester)

        after_a = await _decide(db, out.id, 1, a)
        assert after_a.status == LeaveStatus.pending
        assert after_a.phase == RequestPhase.in_progress
        assert after_a.approval_records[0].decision == ApprovalDecision.pending

        with pytest.raises(InvalidApprover):
            await _decide(db, out.id, 1, a)

        await _decide(db, out.id, 1, b)
        final = await _decide(db, out.id, 1, c)
        assert final.status == LeaveStatus.approved

    async def test_all_of_single_rejection_rejects(self, db: AsyncSession, org, hr_team):
        await seed_workflow(db, steps=[step(1, "HR", "ALL_OF")])
        a, b, _ = hr_team
        out = await _submit(db, org.requester)

        await _decide(db, out.id, 1, a)
        final = await _decide(db, out.id, 1, b, REJECTED)
        assert final.status == LeaveStatus.rejected

    async def test_contiguous_parallel_levels_run_together(self, db: AsyncSession, org, hr_team):
        await seed_workflow(db, steps=[
            step(1, "HR", "ANY_OF"),
            step(2, "HR_ADMIN", "ANY_OF"),
        ])
        out = await _submit(db, org.requester)
        assert all(r.activated_at is not None for r in out.approval_records)

        after_level_2 = await _decide(db, out.id, 2, org.hr_admin)
        assert after_level_2.status == LeaveStatus.pending
        assert after_level_2.current_level == 1

        final = await _decide(db, out.id, 1, hr_team[0])
        assert final.status == LeaveStatus.approved

    async def test_sequential_step_waits_for_parallel_group(self, db: AsyncSession, org, hr_team):
        await seed_workflow(db, steps=[
            step(1, "HR", "ANY_OF"),
            step(2, "REPORTING_MANAGER"),
        ])
        out = await _submit(db, org.requester)

        with pytest.raises(InvalidLevel):
            await _decide(db, out.id, 2, org.manager)


# ═════════════════════════════════════════════════════════════════════
# Balance debit on final approval
# ═════════════════════════════════════════════════════════════════════


class TestApprovalDebit:

    async def test_insufficient_balance_leaves_request_pending(self, db: AsyncSession, org):
        await seed_workflow(db)
        out = await _submit(db, org.requester)
        # Balance drops below the request after submission
        await BalanceLedger.debit(db, org.requester.id, "ANNUAL", 2026, Decimal("10"))

        with pytest.raises(InsufficientBalance):
            await _decide(db, out.id, 1, org.manager)

        after = await LeaveRequestService.get_request(db, out.id, org.requester.id)
        assert after.status == LeaveStatus.pending
        assert after.approval_records[0].decision == ApprovalDecision.pending
        votes = await ApprovalStateMachine.load_votes(db, out.id)
        assert [v.decision for v in votes] == [ApprovalDecision.pending]

        balance = await BalanceLedger.get_balance(db, org.requester.id, "ANNUAL", 2026)
        assert balance.used == Decimal("10")
        assert await _events(db, EventType.request_approved) == []


# ═════════════════════════════════════════════════════════════════════
# Escalation
# ═════════════════════════════════════════════════════════════════════


class TestEscalation:

    async def test_escalates_once_after_window(self, db: AsyncSession, org):
        await seed_workflow(db, steps=[
            step(1, "REPORTING_MANAGER", escalateAfterHours=24, escalateToRole="HR_ADMIN"),
        ])
        out = await _submit(db, org.requester)

        early = await ApprovalStateMachine.check_escalations(db, T0 + timedelta(hours=23))
        assert early.checked == 0

        due_at = T0 + timedelta(hours=25)
        first = await ApprovalStateMachine.check_escalations(db, due_at)
        assert first.escalated == 1
        second = await ApprovalStateMachine.check_escalations(db, due_at)
        assert second.escalated == 0

        records = await ApprovalStateMachine.load_records(db, out.id)
        assert records[0].assigned_ids == [org.hr_admin.id]
        assert records[0].escalated_at is not None
        assert records[0].decision == ApprovalDecision.pending
        votes = await ApprovalStateMachine.load_votes(db, out.id, 1)
        assert [v.approver_id for v in votes] == [org.hr_admin.id]

        with pytest.raises(InvalidApprover):
            await _decide(db, out.id, 1, org.manager, now=due_at)
        final = await _decide(db, out.id, 1, org.hr_admin, now=due_at)
        assert final.status == LeaveStatus.approved

        escalated = await _events(db, EventType.step_escalated)
        assert escalated[0].recipient_ids == [str(org.hr_admin.id)]

    async def test_escalation_without_target_fails_and_retries(self, db: AsyncSession, org):
        await seed_workflow(db, steps=[
            step(1, "REPORTING_MANAGER", escalateAfterHours=24, escalateToRole="SYSTEM_ADMIN"),
        ])
        out = await _submit(db, org.requester)

        due_at = T0 + timedelta(hours=30)
        summary = await ApprovalStateMachine.check_escalations(db, due_at)
        assert summary.failed == 1
        assert summary.escalated == 0

        records = await ApprovalStateMachine.load_records(db, out.id)
        assert records[0].assigned_ids == [org.manager.id]
        assert records[0].escalated_at is None

        retry = await ApprovalStateMachine.check_escalations(db, due_at)
        assert retry.checked == 1

    async def test_steps_without_window_never_escalate(self, db: AsyncSession, org):
        await seed_workflow(db)
        await _submit(db, org.requester)

        summary = await ApprovalStateMachine.check_escalations(db, T0 + timedelta(days=30))
        assert summary.checked == 0
