"""Approval state machine — binds chains, records decisions, escalates stale steps.

Step states:    PENDING → APPROVED | REJECTED   (escalation keeps PENDING)
Request states: SUBMITTED → IN_PROGRESS → APPROVED | REJECTED | CANCELLED

A pending step is *active* when every earlier unresolved step can run
alongside it: SEQUENTIAL steps wait for all earlier steps and block all
later ones, while a contiguous run of ANY_OF / ALL_OF steps is active at
once. Quorum per step:

  SEQUENTIAL  first decision by an assigned approver resolves the step
  ANY_OF      first approval resolves the step; other votes stay PENDING
  ALL_OF      every currently assigned approver must approve

A rejection at any level rejects the whole request immediately.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import (
    ApprovalDecision,
    ExecutionMode,
    LeaveStatus,
    RequestPhase,
)
from leave_engine.common.exceptions import (
    AlreadyDecided,
    AppException,
    ConcurrentModification,
    InvalidApprover,
    InvalidLevel,
    NoApproverAvailable,
    NotFoundException,
)
from leave_engine.config import settings
from leave_engine.directory.models import Employee
from leave_engine.directory.service import Directory
from leave_engine.ledger.service import BalanceLedger
from leave_engine.notifications.service import (
    notify_request_approved,
    notify_request_rejected,
    notify_step_escalated,
)
from leave_engine.requests.models import LeaveRequest
from leave_engine.workflow.models import ApprovalRecord, ApproverDecision
from leave_engine.workflow.schemas import ApprovalChain, EscalationSummary

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    """Normalise naive timestamps (as returned by some drivers) to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ═════════════════════════════════════════════════════════════════════
# Pure helpers
# ═════════════════════════════════════════════════════════════════════


def active_records(records: Sequence[ApprovalRecord]) -> list[ApprovalRecord]:
    """Pending records that may currently be decided, in level order."""
    ordered = sorted(records, key=lambda r: r.level)
    active: list[ApprovalRecord] = []
    for index, record in enumerate(ordered):
        if record.decision != ApprovalDecision.pending:
            continue
        blocked = any(
            earlier.decision != ApprovalDecision.approved
            and (
                earlier.execution_mode == ExecutionMode.sequential
                or record.execution_mode == ExecutionMode.sequential
            )
            for earlier in ordered[:index]
        )
        if not blocked:
            active.append(record)
    return active


def request_phase(
    request: LeaveRequest,
    records: Sequence[ApprovalRecord],
    votes: Sequence[ApproverDecision] = (),
) -> RequestPhase:
    """Aggregate request state derived from the request and its records."""
    if request.status == LeaveStatus.approved:
        return RequestPhase.approved
    if request.status == LeaveStatus.rejected:
        return RequestPhase.rejected
    if request.status == LeaveStatus.cancelled:
        return RequestPhase.cancelled
    touched = any(r.decision != ApprovalDecision.pending for r in records) or any(
        v.decision != ApprovalDecision.pending for v in votes
    )
    return RequestPhase.in_progress if touched else RequestPhase.submitted


def current_level(records: Sequence[ApprovalRecord]) -> Optional[int]:
    active = active_records(records)
    return active[0].level if active else None


# ═════════════════════════════════════════════════════════════════════
# ApprovalStateMachine
# ═════════════════════════════════════════════════════════════════════


class ApprovalStateMachine:
    """Async lifecycle operations over a request's approval records."""

    # ─────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def load_records(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> list[ApprovalRecord]:
        result = await db.execute(
            select(ApprovalRecord)
            .where(ApprovalRecord.request_id == request_id)
            .order_by(ApprovalRecord.level)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    async def load_votes(
        db: AsyncSession,
        request_id: uuid.UUID,
        level: Optional[int] = None,
    ) -> list[ApproverDecision]:
        query = (
            select(ApproverDecision)
            .where(ApproverDecision.request_id == request_id)
            .order_by(ApproverDecision.level, ApproverDecision.approver_id)
            .execution_options(populate_existing=True)
        )
        if level is not None:
            query = query.where(ApproverDecision.level == level)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def _lock_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return request

    # ─────────────────────────────────────────────────────────────────
    # Binding
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def bind_chain(
        db: AsyncSession,
        request: LeaveRequest,
        chain: ApprovalChain,
        requester: Employee,
        *,
        now: Optional[datetime] = None,
    ) -> list[ApprovalRecord]:
        """Create one record per chain step and activate the first runnable ones.

        Raises NoApproverAvailable if any step resolves to nobody.
        """
        now = now or _utcnow()
        records: list[ApprovalRecord] = []
        for step in chain.steps:
            approvers = await Directory.resolve_approvers(db, step.approver_role, requester)
            if not approvers:
                raise NoApproverAvailable(step.level, step.approver_role)
            record = ApprovalRecord(
                request_id=request.id,
                level=step.level,
                approver_role=step.approver_role,
                execution_mode=step.execution_mode,
                escalate_after_hours=step.escalate_after_hours,
                escalate_to_role=step.escalate_to_role,
                assigned_approvers=[str(a) for a in approvers],
                decision=ApprovalDecision.pending,
            )
            records.append(record)
            db.add(record)
            db.add_all(
                ApproverDecision(
                    request_id=request.id,
                    level=step.level,
                    approver_id=approver_id,
                    decision=ApprovalDecision.pending,
                )
                for approver_id in approvers
            )

        for record in active_records(records):
            record.activated_at = now
        await db.flush()
        return records

    # ─────────────────────────────────────────────────────────────────
    # Decide
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def decide(
        db: AsyncSession,
        request_id: uuid.UUID,
        level: int,
        approver_id: uuid.UUID,
        decision: ApprovalDecision,
        comments: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequest:
        """Record one approver's decision at ``level``.

        The request row is locked for the duration of the transaction and
        its version is bumped, so concurrent decisions on one request are
        serialized. If the decision completes the chain, the balance debit
        runs inside the same savepoint: an InsufficientBalance leaves the
        request, its records and the votes exactly as they were.
        """
        now = now or _utcnow()
        if decision == ApprovalDecision.pending:
            raise InvalidLevel(level, "a decision must approve or reject")

        request = await ApprovalStateMachine._lock_request(db, request_id)
        if request.status.is_terminal:
            raise AlreadyDecided(request_id, request.status.value)

        records = await ApprovalStateMachine.load_records(db, request_id)
        record = next((r for r in records if r.level == level), None)
        if record is None:
            raise InvalidLevel(level, "no such level in this approval chain")
        if record.decision != ApprovalDecision.pending:
            raise InvalidLevel(level, f"level is already {record.decision.value}")
        if record not in active_records(records):
            raise InvalidLevel(level, "an earlier level is still awaiting a decision")
        if not record.is_assigned(approver_id):
            raise InvalidApprover(approver_id, level)

        votes = await ApprovalStateMachine.load_votes(db, request_id, level)
        vote = next((v for v in votes if v.approver_id == approver_id), None)
        if vote is not None and vote.decision != ApprovalDecision.pending:
            raise InvalidApprover(approver_id, level)

        try:
            async with db.begin_nested():
                if vote is None:
                    vote = ApproverDecision(
                        request_id=request_id, level=level, approver_id=approver_id,
                    )
                    db.add(vote)
                    votes.append(vote)
                vote.decision = decision
                vote.decided_at = now
                vote.comments = comments
                request.updated_at = now

                if decision == ApprovalDecision.rejected:
                    ApprovalStateMachine._resolve(record, decision, approver_id, comments, now)
                    request.status = LeaveStatus.rejected
                    request.decided_at = now
                    await db.flush()
                    await notify_request_rejected(db, request, level, comments)
                else:
                    if ApprovalStateMachine._quorum_met(record, votes):
                        ApprovalStateMachine._resolve(
                            record, decision, approver_id, comments, now,
                        )
                    if all(r.decision == ApprovalDecision.approved for r in records):
                        request.status = LeaveStatus.approved
                        request.decided_at = now
                        await db.flush()
                        await BalanceLedger.debit(
                            db,
                            request.employee_id,
                            request.leave_type,
                            request.year,
                            request.total_days,
                            actor_id=approver_id,
                            reference_id=request.id,
                        )
                        await notify_request_approved(db, request)
                    else:
                        for nxt in active_records(records):
                            if nxt.activated_at is None:
                                nxt.activated_at = now
                        await db.flush()

                await create_audit_entry(
                    db,
                    action=decision.value.lower(),
                    entity_type="approval_record",
                    entity_id=record.id,
                    actor_id=approver_id,
                    old_values={"decision": ApprovalDecision.pending.value},
                    new_values={
                        "level": level,
                        "vote": decision.value,
                        "step_decision": record.decision.value,
                        "request_status": request.status.value,
                        "comments": comments,
                    },
                )
        except StaleDataError as exc:
            raise ConcurrentModification("LeaveRequest", request_id) from exc

        logger.info(
            "Request %s level %s: %s by %s → request %s",
            request_id, level, decision.value, approver_id, request.status.value,
        )
        return request

    @staticmethod
    def _quorum_met(record: ApprovalRecord, votes: Sequence[ApproverDecision]) -> bool:
        if record.execution_mode != ExecutionMode.all_of:
            return True
        approved = {v.approver_id for v in votes if v.decision == ApprovalDecision.approved}
        return all(a in approved for a in record.assigned_ids)

    @staticmethod
    def _resolve(
        record: ApprovalRecord,
        decision: ApprovalDecision,
        approver_id: uuid.UUID,
        comments: Optional[str],
        now: datetime,
    ) -> None:
        record.decision = decision
        record.decided_by = approver_id
        record.decided_at = now
        record.comments = comments

    # ─────────────────────────────────────────────────────────────────
    # Escalation sweep
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def check_escalations(
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> EscalationSummary:
        """Reassign active steps whose escalation window has elapsed.

        Each step escalates at most once: the reassignment is a
        compare-and-set on ``escalated_at IS NULL``, so overlapping sweeps
        (or a rerun at the same ``now``) cannot escalate a step twice.
        Failures are logged per record and left for the next sweep.
        """
        now = _as_utc(now or _utcnow())
        result = await db.execute(
            select(ApprovalRecord)
            .join(LeaveRequest, LeaveRequest.id == ApprovalRecord.request_id)
            .where(
                LeaveRequest.status == LeaveStatus.pending,
                ApprovalRecord.decision == ApprovalDecision.pending,
                ApprovalRecord.escalated_at.is_(None),
                ApprovalRecord.escalate_after_hours.is_not(None),
                ApprovalRecord.activated_at.is_not(None),
            )
            .order_by(ApprovalRecord.activated_at)
            .execution_options(populate_existing=True)
        )
        due = [
            (record, record.id, record.request_id, record.level)
            for record in result.scalars().all()
            if _as_utc(record.activated_at) + timedelta(hours=record.escalate_after_hours) <= now
        ]

        summary = EscalationSummary(checked=len(due))
        for record, record_id, request_id, level in due:
            try:
                async with db.begin_nested():
                    escalated = await ApprovalStateMachine._escalate(db, record, now)
            except (AppException, SQLAlchemyError):
                summary.failed += 1
                logger.exception(
                    "Escalation failed for request %s level %s; will retry next sweep",
                    request_id, level,
                )
                continue
            if escalated:
                summary.escalated += 1
                summary.escalated_records.append(record_id)

        if summary.checked:
            logger.info(
                "Escalation sweep at %s: %d due, %d escalated, %d failed",
                now.isoformat(), summary.checked, summary.escalated, summary.failed,
            )
        return summary

    @staticmethod
    async def _escalate(
        db: AsyncSession,
        record: ApprovalRecord,
        now: datetime,
    ) -> bool:
        request = await db.get(LeaveRequest, record.request_id)
        requester = await Directory.get_employee(db, request.employee_id)
        role = record.escalate_to_role or settings.DEFAULT_ESCALATION_ROLE
        approvers = await Directory.resolve_approvers(db, role, requester)
        if not approvers:
            raise NoApproverAvailable(record.level, role)

        previous = record.assigned_ids
        claimed = await db.execute(
            update(ApprovalRecord)
            .where(
                ApprovalRecord.id == record.id,
                ApprovalRecord.escalated_at.is_(None),
                ApprovalRecord.decision == ApprovalDecision.pending,
            )
            .values(
                escalated_at=now,
                activated_at=now,
                assigned_approvers=[str(a) for a in approvers],
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.info("Record %s already escalated by another sweep", record.id)
            return False

        await db.execute(
            delete(ApproverDecision)
            .where(
                ApproverDecision.request_id == record.request_id,
                ApproverDecision.level == record.level,
                ApproverDecision.decision == ApprovalDecision.pending,
                ApproverDecision.approver_id.not_in(approvers),
            )
            .execution_options(synchronize_session=False)
        )
        existing = {
            v.approver_id
            for v in await ApprovalStateMachine.load_votes(db, record.request_id, record.level)
        }
        db.add_all(
            ApproverDecision(
                request_id=record.request_id,
                level=record.level,
                approver_id=approver_id,
                decision=ApprovalDecision.pending,
            )
            for approver_id in approvers
            if approver_id not in existing
        )
        await db.refresh(record)

        await create_audit_entry(
            db,
            action="escalate",
            entity_type="approval_record",
            entity_id=record.id,
            old_values={"assigned_approvers": [str(a) for a in previous]},
            new_values={
                "assigned_approvers": [str(a) for a in approvers],
                "escalated_to_role": role,
            },
        )
        await notify_step_escalated(db, record, approvers, role)
        logger.info(
            "Escalated request %s level %s to role %s (%d approver(s))",
            record.request_id, record.level, role, len(approvers),
        )
        return True
