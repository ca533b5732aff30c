"""Leave request service layer — the facade callers use to create, decide and cancel.

Business logic:
  - Leave day counting with weekly-off/holiday exclusion and half, quarter
    and hourly units
  - Application rules from the leave type configuration (notice, maximum
    run, granularity, documentation) and a pending-aware balance pre-check
  - Workflow resolution and approval chain binding at creation time
  - Decisions through the approval state machine; cancellation with
    balance reversal for approved requests
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.common.audit import create_audit_entry
from leave_engine.common.constants import (
    DAY_FRACTIONS,
    DAYS_QUANTUM,
    LeaveDayType,
    LeaveStatus,
    UserRole,
)
from leave_engine.common.exceptions import (
    ConcurrentModification,
    ForbiddenException,
    InsufficientBalance,
    NotFoundException,
    ValidationException,
)
from leave_engine.config import settings
from leave_engine.directory.service import Directory
from leave_engine.ledger.models import ZERO
from leave_engine.ledger.service import BalanceLedger
from leave_engine.notifications.service import (
    notify_request_cancelled,
    notify_request_submitted,
)
from leave_engine.overlap.detector import Conflict
from leave_engine.overlap.service import OverlapService
from leave_engine.policies.models import LeaveTypeConfiguration
from leave_engine.policies.store import PolicyStore
from leave_engine.requests.models import LeaveRequest
from leave_engine.requests.schemas import (
    DayDetail,
    LeaveBalanceOut,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from leave_engine.workflow.resolver import WorkflowResolver
from leave_engine.workflow.schemas import ApprovalRecordOut, DecisionCreate
from leave_engine.workflow.state_machine import (
    ApprovalStateMachine,
    active_records,
    current_level,
    request_phase,
)

logger = logging.getLogger(__name__)

# Roles that may read any request or balance
_PRIVILEGED_ROLES = {UserRole.hr, UserRole.hr_admin, UserRole.system_admin}


# ═════════════════════════════════════════════════════════════════════
# LeaveRequestService
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestService:
    """Async leave request operations: create, decide, cancel, read."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _calculate_leave_days(
        from_date: date,
        to_date: date,
        day_details: Optional[dict[date, DayDetail]],
        weekly_offs: set[int],
        holidays: set[date],
        config: LeaveTypeConfiguration,
    ) -> tuple[Decimal, dict[str, str]]:
        """Calculate total leave days, skipping weekly offs and holidays.

        Returns:
            (total_days, computed_day_details)

        Each working day counts as a full day unless ``day_details`` gives
        a smaller unit; hourly leave is converted with the leave type's
        ``hours_per_day``. Units the leave type does not allow are rejected.
        """
        details = day_details or {}
        stray = sorted(d for d in details if d < from_date or d > to_date)
        if stray:
            raise ValidationException({"day_details": [
                f"{d.isoformat()} is outside the requested range." for d in stray
            ]})

        allowed = {
            LeaveDayType.full_day: config.full_day_allowed,
            LeaveDayType.first_half: config.half_day_allowed,
            LeaveDayType.second_half: config.half_day_allowed,
            LeaveDayType.quarter_day: config.quarter_day_allowed,
            LeaveDayType.hourly: config.hourly_allowed,
        }
        hours_per_day = Decimal(config.hours_per_day or 8)

        computed: dict[str, str] = {}
        errors: list[str] = []
        total = Decimal("0")

        current = from_date
        while current <= to_date:
            key = current.isoformat()
            is_weekend = current.weekday() in weekly_offs
            is_holiday = current in holidays
            detail = details.get(current, DayDetail())

            if is_weekend or is_holiday:
                if current in details:
                    errors.append(f"{key} is not a working day.")
                computed[key] = "weekend" if is_weekend else "holiday"
            elif not allowed[detail.type]:
                errors.append(f"{config.name} does not allow {detail.type.value} leave ({key}).")
            elif detail.type == LeaveDayType.hourly:
                if detail.hours >= hours_per_day:
                    errors.append(f"Hourly leave on {key} must be under {hours_per_day} hours.")
                else:
                    total += (detail.hours / hours_per_day).quantize(DAYS_QUANTUM)
                    computed[key] = f"{LeaveDayType.hourly.value}:{detail.hours}"
            else:
                total += DAY_FRACTIONS[detail.type]
                computed[key] = detail.type.value
            current += timedelta(days=1)

        if errors:
            raise ValidationException({"day_details": errors})
        return total, computed

    @staticmethod
    async def _get_pending_days(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> Decimal:
        """Sum total_days of pending leave requests for this balance."""
        result = await db.execute(
            select(func.coalesce(func.sum(LeaveRequest.total_days), 0)).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.leave_type == leave_type,
                LeaveRequest.status == LeaveStatus.pending,
                LeaveRequest.start_date >= date(year, 1, 1),
                LeaveRequest.start_date <= date(year, 12, 31),
            )
        )
        return Decimal(str(result.scalar_one()))

    @staticmethod
    async def _build_request_response(
        db: AsyncSession,
        req: LeaveRequest,
        warnings: Optional[list[Conflict]] = None,
    ) -> LeaveRequestOut:
        """Build LeaveRequestOut with approval records and aggregate phase."""
        await db.refresh(req)
        records = await ApprovalStateMachine.load_records(db, req.id)
        votes = await ApprovalStateMachine.load_votes(db, req.id)
        # Column attributes only; the records relationship is never lazy-loaded
        columns = {
            c.key: getattr(req, c.key)
            for c in LeaveRequest.__table__.columns
            if c.key in LeaveRequestOut.model_fields
        }
        return LeaveRequestOut(
            **columns,
            approval_records=[ApprovalRecordOut.model_validate(r) for r in records],
            phase=request_phase(req, records, votes),
            current_level=current_level(records) if req.status == LeaveStatus.pending else None,
            warnings=warnings or [],
        )

    @staticmethod
    async def _load_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        req = result.scalars().first()
        if req is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return req

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> LeaveRequestOut:
        """Apply for leave and bind its approval chain.

        Fails fast with a specific error: ValidationException for rule
        violations, InsufficientBalance for a shortfall, PolicyNotFound /
        NoApplicableWorkflow / NoApproverAvailable for configuration gaps.
        """
        now = now or datetime.now(timezone.utc)
        today = today or now.date()

        # ── Load employee and leave type rules ──────────────────────
        employee = await Directory.get_employee(db, employee_id, active_only=True)
        if not employee.is_eligible:
            raise ValidationException(
                {"employee": [f"Employment status '{employee.employment_status.value}' cannot apply for leave."]}
            )
        config = await PolicyStore.get_leave_type_config(
            db, data.leave_type, employee.region, data.start_date,
        )

        # ── Single calendar year ────────────────────────────────────
        if data.start_date.year != data.end_date.year:
            raise ValidationException(
                {"dates": ["A leave request cannot span two calendar years; split it at 31 December."]}
            )
        year = data.start_date.year

        # ── Advance notice check ────────────────────────────────────
        if config.min_advance_notice_days:
            days_ahead = (data.start_date - today).days
            if days_ahead < config.min_advance_notice_days:
                raise ValidationException(
                    {"start_date": [
                        f"{config.name} requires at least "
                        f"{config.min_advance_notice_days} days advance notice."
                    ]}
                )

        # ── Calculate leave days ────────────────────────────────────
        holidays = await PolicyStore.get_holiday_dates(
            db, employee.region, data.start_date, data.end_date,
        )
        total_days, computed_details = LeaveRequestService._calculate_leave_days(
            data.start_date,
            data.end_date,
            data.day_details,
            settings.weekly_off_days,
            holidays,
            config,
        )
        if total_days <= 0:
            raise ValidationException(
                {"dates": ["No leave days found in the selected range "
                           "(all days may be weekends or holidays)."]}
            )

        # ── Max consecutive days check ──────────────────────────────
        if config.max_consecutive_days and total_days > config.max_consecutive_days:
            raise ValidationException(
                {"dates": [
                    f"{config.name} allows a maximum of "
                    f"{config.max_consecutive_days} consecutive days."
                ]}
            )

        # ── Documentation ───────────────────────────────────────────
        if config.requires_documentation and not data.attachment_id:
            threshold = config.documentation_threshold_days
            if threshold is None or total_days > threshold:
                raise ValidationException(
                    {"attachment_id": [
                        f"{config.name} requires supporting documentation"
                        + (f" for more than {threshold} days." if threshold is not None else ".")
                    ]}
                )

        # ── Check overlapping leaves ────────────────────────────────
        overlap_result = await db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
        )
        if overlap_result.scalar_one() > 0:
            raise ValidationException(
                {"dates": [
                    "You already have a pending or approved leave request "
                    "overlapping with these dates."
                ]}
            )

        # ── Check sufficient balance ────────────────────────────────
        balance = await BalanceLedger.get_balance(db, employee_id, data.leave_type, year)
        available = Decimal(balance.available) if balance is not None else ZERO
        pending = await LeaveRequestService._get_pending_days(
            db, employee_id, data.leave_type, year,
        )
        if available - pending - total_days < config.balance_floor:
            raise InsufficientBalance(data.leave_type, year, available - pending, total_days)

        # ── Team overlap (warn or block) ────────────────────────────
        warnings = await OverlapService.check_application(
            db, employee, data.leave_type, data.start_date, data.end_date,
        )

        # ── Resolve and bind the approval chain ─────────────────────
        chain = await WorkflowResolver.resolve(
            db, data.leave_type, total_days, employee.department, employee.role, today,
        )
        leave_request = LeaveRequest(
            employee_id=employee_id,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            day_details=computed_details,
            total_days=total_days,
            reason=data.reason,
            attachment_id=data.attachment_id,
            status=LeaveStatus.pending,
            workflow_id=chain.workflow_id,
            workflow_name=chain.workflow_name,
            created_at=now,
            updated_at=now,
        )
        db.add(leave_request)
        await db.flush()
        records = await ApprovalStateMachine.bind_chain(db, leave_request, chain, employee, now=now)

        # ── Audit ───────────────────────────────────────────────────
        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_request.id,
            actor_id=employee_id,
            new_values={
                "leave_type": data.leave_type,
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "total_days": str(total_days),
                "workflow": chain.workflow_name,
                "levels": chain.levels,
            },
        )

        # ── Notify first approvers ──────────────────────────────────
        first_approvers = [a for r in active_records(records) for a in r.assigned_ids]
        await notify_request_submitted(db, leave_request, first_approvers)

        logger.info(
            "Leave request %s created for %s: %s %s days via %s",
            leave_request.id, employee_id, data.leave_type, total_days, chain.workflow_name,
        )
        return await LeaveRequestService._build_request_response(db, leave_request, warnings)

    # ─────────────────────────────────────────────────────────────────
    # Decide
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def decide(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        data: DecisionCreate,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveRequestOut:
        """Record an approver's decision at a level of the request's chain."""
        req = await ApprovalStateMachine.decide(
            db, request_id, data.level, approver_id, data.decision, data.comments, now=now,
        )
        return await LeaveRequestService._build_request_response(db, req)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        actor_role: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LeaveRequestOut:
        """Cancel a pending or approved request.

        The owner or a holder of a ``CANCEL_OVERRIDE_ROLES`` role may cancel.
        Cancelling an approved request credits the days back; cancelling a
        rejected or already cancelled request changes nothing.
        """
        now = now or datetime.now(timezone.utc)
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        req = result.scalars().first()
        if req is None:
            raise NotFoundException("LeaveRequest", str(request_id))

        is_owner = req.employee_id == actor_id
        is_override = (actor_role or "").upper() in settings.cancel_override_roles
        if not (is_owner or is_override):
            raise ForbiddenException("You can only cancel your own leave requests.")

        if req.status in (LeaveStatus.rejected, LeaveStatus.cancelled):
            logger.info("Cancel of %s request %s is a no-op", req.status.value, request_id)
            return await LeaveRequestService._build_request_response(db, req)

        records = await ApprovalStateMachine.load_records(db, request_id)
        waiting = [a for r in active_records(records) for a in r.assigned_ids]
        was_approved = req.status == LeaveStatus.approved
        old_status = req.status.value

        req.status = LeaveStatus.cancelled
        req.cancelled_at = now
        req.cancelled_by = actor_id
        req.updated_at = now
        try:
            await db.flush()
        except StaleDataError as exc:
            raise ConcurrentModification("LeaveRequest", request_id) from exc

        # Restore balance if was approved
        if was_approved:
            await BalanceLedger.credit(
                db, req.employee_id, req.leave_type, req.year, req.total_days,
                actor_id=actor_id, reference_id=req.id,
            )

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=req.id,
            actor_id=actor_id,
            old_values={"status": old_status},
            new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
        )
        await notify_request_cancelled(db, req, [] if was_approved else waiting)
        logger.info("Leave request %s cancelled by %s (was %s)", request_id, actor_id, old_status)
        return await LeaveRequestService._build_request_response(db, req)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        viewer_id: uuid.UUID,
        viewer_role: UserRole = UserRole.employee,
    ) -> LeaveRequestOut:
        """Visible to the owner, anyone assigned in its chain, and HR roles."""
        req = await LeaveRequestService._load_request(db, request_id)
        if req.employee_id != viewer_id and UserRole(viewer_role) not in _PRIVILEGED_ROLES:
            records = await ApprovalStateMachine.load_records(db, request_id)
            if not any(r.is_assigned(viewer_id) for r in records):
                raise ForbiddenException("You cannot view this leave request.")
        return await LeaveRequestService._build_request_response(db, req)

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        """All balances of an employee for a year, with pending days alongside."""
        await Directory.get_employee(db, employee_id)
        output: list[LeaveBalanceOut] = []
        for bal in await BalanceLedger.get_balances(db, employee_id, year):
            out = LeaveBalanceOut.model_validate(bal)
            out.pending = await LeaveRequestService._get_pending_days(
                db, employee_id, bal.leave_type, year,
            )
            output.append(out)
        return output
