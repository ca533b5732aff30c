"""Workflow ORM models: WorkflowConfiguration, ApprovalRecord, ApproverDecision."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import ApprovalDecision, ExecutionMode
from leave_engine.database import Base
from leave_engine.workflow.schemas import ApprovalStep, WorkflowConditions, WorkflowSteps


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowConfiguration(Base):
    """Approval workflow definition. Read-only for the engine."""

    __tablename__ = "workflow_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    workflow_type: Mapped[str] = mapped_column(
        sa.String(50), nullable=False, default="LEAVE_APPROVAL",
    )
    conditions: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_default: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    priority: Mapped[int] = mapped_column(sa.Integer, default=0)
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )

    def parsed_conditions(self) -> WorkflowConditions:
        return WorkflowConditions.model_validate(self.conditions or {})

    def parsed_steps(self) -> list[ApprovalStep]:
        """Validated steps ordered by level; raises pydantic.ValidationError."""
        return WorkflowSteps.model_validate({"steps": self.steps or []}).steps

    def __repr__(self) -> str:
        return f"<WorkflowConfiguration {self.name} p={self.priority} default={self.is_default}>"


class ApprovalRecord(Base):
    """Decision state of one level of a request's bound approval chain.

    The step columns are a snapshot taken when the chain is bound and never
    change afterwards; only decision and assignment state moves.
    """

    __tablename__ = "approval_records"
    __table_args__ = (
        sa.UniqueConstraint("request_id", "level", name="uq_approval_record_level"),
        sa.Index("ix_approval_records_pending", "decision", "escalated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # Step snapshot
    approver_role: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    execution_mode: Mapped[ExecutionMode] = mapped_column(
        sa.Enum(ExecutionMode, name="execution_mode", native_enum=False),
        nullable=False,
    )
    escalate_after_hours: Mapped[Optional[int]] = mapped_column(sa.Integer)
    escalate_to_role: Mapped[Optional[str]] = mapped_column(sa.String(50))

    # Assignment and decision
    assigned_approvers: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    decision: Mapped[ApprovalDecision] = mapped_column(
        sa.Enum(ApprovalDecision, name="approval_decision", native_enum=False),
        default=ApprovalDecision.pending,
    )
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    activated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    escalated_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow,
    )

    # Relationships
    request: Mapped["LeaveRequest"] = relationship(
        back_populates="approval_records",
    )

    @property
    def assigned_ids(self) -> list[uuid.UUID]:
        return [uuid.UUID(str(a)) for a in self.assigned_approvers or []]

    def is_assigned(self, approver_id: uuid.UUID) -> bool:
        return approver_id in self.assigned_ids

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.request_id} L{self.level} {self.decision.value}>"


class ApproverDecision(Base):
    """One assigned approver's own vote at a level (quorum bookkeeping)."""

    __tablename__ = "approver_decisions"
    __table_args__ = (
        sa.UniqueConstraint(
            "request_id", "level", "approver_id", name="uq_approver_decision",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    decision: Mapped[ApprovalDecision] = mapped_column(
        sa.Enum(ApprovalDecision, name="approval_decision", native_enum=False),
        default=ApprovalDecision.pending,
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
