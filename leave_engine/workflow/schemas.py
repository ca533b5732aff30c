"""Workflow Pydantic v2 schemas: typed views over the JSON columns and API bodies.

Stored workflow JSON may use either snake_case or camelCase keys
(``approverRole``, ``executionMode``, ``escalateAfterHours``); both validate.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from leave_engine.common.constants import ApprovalDecision, ExecutionMode


# ═════════════════════════════════════════════════════════════════════
# Stored configuration
# ═════════════════════════════════════════════════════════════════════


class _StoredJson(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ApprovalStep(_StoredJson):
    """One level of an approval chain."""

    level: int = Field(ge=1)
    approver_role: str = Field(min_length=1)
    execution_mode: ExecutionMode = ExecutionMode.sequential
    escalate_after_hours: Optional[int] = Field(default=None, gt=0)
    escalate_to_role: Optional[str] = None

    @field_validator("execution_mode", mode="before")
    @classmethod
    def _upper_mode(cls, v):
        return v.upper() if isinstance(v, str) else v


class WorkflowConditions(_StoredJson):
    """Applicability predicate of a workflow configuration.

    Empty lists and missing bounds do not constrain anything.
    """

    leave_types: list[str] = Field(default_factory=list)
    min_duration_days: Optional[Decimal] = None
    max_duration_days: Optional[Decimal] = None
    departments: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)

    @field_validator("leave_types", "roles", mode="before")
    @classmethod
    def _upper_codes(cls, v):
        if isinstance(v, str):
            v = [v]
        return [str(item).upper() for item in v or []]

    @field_validator("departments", mode="before")
    @classmethod
    def _fold_departments(cls, v):
        if isinstance(v, str):
            v = [v]
        return [str(item).strip().casefold() for item in v or []]

    @model_validator(mode="after")
    def _check_range(self) -> WorkflowConditions:
        if (
            self.min_duration_days is not None
            and self.max_duration_days is not None
            and self.min_duration_days > self.max_duration_days
        ):
            raise ValueError("min_duration_days must not exceed max_duration_days")
        return self

    def applies_to_leave_type(self, leave_type: str) -> bool:
        return not self.leave_types or leave_type.upper() in self.leave_types

    def matches(
        self,
        leave_type: str,
        duration_days: Decimal,
        department: Optional[str],
        role: Optional[str],
    ) -> bool:
        if not self.applies_to_leave_type(leave_type):
            return False
        if self.min_duration_days is not None and duration_days < self.min_duration_days:
            return False
        if self.max_duration_days is not None and duration_days > self.max_duration_days:
            return False
        if self.departments and (department or "").strip().casefold() not in self.departments:
            return False
        if self.roles and (role or "").upper() not in self.roles:
            return False
        return True

    @property
    def specificity(self) -> int:
        """Number of constrained dimensions; the duration range counts once."""
        return sum((
            bool(self.leave_types),
            self.min_duration_days is not None or self.max_duration_days is not None,
            bool(self.departments),
            bool(self.roles),
        ))


class WorkflowSteps(_StoredJson):
    """Ordered, non-empty list of steps with distinct levels."""

    steps: list[ApprovalStep] = Field(min_length=1)

    @model_validator(mode="after")
    def _order_levels(self) -> WorkflowSteps:
        levels = [s.level for s in self.steps]
        if len(set(levels)) != len(levels):
            raise ValueError(f"duplicate approval levels: {sorted(levels)}")
        self.steps.sort(key=lambda s: s.level)
        return self


class ApprovalChain(BaseModel):
    """Snapshot of the resolved workflow bound to one leave request."""

    workflow_id: uuid.UUID
    workflow_name: str
    steps: list[ApprovalStep]

    @property
    def levels(self) -> list[int]:
        return [s.level for s in self.steps]


# ═════════════════════════════════════════════════════════════════════
# API bodies
# ═════════════════════════════════════════════════════════════════════


class DecisionCreate(BaseModel):
    """Body of ``POST /requests/{id}/decisions``."""

    level: int = Field(ge=1)
    decision: ApprovalDecision
    comments: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("decision")
    @classmethod
    def _not_pending(cls, v: ApprovalDecision) -> ApprovalDecision:
        if v == ApprovalDecision.pending:
            raise ValueError("decision must be APPROVED or REJECTED")
        return v


class ApprovalRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    approver_role: str
    execution_mode: ExecutionMode
    assigned_approvers: list[uuid.UUID]
    decision: ApprovalDecision
    decided_by: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None
    comments: Optional[str] = None
    activated_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    escalate_after_hours: Optional[int] = None
    escalate_to_role: Optional[str] = None


class EscalationSummary(BaseModel):
    """Result of one escalation sweep."""

    checked: int = 0
    escalated: int = 0
    failed: int = 0
    escalated_records: list[uuid.UUID] = Field(default_factory=list)
