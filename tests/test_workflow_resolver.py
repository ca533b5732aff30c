"""Workflow resolution: condition matching, priority and tie-breaks, defaults,
window validity, and snapshotting of the resolved steps.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.constants import ExecutionMode
from leave_engine.common.exceptions import InvalidWorkflowConfiguration, NoApplicableWorkflow
from leave_engine.workflow.models import WorkflowConfiguration
from leave_engine.workflow.resolver import WorkflowResolver, select_workflow
from leave_engine.workflow.schemas import WorkflowConditions
from tests.factories import seed_workflow, step

TODAY = date(2026, 3, 1)


def _config(name: str, *, conditions=None, priority=0, is_default=False) -> WorkflowConfiguration:
    return WorkflowConfiguration(
        id=uuid.uuid4(),
        name=name,
        conditions=conditions or {},
        steps=[step(1)],
        priority=priority,
        is_default=is_default,
        effective_from=date(2020, 1, 1),
    )


# ═════════════════════════════════════════════════════════════════════
# Conditions
# ═════════════════════════════════════════════════════════════════════


class TestWorkflowConditions:

    def test_empty_conditions_match_everything(self):
        cond = WorkflowConditions()
        assert cond.matches("ANNUAL", Decimal("30"), None, None)
        assert cond.specificity == 0

    def test_duration_bounds_are_inclusive(self):
        cond = WorkflowConditions.model_validate({"minDurationDays": 3, "maxDurationDays": 5})
        assert not cond.matches("ANNUAL", Decimal("2.5"), None, None)
        assert cond.matches("ANNUAL", Decimal("3"), None, None)
        assert cond.matches("ANNUAL", Decimal("5"), None, None)
        assert not cond.matches("ANNUAL", Decimal("5.5"), None, None)

    def test_department_and_role_filters(self):
        cond = WorkflowConditions(departments=["Finance"], roles=["manager"])
        assert cond.matches("ANNUAL", Decimal("1"), "Finance", "MANAGER")
        assert not cond.matches("ANNUAL", Decimal("1"), "Engineering", "MANAGER")
        assert not cond.matches("ANNUAL", Decimal("1"), "Finance", "EMPLOYEE")
        assert cond.specificity == 2

    def test_leave_type_codes_are_case_insensitive(self):
        cond = WorkflowConditions(leave_types="sick")
        assert cond.leave_types == ["SICK"]
        assert cond.matches("sick", Decimal("1"), None, None)

    def test_department_names_are_case_insensitive(self):
        cond = WorkflowConditions(departments=["engineering"])
        assert cond.matches("ANNUAL", Decimal("1"), "Engineering", None)
        assert cond.matches("ANNUAL", Decimal("1"), " ENGINEERING ", None)
        assert not cond.matches("ANNUAL", Decimal("1"), None, None)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            WorkflowConditions(min_duration_days=5, max_duration_days=2)


# ═════════════════════════════════════════════════════════════════════
# Selection (pure)
# ═════════════════════════════════════════════════════════════════════


class TestSelectWorkflow:

    def test_highest_priority_wins(self):
        low = _config("low", priority=1)
        high = _config("high", priority=5)
        assert select_workflow([low, high], "ANNUAL", Decimal("2"), None, None) is high

    def test_specific_match_beats_generic_at_same_priority(self):
        generic = _config("generic")
        sick = _config("sick only", conditions={"leaveTypes": ["SICK"]})
        assert select_workflow([generic, sick], "SICK", Decimal("1"), None, None) is sick

    def test_non_default_preferred_over_default_on_tie(self):
        default = _config("a-default", is_default=True)
        explicit = _config("b-explicit")
        assert select_workflow([default, explicit], "ANNUAL", Decimal("1"), None, None) is explicit

    def test_name_breaks_remaining_ties(self):
        b = _config("beta")
        a = _config("alpha")
        assert select_workflow([b, a], "ANNUAL", Decimal("1"), None, None) is a

    def test_falls_back_to_default_for_leave_type(self):
        long_only = _config("long", conditions={"minDurationDays": 10})
        default = _config("annual default", conditions={"leaveTypes": ["ANNUAL"], "minDurationDays": 20},
                          is_default=True)
        chosen = select_workflow([long_only, default], "ANNUAL", Decimal("2"), None, None)
        assert chosen is default

    def test_default_for_other_leave_type_is_not_used(self):
        default = _config("sick default", conditions={"leaveTypes": ["SICK"]}, is_default=True)
        assert select_workflow([default], "ANNUAL", Decimal("1"), None, None) is None

    def test_unreadable_conditions_are_skipped(self):
        broken = _config("broken", conditions={"minDurationDays": 9, "maxDurationDays": 1}, priority=9)
        fine = _config("fine")
        assert select_workflow([broken, fine], "ANNUAL", Decimal("1"), None, None) is fine


# ═════════════════════════════════════════════════════════════════════
# Resolution against the store
# ═════════════════════════════════════════════════════════════════════


class TestWorkflowResolver:

    async def test_resolve_returns_ordered_snapshot(self, db: AsyncSession):
        wf = await seed_workflow(
            db,
            name="Two level",
            steps=[
                step(2, "HR_ADMIN", "ANY_OF", escalateAfterHours=48),
                step(1, "REPORTING_MANAGER"),
            ],
        )

        chain = await WorkflowResolver.resolve(db, "ANNUAL", Decimal("3"), "Engineering", "EMPLOYEE", TODAY)

        assert chain.workflow_id == wf.id
        assert chain.workflow_name == "Two level"
        assert chain.levels == [1, 2]
        assert chain.steps[1].execution_mode == ExecutionMode.any_of
        assert chain.steps[1].escalate_after_hours == 48

        # Editing the configuration afterwards does not reach the chain
        wf.steps = [step(1, "SYSTEM_ADMIN")]
        await db.flush()
        assert chain.steps[0].approver_role == "REPORTING_MANAGER"

    async def test_no_workflow_raises(self, db: AsyncSession):
        await seed_workflow(db, conditions={"leaveTypes": ["SICK"]})
        with pytest.raises(NoApplicableWorkflow):
            await WorkflowResolver.resolve(db, "ANNUAL", Decimal("1"), None, None, TODAY)

    async def test_expired_and_inactive_workflows_ignored(self, db: AsyncSession):
        await seed_workflow(db, name="future", effective_from=date(2027, 1, 1))
        await seed_workflow(db, name="off", is_active=False)
        with pytest.raises(NoApplicableWorkflow):
            await WorkflowResolver.resolve(db, "ANNUAL", Decimal("1"), None, None, TODAY)

    async def test_invalid_steps_raise_configuration_error(self, db: AsyncSession):
        await seed_workflow(db, name="dupes", steps=[step(1), step(1, "HR_ADMIN")])
        with pytest.raises(InvalidWorkflowConfiguration):
            await WorkflowResolver.resolve(db, "ANNUAL", Decimal("1"), None, None, TODAY)

    async def test_role_condition_uses_requester_role(self, db: AsyncSession):
        await seed_workflow(db, name="everyone", steps=[step(1)])
        await seed_workflow(
            db, name="managers", conditions={"roles": ["MANAGER"]},
            steps=[step(1, "SECOND_LEVEL_MANAGER")],
        )
        chain = await WorkflowResolver.resolve(db, "ANNUAL", Decimal("1"), None, "MANAGER", TODAY)
        assert chain.workflow_name == "managers"

        chain = await WorkflowResolver.resolve(db, "ANNUAL", Decimal("1"), None, "EMPLOYEE", TODAY)
        assert chain.workflow_name == "everyone"
