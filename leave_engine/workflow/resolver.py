"""Workflow resolution: pick the single workflow that governs a leave request.

Selection among the active configurations valid at ``as_of``:

  1. Keep configurations whose conditions match the request.
  2. If none match, fall back to the default configurations that apply to
     the leave type (they name it, or name no leave type at all).
  3. Order by priority (high first), then by specificity (more constrained
     dimensions first), then non-default before default, then by name.

The winner's steps are copied into an ``ApprovalChain`` so later edits to
the configuration cannot reach requests already in flight.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.common.exceptions import InvalidWorkflowConfiguration, NoApplicableWorkflow
from leave_engine.workflow.models import WorkflowConfiguration
from leave_engine.workflow.schemas import ApprovalChain, WorkflowConditions
from leave_engine.workflow.store import WorkflowStore

logger = logging.getLogger(__name__)


def _rank(item: tuple[WorkflowConfiguration, WorkflowConditions]) -> tuple:
    config, conditions = item
    return (-(config.priority or 0), -conditions.specificity, bool(config.is_default), config.name)


def select_workflow(
    configs: list[WorkflowConfiguration],
    leave_type: str,
    duration_days: Decimal,
    department: Optional[str],
    role: Optional[str],
) -> Optional[WorkflowConfiguration]:
    """Pure selection over already-loaded configurations; None when nothing applies."""
    parsed: list[tuple[WorkflowConfiguration, WorkflowConditions]] = []
    for config in configs:
        try:
            parsed.append((config, config.parsed_conditions()))
        except ValidationError as exc:
            logger.error("Skipping workflow %s with unreadable conditions: %s", config.name, exc)

    candidates = [
        item for item in parsed
        if item[1].matches(leave_type, duration_days, department, role)
    ]
    if not candidates:
        candidates = [
            item for item in parsed
            if item[0].is_default and item[1].applies_to_leave_type(leave_type)
        ]
    if not candidates:
        return None
    return min(candidates, key=_rank)[0]


class WorkflowResolver:

    @staticmethod
    async def resolve(
        db: AsyncSession,
        leave_type: str,
        request_duration_days: Decimal,
        department: Optional[str],
        role: Optional[str],
        as_of: date,
    ) -> ApprovalChain:
        """Bind an approval chain for a request, or raise NoApplicableWorkflow."""
        configs = await WorkflowStore.list_active(db, as_of)
        chosen = select_workflow(configs, leave_type, request_duration_days, department, role)
        if chosen is None:
            raise NoApplicableWorkflow(leave_type)

        try:
            steps = chosen.parsed_steps()
        except ValidationError as exc:
            raise InvalidWorkflowConfiguration(
                chosen.name, f"{exc.error_count()} invalid step definition(s)",
            ) from exc

        logger.info(
            "Resolved workflow %s (priority=%s, default=%s) for %s / %s days",
            chosen.name, chosen.priority, chosen.is_default, leave_type, request_duration_days,
        )
        return ApprovalChain(
            workflow_id=chosen.id,
            workflow_name=chosen.name,
            steps=[step.model_copy(deep=True) for step in steps],
        )
