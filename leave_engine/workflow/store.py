"""Workflow store: read-only access to workflow configurations."""

from __future__ import annotations

from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_engine.workflow.models import WorkflowConfiguration


class WorkflowStore:

    @staticmethod
    async def list_active(
        db: AsyncSession,
        as_of: date,
        *,
        workflow_type: str = "LEAVE_APPROVAL",
    ) -> list[WorkflowConfiguration]:
        """Active configurations whose effective window contains ``as_of``."""
        result = await db.execute(
            select(WorkflowConfiguration)
            .where(
                WorkflowConfiguration.workflow_type == workflow_type,
                WorkflowConfiguration.is_active.is_(True),
                WorkflowConfiguration.effective_from <= as_of,
                or_(
                    WorkflowConfiguration.effective_to.is_(None),
                    WorkflowConfiguration.effective_to >= as_of,
                ),
            )
            .order_by(WorkflowConfiguration.name)
        )
        return list(result.scalars().all())
