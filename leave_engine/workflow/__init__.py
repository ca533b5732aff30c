"""Workflow module: configurations, resolution and the approval state machine."""

from leave_engine.workflow.models import ApprovalRecord, ApproverDecision, WorkflowConfiguration

__all__ = ["ApprovalRecord", "ApproverDecision", "WorkflowConfiguration"]
