"""Common module — shared utilities for the leave engine."""

from leave_engine.common.audit import AuditTrail, create_audit_entry
from leave_engine.common.constants import (
    DAYS_QUANTUM,
    ApprovalDecision,
    EmploymentStatus,
    EventType,
    ExecutionMode,
    LeaveDayType,
    LeaveStatus,
    RequestPhase,
    UserRole,
)
from leave_engine.common.exceptions import (
    AlreadyDecided,
    AppException,
    ConcurrentModification,
    ForbiddenException,
    InsufficientBalance,
    InvalidApprover,
    InvalidLevel,
    InvalidWorkflowConfiguration,
    LedgerInvariantError,
    NoApplicableWorkflow,
    NoApproverAvailable,
    NotFoundException,
    PolicyNotFound,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ApprovalDecision",
    "EmploymentStatus",
    "EventType",
    "ExecutionMode",
    "LeaveDayType",
    "LeaveStatus",
    "RequestPhase",
    "UserRole",
    "DAYS_QUANTUM",
    # Exceptions
    "AlreadyDecided",
    "AppException",
    "ConcurrentModification",
    "ForbiddenException",
    "InsufficientBalance",
    "InvalidApprover",
    "InvalidLevel",
    "InvalidWorkflowConfiguration",
    "LedgerInvariantError",
    "NoApplicableWorkflow",
    "NoApproverAvailable",
    "NotFoundException",
    "PolicyNotFound",
    "ValidationException",
    "register_exception_handlers",
]
