"""Policies module: leave type rules, entitlement policies and holidays."""

from leave_engine.policies.models import Holiday, LeavePolicy, LeaveTypeConfiguration
from leave_engine.policies.store import Entitlement, PolicyStore

__all__ = [
    "Entitlement",
    "Holiday",
    "LeavePolicy",
    "LeaveTypeConfiguration",
    "PolicyStore",
]
