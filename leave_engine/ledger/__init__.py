"""Ledger module: per employee / leave type / year balances."""

from leave_engine.ledger.models import LeaveBalance

__all__ = ["LeaveBalance"]
