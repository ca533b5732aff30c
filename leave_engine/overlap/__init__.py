"""Overlap module: team leave conflict detection."""

from leave_engine.overlap.detector import Conflict, LeaveInterval, find_conflicts, intervals_overlap

__all__ = ["Conflict", "LeaveInterval", "find_conflicts", "intervals_overlap"]
