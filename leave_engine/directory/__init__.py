"""Directory module: Employee model and read-only directory lookups."""

from leave_engine.directory.models import Employee

__all__ = ["Employee"]
