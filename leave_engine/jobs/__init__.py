"""Scheduler entry points: escalation sweeps, allocation, carry-forward and expiry.

Exposed both as HR_ADMIN endpoints (``router``) and as a CLI
(``python -m leave_engine.jobs``) for cron.
"""
