"""002 – Monthly accrual: per-month accrual rate on policies and accrual history.

Adds leave_policies.accrual_rate and the monthly_accruals table whose unique
(employee_id, leave_type, year, month) key keeps the monthly job idempotent.

Revision ID: 002_monthly_accrual
Revises: 001_initial_schema
Create Date: 2026-10-17 15:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "002_monthly_accrual"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ══════════════════════════════════════════════════════════════════
    # leave_policies — new: accrual_rate
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        ALTER TABLE leave_policies
            ADD COLUMN IF NOT EXISTS accrual_rate NUMERIC(6,2)
    """)

    # ══════════════════════════════════════════════════════════════════
    # monthly_accruals
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        CREATE TABLE IF NOT EXISTS monthly_accruals (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id  UUID NOT NULL REFERENCES employees(id),
            leave_type   VARCHAR(40) NOT NULL,
            year         INTEGER NOT NULL,
            month        INTEGER NOT NULL CHECK (month BETWEEN 1 AND 12),
            days         NUMERIC(6,2) NOT NULL,
            pro_rated    BOOLEAN NOT NULL DEFAULT FALSE,
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_monthly_accrual UNIQUE (employee_id, leave_type, year, month)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_monthly_accruals_period "
        "ON monthly_accruals(year, month)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS monthly_accruals CASCADE")
    op.execute("ALTER TABLE leave_policies DROP COLUMN IF EXISTS accrual_rate")
