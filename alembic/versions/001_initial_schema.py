"""001 – Initial schema: directory, policies, workflows, requests, ledger, outbox.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. employees (directory mirror) ───────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code      VARCHAR(20)  NOT NULL UNIQUE,
            full_name          VARCHAR(200) NOT NULL,
            email              VARCHAR(255) NOT NULL UNIQUE,
            role               VARCHAR(50)  NOT NULL DEFAULT 'EMPLOYEE',
            department         VARCHAR(100),
            region             VARCHAR(50)  NOT NULL,
            location           VARCHAR(100),
            date_of_joining    DATE NOT NULL,
            manager_id         UUID REFERENCES employees(id),
            employment_status  VARCHAR(20) DEFAULT 'active',
            is_active          BOOLEAN DEFAULT TRUE,
            created_at         TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_manager ON employees(manager_id)")
    op.execute("CREATE INDEX idx_employees_role    ON employees(role) WHERE is_active")

    # ── 2. leave_type_configurations ──────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_type_configurations (
            id                           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_type                   VARCHAR(40)  NOT NULL,
            region                       VARCHAR(50)  NOT NULL,
            name                         VARCHAR(100) NOT NULL,
            default_entitlement          NUMERIC(6,2) DEFAULT 0,
            allow_negative_balance       BOOLEAN DEFAULT FALSE,
            negative_balance_limit       NUMERIC(6,2) DEFAULT 0,
            requires_documentation       BOOLEAN DEFAULT FALSE,
            documentation_threshold_days NUMERIC(6,2),
            min_advance_notice_days      INTEGER DEFAULT 0,
            max_consecutive_days         INTEGER,
            full_day_allowed             BOOLEAN DEFAULT TRUE,
            half_day_allowed             BOOLEAN DEFAULT TRUE,
            quarter_day_allowed          BOOLEAN DEFAULT FALSE,
            hourly_allowed               BOOLEAN DEFAULT FALSE,
            hours_per_day                NUMERIC(4,2) DEFAULT 8,
            carry_forward_eligible       BOOLEAN DEFAULT FALSE,
            carry_forward_expiry_month   INTEGER CHECK (carry_forward_expiry_month BETWEEN 1 AND 12),
            carry_forward_expiry_day     INTEGER CHECK (carry_forward_expiry_day BETWEEN 1 AND 31),
            effective_from               DATE NOT NULL,
            effective_to                 DATE,
            is_active                    BOOLEAN DEFAULT TRUE,
            CONSTRAINT uq_leave_type_config UNIQUE (leave_type, region, effective_from)
        )
    """)

    # ── 3. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                  UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_type          VARCHAR(40)  NOT NULL,
            region              VARCHAR(50)  NOT NULL,
            role                VARCHAR(50),
            annual_entitlement  NUMERIC(6,2) NOT NULL,
            max_carry_forward   NUMERIC(6,2) DEFAULT 0,
            effective_from      DATE NOT NULL,
            effective_to        DATE,
            is_active           BOOLEAN DEFAULT TRUE
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_policies_lookup ON leave_policies(leave_type, region, role)"
    )

    # ── 4. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            region       VARCHAR(50)  NOT NULL,
            date         DATE NOT NULL,
            name         VARCHAR(200) NOT NULL,
            is_optional  BOOLEAN DEFAULT FALSE,
            CONSTRAINT uq_holiday_region_date UNIQUE (region, date)
        )
    """)

    # ── 5. workflow_configurations ────────────────────────────────────────
    op.execute("""
        CREATE TABLE workflow_configurations (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name            VARCHAR(200) NOT NULL,
            workflow_type   VARCHAR(50)  NOT NULL DEFAULT 'LEAVE_APPROVAL',
            conditions      JSONB NOT NULL DEFAULT '{}',
            steps           JSONB NOT NULL DEFAULT '[]',
            is_default      BOOLEAN DEFAULT FALSE,
            priority        INTEGER DEFAULT 0,
            effective_from  DATE NOT NULL,
            effective_to    DATE,
            is_active       BOOLEAN DEFAULT TRUE,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 6. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id    UUID NOT NULL REFERENCES employees(id),
            leave_type     VARCHAR(40) NOT NULL,
            start_date     DATE NOT NULL,
            end_date       DATE NOT NULL,
            day_details    JSONB NOT NULL DEFAULT '{}',
            total_days     NUMERIC(6,2) NOT NULL CHECK (total_days > 0),
            reason         TEXT,
            attachment_id  VARCHAR(200),
            status         VARCHAR(20) DEFAULT 'pending',
            workflow_id    UUID REFERENCES workflow_configurations(id),
            workflow_name  VARCHAR(200),
            version        INTEGER NOT NULL,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            decided_at     TIMESTAMPTZ,
            cancelled_at   TIMESTAMPTZ,
            cancelled_by   UUID REFERENCES employees(id),
            CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_employee_dates "
        "ON leave_requests(employee_id, start_date, end_date)"
    )

    # ── 7. approval_records ───────────────────────────────────────────────
    op.execute("""
        CREATE TABLE approval_records (
            id                    UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id            UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            level                 INTEGER NOT NULL,
            approver_role         VARCHAR(50) NOT NULL,
            execution_mode        VARCHAR(20) NOT NULL,
            escalate_after_hours  INTEGER,
            escalate_to_role      VARCHAR(50),
            assigned_approvers    JSONB NOT NULL DEFAULT '[]',
            decision              VARCHAR(20) DEFAULT 'pending',
            decided_by            UUID REFERENCES employees(id),
            decided_at            TIMESTAMPTZ,
            comments              TEXT,
            activated_at          TIMESTAMPTZ,
            escalated_at          TIMESTAMPTZ,
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_approval_record_level UNIQUE (request_id, level)
        )
    """)
    op.execute(
        "CREATE INDEX ix_approval_records_pending ON approval_records(decision, escalated_at)"
    )

    # ── 8. approver_decisions ─────────────────────────────────────────────
    op.execute("""
        CREATE TABLE approver_decisions (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            request_id   UUID NOT NULL REFERENCES leave_requests(id) ON DELETE CASCADE,
            level        INTEGER NOT NULL,
            approver_id  UUID NOT NULL REFERENCES employees(id),
            decision     VARCHAR(20) DEFAULT 'pending',
            decided_at   TIMESTAMPTZ,
            comments     TEXT,
            CONSTRAINT uq_approver_decision UNIQUE (request_id, level, approver_id)
        )
    """)

    # ── 9. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id                          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id                 UUID NOT NULL REFERENCES employees(id),
            leave_type                  VARCHAR(40) NOT NULL,
            year                        INTEGER NOT NULL,
            total_entitlement           NUMERIC(6,2) NOT NULL DEFAULT 0,
            used                        NUMERIC(6,2) NOT NULL DEFAULT 0 CHECK (used >= 0),
            carry_forward               NUMERIC(6,2) NOT NULL DEFAULT 0,
            available                   NUMERIC(6,2) GENERATED ALWAYS AS (total_entitlement - used) STORED,
            allocated_at                TIMESTAMPTZ,
            carry_forward_processed_at  TIMESTAMPTZ,
            carry_forward_forfeited     NUMERIC(6,2) NOT NULL DEFAULT 0,
            carry_forward_expired       NUMERIC(6,2) NOT NULL DEFAULT 0,
            carry_forward_expired_at    TIMESTAMPTZ,
            version                     INTEGER NOT NULL DEFAULT 1,
            created_at                  TIMESTAMPTZ DEFAULT NOW(),
            updated_at                  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, leave_type, year)
        )
    """)

    # ── 10. domain_events (outbox) ────────────────────────────────────────
    op.execute("""
        CREATE TABLE domain_events (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            event_type     VARCHAR(30) NOT NULL,
            entity_type    VARCHAR(50) NOT NULL,
            entity_id      UUID,
            recipient_ids  JSONB NOT NULL DEFAULT '[]',
            payload        JSONB NOT NULL DEFAULT '{}',
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            dispatched_at  TIMESTAMPTZ
        )
    """)
    op.execute(
        "CREATE INDEX ix_domain_events_undispatched ON domain_events(dispatched_at, created_at)"
    )

    # ── 11. audit_trail ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID REFERENCES employees(id),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")
    op.execute("CREATE INDEX ix_audit_trail_entity   ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_action   ON audit_trail(action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "domain_events",
        "leave_balances",
        "approver_decisions",
        "approval_records",
        "leave_requests",
        "workflow_configurations",
        "holidays",
        "leave_policies",
        "leave_type_configurations",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")
