"""001 – Initial schema: directory, calendar, leave ledger, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Enum columns are VARCHAR + CHECK, matching the non-native ORM enums
CHECKED_VALUES: dict[str, list[str]] = {
    "saturday_off_pattern": ["NONE", "SECOND_ONLY", "SECOND_AND_FOURTH", "ALL"],
    "holiday_type": [
        "SECOND_SATURDAY",
        "NATIONAL_HOLIDAY",
        "FESTIVAL",
        "ORGANIZATION_HOLIDAY",
        "OTHER",
    ],
    "override_type": ["FORCE_WORKING", "FORCE_HOLIDAY"],
    "leave_status": ["pending", "approved", "rejected", "cancelled"],
}


def _in(column: str, kind: str) -> str:
    vals = ", ".join(f"'{v}'" for v in CHECKED_VALUES[kind])
    return f"CHECK ({column} IN ({vals}))"


# ---------------------------------------------------------------------------
# Upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    # btree_gist: equality on scalar columns inside EXCLUDE constraints
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    # ── 1. directory ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE organizations (
            id          VARCHAR(64) PRIMARY KEY,
            name        VARCHAR(150) NOT NULL,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE school_classes (
            id               VARCHAR(64) PRIMARY KEY,
            organization_id  VARCHAR(64) NOT NULL
                             REFERENCES organizations(id) ON DELETE CASCADE,
            name             VARCHAR(100) NOT NULL,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_school_classes_organization_id ON school_classes (organization_id)")
    op.execute("""
        CREATE TABLE users (
            id               VARCHAR(64) PRIMARY KEY,
            organization_id  VARCHAR(64) NOT NULL
                             REFERENCES organizations(id) ON DELETE CASCADE,
            class_id         VARCHAR(64) REFERENCES school_classes(id) ON DELETE SET NULL,
            role_id          VARCHAR(64) NOT NULL,
            full_name        VARCHAR(200) NOT NULL,
            is_active        BOOLEAN DEFAULT TRUE,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_users_organization_id ON users (organization_id)")

    # ── 2. working_day_policies ───────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE working_day_policies (
            id                    VARCHAR(36) PRIMARY KEY,
            organization_id       VARCHAR(64) NOT NULL
                                  REFERENCES organizations(id) ON DELETE CASCADE,
            sunday_off            BOOLEAN NOT NULL DEFAULT TRUE,
            saturday_off_pattern  VARCHAR(32) NOT NULL DEFAULT 'SECOND_ONLY'
                                  {_in("saturday_off_pattern", "saturday_off_pattern")},
            effective_from        DATE NOT NULL,
            effective_to          DATE,
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            updated_at            TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_working_day_policy_period
                CHECK (effective_to IS NULL OR effective_to >= effective_from),
            CONSTRAINT ex_working_day_policy_overlap EXCLUDE USING gist (
                organization_id WITH =,
                daterange(effective_from, effective_to, '[]') WITH &&
            )
        )
    """)
    op.execute(
        "CREATE INDEX ix_working_day_policy_org_from "
        "ON working_day_policies (organization_id, effective_from)"
    )

    # ── 3. holidays ───────────────────────────────────────────────────────
    # SUNDAY / SATURDAY are generated from the policy and never stored
    op.execute(f"""
        CREATE TABLE holidays (
            id               VARCHAR(36) PRIMARY KEY,
            organization_id  VARCHAR(64) NOT NULL
                             REFERENCES organizations(id) ON DELETE CASCADE,
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            holiday_type     VARCHAR(32) NOT NULL {_in("holiday_type", "holiday_type")},
            description      VARCHAR(255) NOT NULL,
            created_by       VARCHAR(64),
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_holiday_period CHECK (end_date >= start_date)
        )
    """)
    op.execute("CREATE INDEX ix_holiday_org_start ON holidays (organization_id, start_date)")

    # ── 4. calendar_exceptions ────────────────────────────────────────────
    op.execute(f"""
        CREATE TABLE calendar_exceptions (
            id                            VARCHAR(36) PRIMARY KEY,
            organization_id               VARCHAR(64) NOT NULL
                                          REFERENCES organizations(id) ON DELETE CASCADE,
            date                          DATE NOT NULL,
            override_type                 VARCHAR(32) NOT NULL
                                          {_in("override_type", "override_type")},
            is_applicable_to_all_classes  BOOLEAN NOT NULL DEFAULT TRUE,
            reason                        VARCHAR(500) NOT NULL,
            created_by                    VARCHAR(64),
            created_at                    TIMESTAMPTZ DEFAULT NOW(),
            updated_at                    TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_calendar_exception_org_date "
        "ON calendar_exceptions (organization_id, date)"
    )
    op.execute("""
        CREATE TABLE calendar_exception_classes (
            calendar_exception_id  VARCHAR(36) NOT NULL
                                   REFERENCES calendar_exceptions(id) ON DELETE CASCADE,
            class_id               VARCHAR(64) NOT NULL
                                   REFERENCES school_classes(id) ON DELETE CASCADE,
            PRIMARY KEY (calendar_exception_id, class_id)
        )
    """)

    # ── 5. leave_types / leave_allocations ────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id           VARCHAR(36) PRIMARY KEY,
            code         VARCHAR(10) NOT NULL UNIQUE,
            name         VARCHAR(100) NOT NULL,
            description  TEXT,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE leave_allocations (
            id                      VARCHAR(36) PRIMARY KEY,
            organization_id         VARCHAR(64) NOT NULL
                                    REFERENCES organizations(id) ON DELETE CASCADE,
            leave_type_id           VARCHAR(36) NOT NULL REFERENCES leave_types(id),
            name                    VARCHAR(150) NOT NULL,
            description             TEXT,
            total_days              NUMERIC(5,1) NOT NULL,
            max_carry_forward_days  NUMERIC(5,1) NOT NULL DEFAULT 0,
            roles                   JSON NOT NULL DEFAULT '[]',
            effective_from          DATE NOT NULL,
            effective_to            DATE,
            created_at              TIMESTAMPTZ DEFAULT NOW(),
            updated_at              TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_allocation_carry_forward
                CHECK (max_carry_forward_days <= total_days),
            CONSTRAINT ck_leave_allocation_period
                CHECK (effective_to IS NULL OR effective_to >= effective_from)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_allocations_organization_id "
        "ON leave_allocations (organization_id)"
    )

    # ── 6. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id                   VARCHAR(36) PRIMARY KEY,
            user_id              VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            leave_allocation_id  VARCHAR(36) NOT NULL REFERENCES leave_allocations(id),
            total_allocated      NUMERIC(5,1) NOT NULL DEFAULT 0,
            used                 NUMERIC(5,1) NOT NULL DEFAULT 0,
            pending              NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward      NUMERIC(5,1) NOT NULL DEFAULT 0,
            version              INTEGER NOT NULL,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            updated_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance_user_allocation
                UNIQUE (user_id, leave_allocation_id),
            CONSTRAINT ck_leave_balance_non_negative
                CHECK (total_allocated >= 0 AND used >= 0 AND pending >= 0
                       AND carried_forward >= 0)
        )
    """)

    # ── 7. leave_requests ─────────────────────────────────────────────────
    # The exclusion constraint is the source of truth for overlapping
    # pending/approved requests of one user.
    op.execute(f"""
        CREATE TABLE leave_requests (
            id                 VARCHAR(36) PRIMARY KEY,
            user_id            VARCHAR(64) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            leave_balance_id   VARCHAR(36) NOT NULL REFERENCES leave_balances(id),
            start_date         DATE NOT NULL,
            end_date           DATE NOT NULL,
            number_of_days     NUMERIC(5,1) NOT NULL,
            is_half_day        BOOLEAN NOT NULL DEFAULT FALSE,
            status             VARCHAR(16) NOT NULL DEFAULT 'pending'
                               {_in("status", "leave_status")},
            reason             TEXT,
            reviewed_by        VARCHAR(64),
            reviewed_at        TIMESTAMPTZ,
            reviewer_comments  TEXT,
            cancelled_at       TIMESTAMPTZ,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_period CHECK (end_date >= start_date),
            CONSTRAINT ex_leave_request_overlap EXCLUDE USING gist (
                user_id WITH =,
                daterange(start_date, end_date, '[]') WITH &&
            ) WHERE (status IN ('pending', 'approved'))
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_request_user_dates "
        "ON leave_requests (user_id, start_date, end_date)"
    )

    # ── 8. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           VARCHAR(36) PRIMARY KEY,
            actor_id     VARCHAR(64),
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    VARCHAR(64) NOT NULL,
            old_values   JSON,
            new_values   JSON,
            created_at   TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")


# ---------------------------------------------------------------------------
# Downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_requests",
        "leave_balances",
        "leave_allocations",
        "leave_types",
        "calendar_exception_classes",
        "calendar_exceptions",
        "holidays",
        "working_day_policies",
        "users",
        "school_classes",
        "organizations",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")
