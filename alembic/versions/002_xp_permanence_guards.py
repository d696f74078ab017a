"""Storage-level XP permanence guards.

user_profiles refuses any UPDATE that lowers xp_total, xp_lifetime or version,
whoever issues it. xp_security_log refuses UPDATE, DELETE and TRUNCATE.

Revision ID: 002_xp_permanence_guards
Revises: 001_dna_core_tables
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_xp_permanence_guards"
down_revision: str | None = "001_dna_core_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles: XP and version only move forward ---
    op.execute("""
        CREATE OR REPLACE FUNCTION enforce_xp_permanence()
        RETURNS TRIGGER AS $$
        BEGIN
            IF NEW.xp_total < OLD.xp_total THEN
                RAISE EXCEPTION 'XP_DECREASE_BLOCKED: xp_total % -> % for user %',
                    OLD.xp_total, NEW.xp_total, OLD.user_id
                    USING ERRCODE = 'check_violation';
            END IF;
            IF NEW.xp_lifetime < OLD.xp_lifetime THEN
                RAISE EXCEPTION 'XP_DECREASE_BLOCKED: xp_lifetime % -> % for user %',
                    OLD.xp_lifetime, NEW.xp_lifetime, OLD.user_id
                    USING ERRCODE = 'check_violation';
            END IF;
            IF NEW.version < OLD.version THEN
                RAISE EXCEPTION 'VERSION_REGRESSION: version % -> % for user %',
                    OLD.version, NEW.version, OLD.user_id
                    USING ERRCODE = 'check_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("DROP TRIGGER IF EXISTS trg_user_profiles_xp_permanence ON user_profiles")
    op.execute("""
        CREATE TRIGGER trg_user_profiles_xp_permanence
        BEFORE UPDATE ON user_profiles
        FOR EACH ROW
        EXECUTE FUNCTION enforce_xp_permanence()
    """)

    # --- Security log: append-only ---
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_security_log_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'xp_security_log is append-only, % refused', TG_OP
                USING ERRCODE = 'insufficient_privilege';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("DROP TRIGGER IF EXISTS trg_xp_security_log_append_only ON xp_security_log")
    op.execute("""
        CREATE TRIGGER trg_xp_security_log_append_only
        BEFORE UPDATE OR DELETE ON xp_security_log
        FOR EACH ROW
        EXECUTE FUNCTION reject_security_log_mutation()
    """)
    op.execute("DROP TRIGGER IF EXISTS trg_xp_security_log_no_truncate ON xp_security_log")
    op.execute("""
        CREATE TRIGGER trg_xp_security_log_no_truncate
        BEFORE TRUNCATE ON xp_security_log
        FOR EACH STATEMENT
        EXECUTE FUNCTION reject_security_log_mutation()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_xp_security_log_no_truncate ON xp_security_log")
    op.execute("DROP TRIGGER IF EXISTS trg_xp_security_log_append_only ON xp_security_log")
    op.execute("DROP FUNCTION IF EXISTS reject_security_log_mutation()")
    op.execute("DROP TRIGGER IF EXISTS trg_user_profiles_xp_permanence ON user_profiles")
    op.execute("DROP FUNCTION IF EXISTS enforce_xp_permanence()")
