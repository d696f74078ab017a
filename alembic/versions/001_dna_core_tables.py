"""DNA profile and XP security log tables.

Creates user_profiles (one row per user, version-counted) and the append-only
xp_security_log.

Revision ID: 001_dna_core_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_dna_core_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            user_id VARCHAR(64) PRIMARY KEY,
            xp_total BIGINT NOT NULL DEFAULT 0 CHECK (xp_total >= 0),
            xp_lifetime BIGINT NOT NULL DEFAULT 0 CHECK (xp_lifetime >= 0),
            level INTEGER NOT NULL DEFAULT 1 CHECK (level >= 1),
            tier VARCHAR(16) NOT NULL DEFAULT 'BRONZE',
            grit DOUBLE PRECISION NOT NULL DEFAULT 0.5 CHECK (grit BETWEEN 0 AND 1),
            accuracy DOUBLE PRECISION NOT NULL DEFAULT 0.5 CHECK (accuracy BETWEEN 0 AND 1),
            aggression DOUBLE PRECISION NOT NULL DEFAULT 0.5 CHECK (aggression BETWEEN 0 AND 1),
            wealth DOUBLE PRECISION NOT NULL DEFAULT 0.5 CHECK (wealth BETWEEN 0 AND 1),
            reputation DOUBLE PRECISION NOT NULL DEFAULT 0.5 CHECK (reputation BETWEEN 0 AND 1),
            diamond_balance BIGINT NOT NULL DEFAULT 0,
            diamond_lifetime BIGINT NOT NULL DEFAULT 0,
            streak_days INTEGER NOT NULL DEFAULT 0,
            streak_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            is_verified BOOLEAN NOT NULL DEFAULT false,
            is_pro_verified BOOLEAN NOT NULL DEFAULT false,
            last_credit_source VARCHAR(32),
            last_credit_accuracy DOUBLE PRECISION,
            version BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_profiles_tier
        ON user_profiles(tier)
    """)

    # --- Security log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_security_log (
            seq BIGSERIAL PRIMARY KEY,
            id VARCHAR(36) NOT NULL UNIQUE,
            user_id VARCHAR(64) NOT NULL,
            timestamp TIMESTAMPTZ NOT NULL,
            source VARCHAR(32) NOT NULL,
            attempted_delta BIGINT NOT NULL,
            applied_delta BIGINT NOT NULL CHECK (applied_delta >= 0),
            prior_total BIGINT NOT NULL,
            resulting_total BIGINT NOT NULL,
            blocked BOOLEAN NOT NULL,
            reason_code VARCHAR(32),
            severity VARCHAR(16) NOT NULL DEFAULT 'INFO',
            CHECK (NOT blocked OR (applied_delta = 0 AND resulting_total = prior_total))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_xp_security_log_user_ts
        ON xp_security_log(user_id, timestamp DESC, seq DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_security_log_blocked
        ON xp_security_log(timestamp DESC) WHERE blocked
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS xp_security_log")
    op.execute("DROP TABLE IF EXISTS user_profiles")
