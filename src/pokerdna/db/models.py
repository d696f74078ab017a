"""ORM models for the DNA profile and the XP security log.

Column types stay portable (no PostgreSQL-only types) so the same models run
against SQLite in tests. Schema changes go through Alembic.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from pokerdna.db.base import Base


class UserProfileRow(Base):
    """One row per user. ``version`` increments on every XP write."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    xp_total: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    xp_lifetime: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, server_default="BRONZE")

    grit: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    accuracy: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    aggression: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    wealth: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")
    reputation: Mapped[float] = mapped_column(Float, nullable=False, server_default="0.5")

    diamond_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    diamond_lifetime: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    streak_multiplier: Mapped[float] = mapped_column(Float, nullable=False, server_default="1.0")
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    is_pro_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")

    last_credit_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_credit_accuracy: Mapped[float | None] = mapped_column(Float, nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class SecurityLogRow(Base):
    """Append-only record of every XP credit attempt.

    ``seq`` follows insertion order and breaks ties between equal timestamps.
    """

    __tablename__ = "xp_security_log"
    __table_args__ = (Index("ix_xp_security_log_user_ts", "user_id", "timestamp"),)

    # SQLite only autoincrements INTEGER primary keys
    seq: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    attempted_delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    applied_delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    prior_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    resulting_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, server_default="INFO")
