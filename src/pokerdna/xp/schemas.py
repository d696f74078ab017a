"""Records shared by the XP kernel, the stores and the DNA synchronizer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class XPSource(str, Enum):
    TRAINING = "TRAINING"
    DRILL = "DRILL"
    QUIZ = "QUIZ"
    STREAK_BONUS = "STREAK_BONUS"
    ACHIEVEMENT = "ACHIEVEMENT"
    BANKROLL_SESSION = "BANKROLL_SESSION"
    SOCIAL_ACTION = "SOCIAL_ACTION"
    DAILY_LOGIN = "DAILY_LOGIN"
    REFERRAL = "REFERRAL"
    ADMIN = "ADMIN"


class Tier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    GTO_MASTER = "GTO_MASTER"


class ReasonCode(str, Enum):
    NON_POSITIVE = "NON_POSITIVE"
    NOT_INTEGER = "NOT_INTEGER"
    BELOW_MIN = "BELOW_MIN"
    ABOVE_MAX = "ABOVE_MAX"
    MASTERY_GATE = "MASTERY_GATE"
    DECREASE_BLOCKED = "DECREASE_BLOCKED"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# --- Profile ---


class UserProfile(BaseModel):
    """Authoritative DNA profile. Unknown fields from remote rows are dropped."""

    model_config = ConfigDict(extra="ignore", from_attributes=True, frozen=True)

    user_id: str
    xp_total: int = Field(default=0, ge=0)
    xp_lifetime: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    tier: Tier = Tier.BRONZE

    grit: float = Field(default=0.5, ge=0.0, le=1.0)
    accuracy: float = Field(default=0.5, ge=0.0, le=1.0)
    aggression: float = Field(default=0.5, ge=0.0, le=1.0)
    wealth: float = Field(default=0.5, ge=0.0, le=1.0)
    reputation: float = Field(default=0.5, ge=0.0, le=1.0)

    diamond_balance: int = Field(default=0, ge=0)
    diamond_lifetime: int = Field(default=0, ge=0)
    streak_days: int = Field(default=0, ge=0)
    streak_multiplier: float = Field(default=1.0, ge=1.0)
    is_verified: bool = False
    is_pro_verified: bool = False

    version: int = Field(default=0, ge=0)

    @classmethod
    def new(cls, user_id: str) -> UserProfile:
        """Profile as created at first login: zero counters, BRONZE, traits 0.5, version 0."""
        return cls(user_id=user_id)


# --- Credits ---


@dataclass(frozen=True)
class XPCreditIntent:
    """A request to add XP. ``amount`` is validated by the kernel, not here."""

    user_id: str
    amount: Any
    source: XPSource
    require_mastery: bool = False
    accuracy: float | None = None


class CreditResult(BaseModel):
    success: bool
    new_total: int
    level: int
    tier: Tier
    delta: int
    reason_code: ReasonCode | None = None


class ChangeDecision(BaseModel):
    blocked: bool
    reason: ReasonCode | None = None


class XPSnapshot(BaseModel):
    xp_total: int
    xp_lifetime: int
    level: int
    tier: Tier


class BatchCreditSummary(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[CreditResult]


# --- Security log ---


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecurityLogEntry(BaseModel):
    """One credit attempt. Append-only."""

    model_config = ConfigDict(extra="ignore", from_attributes=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    source: XPSource
    attempted_delta: int
    applied_delta: int = Field(ge=0)
    prior_total: int = Field(ge=0)
    resulting_total: int = Field(ge=0)
    blocked: bool
    reason_code: ReasonCode | None = None
    severity: Severity = Severity.INFO

    @model_validator(mode="after")
    def _blocked_entries_apply_nothing(self) -> SecurityLogEntry:
        if self.blocked and (self.applied_delta != 0 or self.resulting_total != self.prior_total):
            msg = "blocked entries must have applied_delta=0 and resulting_total=prior_total"
            raise ValueError(msg)
        return self


# --- API ---


class CreditRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    amount: int | float
    source: XPSource
    require_mastery: bool = False
    accuracy: float | None = None


class TrainingCreditRequest(BaseModel):
    base: int | float
    accuracy: float | None = None


class BonusCreditRequest(BaseModel):
    amount: int | float
    source: XPSource = XPSource.ACHIEVEMENT


class StreakBonusRequest(BaseModel):
    streak_days: int = Field(ge=0)


class ValidateChangeRequest(BaseModel):
    prior: int = Field(ge=0)
    proposed: int


class XPResponse(BaseModel):
    user_id: str
    xp_total: int
    xp_lifetime: int
    level: int
    tier: Tier
    xp_into_level: int
    xp_for_level: int


class SecurityLogEntryResponse(BaseModel):
    id: str
    user_id: str
    timestamp: datetime
    relative_time: str
    source: XPSource
    attempted_delta: int
    applied_delta: int
    prior_total: int
    resulting_total: int
    blocked: bool
    reason_code: ReasonCode | None = None
    severity: Severity


class SecurityLogResponse(BaseModel):
    entries: list[SecurityLogEntryResponse]
    total: int
