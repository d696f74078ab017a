"""XP hard laws: amount validation, the mastery gate and the no-decrease gate.

Everything here is pure. ``NO_DECREASE`` is not configurable and there is no
decrement path anywhere in the package.
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Any

from pokerdna.xp.schemas import ChangeDecision, ReasonCode, Severity

NO_DECREASE = True

MIN_INCREMENT = 1
MAX_SINGLE_INCREMENT = 100_000
MASTERY_GATE = 0.85

STREAK_BONUS_PER_DAY = 50
STREAK_BONUS_CAP = 1000

# Blocked attempts above these deltas get a louder severity
SEVERITY_HIGH_ABOVE = 1_000
SEVERITY_CRITICAL_ABOVE = 10_000

# Logged deltas are stored in signed 64-bit columns
LOG_DELTA_MIN = -(2**63)
LOG_DELTA_MAX = 2**63 - 1


def as_whole_number(amount: Any) -> int | None:
    """Return ``amount`` as an int if it is a finite whole number, else None.

    ``bool`` is rejected even though it subclasses int.
    """
    if isinstance(amount, bool) or not isinstance(amount, Real):
        return None
    if isinstance(amount, int):
        return amount
    try:
        value = int(amount)
    except (OverflowError, ValueError):
        # infinities and NaN
        return None
    return value if value == amount else None


def validate_amount(
    amount: Any,
    min_increment: int = MIN_INCREMENT,
    max_single_increment: int = MAX_SINGLE_INCREMENT,
) -> ReasonCode | None:
    """Steps 1-3 of credit validation. Returns the rejection reason or None."""
    value = as_whole_number(amount)
    if value is None:
        return ReasonCode.NOT_INTEGER
    if value < min_increment:
        return ReasonCode.NON_POSITIVE if value <= 0 else ReasonCode.BELOW_MIN
    if value > max_single_increment:
        return ReasonCode.ABOVE_MAX
    return None


def passes_mastery_gate(accuracy: float | None, gate: float = MASTERY_GATE) -> bool:
    """Accuracy must be present, within [0, 1] and at least ``gate``."""
    if accuracy is None or isinstance(accuracy, bool):
        return False
    try:
        value = float(accuracy)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        return False
    return value >= gate


def validate_change(prior: int, proposed: int) -> ChangeDecision:
    """The canonical no-decrease gate for any caller materializing a new total."""
    if proposed < prior:
        return ChangeDecision(blocked=True, reason=ReasonCode.DECREASE_BLOCKED)
    return ChangeDecision(blocked=False)


def streak_bonus_amount(streak_days: int) -> int:
    return min(STREAK_BONUS_CAP, streak_days * STREAK_BONUS_PER_DAY)


def attempted_value(amount: Any) -> int:
    """Best integer rendering of an attempted amount for the security log.

    Non-numbers and non-finite values log as 0. Everything else is truncated
    and clamped to the range a log column can hold.
    """
    if isinstance(amount, bool) or not isinstance(amount, Real):
        return 0
    if isinstance(amount, int):
        value = amount
    else:
        try:
            value = int(amount)
        except (OverflowError, ValueError):
            return 0
    return max(LOG_DELTA_MIN, min(LOG_DELTA_MAX, value))


def severity_for(blocked: bool, attempted_delta: int) -> Severity:
    if not blocked:
        return Severity.INFO
    size = abs(attempted_delta)
    if size > SEVERITY_CRITICAL_ABOVE:
        return Severity.CRITICAL
    if size > SEVERITY_HIGH_ABOVE:
        return Severity.HIGH
    return Severity.WARNING
