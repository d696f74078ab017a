"""Level, tier and streak multiplier computation.

Tier thresholds follow the level bands of the profile schema:
level 11 -> SILVER, level 31 -> GOLD, level 61 -> GTO_MASTER.
"""

from __future__ import annotations

from pokerdna.xp.rules import MASTERY_GATE
from pokerdna.xp.schemas import Tier

XP_PER_LEVEL = 1000

TIER_THRESHOLDS: list[dict] = [
    {"tier": Tier.BRONZE, "min_level": 1, "min_xp": 0},
    {"tier": Tier.SILVER, "min_level": 11, "min_xp": 10 * XP_PER_LEVEL},
    {"tier": Tier.GOLD, "min_level": 31, "min_xp": 30 * XP_PER_LEVEL},
    {"tier": Tier.GTO_MASTER, "min_level": 61, "min_xp": 60 * XP_PER_LEVEL},
]

STREAK_MULTIPLIERS: list[tuple[int, float]] = [
    (7, 2.0),
    (3, 1.5),
    (0, 1.0),
]


def level(xp_lifetime: int) -> int:
    """``1 + floor(xp / 1000)``, never below 1."""
    return max(1, 1 + xp_lifetime // XP_PER_LEVEL)


def level_progress(xp_lifetime: int) -> dict:
    """Level plus progress towards the next one."""
    current = level(xp_lifetime)
    floor_xp = (current - 1) * XP_PER_LEVEL
    return {
        "level": current,
        "xp_into_level": max(0, xp_lifetime - floor_xp),
        "xp_for_level": XP_PER_LEVEL,
        "next_level": current + 1,
    }


def tier(xp_lifetime: int, accuracy: float, mastery_gate: float = MASTERY_GATE) -> Tier:
    """Highest tier whose XP threshold is met; GTO_MASTER also needs mastery accuracy."""
    result = Tier.BRONZE
    for band in TIER_THRESHOLDS:
        if xp_lifetime < band["min_xp"]:
            break
        if band["tier"] is Tier.GTO_MASTER and accuracy < mastery_gate:
            break
        result = band["tier"]
    return result


def streak_multiplier(streak_days: int) -> float:
    for min_days, multiplier in STREAK_MULTIPLIERS:
        if streak_days >= min_days:
            return multiplier
    return 1.0
