"""Level progression and level-up case keys.

One level per $5.00 of lifetime earnings. Every level grants one key; from
VIP+ (level 25) each level grants three, and reaching VIP (level 10) grants a
one-time bonus of three keys.
"""

from __future__ import annotations

LEVEL_UP_EVERY_CENTS = 500
VIP_UNLOCK_LEVEL = 10
VIP_PLUS_UNLOCK_LEVEL = 25
VIP_LEVEL_BONUS_KEYS = 3
BASE_KEYS_PER_LEVEL = 1
VIP_PLUS_KEYS_PER_LEVEL = 3


def level_for(lifetime_earned_cents: int) -> int:
    return max(0, lifetime_earned_cents // LEVEL_UP_EVERY_CENTS)


def next_level_target_cents(level: int) -> int:
    return (level + 1) * LEVEL_UP_EVERY_CENTS


def progress_percent(lifetime_earned_cents: int) -> int:
    """Whole-percent progress from the current level towards the next one."""
    level = level_for(lifetime_earned_cents)
    within = lifetime_earned_cents - level * LEVEL_UP_EVERY_CENTS
    return min(100, max(0, round(within * 100 / LEVEL_UP_EVERY_CENTS)))


def keys_for_level(level: int) -> int:
    return VIP_PLUS_KEYS_PER_LEVEL if level >= VIP_PLUS_UNLOCK_LEVEL else BASE_KEYS_PER_LEVEL


def total_keys(level: int) -> int:
    """Keys earned in total by reaching ``level``."""
    total = VIP_LEVEL_BONUS_KEYS if level >= VIP_UNLOCK_LEVEL else 0
    return total + sum(keys_for_level(current) for current in range(1, level + 1))
