"""Reward segment tables and the weighted draw shared by every case.

Chances are in permille; each table sums to 1000 but the draw only relies on
the relative weights.
"""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar


@dataclass(frozen=True)
class Segment:
    id: str
    label: str
    amount_cents: int
    chance_permille: int


T = TypeVar("T")


def _permille(segment: Any) -> float:
    return segment.chance_permille


def pick_weighted(
    segments: Sequence[T],
    weight: Callable[[T], float] = _permille,
    rng: random.Random | None = None,
) -> T:
    """Draw one segment with probability proportional to its weight.

    Rolls uniformly in ``[0, total)`` and walks the table subtracting weights;
    the first segment that brings the roll to zero or below wins. Falls back to
    the first segment if floating point leaves the roll positive.
    """
    if not segments:
        msg = "cannot pick from an empty segment table"
        raise ValueError(msg)
    total = sum(weight(segment) for segment in segments)
    roll = (rng.random() if rng is not None else random.random()) * total
    for segment in segments:
        roll -= weight(segment)
        if roll <= 0:
            return segment
    return segments[0]


WHEEL_SEGMENTS: tuple[Segment, ...] = (
    Segment("10c", "$0.10", 10, 300),
    Segment("25c", "$0.25", 25, 300),
    Segment("50c", "$0.50", 50, 270),
    Segment("1d", "$1.00", 100, 80),
    Segment("2d50", "$2.50", 250, 40),
    Segment("5d", "$5.00", 500, 8),
    Segment("10d", "$10.00", 1000, 2),
)

LEVEL_CASE_SEGMENTS: tuple[Segment, ...] = (
    Segment("5c", "$0.05", 5, 200),
    Segment("10c", "$0.10", 10, 200),
    Segment("25c", "$0.25", 25, 300),
    Segment("50c", "$0.50", 50, 250),
    Segment("1d", "$1.00", 100, 45),
    Segment("5d", "$5.00", 500, 5),
)

STREAK_CASE_7_SEGMENTS: tuple[Segment, ...] = (
    Segment("25c", "$0.25", 25, 500),
    Segment("50c", "$0.50", 50, 350),
    Segment("1d", "$1.00", 100, 120),
    Segment("2d50", "$2.50", 250, 30),
)

STREAK_CASE_14_SEGMENTS: tuple[Segment, ...] = (
    Segment("50c", "$0.50", 50, 600),
    Segment("1d", "$1.00", 100, 300),
    Segment("2d50", "$2.50", 250, 70),
    Segment("5d", "$5.00", 500, 30),
)

STREAK_TIERS = (7, 14)


def streak_case_segments(tier: int) -> tuple[Segment, ...]:
    return STREAK_CASE_14_SEGMENTS if tier == 14 else STREAK_CASE_7_SEGMENTS
