"""Reward tables and the weighted draw."""

import random
from collections import Counter

import pytest

from easyearn.gamification.segments import (
    LEVEL_CASE_SEGMENTS,
    STREAK_CASE_7_SEGMENTS,
    STREAK_CASE_14_SEGMENTS,
    WHEEL_SEGMENTS,
    Segment,
    pick_weighted,
    streak_case_segments,
)


class _FixedRandom(random.Random):
    """Random source that always returns the same roll."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


class TestTables:
    @pytest.mark.parametrize(
        "table",
        [WHEEL_SEGMENTS, LEVEL_CASE_SEGMENTS, STREAK_CASE_7_SEGMENTS, STREAK_CASE_14_SEGMENTS],
    )
    def test_chances_sum_to_one_thousand(self, table):
        assert sum(segment.chance_permille for segment in table) == 1000

    @pytest.mark.parametrize(
        "table",
        [WHEEL_SEGMENTS, LEVEL_CASE_SEGMENTS, STREAK_CASE_7_SEGMENTS, STREAK_CASE_14_SEGMENTS],
    )
    def test_segment_ids_are_unique(self, table):
        ids = [segment.id for segment in table]
        assert len(ids) == len(set(ids))

    def test_streak_tier_lookup(self):
        assert streak_case_segments(7) is STREAK_CASE_7_SEGMENTS
        assert streak_case_segments(14) is STREAK_CASE_14_SEGMENTS

    def test_wheel_jackpot(self):
        jackpot = WHEEL_SEGMENTS[-1]
        assert jackpot.amount_cents == 1000
        assert jackpot.label == "$10.00"
        assert jackpot.chance_permille == 2


class TestPickWeighted:
    def test_empty_table_is_rejected(self):
        with pytest.raises(ValueError):
            pick_weighted([])

    def test_lowest_roll_picks_first_segment(self):
        assert pick_weighted(WHEEL_SEGMENTS, rng=_FixedRandom(0.0)).id == "10c"

    def test_highest_roll_picks_last_segment(self):
        assert pick_weighted(WHEEL_SEGMENTS, rng=_FixedRandom(0.999999)).id == "10d"

    def test_roll_on_boundary_belongs_to_earlier_segment(self):
        table = [Segment("a", "$0.01", 1, 1), Segment("b", "$0.02", 2, 1)]
        assert pick_weighted(table, rng=_FixedRandom(0.5)).id == "a"

    def test_mid_roll(self):
        assert pick_weighted(WHEEL_SEGMENTS, rng=_FixedRandom(0.5)).id == "25c"

    def test_custom_weight_function(self):
        items = [("a", 0), ("b", 5)]
        assert pick_weighted(items, weight=lambda item: item[1], rng=_FixedRandom(0.5)) == ("b", 5)

    def test_distribution_converges_to_chances(self):
        """Observed frequencies over 100k draws are within one point of the table."""
        rng = random.Random(20260310)
        draws = 100_000
        counts = Counter(pick_weighted(WHEEL_SEGMENTS, rng=rng).id for _ in range(draws))
        for segment in WHEEL_SEGMENTS:
            expected = segment.chance_permille / 1000
            assert abs(counts[segment.id] / draws - expected) < 0.01, segment.id

    def test_relative_weights_only(self):
        """Tables that do not sum to 1000 still draw proportionally."""
        table = [Segment("a", "$0.01", 1, 1), Segment("b", "$0.02", 2, 3)]
        rng = random.Random(7)
        counts = Counter(pick_weighted(table, rng=rng).id for _ in range(20_000))
        assert abs(counts["b"] / 20_000 - 0.75) < 0.02
