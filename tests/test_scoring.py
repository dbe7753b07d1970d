"""Tests for candidate cell scoring."""

from __future__ import annotations

from timetable_engine.config import GenerationRules, ScoringWeights
from timetable_engine.constraints.normalizer import NormalizedPreferences
from timetable_engine.constraints.scoring import consecutive_run, score_cell, soft_violations


WEIGHTS = ScoringWeights()
RULES = GenerationRules()


def score(prefs: NormalizedPreferences, day: int = 1, slot: int = 1, subject=(), teacher=()) -> int:
    return score_cell(prefs, day, slot, set(subject), set(teacher), WEIGHTS, RULES)


class TestConsecutiveRun:
    """Tests for consecutive_run."""

    def test_isolated_slot(self):
        assert consecutive_run({5}, 2) == 1

    def test_joins_both_sides(self):
        assert consecutive_run({1, 2, 4, 5}, 3) == 5

    def test_one_side(self):
        assert consecutive_run({1, 2}, 3) == 3


class TestScoreCell:
    """Tests for score_cell."""

    def test_neutral_cell_gets_spread_bonus(self):
        assert score(NormalizedPreferences()) == WEIGHTS.spread_new_day

    def test_no_spread_bonus_when_disabled(self):
        assert score(NormalizedPreferences(spread_evenly=False)) == 0

    def test_preferred_day_and_slot(self):
        prefs = NormalizedPreferences(
            preferred_days=frozenset({1}), preferred_slots=frozenset({1}), spread_evenly=False
        )
        assert score(prefs) == WEIGHTS.preferred_day + WEIGHTS.preferred_slot
        assert score(prefs, day=2, slot=2) == 0

    def test_avoid_penalties(self):
        prefs = NormalizedPreferences(
            avoid_days=frozenset({2}), avoid_slots=frozenset({4}), spread_evenly=False
        )
        assert score(prefs, day=2, slot=1) == -WEIGHTS.avoid_day
        assert score(prefs, day=1, slot=4) == -WEIGHTS.avoid_slot
        assert score(prefs, day=1, slot=3) == -WEIGHTS.avoid_adjacent
        assert score(prefs, day=1, slot=5) == -WEIGHTS.avoid_adjacent

    def test_consecutive_beats_spread(self):
        prefs = NormalizedPreferences(prefer_consecutive=True)
        adjacent_same_day = score(prefs, day=1, slot=2, subject={1})
        new_day = score(prefs, day=2, slot=1)
        assert adjacent_same_day == WEIGHTS.consecutive
        assert new_day == WEIGHTS.spread_new_day
        assert adjacent_same_day > new_day

    def test_same_day_without_consecutive_loses_spread(self):
        prefs = NormalizedPreferences()
        assert score(prefs, day=1, slot=3, subject={1}) == 0

    def test_teacher_day_load(self):
        prefs = NormalizedPreferences(spread_evenly=False)
        assert score(prefs, slot=8, teacher={1, 3}) == -2 * WEIGHTS.teacher_day_load

    def test_teacher_over_daily_limit(self):
        prefs = NormalizedPreferences(spread_evenly=False)
        busy = {1, 3, 5, 7, 9, 11}
        assert score(prefs, slot=12, teacher=busy) == (
            -6 * WEIGHTS.teacher_day_load - WEIGHTS.teacher_overload
        )

    def test_teacher_consecutive_excess(self):
        prefs = NormalizedPreferences(spread_evenly=False)
        # Slot 5 makes a run of five against a limit of four
        assert score(prefs, slot=5, teacher={1, 2, 3, 4}) == (
            -4 * WEIGHTS.teacher_day_load - WEIGHTS.teacher_consecutive_excess
        )

    def test_reliable_day_has_no_penalty(self):
        prefs = NormalizedPreferences(spread_evenly=False)
        assert score_cell(prefs, 1, 1, set(), set(), WEIGHTS, RULES, reliability=1.0, periods_per_week=5) == 0

    def test_unreliable_day_penalty(self):
        prefs = NormalizedPreferences(spread_evenly=False)
        light = score_cell(prefs, 1, 1, set(), set(), WEIGHTS, RULES, reliability=0.5, periods_per_week=2)
        heavy = score_cell(prefs, 1, 1, set(), set(), WEIGHTS, RULES, reliability=0.5, periods_per_week=4)

        assert light == -WEIGHTS.day_reliability // 2
        assert heavy == light - WEIGHTS.heavy_day_reliability // 2

    def test_custom_weights(self):
        weights = ScoringWeights(preferred_day=500)
        prefs = NormalizedPreferences(preferred_days=frozenset({1}), spread_evenly=False)
        assert score_cell(prefs, 1, 1, set(), set(), weights, RULES) == 500


class TestSoftViolations:
    """Tests for soft_violations."""

    def test_none(self):
        assert soft_violations(NormalizedPreferences(), 1, 1) == []

    def test_avoided_day_and_outside_preferred(self):
        prefs = NormalizedPreferences(preferred_days=frozenset({1}), avoid_days=frozenset({2}))
        violations = soft_violations(prefs, 2, 1)
        assert violations == [
            "placed on avoided day Tuesday",
            "placed outside preferred days on Tuesday",
        ]

    def test_avoided_slot(self):
        prefs = NormalizedPreferences(avoid_slots=frozenset({8}))
        assert soft_violations(prefs, 1, 8) == ["placed in avoided slot 8"]
