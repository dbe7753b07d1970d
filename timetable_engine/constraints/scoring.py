"""
Preference scoring for candidate cells.

Each free (day, slot) candidate for a subject receives an integer score from
its soft preferences; the scheduler picks the highest score, breaking ties by
earliest day and then earliest slot.
"""

from __future__ import annotations

from typing import Collection

from ..config import HEAVY_SUBJECT_PERIODS, GenerationRules, ScoringWeights
from ..data.models import day_name
from .normalizer import NormalizedPreferences


def consecutive_run(slots: Collection[int], slot: int) -> int:
    """Length of the run of adjacent occupied slots that ``slot`` would join."""
    run = 1
    before = slot - 1
    while before in slots:
        run += 1
        before -= 1
    after = slot + 1
    while after in slots:
        run += 1
        after += 1
    return run


def score_cell(
    prefs: NormalizedPreferences,
    day: int,
    slot: int,
    subject_slots_today: Collection[int],
    teacher_slots_today: Collection[int],
    weights: ScoringWeights,
    rules: GenerationRules,
    reliability: float = 1.0,
    periods_per_week: int = 0,
) -> int:
    """
    Score placing one period of a subject at (day, slot).

    Args:
        prefs: The subject's normalized preferences
        day: Candidate day
        slot: Candidate slot
        subject_slots_today: Slots the subject already holds on ``day``
        teacher_slots_today: Slots the subject's teacher already teaches on ``day``
            (across all sections)
        weights: Scoring weights
        rules: Template generation rules
        reliability: ``WorkingCalendar.day_reliability`` of ``day``
        periods_per_week: Weekly load of the subject; heavy subjects lean
            harder towards reliable days

    Returns:
        Integer score; higher is better
    """
    w = weights
    score = 0

    if day in prefs.preferred_days:
        score += w.preferred_day
    if slot in prefs.preferred_slots:
        score += w.preferred_slot

    if day in prefs.avoid_days:
        score -= w.avoid_day
    if slot in prefs.avoid_slots:
        score -= w.avoid_slot
    elif (slot - 1) in prefs.avoid_slots or (slot + 1) in prefs.avoid_slots:
        score -= w.avoid_adjacent

    if prefs.prefer_consecutive and (
        (slot - 1) in subject_slots_today or (slot + 1) in subject_slots_today
    ):
        score += w.consecutive

    if prefs.spread_evenly and not subject_slots_today:
        score += w.spread_new_day

    # Teacher workload (soft)
    score -= len(teacher_slots_today) * w.teacher_day_load
    if len(teacher_slots_today) >= rules.max_periods_per_teacher_per_day:
        score -= w.teacher_overload
    if rules.max_consecutive_hours_teacher > 0 and teacher_slots_today:
        run = consecutive_run(teacher_slots_today, slot)
        if run > rules.max_consecutive_hours_teacher:
            score -= (run - rules.max_consecutive_hours_teacher) * w.teacher_consecutive_excess

    # Session days lost to holidays
    lost = 1.0 - reliability
    if lost > 0:
        score -= round(lost * w.day_reliability)
        if periods_per_week >= HEAVY_SUBJECT_PERIODS:
            score -= round(lost * w.heavy_day_reliability)

    return score


def soft_violations(prefs: NormalizedPreferences, day: int, slot: int) -> list[str]:
    """Soft preferences broken by a placement at (day, slot)."""
    violations = []
    if day in prefs.avoid_days:
        violations.append(f"placed on avoided day {day_name(day)}")
    if slot in prefs.avoid_slots:
        violations.append(f"placed in avoided slot {slot}")
    if prefs.preferred_days and day not in prefs.preferred_days:
        violations.append(f"placed outside preferred days on {day_name(day)}")
    return violations
