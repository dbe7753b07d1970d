"""Tests for the placement scheduler."""

from __future__ import annotations

from typing import Iterable, Optional

import pytest

from timetable_engine.config import EngineConfig, GenerationRules
from timetable_engine.constraints.normalizer import normalize_requirements
from timetable_engine.data.models import (
    BusySlot,
    FixedSlot,
    SchedulingPreferences,
    SubjectRequirement,
    WorkingCalendar,
)
from timetable_engine.placement import (
    CancellationToken,
    PlacementScheduler,
    SubjectOutcome,
    SubjectStatus,
    placement_order,
)
from timetable_engine.tracker import AvailabilityTracker, SharedResourceState


def schedule(
    calendar: WorkingCalendar,
    subjects: list[SubjectRequirement],
    busy: Iterable[BusySlot] = (),
    config: Optional[EngineConfig] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> tuple[dict[str, SubjectOutcome], AvailabilityTracker, PlacementScheduler]:
    """Run the scheduler for one section and index outcomes by requirement ID."""
    config = config or EngineConfig()
    shared = SharedResourceState(calendar.slots_per_day, config.room_capacities)
    shared.seed(busy)
    tracker = AvailabilityTracker(calendar, shared, "sec-a")
    scheduler = PlacementScheduler(tracker, GenerationRules(), config, cancel_token=cancel_token)
    outcomes = scheduler.run(normalize_requirements(subjects, calendar))
    return {o.requirement.id: o for o in outcomes}, tracker, scheduler


def subject(id: str, periods: int, **kwargs) -> SubjectRequirement:
    prefs = kwargs.pop("prefs", None)
    return SubjectRequirement(
        id=id,
        subject_id=kwargs.pop("subject_id", id),
        subject_name=kwargs.pop("subject_name", id.title()),
        periods_per_week=periods,
        scheduling_preferences=prefs or SchedulingPreferences(),
        **kwargs,
    )


class TestOrdering:
    """Tests for most-constrained-first ordering."""

    def test_priority_then_fixed_then_slack(self):
        calendar = WorkingCalendar()
        reqs = normalize_requirements([
            subject("low", 2, prefs=SchedulingPreferences(priority=2)),
            subject("slack", 4, min_periods_per_week=2),
            subject("tight", 4),
            subject("fixed", 2, prefs=SchedulingPreferences(fixed_slots=[FixedSlot(day=1, slot=1)])),
            subject("high", 1, prefs=SchedulingPreferences(priority=9)),
        ], calendar)

        order = [r.id for r in placement_order(reqs)]

        assert order == ["high", "fixed", "tight", "slack", "low"]

    def test_core_before_elective_then_input_order(self):
        calendar = WorkingCalendar()
        reqs = normalize_requirements([
            subject("elective", 2, is_elective=True),
            subject("b", 2),
            subject("a", 2),
        ], calendar)

        assert [r.id for r in placement_order(reqs)] == ["b", "a", "elective"]


class TestScenarios:
    """End-to-end placement scenarios."""

    def test_spread_over_distinct_days(self):
        calendar = WorkingCalendar(working_days=[1, 2, 3, 4, 5, 6], slots_per_day=8)
        outcomes, _, _ = schedule(calendar, [subject("mat", 5, max_periods_per_day=1, teacher_id="t1")])

        outcome = outcomes["mat"]
        assert outcome.status is SubjectStatus.PLACED
        assert len({day for day, _ in outcome.cells}) == 5
        assert outcome.soft_violations == []

    def test_fixed_slot_clash_within_section(self):
        calendar = WorkingCalendar()
        fixed = SchedulingPreferences(fixed_slots=[FixedSlot(day=1, slot=1)])
        outcomes, tracker, _ = schedule(calendar, [
            subject("first", 1, prefs=fixed),
            subject("second", 1, prefs=fixed),
        ])

        assert outcomes["first"].status is SubjectStatus.PLACED
        assert outcomes["second"].status is SubjectStatus.FAILED
        assert len(outcomes["second"].fixed_conflicts) == 1
        assert outcomes["second"].placed == 0
        assert tracker.cell(1, 1).requirement_id == "first"

    def test_flexible_subject_never_takes_pinned_cell(self):
        calendar = WorkingCalendar()
        outcomes, tracker, _ = schedule(calendar, [
            subject("mat", 1, prefs=SchedulingPreferences(priority=9)),
            subject("art", 1, prefs=SchedulingPreferences(fixed_slots=[FixedSlot(day=1, slot=1)])),
        ])

        assert outcomes["art"].status is SubjectStatus.PLACED
        assert outcomes["art"].fixed_conflicts == []
        assert outcomes["mat"].status is SubjectStatus.PLACED
        assert outcomes["mat"].cells == [(1, 2)]
        assert tracker.cell(1, 1).requirement_id == "art"

    def test_heavy_subject_avoids_holiday_heavy_day(self):
        calendar = WorkingCalendar(
            working_days=[1, 2], slots_per_day=4, instructional_days={1: 20, 2: 40},
        )
        outcomes, _, _ = schedule(calendar, [subject("mat", 4, max_periods_per_day=4)])

        assert outcomes["mat"].status is SubjectStatus.PLACED
        assert all(day == 2 for day, _ in outcomes["mat"].cells)

    def test_fixed_conflict_still_places_other_periods(self):
        calendar = WorkingCalendar()
        outcomes, _, _ = schedule(
            calendar,
            [subject("mat", 3, teacher_id="t1",
                     prefs=SchedulingPreferences(fixed_slots=[FixedSlot(day=1, slot=1)]))],
            busy=[BusySlot(section_id="sec-z", day=1, slot=1, teacher_id="t1")],
        )

        outcome = outcomes["mat"]
        assert outcome.status is SubjectStatus.FAILED
        assert outcome.placed == 2
        assert (1, 1) not in outcome.cells

    def test_partial_when_teacher_busy_on_preferred_day(self):
        calendar = WorkingCalendar(working_days=[1, 2], slots_per_day=8)
        busy = [BusySlot(section_id="sec-z", day=1, slot=s, teacher_id="t1") for s in range(1, 9)]
        outcomes, _, _ = schedule(
            calendar,
            [subject(
                "mat", 10, teacher_id="t1", max_periods_per_day=8, min_periods_per_week=6,
                prefs=SchedulingPreferences(preferred_days=[1], avoid_days=[2]),
            )],
            busy=busy,
        )

        outcome = outcomes["mat"]
        assert outcome.status is SubjectStatus.PARTIAL
        assert outcome.placed == 8
        assert all(day == 2 for day, _ in outcome.cells)
        assert outcome.infeasible is not None
        assert "placed on avoided day Tuesday" in outcome.soft_violations

    def test_consecutive_beats_spread(self):
        calendar = WorkingCalendar()
        outcomes, _, _ = schedule(
            calendar, [subject("lab", 2, prefs=SchedulingPreferences(prefer_consecutive=True))]
        )
        assert outcomes["lab"].cells == [(1, 1), (1, 2)]

    def test_spread_without_consecutive(self):
        calendar = WorkingCalendar()
        outcomes, _, _ = schedule(calendar, [subject("eng", 3)])
        assert outcomes["eng"].cells == [(1, 1), (2, 1), (3, 1)]

    def test_preferred_slot_wins(self):
        calendar = WorkingCalendar()
        outcomes, _, _ = schedule(
            calendar, [subject("art", 2, prefs=SchedulingPreferences(preferred_slots=["last"]))]
        )
        assert outcomes["art"].cells == [(1, 7), (2, 7)]

    def test_min_gap_same_day(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=8)
        outcomes, _, _ = schedule(calendar, [subject(
            "mat", 3, max_periods_per_day=3,
            prefs=SchedulingPreferences(min_gap_same_day=2),
        )])
        slots = [slot for _, slot in outcomes["mat"].cells]
        assert outcomes["mat"].status is SubjectStatus.PLACED
        assert all(abs(a - b) > 2 for i, a in enumerate(slots) for b in slots[i + 1:])

    def test_breaks_never_scheduled(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=4, break_slots=[2], lunch_slot=3)
        outcomes, tracker, _ = schedule(calendar, [subject("mat", 2, max_periods_per_day=2)])
        assert outcomes["mat"].placed == 2
        assert tracker.cell(1, 1) is not None and tracker.cell(1, 4) is not None


class TestBoundaries:
    """Tests for boundary conditions."""

    def test_exact_capacity_fills_grid(self):
        calendar = WorkingCalendar(working_days=[1, 2], slots_per_day=3)
        outcomes, tracker, _ = schedule(calendar, [
            subject("a", 3, max_periods_per_day=3),
            subject("b", 3, max_periods_per_day=3),
        ])
        assert all(o.status is SubjectStatus.PLACED for o in outcomes.values())
        assert tracker.placed_count == 6

    def test_more_than_week_capacity_fails_without_placing(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=4)
        outcomes, tracker, _ = schedule(calendar, [subject("mat", 5, max_periods_per_day=4)])

        outcome = outcomes["mat"]
        assert outcome.status is SubjectStatus.FAILED
        assert outcome.placed == 0
        assert tracker.placed_count == 0
        assert "only has 4 academic slots" in outcome.infeasible.reason

    def test_max_per_day_caps_placement(self):
        calendar = WorkingCalendar(working_days=[1, 2], slots_per_day=8)
        outcomes, _, _ = schedule(calendar, [subject("mat", 5, max_periods_per_day=2)])

        outcome = outcomes["mat"]
        assert outcome.placed == 4
        assert outcome.status is SubjectStatus.FAILED
        assert "max 2/day reached on all days" in outcome.infeasible.reason


class TestBacktracking:
    """Tests for bounded backtracking."""

    def test_backtracking_moves_blocking_subject(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=2)
        busy = [BusySlot(section_id="sec-z", day=1, slot=2, teacher_id="t2")]
        outcomes, tracker, _ = schedule(calendar, [
            subject("a", 1, teacher_id="t1"),
            subject("b", 1, teacher_id="t2"),
        ], busy=busy)

        assert outcomes["a"].status is SubjectStatus.PLACED
        assert outcomes["b"].status is SubjectStatus.PLACED
        assert outcomes["b"].backtracked
        assert tracker.cell(1, 1).requirement_id == "b"
        assert tracker.cell(1, 2).requirement_id == "a"

    def test_failed_attempt_restores_previous_state(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=1)
        outcomes, tracker, scheduler = schedule(calendar, [
            subject("a", 1),
            subject("b", 1),
        ])

        assert outcomes["a"].status is SubjectStatus.PLACED
        assert outcomes["b"].status is SubjectStatus.FAILED
        assert not outcomes["b"].backtracked
        assert tracker.cell(1, 1).requirement_id == "a"
        assert [t.cell.requirement_id for t in scheduler.undo_stack] == ["a"]

    def test_never_undoes_higher_priority(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=2)
        busy = [BusySlot(section_id="sec-z", day=1, slot=2, teacher_id="t2")]
        outcomes, tracker, _ = schedule(calendar, [
            subject("a", 1, teacher_id="t1", prefs=SchedulingPreferences(priority=8)),
            subject("b", 1, teacher_id="t2"),
        ], busy=busy)

        assert outcomes["a"].status is SubjectStatus.PLACED
        assert outcomes["b"].status is SubjectStatus.FAILED
        assert tracker.cell(1, 1).requirement_id == "a"

    def test_never_undoes_fixed_slots(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=2)
        busy = [BusySlot(section_id="sec-z", day=1, slot=2, teacher_id="t2")]
        outcomes, tracker, _ = schedule(calendar, [
            subject("a", 1, prefs=SchedulingPreferences(fixed_slots=[FixedSlot(day=1, slot=1)])),
            subject("b", 1, teacher_id="t2"),
        ], busy=busy)

        assert outcomes["b"].status is SubjectStatus.FAILED
        assert tracker.cell(1, 1).requirement_id == "a"

    def test_depth_zero_disables_backtracking(self):
        calendar = WorkingCalendar(working_days=[1], slots_per_day=2)
        busy = [BusySlot(section_id="sec-z", day=1, slot=2, teacher_id="t2")]
        outcomes, _, _ = schedule(
            calendar,
            [subject("a", 1, teacher_id="t1"), subject("b", 1, teacher_id="t2")],
            busy=busy,
            config=EngineConfig(backtrack_depth=0),
        )
        assert outcomes["b"].status is SubjectStatus.FAILED


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        outcomes, tracker, _ = schedule(
            WorkingCalendar(), [subject("a", 2), subject("b", 2)], cancel_token=token
        )

        assert all(o.status is SubjectStatus.FAILED for o in outcomes.values())
        assert all(str(o.cancelled) == "run cancelled" for o in outcomes.values())
        assert tracker.placed_count == 0

    def test_cancelled_between_subjects(self):
        class CancelAfterFirstFill(PlacementScheduler):
            def fill_subject(self, outcome):
                super().fill_subject(outcome)
                self.cancel_token.cancel()

        calendar = WorkingCalendar()
        shared = SharedResourceState(calendar.slots_per_day)
        tracker = AvailabilityTracker(calendar, shared, "sec-a")
        scheduler = CancelAfterFirstFill(tracker, cancel_token=CancellationToken())
        reqs = normalize_requirements([
            subject("a", 2, prefs=SchedulingPreferences(priority=9)),
            subject("b", 2),
            subject("c", 1, prefs=SchedulingPreferences(fixed_slots=[FixedSlot(day=3, slot=4)])),
        ], calendar)

        outcomes = {o.requirement.id: o for o in scheduler.run(reqs)}

        assert outcomes["a"].status is SubjectStatus.PLACED
        assert outcomes["a"].placed == 2
        assert outcomes["b"].status is SubjectStatus.FAILED
        assert str(outcomes["b"].cancelled) == "run cancelled"
        assert outcomes["b"].placed == 0
        assert outcomes["c"].status is SubjectStatus.FAILED
        assert str(outcomes["c"].cancelled) == "run cancelled"
        # Fixed slots reserved before the cancellation stay in the grid
        assert outcomes["c"].cells == [(3, 4)]
        assert tracker.placed_count == 3

    def test_cancel_reason(self):
        token = CancellationToken()
        token.cancel("request timed out")
        assert token.cancelled
        outcomes, _, _ = schedule(WorkingCalendar(), [subject("a", 1)], cancel_token=token)
        assert str(outcomes["a"].cancelled) == "request timed out"


class TestDeterminism:
    """Identical inputs give identical grids."""

    @pytest.mark.parametrize("run", range(3))
    def test_repeatable(self, run):
        calendar = WorkingCalendar(break_slots=[3], lunch_slot=5)
        subjects = [
            subject("mat", 6, teacher_id="t1", prefs=SchedulingPreferences(preferred_slots=["morning"])),
            subject("eng", 5, teacher_id="t2", prefs=SchedulingPreferences(avoid_slots=["last"])),
            subject("lab", 2, teacher_id="t3", requires_special_room=True, special_room_type="lab",
                    prefs=SchedulingPreferences(prefer_consecutive=True)),
            subject("pe", 2, teacher_id="t4", is_elective=True),
        ]

        first, _, _ = schedule(calendar, subjects)
        second, _, _ = schedule(calendar, subjects)

        assert {k: v.cells for k, v in first.items()} == {k: v.cells for k, v in second.items()}
