"""
Generation run orchestration.

A run moves through ``INIT -> NORMALIZING -> SOLVING -> FINALIZING -> DONE``.
Only validation failures abort it (``ABORTED``) and only ``ValidationError``
ever reaches the caller; every other problem is reported per subject in the
``GenerationResult``.

Several sections can be generated concurrently against one shared teacher
and room state with ``generate_all``.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .config import EngineConfig, GenerationRules
from .conflicts import ConflictResolver
from .constraints.normalizer import NormalizedRequirement, normalize_requirements
from .data.models import (
    BusySlot,
    GenerationInput,
    SectionInput,
    WorkingCalendar,
    day_name,
    format_cell,
)
from .errors import FieldError, ValidationError
from .output.reporter import ResultReporter, TimetableSink
from .output.schema import GenerationReport, GenerationResult, SectionTimetable
from .placement import CancellationToken, PlacementScheduler, SubjectOutcome, SubjectStatus
from .tracker import AvailabilityTracker, SharedResourceState

logger = logging.getLogger(__name__)


# =============================================================================
# Run State
# =============================================================================

class RunState(str, Enum):
    """Lifecycle of one generation run."""
    INIT = "INIT"
    NORMALIZING = "NORMALIZING"
    SOLVING = "SOLVING"
    FINALIZING = "FINALIZING"
    DONE = "DONE"
    ABORTED = "ABORTED"


@dataclass
class GenerationRun:
    """Working state of one section's run; discarded after the result."""
    section: SectionInput
    calendar: WorkingCalendar
    state: RunState = RunState.INIT
    requirements: list[NormalizedRequirement] = field(default_factory=list)
    tracker: Optional[AvailabilityTracker] = None
    outcomes: list[SubjectOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    result: Optional[GenerationResult] = None
    timetable: Optional[SectionTimetable] = None
    persisted: bool = False
    solve_time_ms: int = 0

    @property
    def section_id(self) -> str:
        return self.section.request.section_id

    def transition(self, state: RunState) -> None:
        logger.debug("Section %s: %s -> %s", self.section_id, self.state.value, state.value)
        self.state = state

    def outcome(self, requirement_id: str) -> Optional[SubjectOutcome]:
        for outcome in self.outcomes:
            if outcome.requirement.id == requirement_id:
                return outcome
        return None


# =============================================================================
# Engine
# =============================================================================

class TimetableEngine:
    """
    Generates section timetables against one shared teacher/room state.

    Usage:
        engine = TimetableEngine(calendar, rules, config)
        engine.seed(busy_slots)
        run = engine.generate(section)
        print(run.result.to_json())
    """

    def __init__(
        self,
        calendar: Optional[WorkingCalendar] = None,
        rules: Optional[GenerationRules] = None,
        config: Optional[EngineConfig] = None,
        shared: Optional[SharedResourceState] = None,
        sink: Optional[TimetableSink] = None,
    ):
        self.calendar = calendar or WorkingCalendar()
        self.rules = rules or GenerationRules()
        self.config = config or EngineConfig()
        self.shared = shared or SharedResourceState(
            slots_per_day=self.calendar.slots_per_day,
            room_capacities=self.config.room_capacities,
            lock_timeout=self.config.lock_timeout_seconds,
        )
        self.sink = sink

    def seed(self, busy_slots: Iterable[BusySlot]) -> int:
        """Load the occupancy of already-committed sections."""
        return self.shared.seed(busy_slots)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def prepare(self, section: SectionInput) -> GenerationRun:
        return GenerationRun(section=section, calendar=self.calendar)

    def normalize(self, run: GenerationRun) -> None:
        """
        Normalize the run's requirements.

        Raises:
            ValidationError: The run is left ABORTED
        """
        run.transition(RunState.NORMALIZING)
        try:
            run.requirements = normalize_requirements(
                run.section.subjects, self.calendar, self.rules
            )
        except ValidationError:
            run.transition(RunState.ABORTED)
            raise

        required = sum(r.periods_per_week for r in run.requirements)
        if required > self.calendar.capacity:
            run.warnings.append(
                f"Required periods ({required}) exceed the academic capacity of the "
                f"week ({self.calendar.capacity}); some subjects cannot be fully scheduled"
            )
        for day, count in self.calendar.unreliable_days():
            run.warnings.append(
                f"{day_name(day)} has significantly fewer instructional days ({count}) "
                f"due to holidays in this session"
            )

    def solve(self, run: GenerationRun, cancel_token: Optional[CancellationToken] = None) -> None:
        run.transition(RunState.SOLVING)
        run.tracker = AvailabilityTracker(self.calendar, self.shared, run.section_id)
        resolver = ConflictResolver(run.tracker, use_probe=self.config.capacity_probe)
        scheduler = PlacementScheduler(
            run.tracker,
            rules=self.rules,
            config=self.config,
            resolver=resolver,
            cancel_token=cancel_token,
        )

        start = time.time()
        run.outcomes = scheduler.run(run.requirements)
        run.solve_time_ms = int((time.time() - start) * 1000)

    def finalize(self, run: GenerationRun) -> None:
        run.transition(RunState.FINALIZING)
        reporter = ResultReporter(run.tracker)
        run.result = reporter.build_result(run.outcomes, run.warnings)
        run.timetable = reporter.build_timetable(run.section.request, run.result, run.outcomes)
        run.persisted = reporter.hand_off(run.timetable, self.sink)
        run.transition(RunState.DONE)

        counts = Counter(o.status.value for o in run.outcomes)
        logger.info(
            "Section %s: %d slots in %dms (%s)",
            run.section_id,
            run.result.slots_created,
            run.solve_time_ms,
            ", ".join(f"{k}={v}" for k, v in sorted(counts.items())),
        )

    def execute(self, run: GenerationRun, cancel_token: Optional[CancellationToken] = None) -> GenerationRun:
        """Run a prepared run to completion."""
        if run.state is RunState.INIT:
            self.normalize(run)
        self.solve(run, cancel_token)
        self.finalize(run)
        return run

    def generate(
        self,
        section: SectionInput,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GenerationRun:
        """
        Generate one section's timetable.

        Raises:
            ValidationError: If the section's preferences are invalid
        """
        return self.execute(self.prepare(section), cancel_token)


# =============================================================================
# Convenience Functions
# =============================================================================

def generate_timetable(
    section: SectionInput,
    calendar: Optional[WorkingCalendar] = None,
    rules: Optional[GenerationRules] = None,
    config: Optional[EngineConfig] = None,
    busy_slots: Iterable[BusySlot] = (),
    sink: Optional[TimetableSink] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> GenerationResult:
    """
    Generate a single section against a snapshot of committed sections.

    Args:
        section: The section request and its subject load
        calendar: Working calendar (defaults to Monday-Saturday, 8 slots)
        rules: Template generation rules
        config: Engine configuration
        busy_slots: Occupied cells of already-committed sections
        sink: Receives the grid when at least one period was placed
        cancel_token: Cooperative cancellation flag

    Returns:
        The GenerationResult

    Raises:
        ValidationError: If the section's preferences are invalid
    """
    engine = TimetableEngine(calendar, rules, config, sink=sink)
    engine.seed(busy_slots)
    return engine.generate(section, cancel_token).result


def generate_all(
    input_data: GenerationInput,
    max_workers: Optional[int] = None,
    sink: Optional[TimetableSink] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> GenerationReport:
    """
    Generate every section of a snapshot concurrently.

    All sections are validated before any solving starts. Sections share one
    teacher/room state, so a teacher is never booked twice across sections.

    Raises:
        ValidationError: With the field errors of every invalid section
    """
    engine = TimetableEngine(input_data.calendar, input_data.rules, input_data.config, sink=sink)
    engine.seed(input_data.busy_slots)

    runs = [engine.prepare(section) for section in input_data.sections]
    errors: list[FieldError] = []
    for i, run in enumerate(runs):
        try:
            engine.normalize(run)
        except ValidationError as e:
            errors.extend(FieldError(f"sections[{i}].{err.field}", err.message) for err in e.errors)
    if errors:
        raise ValidationError(errors)

    logger.info("Generating %d sections", len(runs))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(engine.execute, run, cancel_token) for run in runs]
        finished = [future.result() for future in futures]

    report = GenerationReport(sections=[run.timetable for run in finished])
    violations = verify_invariants(finished, input_data.busy_slots, engine.shared.room_capacities)
    for violation in violations:
        logger.error("Invariant violated: %s", violation)
    report.warnings.extend(violations)
    return report


# =============================================================================
# Invariants
# =============================================================================

def verify_invariants(
    runs: Iterable[GenerationRun],
    busy_slots: Iterable[BusySlot] = (),
    room_capacities: Optional[dict[str, int]] = None,
) -> list[str]:
    """
    Check the hard invariants over finished runs.

    Returns:
        Human-readable violations; empty when every invariant holds
    """
    room_capacities = room_capacities or {}
    runs = list(runs)
    violations: list[str] = []

    teacher_cells: dict[tuple[str, int, int], set[tuple[str, Optional[str]]]] = defaultdict(set)
    room_cells: Counter = Counter()
    for busy in busy_slots:
        if busy.teacher_id:
            teacher_cells[(busy.teacher_id, busy.day, busy.slot)].add((busy.section_id, busy.subject_id))
        if busy.room_type:
            room_cells[(busy.room_type, busy.day, busy.slot)] += 1

    for run in runs:
        if run.tracker is None:
            continue
        for day, slot, cell in run.tracker.cells():
            if cell.teacher_id:
                teacher_cells[(cell.teacher_id, day, slot)].add((run.section_id, cell.subject_id))
            if cell.room_type:
                room_cells[(cell.room_type, day, slot)] += 1

    for (teacher_id, day, slot), holders in sorted(teacher_cells.items()):
        if len(holders) > 1:
            violations.append(
                f"Teacher {teacher_id} double-booked at {format_cell(day, slot)}: {sorted(holders, key=str)}"
            )

    for (room_type, day, slot), count in sorted(room_cells.items()):
        capacity = room_capacities.get(room_type, 1)
        if count > capacity:
            violations.append(
                f"Room type '{room_type}' booked {count}x at {format_cell(day, slot)} (capacity {capacity})"
            )

    for run in runs:
        if run.tracker is None:
            continue
        for outcome in run.outcomes:
            req = outcome.requirement
            per_day = Counter(day for day, _ in outcome.cells)
            if outcome.status is SubjectStatus.PLACED:
                missing = [c for c in req.fixed_slots if c not in outcome.cells]
                if missing:
                    violations.append(
                        f"'{req.name}' in section {run.section_id} is PLACED without fixed slots "
                        f"{', '.join(format_cell(d, s) for d, s in missing)}"
                    )
            for day, count in sorted(per_day.items()):
                if count > req.max_per_day:
                    violations.append(
                        f"'{req.name}' in section {run.section_id} has {count} periods on "
                        f"{day_name(day)} (max {req.max_per_day})"
                    )
            if outcome.placed > req.periods_per_week:
                violations.append(
                    f"'{req.name}' in section {run.section_id} has {outcome.placed} periods "
                    f"(required {req.periods_per_week})"
                )

    return violations
