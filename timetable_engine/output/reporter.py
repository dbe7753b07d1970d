"""
Result reporting and persistence hand-off.

Turns the subject outcomes of a run into the ``GenerationResult`` contract:

- ``success`` only when every subject is PLACED
- ``slotsCreated`` counts occupied section cells
- one warning per PARTIAL subject, or per PLACED subject whose accepted
  placement broke a soft preference
- one error per FAILED subject, embedding its fixed-slot conflicts
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Protocol, runtime_checkable

from ..data.models import GenerateTimetableRequest, day_name
from ..placement import SubjectOutcome, SubjectStatus
from .schema import (
    GenerationResult,
    GridSlotOutput,
    SectionTimetable,
    SlotType,
    SubjectSummary,
)

if TYPE_CHECKING:
    from ..tracker import AvailabilityTracker

logger = logging.getLogger(__name__)


# =============================================================================
# Sinks
# =============================================================================

@runtime_checkable
class TimetableSink(Protocol):
    """Destination for generated section grids (database writer, file, ...)."""

    def save(self, timetable: SectionTimetable) -> None:
        ...


class JsonFileSink:
    """Writes each section timetable to ``<directory>/<section_id>.json``."""

    def __init__(self, directory: str | Path, indent: int = 2):
        self.directory = Path(directory)
        self.indent = indent

    def path_for(self, section_id: str) -> Path:
        return self.directory / f"{section_id}.json"

    def save(self, timetable: SectionTimetable) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(timetable.section_id)
        with open(path, "w") as f:
            f.write(timetable.to_json(indent=self.indent))
        logger.info("Saved timetable for section %s to %s", timetable.section_id, path)


# =============================================================================
# Reporter
# =============================================================================

class ResultReporter:
    """
    Builds results and section grids from a finished run.

    Usage:
        reporter = ResultReporter(tracker)
        result = reporter.build_result(outcomes, run_warnings)
        timetable = reporter.build_timetable(request, result, outcomes)
    """

    def __init__(self, tracker: AvailabilityTracker):
        self.tracker = tracker
        self.calendar = tracker.calendar

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @staticmethod
    def warning_for(outcome: SubjectOutcome) -> Optional[str]:
        """Single consolidated warning for a subject, if any."""
        if outcome.status is SubjectStatus.PARTIAL:
            message = (
                f"'{outcome.name}' partially scheduled: {outcome.placed} of "
                f"{outcome.required} periods (minimum {outcome.requirement.floor})"
            )
            if outcome.infeasible is not None:
                message += f". {outcome.infeasible.reason}"
            if outcome.soft_violations:
                message += f". Relaxed preferences: {', '.join(outcome.soft_violations)}"
            return message

        if outcome.status is SubjectStatus.PLACED and outcome.soft_violations:
            return (
                f"'{outcome.name}' scheduled with relaxed preferences: "
                f"{', '.join(outcome.soft_violations)}"
            )
        return None

    @staticmethod
    def error_for(outcome: SubjectOutcome) -> Optional[str]:
        """Single consolidated error for a FAILED subject."""
        if outcome.status is not SubjectStatus.FAILED:
            return None
        if outcome.cancelled is not None:
            return f"'{outcome.name}' not scheduled: {outcome.cancelled}"

        parts = [conflict.reason for conflict in outcome.fixed_conflicts]
        if outcome.infeasible is not None:
            parts.append(outcome.infeasible.reason)
        if not parts:
            parts.append(f"{outcome.placed} of {outcome.required} periods placed")
        return f"'{outcome.name}' failed: " + "; ".join(parts)

    def build_result(
        self,
        outcomes: Iterable[SubjectOutcome],
        run_warnings: Iterable[str] = (),
    ) -> GenerationResult:
        """Assemble the GenerationResult for a run."""
        ordered = sorted(outcomes, key=lambda o: o.requirement.index)
        warnings = list(run_warnings)
        errors = []
        for outcome in ordered:
            warning = self.warning_for(outcome)
            if warning:
                warnings.append(warning)
            error = self.error_for(outcome)
            if error:
                errors.append(error)

        success = bool(ordered) and all(o.status is SubjectStatus.PLACED for o in ordered)
        return GenerationResult(
            success=success,
            slotsCreated=self.tracker.placed_count,
            warnings=warnings,
            errors=errors,
        )

    # -------------------------------------------------------------------------
    # Grid
    # -------------------------------------------------------------------------

    def build_slots(self, subject_names: Optional[dict[str, str]] = None) -> list[GridSlotOutput]:
        """Every cell of the week, including break, lunch and free slots."""
        subject_names = subject_names or {}
        slots = []
        for day in self.calendar.working_days:
            for slot in range(1, self.calendar.slots_per_day + 1):
                start, end = self.calendar.slot_times(slot)
                cell = self.tracker.cell(day, slot)
                kind = SlotType(self.calendar.slot_type(slot))
                if kind is SlotType.REGULAR and cell is None:
                    kind = SlotType.FREE

                entry = GridSlotOutput(
                    day=day,
                    dayName=day_name(day),
                    slot=slot,
                    slotType=kind,
                    startTime=start,
                    endTime=end,
                )
                if cell is not None:
                    entry.requirement_id = cell.requirement_id
                    entry.subject_id = cell.subject_id
                    entry.subject_name = subject_names.get(cell.requirement_id)
                    entry.teacher_id = cell.teacher_id
                    entry.room_type = cell.room_type
                slots.append(entry)
        return slots

    def build_timetable(
        self,
        request: GenerateTimetableRequest,
        result: GenerationResult,
        outcomes: Iterable[SubjectOutcome],
    ) -> SectionTimetable:
        """Assemble the section grid side channel."""
        ordered = sorted(outcomes, key=lambda o: o.requirement.index)
        names = {o.requirement.id: o.name for o in ordered}
        subjects = [
            SubjectSummary(
                requirementId=o.requirement.id,
                subjectId=o.requirement.subject_id,
                subjectName=o.name,
                status=o.status.value,
                placed=o.placed,
                required=o.required,
            )
            for o in ordered
        ]
        return SectionTimetable(
            sectionId=request.section_id,
            sessionId=request.session_id,
            templateId=request.template_id,
            result=result,
            slots=self.build_slots(names),
            subjects=subjects,
        )

    @staticmethod
    def hand_off(timetable: SectionTimetable, sink: Optional[TimetableSink]) -> bool:
        """
        Pass the grid to the sink when at least one period was placed.

        Returns:
            True if the sink was called
        """
        if sink is None or timetable.result.slots_created == 0:
            return False
        sink.save(timetable)
        return True
