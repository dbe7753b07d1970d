"""
Conflict classification and shortfall diagnosis.

The resolver decides what the scheduler does after a failed reservation and
builds the human-readable reasons that end up in ``warnings``/``errors``.
Shortfall explanations include a small CP-SAT probe that computes how many of
a subject's missing periods could still fit in the free cells of the week,
which separates "the week is full" from "other placements are in the way".
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ortools.sat.python import cp_model

from .data.models import format_cell
from .errors import ConstraintConflictError, InfeasibleError
from .tracker import ConflictKind, Occupant, Reservation

if TYPE_CHECKING:
    from .constraints.normalizer import NormalizedRequirement
    from .tracker import AvailabilityTracker

logger = logging.getLogger(__name__)


# Deterministic time units; the probe never uses a wall-clock limit
PROBE_DETERMINISTIC_LIMIT = 5.0


class Remedy(str, Enum):
    """What the scheduler should do about a failed reservation."""
    TRY_NEXT = "try_next"  # Move on to the next candidate cell
    HARD_ERROR = "hard_error"  # Record a conflict; never relocate
    BACKTRACK = "backtrack"  # Undo recent placements and retry


def gap_allows(slots: set[int], slot: int, min_gap: int) -> bool:
    """Whether ``slot`` keeps more than ``min_gap`` slots from every slot in ``slots``."""
    if min_gap <= 0:
        return True
    return all(abs(slot - other) > min_gap for other in slots)


class ConflictResolver:
    """
    Classifies reservation failures and writes diagnostics.

    Usage:
        resolver = ConflictResolver(tracker, subject_names={"mat": "Maths"})
        if not reservation.ok:
            remedy = resolver.remedy(reservation, fixed=True)
    """

    def __init__(
        self,
        tracker: AvailabilityTracker,
        subject_names: Optional[dict[str, str]] = None,
        use_probe: bool = True,
    ):
        self.tracker = tracker
        self.subject_names = dict(subject_names or {})
        self.use_probe = use_probe

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    @staticmethod
    def remedy(reservation: Reservation, fixed: bool) -> Remedy:
        """
        Decide the remedy for a failed reservation.

        Fixed slots are hard commitments: any clash is a hard error. A clash
        on an ordinary candidate means trying the next candidate; a week with
        no candidate left escalates to backtracking.
        """
        if reservation.ok:
            raise ValueError("remedy() called for a successful reservation")
        if fixed:
            return Remedy.HARD_ERROR
        return Remedy.TRY_NEXT

    @staticmethod
    def escalate(req: NormalizedRequirement, placed: int, backtrack_depth: int) -> Optional[Remedy]:
        """Remedy once every cell of the week has been tried for a subject."""
        if placed >= req.floor or backtrack_depth <= 0:
            return None
        return Remedy.BACKTRACK

    # -------------------------------------------------------------------------
    # Descriptions
    # -------------------------------------------------------------------------

    def describe_occupant(self, occupant: Optional[Occupant]) -> str:
        if occupant is None:
            return "a concurrent run"
        subject = occupant.subject_id or "another subject"
        subject = self.subject_names.get(subject, subject)
        if occupant.section_id == self.tracker.section_id:
            return f"'{subject}'"
        return f"'{subject}' in section {occupant.section_id}"

    def describe_conflict(
        self,
        req: NormalizedRequirement,
        day: int,
        slot: int,
        reservation: Reservation,
    ) -> str:
        cell = format_cell(day, slot)
        blocker = self.describe_occupant(reservation.blocker)
        if reservation.conflict is ConflictKind.SECTION_SLOT_TAKEN:
            return f"section slot {cell} is already taken by {blocker}"
        if reservation.conflict is ConflictKind.TEACHER_CLASH:
            if reservation.lock_timeout:
                return f"teacher {req.teacher_id} could not be locked at {cell}"
            return f"teacher {req.teacher_id} is already teaching {blocker} at {cell}"
        if reservation.lock_timeout:
            return f"room type '{req.room_type}' could not be locked at {cell}"
        return f"no '{req.room_type}' room left at {cell} (held by {blocker})"

    def fixed_slot_error(
        self,
        req: NormalizedRequirement,
        day: int,
        slot: int,
        reservation: Reservation,
    ) -> ConstraintConflictError:
        reason = (
            f"Fixed slot {format_cell(day, slot)} for '{req.name}' cannot be honored: "
            f"{self.describe_conflict(req, day, slot, reservation)} [{reservation.conflict.value}]"
        )
        return ConstraintConflictError(req.name, day, slot, reason)

    # -------------------------------------------------------------------------
    # Shortfall diagnosis
    # -------------------------------------------------------------------------

    def _blocked_cells(
        self, req: NormalizedRequirement
    ) -> list[tuple[int, int, ConflictKind, Optional[Occupant]]]:
        """Section-free cells that the teacher or room blocks."""
        blocked = []
        for day in self.tracker.calendar.working_days:
            for slot in self.tracker.calendar.academic_slots:
                if self.tracker.cell(day, slot) is not None:
                    continue
                conflict = self.tracker.check(day, slot, req.teacher_id, req.room_type)
                if conflict is not None:
                    blocked.append((day, slot, conflict[0], conflict[1]))
        return blocked

    def explain_shortfall(self, req: NormalizedRequirement, placed: int) -> InfeasibleError:
        """Build an InfeasibleError describing why a subject fell short."""
        calendar = self.tracker.calendar
        missing = req.periods_per_week - placed
        parts = [f"'{req.name}': {missing} of {req.periods_per_week} periods unscheduled"]

        if req.periods_per_week > calendar.capacity:
            parts.append(
                f"the week only has {calendar.capacity} academic slots "
                f"({len(calendar.working_days)} days x {len(calendar.academic_slots)} slots)"
            )
            return InfeasibleError(req.name, placed, req.periods_per_week, "; ".join(parts))

        blocked = self._blocked_cells(req)
        teacher_blocked = [b for b in blocked if b[2] is ConflictKind.TEACHER_CLASH]
        room_blocked = [b for b in blocked if b[2] is ConflictKind.ROOM_CLASH]
        if teacher_blocked:
            day, slot, _, occupant = teacher_blocked[0]
            parts.append(
                f"teacher {req.teacher_id} busy in {len(teacher_blocked)} free section slots "
                f"(e.g. {format_cell(day, slot)} with {self.describe_occupant(occupant)})"
            )
        if room_blocked:
            day, slot, _, occupant = room_blocked[0]
            parts.append(
                f"room type '{req.room_type}' full in {len(room_blocked)} free section slots "
                f"(e.g. {format_cell(day, slot)} with {self.describe_occupant(occupant)})"
            )

        saturated = all(
            len(self.tracker.slots_for(req.id, day)) >= req.max_per_day
            for day in calendar.working_days
        )
        if saturated:
            parts.append(f"max {req.max_per_day}/day reached on all days")

        free_cells = sum(
            1 for day in calendar.working_days for slot in calendar.academic_slots
            if self.tracker.cell(day, slot) is None
        )
        if free_cells == 0:
            parts.append("the section grid is full")

        if self.use_probe and missing > 0:
            fits = self.probe_capacity(req, missing)
            if fits is not None:
                parts.append(f"at most {fits} more could fit in the remaining free cells")

        return InfeasibleError(req.name, placed, req.periods_per_week, "; ".join(parts))

    def probe_capacity(self, req: NormalizedRequirement, missing: int) -> Optional[int]:
        """
        Maximum number of additional periods placeable for ``req`` right now.

        Builds a CP-SAT model over the cells free for the section, teacher and
        room, honoring the daily cap and same-day gap against the subject's
        current placements.

        Returns:
            The optimum, or None if the solver did not prove one
        """
        calendar = self.tracker.calendar
        gap = req.preferences.min_gap_same_day
        model = cp_model.CpModel()
        cell_vars: dict[tuple[int, int], cp_model.IntVar] = {}

        for day in calendar.working_days:
            existing = self.tracker.slots_for(req.id, day)
            room_left = req.max_per_day - len(existing)
            if room_left <= 0:
                continue
            day_vars = []
            for slot in calendar.academic_slots:
                if not self.tracker.is_free(day, slot, req.teacher_id, req.room_type):
                    continue
                if not gap_allows(existing, slot, gap):
                    continue
                var = model.NewBoolVar(f"x_{day}_{slot}")
                cell_vars[(day, slot)] = var
                day_vars.append((slot, var))

            if day_vars:
                model.Add(sum(v for _, v in day_vars) <= room_left)
            if gap > 0:
                for i, (slot_a, var_a) in enumerate(day_vars):
                    for slot_b, var_b in day_vars[i + 1:]:
                        if abs(slot_a - slot_b) <= gap:
                            model.AddBoolOr([var_a.Not(), var_b.Not()])

        if not cell_vars:
            return 0

        total = sum(cell_vars.values())
        model.Add(total <= missing)
        model.Maximize(total)

        solver = cp_model.CpSolver()
        solver.parameters.max_deterministic_time = PROBE_DETERMINISTIC_LIMIT
        solver.parameters.num_search_workers = 1
        status = solver.Solve(model)

        if status == cp_model.OPTIMAL:
            return int(solver.ObjectiveValue())
        logger.debug("Capacity probe for %s ended with %s", req.name, solver.StatusName(status))
        return None
