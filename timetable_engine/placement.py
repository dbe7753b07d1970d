"""
Placement scheduler: most-constrained-first greedy search with bounded
backtracking.

Phases:
1. Fixed phase, for every subject before any filling: reserve each fixed
   slot; clashes are hard conflicts.
2. Fill phase, per subject: repeatedly reserve the best-scoring free
   candidate cell.
3. Backtracking: when fewer than the floor were placed, undo up to K recent
   placements of subjects that do not outrank it, retry once, and keep the
   attempt only if it helped without costing the undone subjects a period.

Backtracking uses an explicit undo stack of reservation tokens; the search
never recurses.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .config import EngineConfig, GenerationRules
from .conflicts import ConflictResolver, Remedy, gap_allows
from .constraints.normalizer import NormalizedRequirement
from .constraints.scoring import score_cell, soft_violations
from .errors import CancelledError, ConstraintConflictError, InfeasibleError
from .tracker import AvailabilityTracker, ReservationToken

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class SubjectStatus(str, Enum):
    """Per-subject state machine."""
    PENDING = "PENDING"
    FIXED_PLACED = "FIXED_PLACED"
    FILLING = "FILLING"
    PLACED = "PLACED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class CancellationToken:
    """Cooperative cancellation flag, checked before each subject in each phase."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class SubjectOutcome:
    """Placement result for one subject."""
    requirement: NormalizedRequirement
    status: SubjectStatus = SubjectStatus.PENDING
    cells: list[tuple[int, int]] = field(default_factory=list)
    fixed_conflicts: list[ConstraintConflictError] = field(default_factory=list)
    infeasible: Optional[InfeasibleError] = None
    cancelled: Optional[CancelledError] = None
    soft_violations: list[str] = field(default_factory=list)
    backtracked: bool = False

    @property
    def name(self) -> str:
        return self.requirement.name

    @property
    def placed(self) -> int:
        return len(self.cells)

    @property
    def required(self) -> int:
        return self.requirement.periods_per_week

    @property
    def is_terminal(self) -> bool:
        return self.status in (SubjectStatus.PLACED, SubjectStatus.PARTIAL, SubjectStatus.FAILED)


def placement_order(requirements: Iterable[NormalizedRequirement]) -> list[NormalizedRequirement]:
    """
    Order subjects most-constrained first.

    Sort keys, in order: higher priority, more fixed slots, less slack between
    target and floor, more periods per week, core before elective, input order.
    """
    return sorted(
        requirements,
        key=lambda r: (
            -r.priority,
            -len(r.fixed_slots),
            r.slack,
            -r.periods_per_week,
            r.requirement.is_elective,
            r.index,
        ),
    )


# =============================================================================
# Scheduler
# =============================================================================

class PlacementScheduler:
    """
    Places a section's subjects into its grid.

    Usage:
        scheduler = PlacementScheduler(tracker, rules, config)
        outcomes = scheduler.run(normalized_requirements)
    """

    def __init__(
        self,
        tracker: AvailabilityTracker,
        rules: Optional[GenerationRules] = None,
        config: Optional[EngineConfig] = None,
        resolver: Optional[ConflictResolver] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.tracker = tracker
        self.rules = rules or GenerationRules()
        self.config = config or EngineConfig()
        self.resolver = resolver or ConflictResolver(tracker, use_probe=self.config.capacity_probe)
        self.cancel_token = cancel_token

        self._requirements: dict[str, NormalizedRequirement] = {}
        self._placed: dict[str, list[ReservationToken]] = {}
        self._undo_stack: list[ReservationToken] = []

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _push(self, token: ReservationToken) -> None:
        self._placed.setdefault(token.cell.requirement_id, []).append(token)
        self._undo_stack.append(token)

    def _pop(self, token: ReservationToken) -> None:
        self.tracker.release(token.day, token.slot)
        self._placed[token.cell.requirement_id].remove(token)
        self._undo_stack.remove(token)

    def placed_count(self, requirement_id: str) -> int:
        return len(self._placed.get(requirement_id, []))

    @property
    def undo_stack(self) -> list[ReservationToken]:
        return list(self._undo_stack)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, requirements: Iterable[NormalizedRequirement]) -> list[SubjectOutcome]:
        """
        Place every subject, most constrained first.

        Every subject's fixed slots are reserved before any subject is
        filled, so a flexible subject can never take a pinned cell. A failing
        subject never aborts the run. The cancellation token is checked before
        each subject in each phase; subjects not yet handled are marked FAILED.

        Returns:
            Outcomes in placement order
        """
        ordered = placement_order(requirements)
        self._requirements = {r.id: r for r in ordered}
        self.resolver.subject_names.update({r.subject_id: r.name for r in ordered})
        outcomes = [SubjectOutcome(requirement=req) for req in ordered]

        for outcome in outcomes:
            if not self._check_cancelled(outcome):
                self.fix_subject(outcome)

        for outcome in outcomes:
            if outcome.is_terminal or self._check_cancelled(outcome):
                continue
            self.fill_subject(outcome)

        self._finalize(outcomes)
        return outcomes

    def _check_cancelled(self, outcome: SubjectOutcome) -> bool:
        if self.cancel_token is None or not self.cancel_token.cancelled:
            return False
        outcome.status = SubjectStatus.FAILED
        outcome.cancelled = CancelledError(self.cancel_token.reason)
        return True

    def fix_subject(self, outcome: SubjectOutcome) -> None:
        """Structural pre-check, then reserve the subject's fixed slots."""
        req = outcome.requirement
        self._requirements.setdefault(req.id, req)

        if req.periods_per_week > self.tracker.calendar.capacity:
            outcome.status = SubjectStatus.FAILED
            outcome.infeasible = self.resolver.explain_shortfall(req, 0)
            logger.info("%s cannot fit in the week: %s", req.name, outcome.infeasible.reason)
            return

        self._place_fixed(req, outcome)
        outcome.status = SubjectStatus.FIXED_PLACED

    def fill_subject(self, outcome: SubjectOutcome) -> None:
        """Fill the remaining periods of a subject, backtracking if it falls short."""
        req = outcome.requirement
        outcome.status = SubjectStatus.FILLING
        self._fill(req, self._remaining(req))

        placed = self.placed_count(req.id)
        if (
            self._remaining(req) > 0
            and self.resolver.escalate(req, placed, self.config.backtrack_depth) is Remedy.BACKTRACK
        ):
            outcome.backtracked = self._backtrack(req)
            placed = self.placed_count(req.id)

        if outcome.fixed_conflicts:
            outcome.status = SubjectStatus.FAILED
        elif placed >= req.periods_per_week:
            outcome.status = SubjectStatus.PLACED
        elif placed >= req.floor:
            outcome.status = SubjectStatus.PARTIAL
        else:
            outcome.status = SubjectStatus.FAILED

        if placed < req.periods_per_week and not outcome.fixed_conflicts:
            outcome.infeasible = self.resolver.explain_shortfall(req, placed)

        logger.debug(
            "%s -> %s (%d/%d placed%s)",
            req.name, outcome.status.value, placed, req.periods_per_week,
            ", backtracked" if outcome.backtracked else "",
        )

    def _remaining(self, req: NormalizedRequirement) -> int:
        """Periods still to fill; failed fixed slots are never relocated."""
        non_fixed = sum(1 for t in self._placed.get(req.id, []) if not t.fixed)
        return req.periods_per_week - len(req.fixed_slots) - non_fixed

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _place_fixed(self, req: NormalizedRequirement, outcome: SubjectOutcome) -> None:
        for day, slot in req.fixed_slots:
            reservation = self.tracker.reserve(
                day, slot, req.subject_id,
                teacher_id=req.teacher_id,
                room_type=req.room_type,
                requirement_id=req.id,
                fixed=True,
            )
            if reservation.ok:
                self._push(reservation.token)
                continue

            if self.resolver.remedy(reservation, fixed=True) is Remedy.HARD_ERROR:
                error = self.resolver.fixed_slot_error(req, day, slot, reservation)
                outcome.fixed_conflicts.append(error)
                logger.info(error.reason)

    def candidates(self, req: NormalizedRequirement) -> list[tuple[int, int, int]]:
        """
        Free candidate cells for one more period of ``req``, best first.

        Returns:
            List of (score, day, slot) sorted by score descending, then
            earliest day, then earliest slot
        """
        calendar = self.tracker.calendar
        shared = self.tracker.shared
        prefs = req.preferences
        result = []

        for day in calendar.working_days:
            subject_slots = self.tracker.slots_for(req.id, day)
            if len(subject_slots) >= req.max_per_day:
                continue
            teacher_slots = (
                shared.teacher_slots_on_day(req.teacher_id, day) if req.teacher_id else set()
            )
            reliability = calendar.day_reliability(day)
            for slot in calendar.academic_slots:
                if not self.tracker.is_free(day, slot, req.teacher_id, req.room_type):
                    continue
                if not gap_allows(subject_slots, slot, prefs.min_gap_same_day):
                    continue
                score = score_cell(
                    prefs, day, slot, subject_slots, teacher_slots,
                    self.config.weights, self.rules,
                    reliability=reliability,
                    periods_per_week=req.periods_per_week,
                )
                result.append((score, day, slot))

        result.sort(key=lambda c: (-c[0], c[1], c[2]))
        return result

    def _fill(self, req: NormalizedRequirement, count: int) -> list[ReservationToken]:
        """Place up to ``count`` periods of ``req``; returns the new tokens."""
        new_tokens: list[ReservationToken] = []

        while len(new_tokens) < count:
            token = None
            for _, day, slot in self.candidates(req):
                reservation = self.tracker.reserve(
                    day, slot, req.subject_id,
                    teacher_id=req.teacher_id,
                    room_type=req.room_type,
                    requirement_id=req.id,
                )
                if reservation.ok:
                    token = reservation.token
                    break
                # Lost a race with a concurrent run; the next candidate may still be free
                if self.resolver.remedy(reservation, fixed=False) is not Remedy.TRY_NEXT:
                    break

            if token is None:
                break
            self._push(token)
            new_tokens.append(token)

        return new_tokens

    def _backtrack(self, req: NormalizedRequirement) -> bool:
        """
        Undo up to K recent placements of subjects not outranking ``req`` and
        retry it once. Keeps the attempt only if ``req`` gained periods and
        every undone subject got all of its periods back.

        Returns:
            True if the attempt was committed
        """
        depth = self.config.backtrack_depth
        victims = [
            t for t in reversed(self._undo_stack)
            if not t.fixed
            and t.cell.requirement_id != req.id
            and self._requirements[t.cell.requirement_id].priority <= req.priority
        ][:depth]
        if not victims:
            return False

        before = self.placed_count(req.id)
        logger.debug("Backtracking %d placements for %s", len(victims), req.name)

        for token in victims:
            self._pop(token)

        attempt = self._fill(req, self._remaining(req))

        lost = Counter(t.cell.requirement_id for t in victims)
        regained = True
        for victim_id, count in lost.items():
            refilled = self._fill(self._requirements[victim_id], count)
            attempt.extend(refilled)
            if len(refilled) < count:
                regained = False

        if self.placed_count(req.id) > before and regained:
            return True

        # Restore the exact previous state
        for token in reversed(attempt):
            self._pop(token)
        for token in reversed(victims):
            reservation = self.tracker.reserve(
                token.day, token.slot, token.cell.subject_id,
                teacher_id=token.cell.teacher_id,
                room_type=token.cell.room_type,
                requirement_id=token.cell.requirement_id,
            )
            if reservation.ok:
                self._push(reservation.token)
                continue
            logger.warning(
                "Could not restore %s at %s/%s after backtracking (%s)",
                token.cell.subject_id, token.day, token.slot, reservation.conflict,
            )
            self._fill(self._requirements[token.cell.requirement_id], 1)
        return False

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def _finalize(self, outcomes: list[SubjectOutcome]) -> None:
        """Record final cells and accepted soft-preference violations."""
        for outcome in outcomes:
            req = outcome.requirement
            tokens = sorted(self._placed.get(req.id, []), key=lambda t: (t.day, t.slot))
            outcome.cells = [(t.day, t.slot) for t in tokens]

            violations: list[str] = []
            for token in tokens:
                if token.fixed:
                    continue
                for violation in soft_violations(req.preferences, token.day, token.slot):
                    if violation not in violations:
                        violations.append(violation)
            outcome.soft_violations = violations
