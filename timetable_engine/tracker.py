"""
Availability tracking for generation runs.

Three occupancy grids are consulted for every reservation:
- the section grid, local to one run (no synchronization needed)
- the teacher grid, shared by every section scheduled concurrently
- the room-type grid, shared likewise, with a per-type capacity

Shared cells are guarded by per-key locks (one per teacher, one per room
type) acquired in sorted order. A lock that cannot be acquired within the
configured timeout is reported as an ordinary clash on that dimension.
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional

from .data.models import BusySlot, WorkingCalendar

logger = logging.getLogger(__name__)


DAYS_PER_WEEK = 7


# =============================================================================
# Types
# =============================================================================

class ConflictKind(str, Enum):
    """Dimension on which a reservation failed."""
    SECTION_SLOT_TAKEN = "SECTION_SLOT_TAKEN"
    TEACHER_CLASH = "TEACHER_CLASH"
    ROOM_CLASH = "ROOM_CLASH"


@dataclass(frozen=True)
class GridCell:
    """Content of an occupied section grid cell."""
    requirement_id: str
    subject_id: str
    teacher_id: Optional[str] = None
    room_type: Optional[str] = None


@dataclass(frozen=True)
class Occupant:
    """Holder of a shared teacher/room cell."""
    section_id: str
    subject_id: Optional[str] = None


@dataclass(frozen=True)
class ReservationToken:
    """Receipt for a successful reservation; used for undo."""
    seq: int
    section_id: str
    day: int
    slot: int
    cell: GridCell
    fixed: bool = False


@dataclass(frozen=True)
class Reservation:
    """Outcome of ``AvailabilityTracker.reserve``."""
    token: Optional[ReservationToken] = None
    conflict: Optional[ConflictKind] = None
    blocker: Optional[Occupant] = None
    lock_timeout: bool = False

    @property
    def ok(self) -> bool:
        return self.token is not None


# =============================================================================
# Shared Teacher/Room State
# =============================================================================

class SharedResourceState:
    """
    Teacher and room-type occupancy shared across concurrent section runs.

    Grids are indexed ``[day][slot]`` with day 0-6 and 1-based slots.

    Usage:
        shared = SharedResourceState(slots_per_day=8, room_capacities={"lab": 2})
        shared.seed(input_data.busy_slots)
        tracker = AvailabilityTracker(calendar, shared, section_id="sec-a")
    """

    def __init__(
        self,
        slots_per_day: int,
        room_capacities: Optional[dict[str, int]] = None,
        lock_timeout: float = 1.0,
    ):
        self.slots_per_day = slots_per_day
        self.room_capacities = dict(room_capacities or {})
        self.lock_timeout = lock_timeout

        self._teacher_grids: dict[str, list[list[Optional[Occupant]]]] = {}
        self._room_grids: dict[str, list[list[list[Occupant]]]] = {}
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Grid access
    # -------------------------------------------------------------------------

    def _teacher_grid(self, teacher_id: str) -> list[list[Optional[Occupant]]]:
        grid = self._teacher_grids.get(teacher_id)
        if grid is None:
            with self._registry_lock:
                grid = self._teacher_grids.setdefault(
                    teacher_id,
                    [[None] * (self.slots_per_day + 1) for _ in range(DAYS_PER_WEEK)],
                )
        return grid

    def _room_grid(self, room_type: str) -> list[list[list[Occupant]]]:
        grid = self._room_grids.get(room_type)
        if grid is None:
            with self._registry_lock:
                grid = self._room_grids.setdefault(
                    room_type,
                    [[[] for _ in range(self.slots_per_day + 1)] for _ in range(DAYS_PER_WEEK)],
                )
        return grid

    def room_capacity(self, room_type: str) -> int:
        return self.room_capacities.get(room_type, 1)

    def teacher_holder(self, teacher_id: str, day: int, slot: int) -> Optional[Occupant]:
        return self._teacher_grid(teacher_id)[day][slot]

    def room_holders(self, room_type: str, day: int, slot: int) -> list[Occupant]:
        return list(self._room_grid(room_type)[day][slot])

    def room_full(self, room_type: str, day: int, slot: int) -> bool:
        return len(self._room_grid(room_type)[day][slot]) >= self.room_capacity(room_type)

    def teacher_slots_on_day(self, teacher_id: str, day: int) -> set[int]:
        """Slots the teacher is busy on ``day`` across all sections."""
        row = self._teacher_grid(teacher_id)[day]
        return {slot for slot in range(1, self.slots_per_day + 1) if row[slot] is not None}

    def teacher_bookings(self) -> Iterator[tuple[str, int, int, Occupant]]:
        """Yield (teacher_id, day, slot, occupant) for every booked teacher cell."""
        for teacher_id, grid in self._teacher_grids.items():
            for day, row in enumerate(grid):
                for slot, occupant in enumerate(row):
                    if occupant is not None:
                        yield teacher_id, day, slot, occupant

    def room_bookings(self) -> Iterator[tuple[str, int, int, list[Occupant]]]:
        """Yield (room_type, day, slot, occupants) for every booked room cell."""
        for room_type, grid in self._room_grids.items():
            for day, row in enumerate(grid):
                for slot, occupants in enumerate(row):
                    if occupants:
                        yield room_type, day, slot, list(occupants)

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(
        self,
        teacher_id: Optional[str],
        room_type: Optional[str],
        blocking: bool = False,
    ) -> Iterator[Optional[tuple[str, str]]]:
        """
        Hold the teacher and room-type locks for one reservation.

        Yields None when every lock was acquired, otherwise the key
        ("teacher"|"room", id) that timed out. With ``blocking`` the call
        waits indefinitely.
        """
        keys = []
        if teacher_id:
            keys.append(("teacher", teacher_id))
        if room_type:
            keys.append(("room", room_type))

        timeout = -1 if blocking else self.lock_timeout
        acquired: list[threading.Lock] = []
        failed: Optional[tuple[str, str]] = None
        try:
            for key in sorted(keys):
                lock = self._lock_for(key)
                if not lock.acquire(timeout=timeout):
                    failed = key
                    break
                acquired.append(lock)
            yield failed
        finally:
            for lock in reversed(acquired):
                lock.release()

    # -------------------------------------------------------------------------
    # Mutation (callers hold the relevant locks)
    # -------------------------------------------------------------------------

    def book(
        self,
        occupant: Occupant,
        day: int,
        slot: int,
        teacher_id: Optional[str],
        room_type: Optional[str],
    ) -> None:
        if teacher_id:
            self._teacher_grid(teacher_id)[day][slot] = occupant
        if room_type:
            self._room_grid(room_type)[day][slot].append(occupant)

    def unbook(
        self,
        occupant: Occupant,
        day: int,
        slot: int,
        teacher_id: Optional[str],
        room_type: Optional[str],
    ) -> None:
        if teacher_id:
            row = self._teacher_grid(teacher_id)[day]
            if row[slot] == occupant:
                row[slot] = None
        if room_type:
            occupants = self._room_grid(room_type)[day][slot]
            if occupant in occupants:
                occupants.remove(occupant)

    def seed(self, busy_slots: Iterable[BusySlot]) -> int:
        """
        Load the occupancy snapshot of already-committed sections.

        Returns:
            Number of busy slots applied
        """
        count = 0
        for busy in busy_slots:
            if busy.slot > self.slots_per_day:
                logger.warning(
                    "Ignoring busy slot %s/%s of section %s: outside calendar",
                    busy.day, busy.slot, busy.section_id,
                )
                continue
            occupant = Occupant(section_id=busy.section_id, subject_id=busy.subject_id)
            with self.hold(busy.teacher_id, busy.room_type, blocking=True):
                self.book(occupant, busy.day, busy.slot, busy.teacher_id, busy.room_type)
            count += 1
        logger.debug("Seeded %d busy slots from committed sections", count)
        return count


# =============================================================================
# Per-Section Tracker
# =============================================================================

class AvailabilityTracker:
    """
    Occupancy state for one section's generation run.

    The section grid is a flat 2D array indexed by (working-day index, slot).
    Teacher and room lookups go to the shared state.
    """

    def __init__(
        self,
        calendar: WorkingCalendar,
        shared: SharedResourceState,
        section_id: str,
    ):
        if shared.slots_per_day < calendar.slots_per_day:
            raise ValueError(
                f"Shared state holds {shared.slots_per_day} slots per day but the "
                f"calendar needs {calendar.slots_per_day}"
            )
        self.calendar = calendar
        self.shared = shared
        self.section_id = section_id

        self._day_index = {day: i for i, day in enumerate(calendar.working_days)}
        self._grid: list[list[Optional[GridCell]]] = [
            [None] * (calendar.slots_per_day + 1) for _ in calendar.working_days
        ]
        self._tokens: dict[tuple[int, int], ReservationToken] = {}
        self._seq = itertools.count(1)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def cell(self, day: int, slot: int) -> Optional[GridCell]:
        return self._grid[self._day_index[day]][slot]

    def check(
        self,
        day: int,
        slot: int,
        teacher_id: Optional[str] = None,
        room_type: Optional[str] = None,
    ) -> Optional[tuple[ConflictKind, Optional[Occupant]]]:
        """First conflicting dimension for (day, slot), or None if free."""
        existing = self.cell(day, slot)
        if existing is not None:
            return ConflictKind.SECTION_SLOT_TAKEN, Occupant(self.section_id, existing.subject_id)
        if teacher_id:
            holder = self.shared.teacher_holder(teacher_id, day, slot)
            if holder is not None:
                return ConflictKind.TEACHER_CLASH, holder
        if room_type and self.shared.room_full(room_type, day, slot):
            holders = self.shared.room_holders(room_type, day, slot)
            return ConflictKind.ROOM_CLASH, holders[0] if holders else None
        return None

    def is_free(
        self,
        day: int,
        slot: int,
        teacher_id: Optional[str] = None,
        room_type: Optional[str] = None,
    ) -> bool:
        """Whether (day, slot) is an academic cell free for section, teacher and room."""
        if not self.calendar.is_academic(day, slot):
            return False
        return self.check(day, slot, teacher_id, room_type) is None

    def slots_for(self, requirement_id: str, day: int) -> set[int]:
        """Slots held by a requirement on one day."""
        row = self._grid[self._day_index[day]]
        return {
            slot for slot in range(1, self.calendar.slots_per_day + 1)
            if row[slot] is not None and row[slot].requirement_id == requirement_id
        }

    def cells(self) -> Iterator[tuple[int, int, GridCell]]:
        """Yield (day, slot, cell) for every occupied cell, in grid order."""
        for day in self.calendar.working_days:
            row = self._grid[self._day_index[day]]
            for slot in range(1, self.calendar.slots_per_day + 1):
                if row[slot] is not None:
                    yield day, slot, row[slot]

    @property
    def placed_count(self) -> int:
        return len(self._tokens)

    def token_at(self, day: int, slot: int) -> Optional[ReservationToken]:
        return self._tokens.get((day, slot))

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def reserve(
        self,
        day: int,
        slot: int,
        subject_id: str,
        teacher_id: Optional[str] = None,
        room_type: Optional[str] = None,
        requirement_id: Optional[str] = None,
        fixed: bool = False,
    ) -> Reservation:
        """
        Atomically reserve (day, slot) in the section, teacher and room grids.

        Nothing is written unless all three dimensions are free.
        """
        if not self.calendar.is_academic(day, slot):
            raise ValueError(f"({day}, {slot}) is not an academic cell of the calendar")

        existing = self.cell(day, slot)
        if existing is not None:
            return Reservation(
                conflict=ConflictKind.SECTION_SLOT_TAKEN,
                blocker=Occupant(self.section_id, existing.subject_id),
            )

        with self.shared.hold(teacher_id, room_type) as timed_out:
            if timed_out is not None:
                kind = ConflictKind.TEACHER_CLASH if timed_out[0] == "teacher" else ConflictKind.ROOM_CLASH
                logger.debug("Lock timeout on %s for %s/%s", timed_out, day, slot)
                return Reservation(conflict=kind, lock_timeout=True)

            if teacher_id:
                holder = self.shared.teacher_holder(teacher_id, day, slot)
                if holder is not None:
                    return Reservation(conflict=ConflictKind.TEACHER_CLASH, blocker=holder)
            if room_type and self.shared.room_full(room_type, day, slot):
                holders = self.shared.room_holders(room_type, day, slot)
                return Reservation(
                    conflict=ConflictKind.ROOM_CLASH,
                    blocker=holders[0] if holders else None,
                )

            cell = GridCell(
                requirement_id=requirement_id or subject_id,
                subject_id=subject_id,
                teacher_id=teacher_id,
                room_type=room_type,
            )
            self.shared.book(
                Occupant(self.section_id, subject_id), day, slot, teacher_id, room_type
            )
            self._grid[self._day_index[day]][slot] = cell

        token = ReservationToken(
            seq=next(self._seq),
            section_id=self.section_id,
            day=day,
            slot=slot,
            cell=cell,
            fixed=fixed,
        )
        self._tokens[(day, slot)] = token
        return Reservation(token=token)

    def release(self, day: int, slot: int) -> Optional[ReservationToken]:
        """
        Undo the reservation at (day, slot).

        Returns:
            The released token, or None if the cell was empty
        """
        token = self._tokens.pop((day, slot), None)
        if token is None:
            return None

        cell = token.cell
        with self.shared.hold(cell.teacher_id, cell.room_type, blocking=True):
            self.shared.unbook(
                Occupant(self.section_id, cell.subject_id),
                day, slot, cell.teacher_id, cell.room_type,
            )
            self._grid[self._day_index[day]][slot] = None
        return token
