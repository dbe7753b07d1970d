"""
Constraint normalization.

Turns raw ``SchedulingPreferences`` into calendar-resolved, internally
consistent constraint objects:
- priority clamped to 1-10 (default 5)
- symbolic slot positions resolved to concrete slot numbers
- preferred/avoid contradictions resolved in favour of the preference
- fixed slots validated against the calendar

Validation failures are collected as field-level errors and raised together
as one ``ValidationError`` before any placement starts.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..config import GenerationRules
from ..data.models import (
    SchedulingPreferences,
    SlotPosition,
    SlotRef,
    SubjectRequirement,
    WorkingCalendar,
    day_name,
    format_cell,
)
from ..errors import FieldError, ValidationError

logger = logging.getLogger(__name__)


DEFAULT_PRIORITY = 5
MIN_PRIORITY = 1
MAX_PRIORITY = 10


# =============================================================================
# Normalized Types
# =============================================================================

@dataclass(frozen=True)
class NormalizedPreferences:
    """Validated preferences with every slot reference resolved to a number."""
    priority: int = DEFAULT_PRIORITY
    preferred_days: frozenset[int] = frozenset()
    avoid_days: frozenset[int] = frozenset()
    preferred_slots: frozenset[int] = frozenset()
    avoid_slots: frozenset[int] = frozenset()
    prefer_consecutive: bool = False
    min_gap_same_day: int = 0
    spread_evenly: bool = True
    required_room_type: Optional[str] = None
    fixed_slots: tuple[tuple[int, int], ...] = ()
    notes: tuple[str, ...] = ()


@dataclass
class NormalizationResult:
    """Success/failure variant returned by ``normalize_preferences``."""
    value: Optional[NormalizedPreferences] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


@dataclass(frozen=True)
class NormalizedRequirement:
    """A subject requirement ready for placement."""
    requirement: SubjectRequirement
    preferences: NormalizedPreferences
    max_per_day: int
    room_type: Optional[str]
    index: int  # Position in the caller's list, used for stable ordering

    @property
    def id(self) -> str:
        return self.requirement.id

    @property
    def subject_id(self) -> str:
        return self.requirement.subject_id

    @property
    def teacher_id(self) -> Optional[str]:
        return self.requirement.teacher_id

    @property
    def name(self) -> str:
        return self.requirement.display_name

    @property
    def priority(self) -> int:
        return self.preferences.priority

    @property
    def periods_per_week(self) -> int:
        return self.requirement.periods_per_week

    @property
    def floor(self) -> int:
        return self.requirement.period_floor

    @property
    def slack(self) -> int:
        return self.periods_per_week - self.floor

    @property
    def fixed_slots(self) -> tuple[tuple[int, int], ...]:
        return self.preferences.fixed_slots


# =============================================================================
# Slot Resolution
# =============================================================================

def resolve_slot_position(position: SlotPosition, calendar: WorkingCalendar) -> list[int]:
    """
    Resolve a symbolic slot position to concrete academic slot numbers.

    Examples (8 slots, lunch at 5):
        first -> [1, 2], last -> [7, 8], morning -> [1, 2, 3, 4], afternoon -> [6, 7, 8]
    """
    academic = calendar.academic_slots
    midday = calendar.midday_slot

    if position is SlotPosition.FIRST:
        return academic[:2]
    if position is SlotPosition.LAST:
        return academic[-2:]
    if position is SlotPosition.MORNING:
        if calendar.lunch_slot:
            return [s for s in academic if s < midday]
        return [s for s in academic if s <= midday]
    return [s for s in academic if s > midday]


def _resolve_slot_refs(
    refs: Sequence[SlotRef],
    calendar: WorkingCalendar,
    field_name: str,
    errors: list[FieldError],
) -> set[int]:
    resolved: set[int] = set()

    for i, ref in enumerate(refs):
        if isinstance(ref, str):
            name = ref.strip().lower()
            if name.isdigit():
                ref = int(name)
            else:
                try:
                    position = SlotPosition(name)
                except ValueError:
                    valid = ", ".join(p.value for p in SlotPosition)
                    errors.append(FieldError(
                        f"{field_name}[{i}]",
                        f"unknown slot position '{ref}' (expected a slot number or one of: {valid})",
                    ))
                    continue
                resolved.update(resolve_slot_position(position, calendar))
                continue

        if not 1 <= ref <= calendar.slots_per_day:
            errors.append(FieldError(
                f"{field_name}[{i}]",
                f"slot {ref} is outside 1-{calendar.slots_per_day}",
            ))
            continue
        resolved.add(ref)

    return resolved


# =============================================================================
# Preference Normalization
# =============================================================================

def normalize_preferences(
    prefs: SchedulingPreferences,
    calendar: WorkingCalendar,
    field_prefix: str = "scheduling_preferences",
) -> NormalizationResult:
    """
    Validate and resolve one subject's scheduling preferences.

    Args:
        prefs: Raw preferences from the class-subject assignment
        calendar: The run's working calendar
        field_prefix: Prefix used in field-level error names

    Returns:
        NormalizationResult holding either the normalized preferences or errors
    """
    errors: list[FieldError] = []
    notes: list[str] = []

    # Priority
    if prefs.priority is None:
        priority = DEFAULT_PRIORITY
    else:
        priority = max(MIN_PRIORITY, min(MAX_PRIORITY, prefs.priority))
        if priority != prefs.priority:
            notes.append(f"priority {prefs.priority} clamped to {priority}")

    # Days
    working = set(calendar.working_days)
    preferred_days = set(prefs.preferred_days)
    avoid_days = set(prefs.avoid_days)

    for day in sorted(preferred_days - working):
        notes.append(f"preferred day {day_name(day)} is not a working day and is ignored")
    preferred_days &= working
    avoid_days &= working

    for day in sorted(preferred_days & avoid_days):
        notes.append(f"{day_name(day)} is both preferred and avoided; preferred wins")
    avoid_days -= preferred_days

    # Slots
    preferred_slots = _resolve_slot_refs(
        prefs.preferred_slots, calendar, f"{field_prefix}.preferred_slots", errors
    )
    avoid_slots = _resolve_slot_refs(
        prefs.avoid_slots, calendar, f"{field_prefix}.avoid_slots", errors
    )
    for slot in sorted(preferred_slots & avoid_slots):
        notes.append(f"slot {slot} is both preferred and avoided; preferred wins")
    avoid_slots -= preferred_slots

    # Fixed slots
    fixed: list[tuple[int, int]] = []
    for i, fixed_slot in enumerate(prefs.fixed_slots):
        field_name = f"{field_prefix}.fixed_slots[{i}]"
        cell = (fixed_slot.day, fixed_slot.slot)

        if not calendar.is_working_day(fixed_slot.day):
            errors.append(FieldError(
                f"{field_name}.day",
                f"{day_name(fixed_slot.day)} is not a working day",
            ))
            continue
        if fixed_slot.slot > calendar.slots_per_day:
            errors.append(FieldError(
                f"{field_name}.slot",
                f"slot {fixed_slot.slot} is outside 1-{calendar.slots_per_day}",
            ))
            continue
        if not calendar.is_academic(*cell):
            errors.append(FieldError(
                f"{field_name}.slot",
                f"slot {fixed_slot.slot} is a {calendar.slot_type(fixed_slot.slot)} slot",
            ))
            continue
        if cell in fixed:
            notes.append(f"duplicate fixed slot {format_cell(*cell)} collapsed")
            continue

        if fixed_slot.day in avoid_days or fixed_slot.slot in avoid_slots:
            notes.append(f"fixed slot {format_cell(*cell)} overrides avoid preferences")
        fixed.append(cell)

    if errors:
        return NormalizationResult(errors=errors)

    return NormalizationResult(value=NormalizedPreferences(
        priority=priority,
        preferred_days=frozenset(preferred_days),
        avoid_days=frozenset(avoid_days),
        preferred_slots=frozenset(preferred_slots),
        avoid_slots=frozenset(avoid_slots),
        prefer_consecutive=prefs.prefer_consecutive,
        min_gap_same_day=prefs.min_gap_same_day,
        spread_evenly=prefs.spread_evenly,
        required_room_type=prefs.required_room_type,
        fixed_slots=tuple(fixed),
        notes=tuple(notes),
    ))


# =============================================================================
# Requirement Normalization
# =============================================================================

def normalize_requirement(
    requirement: SubjectRequirement,
    calendar: WorkingCalendar,
    rules: GenerationRules,
    index: int = 0,
    field_prefix: Optional[str] = None,
) -> tuple[Optional[NormalizedRequirement], list[FieldError]]:
    """Normalize one requirement; returns (requirement, errors)."""
    prefix = field_prefix or f"subjects[{index}]"
    result = normalize_preferences(
        requirement.scheduling_preferences,
        calendar,
        field_prefix=f"{prefix}.scheduling_preferences",
    )
    if not result.ok:
        return None, result.errors

    prefs = result.value
    errors: list[FieldError] = []
    max_per_day = requirement.max_periods_per_day or rules.max_periods_per_subject_per_day

    if len(prefs.fixed_slots) > requirement.periods_per_week:
        errors.append(FieldError(
            f"{prefix}.scheduling_preferences.fixed_slots",
            f"{len(prefs.fixed_slots)} fixed slots exceed periods_per_week "
            f"({requirement.periods_per_week})",
        ))

    per_day = Counter(day for day, _ in prefs.fixed_slots)
    for day, count in sorted(per_day.items()):
        if count > max_per_day:
            errors.append(FieldError(
                f"{prefix}.scheduling_preferences.fixed_slots",
                f"{count} fixed slots on {day_name(day)} exceed max_periods_per_day ({max_per_day})",
            ))

    room_type = prefs.required_room_type
    if room_type is None and requirement.requires_special_room:
        room_type = requirement.special_room_type
        if room_type is None:
            logger.info(
                "%s requires a special room but names no room type; rooms not tracked",
                requirement.display_name,
            )

    if errors:
        return None, errors

    for note in prefs.notes:
        logger.info("%s: %s", requirement.display_name, note)

    return NormalizedRequirement(
        requirement=requirement,
        preferences=prefs,
        max_per_day=max_per_day,
        room_type=room_type,
        index=index,
    ), []


def normalize_requirements(
    requirements: Sequence[SubjectRequirement],
    calendar: WorkingCalendar,
    rules: Optional[GenerationRules] = None,
) -> list[NormalizedRequirement]:
    """
    Normalize every requirement of a section.

    Raises:
        ValidationError: With all field-level errors if any requirement is invalid
    """
    rules = rules or GenerationRules()
    normalized: list[NormalizedRequirement] = []
    errors: list[FieldError] = []

    for i, requirement in enumerate(requirements):
        item, item_errors = normalize_requirement(requirement, calendar, rules, index=i)
        errors.extend(item_errors)
        if item is not None:
            normalized.append(item)

    if errors:
        raise ValidationError(errors)

    return normalized
