"""
Pydantic models for the timetable generation engine.

These models are the request contract consumed from the host system. They
perform declarative, field-level validation once at ingress; calendar-aware
checks (slot ranges, symbolic slot names) happen in the constraint normalizer.

Day conventions:
- Days are 0-6 (0=Sunday, 1=Monday, ..., 6=Saturday)
- Slots are 1-based period numbers within a day (1..slots_per_day)

Example:
- Monday first period = (day=1, slot=1)
- Friday sixth period = (day=5, slot=6)
"""

from __future__ import annotations

import math
import re
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from ..config import MAX_SLOTS_PER_DAY, EngineConfig, GenerationRules


# =============================================================================
# Constants and Enums
# =============================================================================

class Day(int, Enum):
    """Day of week: 0=Sunday through 6=Saturday."""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6


class SlotPosition(str, Enum):
    """Symbolic slot positions accepted in preferred/avoid slot lists."""
    FIRST = "first"
    LAST = "last"
    MORNING = "morning"
    AFTERNOON = "afternoon"


# Weekdays below this share of the best weekday's instructional days are flagged
LOW_INSTRUCTIONAL_RATIO = 0.8

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Type aliases for documentation
DayIndex = Annotated[int, Field(ge=0, le=6, description="Day of week (0=Sunday, 6=Saturday)")]
SlotNumber = Annotated[int, Field(ge=1, le=MAX_SLOTS_PER_DAY, description="1-based slot number")]
SlotRef = Union[int, str]


# =============================================================================
# Helper Functions
# =============================================================================

def minutes_to_time(minutes: int) -> str:
    """Convert minutes from midnight to HH:MM format."""
    h, m = divmod(minutes % 1440, 60)
    return f"{h:02d}:{m:02d}"


def time_to_minutes(time_str: str) -> int:
    """Convert HH:MM format to minutes from midnight."""
    h, m = map(int, time_str.split(":"))
    return h * 60 + m


def day_name(day: int) -> str:
    """Get day name from index."""
    return DAY_NAMES[day] if 0 <= day <= 6 else f"Day {day}"


def format_cell(day: int, slot: int) -> str:
    """Human readable cell reference, e.g. 'Monday P3'."""
    return f"{day_name(day)} P{slot}"


# =============================================================================
# Calendar and Rules
# =============================================================================

class WorkingCalendar(BaseModel):
    """
    Grid shape for one generation run: working days x period slots.

    Break and lunch slots are part of the day but never receive a subject.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    working_days: list[DayIndex] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5, 6],
        min_length=1,
        description="Working days of the week",
    )
    slots_per_day: SlotNumber = Field(default=8, description="Period slots per day")
    break_slots: list[SlotNumber] = Field(default_factory=list, description="Short break slots")
    lunch_slot: Optional[SlotNumber] = Field(default=None, description="Lunch slot")
    start_time: str = Field(default="08:00", pattern=r"^\d{2}:\d{2}$", description="First slot start")
    slot_duration_minutes: int = Field(default=45, ge=5, le=240, description="Slot length")
    instructional_days: dict[DayIndex, int] = Field(
        default_factory=dict,
        description="Instructional days per weekday over the session, after holidays",
    )

    @field_validator("instructional_days")
    @classmethod
    def validate_instructional_days(cls, counts: dict[int, int]) -> dict[int, int]:
        bad = {day: count for day, count in counts.items() if count < 0}
        if bad:
            raise ValueError(f"instructional day counts must be >= 0: {bad}")
        return counts

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, days: list[int]) -> list[int]:
        """Working days must be distinct; they are kept in week order."""
        if len(set(days)) != len(days):
            raise ValueError(f"working_days contains duplicates: {days}")
        return sorted(days)

    @model_validator(mode="after")
    def validate_non_academic_slots(self) -> "WorkingCalendar":
        """Break/lunch slots must lie inside the day and leave at least one academic slot."""
        non_academic = set(self.break_slots)
        if self.lunch_slot is not None:
            non_academic.add(self.lunch_slot)
        out_of_range = sorted(s for s in non_academic if s > self.slots_per_day)
        if out_of_range:
            raise ValueError(
                f"break/lunch slots {out_of_range} exceed slots_per_day ({self.slots_per_day})"
            )
        if len(non_academic) >= self.slots_per_day:
            raise ValueError("calendar has no academic slots left after breaks and lunch")
        return self

    @property
    def non_academic_slots(self) -> frozenset[int]:
        slots = set(self.break_slots)
        if self.lunch_slot is not None:
            slots.add(self.lunch_slot)
        return frozenset(slots)

    @property
    def academic_slots(self) -> list[int]:
        """Slots that can hold a subject, in day order."""
        blocked = self.non_academic_slots
        return [s for s in range(1, self.slots_per_day + 1) if s not in blocked]

    @property
    def midday_slot(self) -> int:
        """Boundary between morning and afternoon (lunch slot, or half the day)."""
        return self.lunch_slot or math.ceil(self.slots_per_day / 2)

    @property
    def capacity(self) -> int:
        """Total academic cells in the week."""
        return len(self.working_days) * len(self.academic_slots)

    def day_reliability(self, day: int) -> float:
        """
        How dependably a weekday is taught over the session, from 0.5 to 1.0.

        Scaled against the weekday with the most instructional days; a weekday
        missing from the counts scores 0.5. Without counts every day is 1.0.
        """
        if not self.instructional_days:
            return 1.0
        most = max(max(self.instructional_days.values()), 1)
        return 0.5 + (self.instructional_days.get(day, 0) / most) * 0.5

    def unreliable_days(self) -> list[tuple[int, int]]:
        """Working days with notably fewer instructional days than the best weekday."""
        if not self.instructional_days:
            return []
        most = max(self.instructional_days.values())
        return [
            (day, count)
            for day, count in sorted(self.instructional_days.items())
            if day in self.working_days and count < most * LOW_INSTRUCTIONAL_RATIO
        ]

    def is_working_day(self, day: int) -> bool:
        return day in self.working_days

    def is_academic(self, day: int, slot: int) -> bool:
        """Whether (day, slot) is a schedulable cell of this calendar."""
        return (
            day in self.working_days
            and 1 <= slot <= self.slots_per_day
            and slot not in self.non_academic_slots
        )

    def slot_type(self, slot: int) -> str:
        if self.lunch_slot == slot:
            return "lunch"
        if slot in self.break_slots:
            return "break"
        return "regular"

    def slot_times(self, slot: int) -> tuple[str, str]:
        """Start and end time ('HH:MM') of a slot."""
        start = time_to_minutes(self.start_time) + (slot - 1) * self.slot_duration_minutes
        return minutes_to_time(start), minutes_to_time(start + self.slot_duration_minutes)


# =============================================================================
# Subject Requirements
# =============================================================================

class FixedSlot(BaseModel):
    """A (day, slot) pair the administrator has pinned for a subject."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    day: DayIndex = Field(description="Day of week")
    slot: SlotNumber = Field(description="Slot number")

    def __str__(self) -> str:
        return format_cell(self.day, self.slot)


class SchedulingPreferences(BaseModel):
    """Raw per-subject scheduling preferences, as stored on the class-subject assignment."""
    model_config = ConfigDict(extra="forbid")

    preferred_days: list[DayIndex] = Field(default_factory=list)
    avoid_days: list[DayIndex] = Field(default_factory=list)
    preferred_slots: list[SlotRef] = Field(
        default_factory=list,
        description="Slot numbers or 'first'/'last'/'morning'/'afternoon'",
    )
    avoid_slots: list[SlotRef] = Field(default_factory=list)
    prefer_consecutive: bool = Field(default=False, description="Place periods back-to-back")
    min_gap_same_day: int = Field(default=0, ge=0, le=6, description="Min slot distance on one day")
    priority: Optional[int] = Field(default=None, description="1-10, higher is placed first")
    required_room_type: Optional[str] = Field(default=None, max_length=50)
    fixed_slots: list[FixedSlot] = Field(default_factory=list)
    spread_evenly: bool = Field(default=True, description="Prefer distinct days")


class SubjectRequirement(BaseModel):
    """One class-subject assignment to schedule for the target section."""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, description="Class-subject assignment ID")
    subject_id: str = Field(min_length=1)
    subject_name: str = Field(default="", description="Display name")
    teacher_id: Optional[str] = Field(default=None)
    periods_per_week: int = Field(ge=1, le=7 * MAX_SLOTS_PER_DAY)
    max_periods_per_day: Optional[int] = Field(default=None, ge=1, le=MAX_SLOTS_PER_DAY)
    min_periods_per_week: Optional[int] = Field(default=None, ge=0)
    is_elective: bool = Field(default=False)
    requires_special_room: bool = Field(default=False)
    special_room_type: Optional[str] = Field(default=None, max_length=50)
    scheduling_preferences: SchedulingPreferences = Field(default_factory=SchedulingPreferences)

    @field_validator("teacher_id")
    @classmethod
    def blank_teacher_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def validate_period_floor(self) -> "SubjectRequirement":
        """The partial-placement floor cannot exceed the weekly target."""
        if self.min_periods_per_week is not None and self.min_periods_per_week > self.periods_per_week:
            raise ValueError(
                f"min_periods_per_week ({self.min_periods_per_week}) must not exceed "
                f"periods_per_week ({self.periods_per_week})"
            )
        return self

    @property
    def display_name(self) -> str:
        return self.subject_name or self.subject_id

    @property
    def period_floor(self) -> int:
        """Periods that must be placed for the subject not to fail."""
        if self.min_periods_per_week is None:
            return self.periods_per_week
        return self.min_periods_per_week

    def __str__(self) -> str:
        return f"{self.display_name} ({self.periods_per_week}/week)"


# =============================================================================
# Requests and Occupancy
# =============================================================================

class GenerateTimetableRequest(BaseModel):
    """Entry point request from the host system."""
    model_config = ConfigDict(extra="forbid")

    section_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    template_id: Optional[str] = Field(default=None)


class BusySlot(BaseModel):
    """An occupied cell from a section that is already committed elsewhere."""
    model_config = ConfigDict(extra="forbid")

    section_id: str = Field(min_length=1)
    day: DayIndex
    slot: SlotNumber
    subject_id: Optional[str] = Field(default=None)
    teacher_id: Optional[str] = Field(default=None)
    room_type: Optional[str] = Field(default=None)


class SectionInput(BaseModel):
    """One section to generate: the request plus its ordered subject load."""
    model_config = ConfigDict(extra="forbid")

    request: GenerateTimetableRequest
    subjects: list[SubjectRequirement] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_no_duplicate_ids(self) -> "SectionInput":
        seen: set[str] = set()
        duplicates = []
        for subject in self.subjects:
            if subject.id in seen:
                duplicates.append(subject.id)
            seen.add(subject.id)
        if duplicates:
            raise ValueError(f"Duplicate subject requirement IDs: {duplicates}")
        return self


class GenerationInput(BaseModel):
    """
    Complete consistent snapshot for one or more generation runs.
    Loaded once before solving so the search never blocks on I/O.
    """
    model_config = ConfigDict(extra="forbid")

    calendar: WorkingCalendar = Field(default_factory=WorkingCalendar)
    rules: GenerationRules = Field(default_factory=GenerationRules)
    config: EngineConfig = Field(default_factory=EngineConfig)
    busy_slots: list[BusySlot] = Field(default_factory=list)
    sections: list[SectionInput] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_unique_sections(self) -> "GenerationInput":
        ids = [s.request.section_id for s in self.sections]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate section IDs: {duplicates}")
        return self

    def summary(self) -> dict[str, Any]:
        """Get a summary of the input snapshot."""
        return {
            "sections": len(self.sections),
            "subjects": sum(len(s.subjects) for s in self.sections),
            "required_periods": sum(
                r.periods_per_week for s in self.sections for r in s.subjects
            ),
            "working_days": len(self.calendar.working_days),
            "academic_slots_per_day": len(self.calendar.academic_slots),
            "busy_slots": len(self.busy_slots),
        }


# =============================================================================
# JSON Loading Helper
# =============================================================================

# Mapping fields whose keys are user data and must not be renamed.
_VERBATIM_KEY_FIELDS = {"room_capacities", "instructional_days"}


def load_generation_input(path: str) -> GenerationInput:
    """
    Load and validate a generation snapshot from a JSON file.

    Keys may be camelCase (as sent by the host backend) or snake_case.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If invalid JSON
        pydantic.ValidationError: If validation fails
    """
    import json
    from pathlib import Path

    with open(Path(path)) as f:
        data = json.load(f)

    return GenerationInput.model_validate(_convert_keys_to_snake_case(data))


def _to_snake_case(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


def _convert_keys_to_snake_case(obj: Any) -> Any:
    """Recursively convert dictionary keys from camelCase to snake_case."""
    if isinstance(obj, dict):
        converted = {}
        for key, value in obj.items():
            new_key = _to_snake_case(key)
            if new_key in _VERBATIM_KEY_FIELDS:
                converted[new_key] = value
            else:
                converted[new_key] = _convert_keys_to_snake_case(value)
        return converted
    elif isinstance(obj, list):
        return [_convert_keys_to_snake_case(item) for item in obj]
    else:
        return obj
