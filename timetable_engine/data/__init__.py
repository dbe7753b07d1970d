"""Request models and input loading."""

from .models import (
    Day,
    SlotPosition,
    DAY_NAMES,
    WorkingCalendar,
    FixedSlot,
    SchedulingPreferences,
    SubjectRequirement,
    GenerateTimetableRequest,
    BusySlot,
    SectionInput,
    GenerationInput,
    load_generation_input,
    day_name,
    format_cell,
)

__all__ = [
    "Day",
    "SlotPosition",
    "DAY_NAMES",
    "WorkingCalendar",
    "FixedSlot",
    "SchedulingPreferences",
    "SubjectRequirement",
    "GenerateTimetableRequest",
    "BusySlot",
    "SectionInput",
    "GenerationInput",
    "load_generation_input",
    "day_name",
    "format_cell",
]
