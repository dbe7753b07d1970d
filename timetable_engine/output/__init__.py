"""Generation result output: schema, reporting and console views."""

from .schema import (
    SlotType,
    GenerationResult,
    GridSlotOutput,
    SubjectSummary,
    SectionTimetable,
    GenerationReport,
)
from .reporter import (
    TimetableSink,
    JsonFileSink,
    ResultReporter,
)
from .formatters import (
    WeekGridFormatter,
    format_week_grid,
    build_subject_table,
    build_report_table,
    DAY_ABBREV,
)

__all__ = [
    # Schema models
    "SlotType",
    "GenerationResult",
    "GridSlotOutput",
    "SubjectSummary",
    "SectionTimetable",
    "GenerationReport",
    # Reporting
    "TimetableSink",
    "JsonFileSink",
    "ResultReporter",
    # Console views
    "WeekGridFormatter",
    "format_week_grid",
    "build_subject_table",
    "build_report_table",
    "DAY_ABBREV",
]
