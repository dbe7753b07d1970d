"""
Console formatters for generated timetables.

- Week grid: one row per slot, one column per working day
- Subject table: per-subject placement status
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from .schema import GenerationReport, SectionTimetable, SlotType


DAY_ABBREV = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

STATUS_STYLES = {
    "PLACED": "green",
    "PARTIAL": "yellow",
    "FAILED": "red",
}


# =============================================================================
# Week Grid
# =============================================================================

class WeekGridFormatter:
    """Formats a section timetable as a week grid."""

    def __init__(self, use_colors: bool = True, width: int = 120):
        """
        Initialize week grid formatter.

        Args:
            use_colors: Render with rich markup; plain text otherwise
            width: Console width used when rendering
        """
        self.use_colors = use_colors
        self.width = width

    def format(self, timetable: SectionTimetable) -> str:
        if self.use_colors:
            return self._format_rich(timetable)
        return self._format_plain(timetable)

    @staticmethod
    def _layout(timetable: SectionTimetable) -> tuple[list[int], list[int]]:
        days = sorted({s.day for s in timetable.slots})
        slots = sorted({s.slot for s in timetable.slots})
        return days, slots

    @staticmethod
    def _label(timetable: SectionTimetable, day: int, slot: int) -> str:
        entry = timetable.slot_at(day, slot)
        if entry is None or entry.slot_type is SlotType.FREE:
            return "-"
        if entry.slot_type in (SlotType.BREAK, SlotType.LUNCH):
            return entry.slot_type.value
        return entry.subject_name or entry.subject_id or "?"

    def _format_plain(self, timetable: SectionTimetable) -> str:
        lines = []
        days, slots = self._layout(timetable)

        col = 16
        header = "Slot".ljust(14)
        for day in days:
            header += DAY_ABBREV[day].center(col)
        lines.append(header)
        lines.append("-" * (14 + len(days) * col))

        for slot in slots:
            first = timetable.slot_at(days[0], slot) if days else None
            label = f"P{slot} {first.start_time}" if first else f"P{slot}"
            row = label.ljust(14)
            for day in days:
                row += self._label(timetable, day, slot)[:col - 2].center(col)
            lines.append(row)

        return "\n".join(lines)

    def _format_rich(self, timetable: SectionTimetable) -> str:
        console = Console(record=True, width=self.width)
        console.print(self.build_table(timetable))
        return console.export_text()

    def build_table(self, timetable: SectionTimetable) -> Table:
        """Rich table for a section's week."""
        days, slots = self._layout(timetable)

        table = Table(
            title=f"Section {timetable.section_id}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Slot", style="dim")
        for day in days:
            table.add_column(DAY_ABBREV[day], justify="center")

        for slot in slots:
            first = timetable.slot_at(days[0], slot) if days else None
            row = [f"P{slot} {first.start_time}-{first.end_time}" if first else f"P{slot}"]
            for day in days:
                entry = timetable.slot_at(day, slot)
                label = self._label(timetable, day, slot)
                if entry is not None and entry.slot_type is SlotType.REGULAR:
                    teacher = f"\n[dim]{entry.teacher_id}[/dim]" if entry.teacher_id else ""
                    row.append(f"[bold]{label}[/bold]{teacher}")
                else:
                    row.append(f"[dim]{label}[/dim]")
            table.add_row(*row)

        return table


def format_week_grid(timetable: SectionTimetable, use_colors: bool = True) -> str:
    """Format a section timetable as a week grid."""
    return WeekGridFormatter(use_colors=use_colors).format(timetable)


# =============================================================================
# Summaries
# =============================================================================

def build_subject_table(timetable: SectionTimetable) -> Table:
    """Per-subject placement status for one section."""
    table = Table(title="Subjects", show_header=True, header_style="bold")
    table.add_column("Subject", style="cyan")
    table.add_column("Placed", justify="right")
    table.add_column("Status")

    for subject in timetable.subjects:
        style = STATUS_STYLES.get(subject.status, "white")
        table.add_row(
            subject.subject_name,
            f"{subject.placed}/{subject.required}",
            f"[{style}]{subject.status}[/{style}]",
        )
    return table


def build_report_table(report: GenerationReport) -> Table:
    """One row per section of a batch report."""
    table = Table(title="Sections", show_header=True, header_style="bold cyan")
    table.add_column("Section", style="cyan")
    table.add_column("Success")
    table.add_column("Slots", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Errors", justify="right")

    for timetable in report.sections:
        result = timetable.result
        table.add_row(
            timetable.section_id,
            "[green]yes[/green]" if result.success else "[red]no[/red]",
            str(result.slots_created),
            str(len(result.warnings)),
            str(len(result.errors)),
        )
    return table
