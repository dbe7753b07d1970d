"""
Command-line interface for the timetable generation engine.

Usage:
    python -m timetable_engine generate input.json -o report.json
    python -m timetable_engine validate input.json
    python -m timetable_engine view report.json --section sec-7a
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError as SchemaValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .data.models import GenerationInput, load_generation_input
from .engine import TimetableEngine, generate_all
from .errors import FieldError, ValidationError
from .log import setup_logging
from .output.formatters import WeekGridFormatter, build_report_table, build_subject_table
from .output.reporter import JsonFileSink
from .output.schema import GenerationReport, SectionTimetable

# Create Typer app
app = typer.Typer(
    name="timetable-engine",
    help="Weekly timetable generation for school class-sections.",
    add_completion=False,
)

# Rich console for pretty output
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================

def load_input(input_path: Path) -> GenerationInput:
    """Load and validate input data."""
    if not input_path.exists():
        console.print(f"[red]Error:[/red] Input file not found: {input_path}")
        raise typer.Exit(code=1)

    try:
        return load_generation_input(str(input_path))
    except (json.JSONDecodeError, SchemaValidationError) as e:
        console.print(f"[red]Error loading input:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


def load_report(report_path: Path) -> GenerationReport:
    """Load a generation report JSON file."""
    if not report_path.exists():
        console.print(f"[red]Error:[/red] Report file not found: {report_path}")
        raise typer.Exit(code=1)

    try:
        with open(report_path) as f:
            data = json.load(f)
        return GenerationReport.model_validate(data)
    except (json.JSONDecodeError, SchemaValidationError) as e:
        console.print(f"[red]Error loading report:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


def print_field_errors(errors: list[FieldError]) -> None:
    for error in errors:
        console.print(f"   [red]-[/red] [cyan]{error.field}[/cyan]: {error.message}")


def print_section_result(timetable: SectionTimetable) -> None:
    """Print one section's result panel and diagnostics."""
    result = timetable.result
    status_color = "green" if result.success else ("yellow" if result.slots_created else "red")
    status_text = Text("SUCCESS" if result.success else "INCOMPLETE", style=f"bold {status_color}")

    console.print(Panel(
        status_text,
        title=f"Section {timetable.section_id}",
        subtitle=f"{result.slots_created} slots created",
    ))

    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
    for error in result.errors:
        console.print(f"[red]error:[/red] {escape(error)}")


# =============================================================================
# Commands
# =============================================================================

@app.command()
def generate(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON snapshot (calendar, rules, sections)",
        exists=True,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Path to write the generation report JSON",
    ),
    save_dir: Optional[Path] = typer.Option(
        None,
        "--save-dir", "-s",
        help="Directory to persist one timetable JSON per section",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers", "-w",
        help="Sections generated concurrently (default: executor default)",
        min=1,
    ),
    backtrack_depth: Optional[int] = typer.Option(
        None,
        "--backtrack-depth", "-k",
        help="Override the number of placements undone per retry",
        min=0,
        max=20,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
) -> None:
    """
    Generate timetables for every section in the input snapshot.

    Example:
        python -m timetable_engine generate input.json -o report.json
    """
    setup_logging(verbose)
    console.print(f"\n[bold]Loading input from:[/bold] {input_file}")

    input_data = load_input(input_file)
    if backtrack_depth is not None:
        input_data.config.backtrack_depth = backtrack_depth

    summary = input_data.summary()
    console.print(
        f"[green]Loaded:[/green] {summary['sections']} sections, "
        f"{summary['subjects']} subjects, {summary['busy_slots']} busy slots"
    )

    sink = JsonFileSink(save_dir) if save_dir else None
    try:
        report = generate_all(input_data, max_workers=workers, sink=sink)
    except ValidationError as e:
        console.print("\n[red]Scheduling preferences failed validation:[/red]")
        print_field_errors(e.errors)
        raise typer.Exit(code=1)

    console.print()
    for timetable in report.sections:
        print_section_result(timetable)
    console.print(build_report_table(report))
    for warning in report.warnings:
        console.print(f"[red]invariant:[/red] {escape(warning)}")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            f.write(report.to_json())
        console.print(f"\n[green]Report saved to:[/green] {output}")

    if not report.success:
        console.print("\n[red]Some subjects could not be fully scheduled.[/red]")
        raise typer.Exit(code=1)

    console.print()


@app.command()
def validate(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON file to validate",
    ),
) -> None:
    """
    Validate an input snapshot without generating.

    Checks for:
    - Valid JSON structure
    - Schema compliance
    - Scheduling preferences against the working calendar
    - Weekly capacity

    Example:
        python -m timetable_engine validate input.json
    """
    console.print(f"\n[bold]Validating:[/bold] {input_file}\n")

    if not input_file.exists():
        console.print(f"[red]Error:[/red] File not found: {input_file}")
        raise typer.Exit(code=1)

    # Step 1: JSON parsing
    console.print("[cyan]1. Checking JSON syntax...[/cyan]")
    try:
        with open(input_file) as f:
            json.load(f)
        console.print("   [green]JSON syntax is valid[/green]")
    except json.JSONDecodeError as e:
        console.print(f"   [red]Invalid JSON:[/red] {e}")
        raise typer.Exit(code=1)

    # Step 2: Schema validation
    console.print("[cyan]2. Validating against schema...[/cyan]")
    try:
        input_data = load_generation_input(str(input_file))
        console.print("   [green]Schema validation passed[/green]")
    except SchemaValidationError as e:
        console.print("   [red]Schema validation failed:[/red]")
        for line in str(e).split("\n"):
            console.print(f"   {escape(line)}")
        raise typer.Exit(code=1)

    # Step 3: Preferences against the calendar
    console.print("[cyan]3. Normalizing scheduling preferences...[/cyan]")
    engine = TimetableEngine(input_data.calendar, input_data.rules, input_data.config)
    failed = False
    warnings = []
    for section in input_data.sections:
        run = engine.prepare(section)
        try:
            engine.normalize(run)
        except ValidationError as e:
            failed = True
            console.print(f"   [red]Section {section.request.section_id}:[/red]")
            print_field_errors(e.errors)
            continue
        warnings.extend(f"Section {run.section_id}: {w}" for w in run.warnings)

    if failed:
        raise typer.Exit(code=1)
    console.print("   [green]Preferences are consistent with the calendar[/green]")

    if warnings:
        console.print("   [yellow]Warnings found:[/yellow]")
        for w in warnings:
            console.print(f"   - {escape(w)}")

    # Summary
    summary = input_data.summary()
    console.print("\n[bold]Summary:[/bold]")
    table = Table(show_header=False, box=None)
    table.add_column("Entity", style="cyan")
    table.add_column("Count", style="white")

    table.add_row("Sections", str(summary["sections"]))
    table.add_row("Subjects", str(summary["subjects"]))
    table.add_row("Required periods", str(summary["required_periods"]))
    table.add_row("Working days", str(summary["working_days"]))
    table.add_row("Academic slots per day", str(summary["academic_slots_per_day"]))
    table.add_row("Busy slots", str(summary["busy_slots"]))

    console.print(table)
    console.print("\n[green]Validation complete.[/green]\n")


@app.command()
def view(
    report_file: Path = typer.Argument(
        ...,
        help="Path to generation report JSON file",
        exists=True,
    ),
    section: Optional[str] = typer.Option(
        None,
        "--section", "-S",
        help="Show the week grid for a specific section ID",
    ),
    plain: bool = typer.Option(
        False,
        "--plain",
        help="Plain text grid without colors",
    ),
) -> None:
    """
    Display a generated report.

    Examples:
        python -m timetable_engine view report.json
        python -m timetable_engine view report.json --section sec-7a
    """
    report = load_report(report_file)

    if section is None:
        console.print(build_report_table(report))
        return

    timetable = report.section(section)
    if timetable is None:
        console.print(f"[red]Error:[/red] Section '{section}' not found")
        console.print(f"Available sections: {', '.join(s.section_id for s in report.sections)}")
        raise typer.Exit(code=1)

    print_section_result(timetable)
    if plain:
        console.print(WeekGridFormatter(use_colors=False).format(timetable), markup=False)
    else:
        console.print(WeekGridFormatter().build_table(timetable))
    console.print(build_subject_table(timetable))


# =============================================================================
# Entry Point
# =============================================================================

def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
