"""
Entry point for running the engine as a module.

Usage:
    python -m timetable_engine generate input.json -o report.json
    python -m timetable_engine validate input.json
    python -m timetable_engine view report.json --section sec-7a
"""

from timetable_engine.cli import main

if __name__ == "__main__":
    main()
