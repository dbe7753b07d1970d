"""Tests for CLI module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from timetable_engine.cli import app


runner = CliRunner()


@pytest.fixture
def minimal_input_data() -> dict:
    """Create minimal input data as a dictionary."""
    return {
        "calendar": {"workingDays": [1, 2, 3], "slotsPerDay": 4, "lunchSlot": 3},
        "sections": [
            {
                "request": {"sectionId": "sec-a", "sessionId": "2026"},
                "subjects": [
                    {"id": "cs1", "subjectId": "mat", "subjectName": "Maths",
                     "teacherId": "t1", "periodsPerWeek": 3, "maxPeriodsPerDay": 1},
                    {"id": "cs2", "subjectId": "eng", "subjectName": "English",
                     "teacherId": "t2", "periodsPerWeek": 2},
                ],
            },
            {
                "request": {"sectionId": "sec-b", "sessionId": "2026"},
                "subjects": [
                    {"id": "cs3", "subjectId": "mat", "subjectName": "Maths",
                     "teacherId": "t1", "periodsPerWeek": 3, "maxPeriodsPerDay": 1},
                ],
            },
        ],
    }


@pytest.fixture
def input_file(minimal_input_data, tmp_path) -> Path:
    """Create a temporary input file."""
    filepath = tmp_path / "input.json"
    with open(filepath, "w") as f:
        json.dump(minimal_input_data, f)
    return filepath


@pytest.fixture
def invalid_input_file(minimal_input_data, tmp_path) -> Path:
    """Input whose preferences do not fit the calendar."""
    minimal_input_data["sections"][0]["subjects"][0]["schedulingPreferences"] = {
        "fixedSlots": [{"day": 6, "slot": 1}],
    }
    filepath = tmp_path / "invalid.json"
    with open(filepath, "w") as f:
        json.dump(minimal_input_data, f)
    return filepath


class TestGenerateCommand:
    """Tests for the generate command."""

    def test_generate_writes_report(self, input_file, tmp_path):
        output = tmp_path / "out" / "report.json"
        result = runner.invoke(app, ["generate", str(input_file), "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert output.exists()
        data = json.loads(output.read_text())
        assert [s["sectionId"] for s in data["sections"]] == ["sec-a", "sec-b"]
        assert all(s["result"]["success"] for s in data["sections"])
        assert data["sections"][0]["result"]["slotsCreated"] == 5

    def test_generate_persists_sections(self, input_file, tmp_path):
        save_dir = tmp_path / "saved"
        result = runner.invoke(app, ["generate", str(input_file), "--save-dir", str(save_dir)])

        assert result.exit_code == 0, result.output
        assert (save_dir / "sec-a.json").exists()
        assert (save_dir / "sec-b.json").exists()

    def test_generate_invalid_preferences(self, invalid_input_file):
        result = runner.invoke(app, ["generate", str(invalid_input_file)])

        assert result.exit_code == 1
        assert "failed validation" in result.output
        assert "sections[0].subjects[0]" in result.output

    def test_generate_incomplete_exits_nonzero(self, minimal_input_data, tmp_path):
        minimal_input_data["sections"][0]["subjects"][0]["periodsPerWeek"] = 4
        filepath = tmp_path / "input.json"
        filepath.write_text(json.dumps(minimal_input_data))
        output = tmp_path / "report.json"

        result = runner.invoke(app, ["generate", str(filepath), "-o", str(output)])

        assert result.exit_code == 1
        assert output.exists()
        assert "could not be fully scheduled" in result.output

    def test_generate_missing_file(self, tmp_path):
        result = runner.invoke(app, ["generate", str(tmp_path / "missing.json")])
        assert result.exit_code != 0


class TestValidateCommand:
    """Tests for the validate command."""

    def test_valid_input(self, input_file):
        result = runner.invoke(app, ["validate", str(input_file)])

        assert result.exit_code == 0, result.output
        assert "Validation complete" in result.output
        assert "Sections" in result.output

    def test_invalid_json(self, tmp_path):
        filepath = tmp_path / "bad.json"
        filepath.write_text("{not json")

        result = runner.invoke(app, ["validate", str(filepath)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output

    def test_schema_error(self, tmp_path):
        filepath = tmp_path / "schema.json"
        filepath.write_text(json.dumps({"sections": []}))

        result = runner.invoke(app, ["validate", str(filepath)])

        assert result.exit_code == 1
        assert "Schema validation failed" in result.output

    def test_preference_error(self, invalid_input_file):
        result = runner.invoke(app, ["validate", str(invalid_input_file)])

        assert result.exit_code == 1
        assert "Section sec-a" in result.output
        assert "fixed_slots[0].day" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestViewCommand:
    """Tests for the view command."""

    @pytest.fixture
    def report_file(self, input_file, tmp_path) -> Path:
        output = tmp_path / "report.json"
        result = runner.invoke(app, ["generate", str(input_file), "-o", str(output)])
        assert result.exit_code == 0, result.output
        return output

    def test_overview(self, report_file):
        result = runner.invoke(app, ["view", str(report_file)])
        assert result.exit_code == 0, result.output
        assert "sec-a" in result.output
        assert "sec-b" in result.output

    def test_section_grid(self, report_file):
        result = runner.invoke(app, ["view", str(report_file), "--section", "sec-a"])
        assert result.exit_code == 0, result.output
        assert "Maths" in result.output
        assert "lunch" in result.output

    def test_plain_grid(self, report_file):
        result = runner.invoke(app, ["view", str(report_file), "-S", "sec-b", "--plain"])
        assert result.exit_code == 0, result.output
        assert "Maths" in result.output

    def test_unknown_section(self, report_file):
        result = runner.invoke(app, ["view", str(report_file), "--section", "sec-x"])
        assert result.exit_code == 1
        assert "not found" in result.output
