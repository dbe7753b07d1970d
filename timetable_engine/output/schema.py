"""
Output schema for generation results.

``GenerationResult`` is the contract returned to the host system. The section
grid travels beside it in ``SectionTimetable``; several sections generated in
one batch are collected in ``GenerationReport``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class SlotType(str, Enum):
    """Kind of a grid slot in the output."""
    REGULAR = "regular"
    BREAK = "break"
    LUNCH = "lunch"
    FREE = "free"


# =============================================================================
# Result
# =============================================================================

class GenerationResult(BaseModel):
    """Outcome of one section's generation run."""
    success: bool
    slots_created: int = Field(alias="slotsCreated", ge=0)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Grid
# =============================================================================

class GridSlotOutput(BaseModel):
    """A single (day, slot) cell of a section's week."""
    day: int
    day_name: str = Field(alias="dayName")
    slot: int
    slot_type: SlotType = Field(alias="slotType")
    start_time: str = Field(alias="startTime")  # 'HH:MM'
    end_time: str = Field(alias="endTime")  # 'HH:MM'

    # Set for regular slots holding a subject
    requirement_id: Optional[str] = Field(default=None, alias="requirementId")
    subject_id: Optional[str] = Field(default=None, alias="subjectId")
    subject_name: Optional[str] = Field(default=None, alias="subjectName")
    teacher_id: Optional[str] = Field(default=None, alias="teacherId")
    room_type: Optional[str] = Field(default=None, alias="roomType")

    model_config = {"populate_by_name": True}


class SubjectSummary(BaseModel):
    """Final placement state of one subject requirement."""
    requirement_id: str = Field(alias="requirementId")
    subject_id: str = Field(alias="subjectId")
    subject_name: str = Field(alias="subjectName")
    status: str
    placed: int
    required: int

    model_config = {"populate_by_name": True}


class SectionTimetable(BaseModel):
    """A section's generated week together with its result."""
    section_id: str = Field(alias="sectionId")
    session_id: str = Field(alias="sessionId")
    template_id: Optional[str] = Field(default=None, alias="templateId")
    result: GenerationResult
    slots: list[GridSlotOutput] = Field(default_factory=list)
    subjects: list[SubjectSummary] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def scheduled_slots(self) -> list[GridSlotOutput]:
        """Slots holding a subject."""
        return [s for s in self.slots if s.subject_id is not None]

    def slot_at(self, day: int, slot: int) -> Optional[GridSlotOutput]:
        for entry in self.slots:
            if entry.day == day and entry.slot == slot:
                return entry
        return None

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)


# =============================================================================
# Batch Report
# =============================================================================

class GenerationReport(BaseModel):
    """Results of a batch of sections generated against one shared snapshot."""
    sections: list[SectionTimetable] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @property
    def success(self) -> bool:
        return bool(self.sections) and all(s.result.success for s in self.sections)

    @property
    def slots_created(self) -> int:
        return sum(s.result.slots_created for s in self.sections)

    def section(self, section_id: str) -> Optional[SectionTimetable]:
        for timetable in self.sections:
            if timetable.section_id == section_id:
                return timetable
        return None

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(by_alias=True, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return self.model_dump(by_alias=True)
