"""
Engine configuration: template generation rules, scoring weights and
search/concurrency limits.

The weights and backtracking depth are tunable defaults rather than fixed
law; hosts override them per institution through ``EngineConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator


MAX_SLOTS_PER_DAY = 12

# Subjects with at least this many periods a week favour reliable days
HEAVY_SUBJECT_PERIODS = 4


@dataclass
class ScoringWeights:
    """Configurable weights for preference scoring of candidate cells."""
    # Preference bonuses
    preferred_day: int = 50
    preferred_slot: int = 40
    consecutive: int = 60  # Adjacent slot already holds this subject
    spread_new_day: int = 40  # Subject has no placement on this day yet

    # Preference penalties
    avoid_day: int = 200
    avoid_slot: int = 150
    avoid_adjacent: int = 10  # Neighbouring slot is an avoided slot

    # Teacher workload penalties
    teacher_day_load: int = 10  # Per period the teacher already has that day
    teacher_overload: int = 100  # Teacher already at the daily limit
    teacher_consecutive_excess: int = 50  # Per hour over the consecutive limit

    # Day reliability penalties, scaled by the share of instructional days lost
    day_reliability: int = 100
    heavy_day_reliability: int = 150  # Extra for heavy subjects


class GenerationRules(BaseModel):
    """Template-level generation rules."""
    model_config = ConfigDict(extra="forbid")

    max_periods_per_subject_per_day: int = Field(default=2, ge=1, le=MAX_SLOTS_PER_DAY)
    max_periods_per_teacher_per_day: int = Field(default=6, ge=1, le=MAX_SLOTS_PER_DAY)
    max_consecutive_hours_teacher: int = Field(default=4, ge=0, le=MAX_SLOTS_PER_DAY)


class EngineConfig(BaseModel):
    """Tunable engine configuration."""
    model_config = ConfigDict(extra="forbid")

    backtrack_depth: int = Field(default=3, ge=0, le=20, description="Max placements undone per retry")
    room_capacities: dict[str, int] = Field(
        default_factory=dict,
        description="Rooms available per room type (default 1)",
    )
    lock_timeout_seconds: float = Field(default=1.0, gt=0, description="Shared grid lock timeout")
    capacity_probe: bool = Field(default=True, description="Explain shortfalls with a CP-SAT probe")
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    @field_validator("room_capacities")
    @classmethod
    def validate_capacities(cls, capacities: dict[str, int]) -> dict[str, int]:
        bad = {k: v for k, v in capacities.items() if v < 1}
        if bad:
            raise ValueError(f"room capacities must be >= 1: {bad}")
        return capacities

    def room_capacity(self, room_type: str) -> int:
        return self.room_capacities.get(room_type, 1)
