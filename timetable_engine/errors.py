"""Error taxonomy for timetable generation.

Only ``ValidationError`` ever escapes a generation run. The other errors are
raised and caught inside the engine, then surfaced as entries in the
``GenerationResult`` diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""
    pass


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation message."""
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationError(EngineError):
    """Malformed request or scheduling preferences. Fatal to the whole run."""

    def __init__(self, errors: list[FieldError]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Scheduling preferences failed validation:\n{lines}")


class ConstraintConflictError(EngineError):
    """A fixed slot could not be honored because of a clash."""

    def __init__(
        self,
        subject_name: str,
        day: int,
        slot: int,
        reason: str,
    ):
        self.subject_name = subject_name
        self.day = day
        self.slot = slot
        self.reason = reason
        super().__init__(reason)


class InfeasibleError(EngineError):
    """A subject's weekly periods cannot be met, even after backtracking."""

    def __init__(self, subject_name: str, placed: int, required: int, reason: str):
        self.subject_name = subject_name
        self.placed = placed
        self.required = required
        self.reason = reason
        super().__init__(reason)


class CancelledError(EngineError):
    """Cooperative cancellation observed between subjects."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "run cancelled")
