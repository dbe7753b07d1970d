"""Timetable generation engine - greedy, preference-scored weekly scheduling."""

from .config import EngineConfig, GenerationRules, ScoringWeights
from .engine import (
    GenerationRun,
    RunState,
    TimetableEngine,
    generate_all,
    generate_timetable,
    verify_invariants,
)
from .errors import (
    CancelledError,
    ConstraintConflictError,
    EngineError,
    FieldError,
    InfeasibleError,
    ValidationError,
)
from .placement import CancellationToken, SubjectStatus
from .cli import app as cli_app

__all__ = [
    # Configuration
    "EngineConfig",
    "GenerationRules",
    "ScoringWeights",
    # Engine
    "GenerationRun",
    "RunState",
    "TimetableEngine",
    "generate_all",
    "generate_timetable",
    "verify_invariants",
    "CancellationToken",
    "SubjectStatus",
    # Errors
    "CancelledError",
    "ConstraintConflictError",
    "EngineError",
    "FieldError",
    "InfeasibleError",
    "ValidationError",
    # CLI
    "cli_app",
]
