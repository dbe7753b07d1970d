"""
Constraint handling for the placement scheduler.

Normalization turns raw scheduling preferences into calendar-resolved sets;
scoring ranks candidate cells by those preferences.
"""

from .normalizer import (
    DEFAULT_PRIORITY,
    NormalizationResult,
    NormalizedPreferences,
    NormalizedRequirement,
    normalize_preferences,
    normalize_requirement,
    normalize_requirements,
    resolve_slot_position,
)
from .scoring import (
    consecutive_run,
    score_cell,
    soft_violations,
)

__all__ = [
    # Normalizer
    "DEFAULT_PRIORITY",
    "NormalizationResult",
    "NormalizedPreferences",
    "NormalizedRequirement",
    "normalize_preferences",
    "normalize_requirement",
    "normalize_requirements",
    "resolve_slot_position",
    # Scoring
    "consecutive_run",
    "score_cell",
    "soft_violations",
]
