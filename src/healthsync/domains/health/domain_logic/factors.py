"""Factor catalog: the scalar health attributes the engines correlate.

Each ``Factor`` is bound to an explicit accessor over the record sections, so
an unknown path is a NameError at import time rather than a silent miss.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from enum import Enum
from itertools import combinations
from typing import Any

from healthsync.core.storage.models import HealthRecord


class Factor(str, Enum):
    """The fixed 14-entry catalog, in canonical (pairing) order."""

    SLEEP_DURATION = "sleep.duration"
    SLEEP_QUALITY = "sleep.quality"
    SLEEP_EFFICIENCY = "sleep.efficiency"
    ACTIVITY_STEPS = "activity.steps"
    ACTIVITY_ACTIVE_MINUTES = "activity.activeMinutes"
    ACTIVITY_CALORIES = "activity.calories"
    MOOD_OVERALL = "mood.overall"
    MOOD_ENERGY = "mood.energy"
    MOOD_STRESS = "mood.stress"
    NUTRITION_CALORIES = "nutrition.calories"
    NUTRITION_PROTEIN = "nutrition.protein"
    NUTRITION_WATER = "nutrition.water"
    BIOMETRIC_WEIGHT = "biometric.weight"
    BIOMETRIC_RESTING_HEART_RATE = "biometric.restingHeartRate"


FACTOR_CATALOG: tuple[Factor, ...] = tuple(Factor)


def numeric_value(value: Any) -> float | None:
    """Return ``value`` as a float if it is a finite real number, else None.

    Booleans, strings and NaN/inf count as absent (a malformed value is never
    an error).
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _section_field(section: str, attribute: str) -> Callable[[HealthRecord], Any]:
    def accessor(record: HealthRecord) -> Any:
        data = getattr(record, section)
        return None if data is None else getattr(data, attribute, None)

    return accessor


_ACCESSORS: dict[Factor, Callable[[HealthRecord], Any]] = {
    Factor.SLEEP_DURATION: _section_field("sleep", "duration"),
    Factor.SLEEP_QUALITY: _section_field("sleep", "quality"),
    Factor.SLEEP_EFFICIENCY: _section_field("sleep", "efficiency"),
    Factor.ACTIVITY_STEPS: _section_field("activity", "steps"),
    Factor.ACTIVITY_ACTIVE_MINUTES: _section_field("activity", "active_minutes"),
    Factor.ACTIVITY_CALORIES: _section_field("activity", "calories"),
    Factor.MOOD_OVERALL: _section_field("mood", "overall"),
    Factor.MOOD_ENERGY: _section_field("mood", "energy"),
    Factor.MOOD_STRESS: _section_field("mood", "stress"),
    Factor.NUTRITION_CALORIES: _section_field("nutrition", "calories"),
    Factor.NUTRITION_PROTEIN: _section_field("nutrition", "protein"),
    Factor.NUTRITION_WATER: _section_field("nutrition", "water"),
    Factor.BIOMETRIC_WEIGHT: _section_field("biometric", "weight"),
    Factor.BIOMETRIC_RESTING_HEART_RATE: _section_field("biometric", "resting_heart_rate"),
}


def extract_factor(record: HealthRecord, factor: Factor) -> float | None:
    """Scalar value of ``factor`` in ``record``, or None if absent/malformed."""
    return numeric_value(_ACCESSORS[factor](record))


def factor_pairs() -> list[tuple[Factor, Factor]]:
    """All unordered pairs, primary preceding secondary in catalog order (91)."""
    return list(combinations(FACTOR_CATALOG, 2))


def paired_series(
    records: list[HealthRecord], primary: Factor, secondary: Factor
) -> tuple[list[float], list[float]]:
    """Values of both factors over the records where both are present."""
    xs: list[float] = []
    ys: list[float] = []
    for record in records:
        x = extract_factor(record, primary)
        if x is None:
            continue
        y = extract_factor(record, secondary)
        if y is None:
            continue
        xs.append(x)
        ys.append(y)
    return xs, ys
