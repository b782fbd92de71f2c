"""Data models for the insights persistence layer.

Health records are the raw input; correlations, prediction records and
micro-moments are produced by the insight engines and stored alongside them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Category(str, Enum):
    """Primary data type of a health record."""

    SLEEP = "sleep"
    ACTIVITY = "activity"
    MOOD = "mood"
    NUTRITION = "nutrition"
    BIOMETRIC = "biometric"


class Significance(str, Enum):
    """Coarse bucket of |r|. Not a p-value."""

    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"
    VERY_STRONG = "very-strong"

    @property
    def rank(self) -> int:
        return _SIGNIFICANCE_RANK[self]


_SIGNIFICANCE_RANK = {
    Significance.WEAK: 0,
    Significance.MODERATE: 1,
    Significance.STRONG: 2,
    Significance.VERY_STRONG: 3,
}


class Direction(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class ValidationStatus(str, Enum):
    """Review state of a discovered correlation."""

    DISCOVERED = "discovered"
    VALIDATING = "validating"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class PredictionType(str, Enum):
    ENERGY = "energy"
    MOOD = "mood"
    SLEEP_QUALITY = "sleep-quality"
    PRODUCTIVITY = "productivity"
    HEALTH_SCORE = "health-score"


class Horizon(str, Enum):
    ONE_DAY = "1-day"
    ONE_WEEK = "1-week"

    @property
    def days(self) -> int:
        return 1 if self is Horizon.ONE_DAY else 7


class MomentType(str, Enum):
    """Catalog of micro-moment interventions."""

    HYDRATION_REMINDER = "hydration-reminder"
    MOVEMENT_BREAK = "movement-break"
    BREATHING_EXERCISE = "breathing-exercise"
    POSTURE_CHECK = "posture-check"
    ENERGY_BOOST = "energy-boost"
    MOOD_CHECK = "mood-check"
    SLEEP_PREPARATION = "sleep-preparation"
    NUTRITION_TIMING = "nutrition-timing"
    STRESS_RELIEF = "stress-relief"
    FOCUS_ENHANCEMENT = "focus-enhancement"


class MomentState(str, Enum):
    """Lifecycle of a micro-moment.

    The scheduler only creates ``scheduled`` moments; every later state is
    written by the delivery/response pipeline.
    """

    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    IGNORED = "ignored"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


MOMENT_TRANSITIONS: dict[MomentState, frozenset[MomentState]] = {
    MomentState.SCHEDULED: frozenset({MomentState.DELIVERED}),
    MomentState.DELIVERED: frozenset({MomentState.ACKNOWLEDGED, MomentState.IGNORED}),
    MomentState.ACKNOWLEDGED: frozenset({MomentState.COMPLETED, MomentState.DISMISSED}),
    MomentState.IGNORED: frozenset({MomentState.DISMISSED}),
    MomentState.COMPLETED: frozenset(),
    MomentState.DISMISSED: frozenset(),
}


# ---------------------------------------------------------------------------
# Health records
# ---------------------------------------------------------------------------

@dataclass
class SleepData:
    duration: float | None = None       # hours
    quality: float | None = None        # 1-10
    efficiency: float | None = None     # percentage
    deep_sleep: float | None = None     # hours
    rem_sleep: float | None = None      # hours
    restlessness: float | None = None   # 1-10


@dataclass
class ActivityData:
    steps: float | None = None
    distance: float | None = None       # km
    calories: float | None = None
    active_minutes: float | None = None
    exercise_duration: float | None = None  # minutes
    exercise_type: str | None = None
    intensity: str | None = None        # 'low' | 'moderate' | 'high'


@dataclass
class MoodData:
    overall: float | None = None        # 1-10
    energy: float | None = None
    stress: float | None = None
    anxiety: float | None = None
    happiness: float | None = None
    focus: float | None = None
    notes: str | None = None


@dataclass
class NutritionData:
    calories: float | None = None
    protein: float | None = None        # grams
    carbs: float | None = None
    fat: float | None = None
    fiber: float | None = None
    water: float | None = None          # liters


@dataclass
class BiometricData:
    weight: float | None = None         # kg
    body_fat: float | None = None       # percentage
    muscle_mass: float | None = None    # kg
    resting_heart_rate: float | None = None
    systolic_bp: float | None = None
    diastolic_bp: float | None = None
    temperature: float | None = None    # celsius
    oxygen_saturation: float | None = None


_SECTION_TYPES: dict[Category, type] = {
    Category.SLEEP: SleepData,
    Category.ACTIVITY: ActivityData,
    Category.MOOD: MoodData,
    Category.NUTRITION: NutritionData,
    Category.BIOMETRIC: BiometricData,
}


@dataclass
class HealthRecord:
    """One data capture for a user at a timestamp.

    ``category`` tags the primary data type; a device-sync daily summary may
    also fill other sections. Records are immutable once written: corrections
    are stored as new records.
    """

    id: str
    user_id: str
    timestamp: datetime
    category: Category
    source: str = "manual"  # 'manual', 'fitbit', 'google-fit', 'apple-health', 'oura', 'system'

    sleep: SleepData | None = None
    activity: ActivityData | None = None
    mood: MoodData | None = None
    nutrition: NutritionData | None = None
    biometric: BiometricData | None = None

    created_at: str = ""

    def section(self, category: Category) -> Any:
        """Return the section dataclass for ``category`` (or None)."""
        return getattr(self, category.value)

    def to_payload(self) -> dict[str, Any]:
        """Section data as a JSON-serializable dict (absent sections omitted)."""
        payload: dict[str, Any] = {}
        for category in Category:
            section = self.section(category)
            if section is not None:
                payload[category.value] = {
                    k: v for k, v in dataclasses.asdict(section).items() if v is not None
                }
        return payload

    @staticmethod
    def sections_from_payload(payload: dict[str, Any] | None) -> dict[str, Any]:
        """Rebuild section dataclasses from a stored payload.

        Unknown keys are dropped. Values are not type-checked here: a malformed
        value survives loading and is treated as absent at extraction time.
        """
        sections: dict[str, Any] = {}
        for category, section_type in _SECTION_TYPES.items():
            raw = (payload or {}).get(category.value)
            if not isinstance(raw, dict):
                continue
            names = {f.name for f in dataclasses.fields(section_type)}
            sections[category.value] = section_type(
                **{k: v for k, v in raw.items() if k in names}
            )
        return sections


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@dataclass
class PreferredTimeWindow:
    """User-configured delivery window, e.g. start="09:00", end="11:00"."""

    start: str
    end: str


@dataclass
class UserProfile:
    user_id: str
    first_name: str | None = None
    timezone: str = "UTC"
    location: str | None = None
    preferred_time_windows: list[PreferredTimeWindow] = field(default_factory=list)
    created_at: str = ""


@dataclass
class WeatherContext:
    temperature: float | None = None
    condition: str | None = None


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------

@dataclass
class Correlation:
    """A discovered relationship between two factors for one user.

    Identity key is (user_id, primary_factor, secondary_factor).
    """

    user_id: str
    primary_factor: str
    secondary_factor: str
    strength: float
    confidence: float
    significance: Significance
    direction: Direction
    data_point_count: int
    computed_at: datetime
    id: str = ""
    method: str = "pearson"
    algorithm: str = "correlation-engine-v1.0"
    time_range_start: datetime | None = None
    time_range_end: datetime | None = None
    validation_status: ValidationStatus = ValidationStatus.DISCOVERED

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.user_id, self.primary_factor, self.secondary_factor)

    def to_dict(self) -> dict[str, Any]:
        return to_json_dict(self)


@dataclass
class CorrelationInsight:
    correlation_id: str
    primary_factor: str
    secondary_factor: str
    description: str
    recommendation: str
    potential_impact: str  # 'low' | 'medium' | 'high'
    actionable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return to_json_dict(self)


@dataclass
class ActionableInsight:
    action: str
    expected_impact: float
    confidence: float


@dataclass
class PredictionValidation:
    actual_value: float
    actual_date: datetime
    accuracy: float
    validated: bool = True


@dataclass
class PredictionRecord:
    """A forecast for one user, one prediction type and one horizon.

    Append-only: each analysis run inserts fresh records.
    """

    user_id: str
    prediction_type: PredictionType
    horizon: Horizon
    target_date: datetime
    value: float
    confidence: float
    range_min: float
    range_max: float
    id: str = ""
    primary_factors: list[str] = field(default_factory=list)
    weights: dict[str, float] = field(default_factory=dict)
    correlations_used: list[str] = field(default_factory=list)
    algorithm: str = ""
    model_version: str = "1.0"
    model_accuracy: float = 0.0
    training_start: datetime | None = None
    training_end: datetime | None = None
    training_data_points: int = 0
    actionable_insights: list[ActionableInsight] = field(default_factory=list)
    validation: PredictionValidation | None = None
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return to_json_dict(self)


@dataclass
class MomentContent:
    title: str
    message: str
    action_required: str
    duration_seconds: int
    difficulty: str  # 'easy' | 'medium' | 'challenging'


@dataclass
class MicroMoment:
    """A scheduled, personalized intervention."""

    user_id: str
    type: MomentType
    scheduled_for: datetime
    window_start: datetime
    window_end: datetime
    ai_confidence: float
    content: MomentContent
    id: str = ""
    based_on_correlations: list[str] = field(default_factory=list)
    context_factors: list[str] = field(default_factory=list)
    user_behavior_pattern: str = ""
    health_snapshot: dict[str, Any] = field(default_factory=dict)
    state: MomentState = MomentState.SCHEDULED

    # Written by the delivery/response pipeline
    delivered_at: datetime | None = None
    channel: str | None = None  # 'push' | 'email' | 'sms' | 'in-app'
    acknowledged_at: datetime | None = None
    completed_at: datetime | None = None
    rating: int | None = None
    feedback: str | None = None
    created_at: str = ""

    @property
    def delivered(self) -> bool:
        return self.delivered_at is not None

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def to_dict(self) -> dict[str, Any]:
        return to_json_dict(self)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_json_dict(obj: Any) -> dict[str, Any]:
    """Convert a model dataclass to a JSON-serializable dict."""
    return _jsonable(dataclasses.asdict(obj))
