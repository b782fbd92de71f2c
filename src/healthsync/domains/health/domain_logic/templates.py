"""Static text tables for insights, recommendations, prediction actions and
micro-moment content.

Every table is keyed by an enum so a missing entry shows up in the tests over
the enum rather than as a silently ignored string key. Lookups that are
allowed to miss (insight templates, recommendations, moment content) have a
single documented fallback.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from healthsync.core.storage.models import Direction, MomentContent, MomentType, PredictionType
from healthsync.domains.health.domain_logic.factors import Factor
from healthsync.domains.health.domain_logic.numeric import round_half_up


# ---------------------------------------------------------------------------
# Correlation insights
# ---------------------------------------------------------------------------

class InsightTemplate(Enum):
    """Curated factor pairs that have a human-readable insight.

    Values are canonical (primary, secondary) pairs in catalog order. Any
    other pair yields no insight.
    """

    SLEEP_DURATION_ENERGY = (Factor.SLEEP_DURATION, Factor.MOOD_ENERGY)
    STEPS_MOOD = (Factor.ACTIVITY_STEPS, Factor.MOOD_OVERALL)
    HYDRATION_ENERGY = (Factor.MOOD_ENERGY, Factor.NUTRITION_WATER)

    @classmethod
    def for_pair(cls, primary: str, secondary: str) -> InsightTemplate | None:
        return _TEMPLATE_BY_KEY.get((primary, secondary))

    def render(self, strength: float, direction: Direction) -> str:
        positive, negative = _INSIGHT_TEXT[self]
        if direction is Direction.NEGATIVE:
            return negative
        return positive(strength)


_TEMPLATE_BY_KEY: dict[tuple[str, str], InsightTemplate] = {
    (t.value[0].value, t.value[1].value): t for t in InsightTemplate
}

_INSIGHT_TEXT: dict[InsightTemplate, tuple[Callable[[float], str], str]] = {
    InsightTemplate.SLEEP_DURATION_ENERGY: (
        lambda s: (
            "Your sleep duration strongly correlates with your energy levels. "
            "Getting adequate sleep could boost your daily energy by up to "
            f"{round_half_up(s * 30)}%."
        ),
        "Longer sleep appears to decrease your energy levels. "
        "You might benefit from shorter, higher-quality sleep.",
    ),
    InsightTemplate.STEPS_MOOD: (
        lambda s: (
            "Your daily steps have a strong positive impact on your mood. "
            f"Aim for {round_half_up(8000 + s * 2000)} steps for optimal mood."
        ),
        "Excessive activity might be impacting your mood negatively. "
        "Consider balanced, moderate exercise.",
    ),
    InsightTemplate.HYDRATION_ENERGY: (
        lambda s: (
            "Hydration significantly affects your energy. "
            f"Drinking {round_half_up(2 + s)} liters daily could improve energy levels."
        ),
        "Overhydration might be affecting your energy. "
        "Find your optimal water intake balance.",
    ),
}


DEFAULT_RECOMMENDATION = "Monitor this pattern and adjust accordingly."

_RECOMMENDATIONS: dict[Factor, dict[Direction, str]] = {
    Factor.SLEEP_DURATION: {
        Direction.POSITIVE: "Maintain consistent sleep schedule of 7-9 hours for optimal health benefits.",
        Direction.NEGATIVE: "Focus on sleep quality over quantity. Try shorter, more restful sleep cycles.",
    },
    Factor.ACTIVITY_STEPS: {
        Direction.POSITIVE: "Gradually increase daily steps by 500-1000 to enhance mood and energy.",
        Direction.NEGATIVE: "Balance activity with adequate rest. Consider lower-impact exercises.",
    },
    Factor.NUTRITION_WATER: {
        Direction.POSITIVE: "Set hourly hydration reminders to maintain optimal water intake.",
        Direction.NEGATIVE: "Monitor hydration levels and adjust based on activity and climate.",
    },
}


def recommendation_for(primary_factor: str, direction: Direction) -> str:
    """Recommendation keyed by the primary factor, or the generic fallback."""
    for factor, texts in _RECOMMENDATIONS.items():
        if factor.value == primary_factor:
            return texts[direction]
    return DEFAULT_RECOMMENDATION


def potential_impact(strength: float) -> str:
    """Impact bucket on the signed strength: negative correlations rate low."""
    if strength > 0.8:
        return "high"
    if strength > 0.6:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Prediction actions
# ---------------------------------------------------------------------------

LOW_SCORE_ACTIONS: dict[PredictionType, str] = {
    PredictionType.ENERGY: "Consider going to bed 30 minutes earlier tonight to boost tomorrow's energy",
    PredictionType.MOOD: "Plan a mood-boosting activity like a walk or calling a friend",
    PredictionType.SLEEP_QUALITY: "Create a relaxing bedtime routine 1 hour before sleep",
    PredictionType.PRODUCTIVITY: "Schedule your most important tasks for your peak energy hours",
    PredictionType.HEALTH_SCORE: "Focus on hydration and movement throughout the day",
}

NEGATIVE_TREND_ACTIONS: dict[PredictionType, str] = {
    PredictionType.ENERGY: "Your energy trend is declining. Consider evaluating sleep and stress levels",
    PredictionType.MOOD: "Mood patterns show a downward trend. Consider mindfulness or social activities",
    PredictionType.SLEEP_QUALITY: "Sleep quality is declining. Review your evening routine and sleep environment",
    PredictionType.PRODUCTIVITY: "Productivity is trending down. Consider time blocking and reducing distractions",
    PredictionType.HEALTH_SCORE: "Overall health trend needs attention. Review all health factors",
}


def positive_trend_action(prediction_type: PredictionType) -> str:
    return f"{prediction_type.value} is trending positively. Maintain current habits"


# ---------------------------------------------------------------------------
# Micro-moment content
# ---------------------------------------------------------------------------

_MOMENT_CONTENT: dict[MomentType, Callable[[str], MomentContent]] = {
    MomentType.HYDRATION_REMINDER: lambda name: MomentContent(
        title="💧 Hydration Check",
        message=(
            f"Hey {name}! Your energy patterns suggest you perform better when "
            "well-hydrated. Time for a water break?"
        ),
        action_required="Drink 250ml of water",
        duration_seconds=60,
        difficulty="easy",
    ),
    MomentType.MOVEMENT_BREAK: lambda name: MomentContent(
        title="🏃‍♀️ Movement Moment",
        message=(
            f"{name}, based on your activity correlations, a quick movement break "
            "could boost your mood by 15%!"
        ),
        action_required="2-minute walk or stretch",
        duration_seconds=120,
        difficulty="easy",
    ),
    MomentType.BREATHING_EXERCISE: lambda name: MomentContent(
        title="🧘 Mindful Moment",
        message=(
            f"Hi {name}! Your stress patterns suggest a breathing exercise would be "
            "perfect right now."
        ),
        action_required="4-7-8 breathing technique (4 cycles)",
        duration_seconds=180,
        difficulty="medium",
    ),
    MomentType.MOOD_CHECK: lambda name: MomentContent(
        title="😊 Mood Check-in",
        message=(
            f"Hey {name}! Quick mood check - this helps our AI better understand "
            "your patterns."
        ),
        action_required="Rate your current mood (1-10)",
        duration_seconds=30,
        difficulty="easy",
    ),
    MomentType.ENERGY_BOOST: lambda name: MomentContent(
        title="⚡ Energy Boost",
        message=f"{name}, your energy typically dips now. Try this quick energizer!",
        action_required="10 jumping jacks or deep breaths",
        duration_seconds=90,
        difficulty="medium",
    ),
}


def moment_content(moment_type: MomentType, first_name: str | None) -> MomentContent:
    """Render content for ``moment_type``; types without a template use mood-check."""
    name = first_name or "there"
    render = _MOMENT_CONTENT.get(moment_type, _MOMENT_CONTENT[MomentType.MOOD_CHECK])
    return render(name)
