"""Prediction engine: heuristic 1-day and 1-week forecasts per prediction type.

Each forecast starts from windowed features of the type's value series
(recent average, trend, variance, momentum), is nudged by correlation-derived
weights, and carries a confidence band and suggested actions. Values live on
the 1-10 scale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo

from healthsync.core.storage.models import (
    ActionableInsight,
    Correlation,
    HealthRecord,
    Horizon,
    PredictionRecord,
    PredictionType,
    Significance,
)
from healthsync.domains.health.connectors import HealthStore
from healthsync.domains.health.domain_logic.engine_config import (
    Clock,
    PredictionConfig,
    resolve_timezone,
    utc_now,
)
from healthsync.domains.health.domain_logic.errors import RunReport
from healthsync.domains.health.domain_logic.factors import Factor, extract_factor, numeric_value
from healthsync.domains.health.domain_logic.guards import guarded_read, guarded_write
from healthsync.domains.health.domain_logic.numeric import (
    clamp,
    linear_trend_slope,
    mean,
    variance,
)
from healthsync.domains.health.domain_logic.templates import (
    LOW_SCORE_ACTIONS,
    NEGATIVE_TREND_ACTIONS,
    positive_trend_action,
)

logger = logging.getLogger(__name__)

# Static per-type model accuracy; the starting point for confidence.
MODEL_ACCURACY: dict[PredictionType, float] = {
    PredictionType.ENERGY: 0.75,
    PredictionType.MOOD: 0.72,
    PredictionType.SLEEP_QUALITY: 0.78,
    PredictionType.PRODUCTIVITY: 0.70,
    PredictionType.HEALTH_SCORE: 0.73,
}

# Factor a prediction type is correlated against. "mood.focus" and "overall"
# are not catalog factors, so productivity and health-score never get weights.
TARGET_FACTORS: dict[PredictionType, str] = {
    PredictionType.ENERGY: Factor.MOOD_ENERGY.value,
    PredictionType.MOOD: Factor.MOOD_OVERALL.value,
    PredictionType.SLEEP_QUALITY: Factor.SLEEP_QUALITY.value,
    PredictionType.PRODUCTIVITY: "mood.focus",
    PredictionType.HEALTH_SCORE: "overall",
}

WEIGHT_SIGNIFICANCE = (Significance.MODERATE, Significance.STRONG, Significance.VERY_STRONG)

DAILY_ALGORITHM = "weighted-correlation-model"
WEEKLY_ALGORITHM = "trend-seasonal-correlation-model"
WEEKLY_CONFIDENCE_FACTOR = 0.85


@dataclass
class Features:
    recent_avg: float = 0.0
    recent_trend: float = 0.0
    variance: float = 0.0
    momentum: float = 0.0


# ---------------------------------------------------------------------------
# Value extraction
# ---------------------------------------------------------------------------

def productivity_score(record: HealthRecord) -> float:
    """Composite productivity on [1, 10]; 5 plus adjustments for present fields."""
    score = 5.0
    focus = _mood_focus(record)
    if focus is not None:
        score += (focus - 5) * 0.3
    energy = extract_factor(record, Factor.MOOD_ENERGY)
    if energy is not None:
        score += (energy - 5) * 0.2
    sleep_quality = extract_factor(record, Factor.SLEEP_QUALITY)
    if sleep_quality is not None:
        score += (sleep_quality - 5) * 0.2
    active_minutes = extract_factor(record, Factor.ACTIVITY_ACTIVE_MINUTES)
    if active_minutes is not None:
        score += min(active_minutes / 30, 1.0) * 2
    return clamp(score, 1.0, 10.0)


def health_score(record: HealthRecord) -> float:
    """Composite health score on [1, 10]; flat 5 when no source field is present."""
    score = 5.0
    applied = 0
    sleep_quality = extract_factor(record, Factor.SLEEP_QUALITY)
    if sleep_quality is not None:
        score += (sleep_quality - 5) * 0.25
        applied += 1
    mood = extract_factor(record, Factor.MOOD_OVERALL)
    if mood is not None:
        score += (mood - 5) * 0.2
        applied += 1
    steps = extract_factor(record, Factor.ACTIVITY_STEPS)
    if steps is not None:
        score += min(steps / 8000, 1.0) * 2
        applied += 1
    calories = extract_factor(record, Factor.NUTRITION_CALORIES)
    if calories is not None and calories > 0:
        score += (1 - abs(calories - 2000) / 2000) * 2
        applied += 1
    if applied == 0:
        return 5.0
    return clamp(score, 1.0, 10.0)


def _mood_focus(record: HealthRecord) -> float | None:
    return numeric_value(record.mood.focus) if record.mood is not None else None


def prediction_value(record: HealthRecord, prediction_type: PredictionType) -> float | None:
    """Scalar a prediction type tracks for one record (None when absent)."""
    if prediction_type is PredictionType.ENERGY:
        return extract_factor(record, Factor.MOOD_ENERGY)
    if prediction_type is PredictionType.MOOD:
        return extract_factor(record, Factor.MOOD_OVERALL)
    if prediction_type is PredictionType.SLEEP_QUALITY:
        return extract_factor(record, Factor.SLEEP_QUALITY)
    if prediction_type is PredictionType.PRODUCTIVITY:
        return productivity_score(record)
    return health_score(record)


def value_series(records: list[HealthRecord], prediction_type: PredictionType) -> list[float]:
    values = (prediction_value(r, prediction_type) for r in records)
    return [v for v in values if v is not None]


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

def extract_features(
    records: list[HealthRecord], prediction_type: PredictionType, horizon_days: int
) -> Features:
    """Features over the last ``horizon_days * 3`` records; zeros when empty."""
    window = records[-horizon_days * 3:] if horizon_days > 0 else []
    values = value_series(window, prediction_type)
    features = Features()
    if not values:
        return features

    features.recent_avg = mean(values)
    features.variance = variance(values)
    if len(values) > 1:
        features.recent_trend = (values[-1] - values[0]) / len(values)
        features.momentum = values[-1] - features.recent_avg
    return features


def correlation_weights(
    correlations: list[Correlation], prediction_type: PredictionType
) -> dict[str, float]:
    """``strength * confidence`` for every correlation touching the target factor.

    Keyed by the other factor of the pair.
    """
    target = TARGET_FACTORS[prediction_type]
    weights: dict[str, float] = {}
    for correlation in correlations:
        if correlation.primary_factor == target:
            other = correlation.secondary_factor
        elif correlation.secondary_factor == target:
            other = correlation.primary_factor
        else:
            continue
        weights[other] = correlation.strength * correlation.confidence
    return weights


def primary_factors(weights: dict[str, float], count: int = 3) -> list[str]:
    """Top ``count`` weight keys by |weight|; ties keep insertion order."""
    ranked = sorted(weights.items(), key=lambda item: abs(item[1]), reverse=True)
    return [factor for factor, _ in ranked[:count]]


def base_prediction(features: Features, weights: dict[str, float]) -> float:
    prediction = features.recent_avg + features.recent_trend * 2 + features.momentum * 0.3
    weight_magnitude = sum(abs(w) for w in weights.values())
    if weight_magnitude > 0:
        adjustment = sum(weights.values()) / weight_magnitude
        prediction += adjustment * features.recent_avg * 0.2
    return clamp(prediction, 1.0, 10.0)


def daily_confidence(features: Features, base_accuracy: float) -> float:
    confidence = base_accuracy
    if features.variance > 2:
        confidence *= 0.8
    if abs(features.recent_trend) < 0.1:
        confidence *= 1.1
    return clamp(confidence, 0.3, 1.0)


def seasonality(
    records: list[HealthRecord], prediction_type: PredictionType, now: datetime
) -> float:
    """Same-weekday mean minus overall mean, grouped on *today's* weekday.

    Weekdays are taken in ``now``'s timezone, which should be the user's.
    Needs at least two records on today's weekday.
    """
    tz = now.tzinfo
    weekday = now.weekday()
    same_day = [r for r in records if r.timestamp.astimezone(tz).weekday() == weekday]
    if len(same_day) < 2:
        return 0.0
    same_day_values = value_series(same_day, prediction_type)
    all_values = value_series(records, prediction_type)
    if not same_day_values or not all_values:
        return 0.0
    return mean(same_day_values) - mean(all_values)


def daily_insights(
    prediction_type: PredictionType, prediction: float, features: Features
) -> list[ActionableInsight]:
    insights: list[ActionableInsight] = []
    if prediction < 5:
        insights.append(
            ActionableInsight(LOW_SCORE_ACTIONS[prediction_type], expected_impact=0.7, confidence=0.8)
        )
    if features.recent_trend < -0.2:
        insights.append(
            ActionableInsight(NEGATIVE_TREND_ACTIONS[prediction_type], expected_impact=0.6, confidence=0.7)
        )
    return insights


def weekly_insights(prediction_type: PredictionType, trend: float) -> list[ActionableInsight]:
    if trend > 0.1:
        return [
            ActionableInsight(positive_trend_action(prediction_type), expected_impact=0.8, confidence=0.9)
        ]
    if trend < -0.1:
        return [
            ActionableInsight(NEGATIVE_TREND_ACTIONS[prediction_type], expected_impact=0.7, confidence=0.8)
        ]
    return []


def predict_next_day(
    user_id: str,
    prediction_type: PredictionType,
    records: list[HealthRecord],
    correlations: list[Correlation],
    now: datetime,
) -> PredictionRecord:
    features = extract_features(records, prediction_type, Horizon.ONE_DAY.days)
    weights = correlation_weights(correlations, prediction_type)
    value = base_prediction(features, weights)
    accuracy = MODEL_ACCURACY[prediction_type]

    return PredictionRecord(
        user_id=user_id,
        prediction_type=prediction_type,
        horizon=Horizon.ONE_DAY,
        target_date=now + timedelta(days=1),
        value=value,
        confidence=daily_confidence(features, accuracy),
        range_min=value * 0.85,
        range_max=value * 1.15,
        primary_factors=primary_factors(weights),
        weights=weights,
        correlations_used=[c.id for c in correlations],
        algorithm=DAILY_ALGORITHM,
        model_accuracy=accuracy,
        actionable_insights=daily_insights(prediction_type, value, features),
        **_training_window(records),
    )


def predict_next_week(
    user_id: str,
    prediction_type: PredictionType,
    records: list[HealthRecord],
    correlations: list[Correlation],
    now: datetime,
    tz: tzinfo | None = None,
) -> PredictionRecord:
    features = extract_features(records, prediction_type, Horizon.ONE_WEEK.days)
    weights = correlation_weights(correlations, prediction_type)
    trend = linear_trend_slope(value_series(records, prediction_type))
    season = seasonality(records, prediction_type, now.astimezone(tz) if tz else now)
    value = clamp(base_prediction(features, weights) + trend * 7 + season, 1.0, 10.0)
    accuracy = MODEL_ACCURACY[prediction_type] * WEEKLY_CONFIDENCE_FACTOR

    return PredictionRecord(
        user_id=user_id,
        prediction_type=prediction_type,
        horizon=Horizon.ONE_WEEK,
        target_date=now + timedelta(days=7),
        value=value,
        confidence=accuracy,
        range_min=value * 0.75,
        range_max=value * 1.25,
        primary_factors=primary_factors(weights),
        weights={"trend": trend, "seasonality": season},
        correlations_used=[c.id for c in correlations],
        algorithm=WEEKLY_ALGORITHM,
        model_accuracy=accuracy,
        actionable_insights=weekly_insights(prediction_type, trend),
        **_training_window(records),
    )


def _training_window(records: list[HealthRecord]) -> dict:
    return {
        "training_start": records[0].timestamp if records else None,
        "training_end": records[-1].timestamp if records else None,
        "training_data_points": len(records),
    }


def build_predictions(
    user_id: str,
    records: list[HealthRecord],
    correlations: list[Correlation],
    now: datetime,
    tz: tzinfo | None = None,
) -> list[PredictionRecord]:
    """One 1-day and one 1-week forecast per prediction type, in type order.

    ``tz`` is the user's timezone for weekday grouping (default: ``now``'s).
    """
    predictions: list[PredictionRecord] = []
    for prediction_type in PredictionType:
        predictions.append(predict_next_day(user_id, prediction_type, records, correlations, now))
        predictions.append(
            predict_next_week(user_id, prediction_type, records, correlations, now, tz)
        )
    return predictions


class PredictionEngine:
    """Generates and appends forecasts for one user at a time."""

    def __init__(
        self,
        store: HealthStore,
        config: PredictionConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._config = config or PredictionConfig()
        self._clock = clock

    async def predict(
        self, user_id: str, *, config: PredictionConfig | None = None
    ) -> list[PredictionRecord]:
        """Forecasts inserted this run (up to 10).

        Raises:
            DataUnavailableError: If the record, correlation or profile fetch
                fails.
        """
        report = await self.predict_report(user_id, config=config)
        return report.items

    async def predict_report(
        self, user_id: str, *, config: PredictionConfig | None = None
    ) -> RunReport[PredictionRecord]:
        cfg = config or self._config
        now = self._clock()

        records = await guarded_read(
            self._store.fetch_health_records(user_id, now - timedelta(days=cfg.lookback_days)),
            user_id=user_id,
            operation="fetch_health_records",
            timeout=cfg.store_timeout_seconds,
        )
        if len(records) < cfg.min_history:
            logger.info(
                "Insufficient data for predictions (user=%s): %d records, need %d",
                user_id,
                len(records),
                cfg.min_history,
            )
            return RunReport()

        correlations = await guarded_read(
            self._store.fetch_correlations(user_id, significance=WEIGHT_SIGNIFICANCE),
            user_id=user_id,
            operation="fetch_correlations",
            timeout=cfg.store_timeout_seconds,
        )
        profile = await guarded_read(
            self._store.fetch_user_profile(user_id),
            user_id=user_id,
            operation="fetch_user_profile",
            timeout=cfg.store_timeout_seconds,
        )
        tz = resolve_timezone(profile.timezone if profile is not None else None)

        report: RunReport[PredictionRecord] = RunReport()
        for prediction in build_predictions(user_id, records, correlations, now, tz):
            prediction_id, failure = await guarded_write(
                self._store.insert_prediction_record(prediction),
                user_id=user_id,
                operation="insert_prediction_record",
                key=f"{prediction.prediction_type.value}/{prediction.horizon.value}",
                timeout=cfg.store_timeout_seconds,
            )
            if failure is not None:
                report.write_failures.append(failure)
                continue
            prediction.id = prediction_id
            report.items.append(prediction)

        logger.info(
            "Predictions for user %s: %d inserted from %d records and %d correlations",
            user_id,
            len(report.items),
            len(records),
            len(correlations),
        )
        return report
