"""Explicit per-engine configuration.

Each engine operation takes one of these instead of reading shared instance
fields, so a caller can override thresholds for a single call.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from healthsync.core.config.settings import Settings

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str | None) -> ZoneInfo:
    """The profile's IANA zone, falling back to UTC for missing or unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", name)
        return ZoneInfo("UTC")


@dataclass(frozen=True)
class CorrelationConfig:
    correlation_threshold: float = 0.6
    min_data_points: int = 10
    lookback_days: int = 30
    max_lookback_days: int = 3650
    full_confidence_sample_size: int = 50
    store_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> CorrelationConfig:
        return cls(
            correlation_threshold=settings.correlation_threshold,
            min_data_points=settings.min_data_points,
            lookback_days=settings.correlation_lookback_days,
            max_lookback_days=settings.max_lookback_days,
            store_timeout_seconds=settings.store_timeout_seconds,
        )


@dataclass(frozen=True)
class PredictionConfig:
    min_history: int = 7
    lookback_days: int = 30
    store_timeout_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings) -> PredictionConfig:
        return cls(
            min_history=settings.prediction_min_history,
            lookback_days=settings.prediction_lookback_days,
            store_timeout_seconds=settings.store_timeout_seconds,
        )


@dataclass(frozen=True)
class SchedulerConfig:
    behavior_lookback_days: int = 30
    state_lookback_hours: int = 24
    default_response_rate: float = 0.6
    default_optimal_hours: tuple[int, ...] = (9, 14, 16)
    optimal_hour_count: int = 3
    correlation_limit: int = 10
    activation_threshold: float = 0.3
    max_moments_per_day: int = 8
    moment_window_minutes: int = 15
    store_timeout_seconds: float = 5.0
    context_timeout_seconds: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulerConfig:
        return cls(
            behavior_lookback_days=settings.behavior_lookback_days,
            default_response_rate=settings.default_response_rate,
            max_moments_per_day=settings.max_moments_per_day,
            store_timeout_seconds=settings.store_timeout_seconds,
            context_timeout_seconds=settings.context_timeout_seconds,
        )
