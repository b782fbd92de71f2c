"""Micro-moment scheduler: when to nudge a user, and with what.

A scheduling run reads the user's last day of records, their history of
responding to earlier moments and their confirmed strong correlations. It
builds hour windows from learned response times and the user's preferences,
merges overlapping windows, picks an intervention type per window by weighted
priority, and persists and dispatches one scheduled moment per window.
"""

from __future__ import annotations

import logging
import random
from collections import Counter
from collections.abc import Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

from healthsync.core.storage.models import (
    Category,
    Correlation,
    HealthRecord,
    MicroMoment,
    MomentType,
    Significance,
    UserProfile,
    ValidationStatus,
    WeatherContext,
    to_json_dict,
)
from healthsync.domains.health.connectors import HealthStore, NotificationDispatcher, WeatherProvider
from healthsync.domains.health.domain_logic.engine_config import (
    Clock,
    SchedulerConfig,
    resolve_timezone,
    utc_now,
)
from healthsync.domains.health.domain_logic.errors import RunReport, UnknownUserError
from healthsync.domains.health.domain_logic.factors import Factor, extract_factor
from healthsync.domains.health.domain_logic.guards import guarded_read, guarded_write
from healthsync.domains.health.domain_logic.templates import moment_content

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Scored intervention types, in tie-break order.
PRIORITY_TYPES: tuple[MomentType, ...] = (
    MomentType.HYDRATION_REMINDER,
    MomentType.MOVEMENT_BREAK,
    MomentType.BREATHING_EXERCISE,
    MomentType.MOOD_CHECK,
    MomentType.ENERGY_BOOST,
)

LEARNED = "learned"
PREFERENCE = "preference"
PREFERENCE_CONFIDENCE = 0.8


@dataclass
class TimeWindow:
    """Whole-hour delivery window in the user's local time."""

    start: int
    end: int
    confidence: float
    kind: str = LEARNED


@dataclass
class BehaviorPatterns:
    optimal_hours: list[int]
    response_rate: float
    from_history: bool = True


@dataclass
class HealthState:
    """Latest record per category from the last day, plus context."""

    latest: dict[Category, HealthRecord] = field(default_factory=dict)
    time_of_day: str = ""
    is_workday: bool = False
    timezone: str = "UTC"
    weather: WeatherContext | None = None

    @property
    def mood_overall(self) -> float | None:
        return self._value(Category.MOOD, Factor.MOOD_OVERALL)

    @property
    def steps(self) -> float | None:
        return self._value(Category.ACTIVITY, Factor.ACTIVITY_STEPS)

    def _value(self, category: Category, factor: Factor) -> float | None:
        record = self.latest.get(category)
        return extract_factor(record, factor) if record is not None else None

    def context_factors(self) -> list[str]:
        factors: list[str] = []
        if self.weather is not None and self.weather.condition:
            factors.append(f"weather-{self.weather.condition}")
        if self.is_workday:
            factors.append("workday")
        factors.append(f"time-{self.time_of_day}")
        return factors

    def snapshot(self) -> dict[str, Any]:
        return {
            "sections": {
                c.value: to_json_dict(r.section(c))
                for c, r in self.latest.items()
                if r.section(c) is not None
            },
            "context": {
                "time_of_day": self.time_of_day,
                "is_workday": self.is_workday,
                "timezone": self.timezone,
                "weather": to_json_dict(self.weather) if self.weather is not None else None,
            },
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def time_of_day(moment: datetime) -> str:
    hour = moment.hour
    if hour < 6:
        return "early-morning"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"


def is_workday(moment: datetime) -> bool:
    """Monday to Friday."""
    return moment.weekday() < 5


def parse_hour(value: str) -> int:
    """Hour component of an "HH:MM" string."""
    return int(value.split(":", 1)[0])


def merge_overlapping_windows(windows: list[TimeWindow]) -> list[TimeWindow]:
    """Minimal non-overlapping cover: touching or overlapping windows merge.

    Merged windows keep the widest end and the highest confidence. The input
    list is not modified.
    """
    merged: list[TimeWindow] = []
    for window in sorted(windows, key=lambda w: w.start):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            last.end = max(last.end, window.end)
            last.confidence = max(last.confidence, window.confidence)
            if window.kind not in last.kind.split("+"):
                last.kind = f"{last.kind}+{window.kind}"
        else:
            merged.append(TimeWindow(window.start, window.end, window.confidence, window.kind))
    return merged


def optimal_response_hours(moments: list[MicroMoment], tz: ZoneInfo, count: int = 3) -> list[int]:
    """Hours of day with the most acknowledged moments; ties go to the earlier hour."""
    hours = Counter(
        m.scheduled_for.astimezone(tz).hour for m in moments if m.acknowledged
    )
    ranked = sorted(hours.items(), key=lambda item: (-item[1], item[0]))
    return [hour for hour, _ in ranked[:count]]


def behavior_patterns(
    moments: list[MicroMoment], tz: ZoneInfo, config: SchedulerConfig
) -> BehaviorPatterns:
    """Learned response hours and rate, or the defaults without acknowledged history."""
    acknowledged = [m for m in moments if m.acknowledged]
    if not acknowledged:
        return BehaviorPatterns(
            optimal_hours=list(config.default_optimal_hours),
            response_rate=config.default_response_rate,
            from_history=False,
        )
    delivered = sum(1 for m in moments if m.delivered or m.acknowledged)
    return BehaviorPatterns(
        optimal_hours=optimal_response_hours(acknowledged, tz, config.optimal_hour_count),
        response_rate=len(acknowledged) / delivered,
    )


def candidate_windows(patterns: BehaviorPatterns, profile: UserProfile) -> list[TimeWindow]:
    windows = [
        TimeWindow(hour - 1, hour + 1, patterns.response_rate, LEARNED)
        for hour in patterns.optimal_hours
    ]
    for preferred in profile.preferred_time_windows:
        try:
            start, end = parse_hour(preferred.start), parse_hour(preferred.end)
        except ValueError:
            logger.warning(
                "Ignoring malformed preferred window %s-%s for user %s",
                preferred.start,
                preferred.end,
                profile.user_id,
            )
            continue
        windows.append(TimeWindow(start, end, PREFERENCE_CONFIDENCE, PREFERENCE))
    return windows


def priority_scores(state: HealthState, correlations: list[Correlation]) -> dict[MomentType, float]:
    scores = {moment_type: 0.0 for moment_type in PRIORITY_TYPES}
    mood = state.mood_overall
    steps = state.steps
    for correlation in correlations:
        primary = correlation.primary_factor
        strength = correlation.strength
        if "mood" in primary and mood is not None and mood < 6:
            scores[MomentType.BREATHING_EXERCISE] += strength
            scores[MomentType.MOVEMENT_BREAK] += strength * 0.8
        if "activity" in primary and steps is not None and steps < 3000:
            scores[MomentType.MOVEMENT_BREAK] += strength
        if "nutrition.water" in primary:
            scores[MomentType.HYDRATION_REMINDER] += strength
    return scores


def select_optimal_moment_type(
    state: HealthState,
    correlations: list[Correlation],
    activation_threshold: float = 0.3,
) -> MomentType | None:
    """Highest-scoring type, or None unless its score exceeds the threshold."""
    scores = priority_scores(state, correlations)
    best = max(scores.values())
    if best <= activation_threshold:
        return None
    return next(t for t in PRIORITY_TYPES if scores[t] == best)


def calculate_optimal_time(now: datetime, window: TimeWindow, rng: random.Random) -> datetime:
    """Midpoint hour of ``window`` with a random minute, strictly after ``now``.

    ``now`` must be in the user's local timezone.
    """
    hour = ((window.start + window.end) // 2) % 24
    scheduled = now.replace(hour=hour, minute=rng.randrange(60), second=0, microsecond=0)
    if scheduled <= now:
        scheduled += timedelta(days=1)
    return scheduled


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class MicroMomentScheduler:
    """Schedules the day's micro-moments for one user at a time.

    Usage::

        scheduler = MicroMomentScheduler(store, weather, dispatcher)
        moments = await scheduler.schedule("user-1")
    """

    def __init__(
        self,
        store: HealthStore,
        weather: WeatherProvider,
        dispatcher: NotificationDispatcher,
        config: SchedulerConfig | None = None,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._weather = weather
        self._dispatcher = dispatcher
        self._config = config or SchedulerConfig()
        self._clock = clock
        self._rng = rng or random.Random()

    async def schedule(
        self, user_id: str, *, config: SchedulerConfig | None = None
    ) -> list[MicroMoment]:
        """Persist and dispatch today's moments; returns those persisted.

        Raises:
            UnknownUserError: If the user has no profile.
            DataUnavailableError: If any read fails or times out.
        """
        report = await self.schedule_report(user_id, config=config)
        return report.items

    async def schedule_report(
        self, user_id: str, *, config: SchedulerConfig | None = None
    ) -> RunReport[MicroMoment]:
        cfg = config or self._config

        profile = await self._read(cfg, user_id, "fetch_user_profile", self._store.fetch_user_profile(user_id))
        if profile is None:
            raise UnknownUserError(user_id)

        tz = resolve_timezone(profile.timezone)
        now = self._clock().astimezone(tz)

        state = await self.current_health_state(user_id, profile, now, cfg)
        patterns = await self.load_behavior_patterns(user_id, tz, now, cfg)
        correlations = await self._read(
            cfg,
            user_id,
            "fetch_correlations",
            self._store.fetch_correlations(
                user_id,
                significance=(Significance.STRONG, Significance.VERY_STRONG),
                validation_status=ValidationStatus.CONFIRMED,
                limit=cfg.correlation_limit,
            ),
        )

        windows = merge_overlapping_windows(candidate_windows(patterns, profile))
        moments = self.build_moments(user_id, profile, state, correlations, windows, now, cfg)

        report: RunReport[MicroMoment] = RunReport()
        for moment in moments:
            key = f"{moment.type.value}@{moment.scheduled_for.isoformat()}"
            moment_id, failure = await guarded_write(
                self._store.insert_micro_moment(moment),
                user_id=user_id,
                operation="insert_micro_moment",
                key=key,
                timeout=cfg.store_timeout_seconds,
            )
            if failure is not None:
                report.write_failures.append(failure)
                continue
            moment.id = moment_id
            report.items.append(moment)

            _, failure = await guarded_write(
                self._dispatcher.dispatch(moment),
                user_id=user_id,
                operation="dispatch_notification",
                key=moment_id,
                timeout=cfg.context_timeout_seconds,
            )
            if failure is not None:
                report.write_failures.append(failure)

        logger.info(
            "Scheduled %d micro-moments for user %s across %d windows (%d failures)",
            len(report.items),
            user_id,
            len(windows),
            len(report.write_failures),
        )
        return report

    def build_moments(
        self,
        user_id: str,
        profile: UserProfile,
        state: HealthState,
        correlations: list[Correlation],
        windows: list[TimeWindow],
        now: datetime,
        config: SchedulerConfig,
    ) -> list[MicroMoment]:
        """One moment per window whose selection clears the activation threshold."""
        half_window = timedelta(minutes=config.moment_window_minutes)
        context_factors = state.context_factors()
        snapshot = state.snapshot()

        moments: list[MicroMoment] = []
        for window in windows:
            if len(moments) >= config.max_moments_per_day:
                logger.info("Reached %d moments for user %s; skipping remaining windows",
                            config.max_moments_per_day, user_id)
                break
            moment_type = select_optimal_moment_type(state, correlations, config.activation_threshold)
            if moment_type is None:
                continue
            scheduled = calculate_optimal_time(now, window, self._rng)
            moments.append(
                MicroMoment(
                    user_id=user_id,
                    type=moment_type,
                    scheduled_for=scheduled,
                    window_start=scheduled - half_window,
                    window_end=scheduled + half_window,
                    ai_confidence=window.confidence,
                    content=moment_content(moment_type, profile.first_name),
                    based_on_correlations=[c.id for c in correlations],
                    context_factors=list(context_factors),
                    user_behavior_pattern=window.kind,
                    health_snapshot=snapshot,
                )
            )
        return moments

    async def current_health_state(
        self, user_id: str, profile: UserProfile, now: datetime, config: SchedulerConfig
    ) -> HealthState:
        since = now - timedelta(hours=config.state_lookback_hours)
        records = await self._read(
            config, user_id, "fetch_health_records", self._store.fetch_health_records(user_id, since)
        )
        latest: dict[Category, HealthRecord] = {}
        for record in records:  # oldest first, so the latest per category wins
            latest[record.category] = record

        weather = await guarded_read(
            self._weather.fetch_weather_context(profile.location),
            user_id=user_id,
            operation="fetch_weather_context",
            timeout=config.context_timeout_seconds,
        )
        return HealthState(
            latest=latest,
            time_of_day=time_of_day(now),
            is_workday=is_workday(now),
            timezone=profile.timezone,
            weather=weather,
        )

    async def load_behavior_patterns(
        self, user_id: str, tz: ZoneInfo, now: datetime, config: SchedulerConfig
    ) -> BehaviorPatterns:
        since = now - timedelta(days=config.behavior_lookback_days)
        acknowledged = await self._read(
            config,
            user_id,
            "fetch_recent_micro_moments",
            self._store.fetch_recent_micro_moments(user_id, since, acknowledged=True),
        )
        if not acknowledged:
            return behavior_patterns([], tz, config)
        recent = await self._read(
            config,
            user_id,
            "fetch_recent_micro_moments",
            self._store.fetch_recent_micro_moments(user_id, since),
        )
        return behavior_patterns(recent, tz, config)

    @staticmethod
    async def _read(
        config: SchedulerConfig, user_id: str, operation: str, call: Awaitable[T]
    ) -> T:
        return await guarded_read(
            call, user_id=user_id, operation=operation, timeout=config.store_timeout_seconds
        )
