"""Tests for the micro-moment scheduler."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import FIXED_NOW, RecordingDispatcher, make_record
from healthsync.core.storage.models import (
    Category,
    Correlation,
    Direction,
    MicroMoment,
    MomentContent,
    MomentState,
    MomentType,
    PreferredTimeWindow,
    Significance,
    UserProfile,
    ValidationStatus,
    WeatherContext,
)
from healthsync.domains.health.connectors.notifications import LoggingDispatcher
from healthsync.domains.health.connectors.store import RepositoryHealthStore
from healthsync.domains.health.connectors.weather import NullWeatherProvider
from healthsync.domains.health.domain_logic.engine_config import SchedulerConfig
from healthsync.domains.health.domain_logic.errors import DataUnavailableError, UnknownUserError
from healthsync.domains.health.domain_logic.micro_moment_scheduler import (
    HealthState,
    MicroMomentScheduler,
    TimeWindow,
    behavior_patterns,
    calculate_optimal_time,
    candidate_windows,
    is_workday,
    merge_overlapping_windows,
    optimal_response_hours,
    priority_scores,
    resolve_timezone,
    select_optimal_moment_type,
    time_of_day,
)

UTC = ZoneInfo("UTC")


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _correlation(primary: str, secondary: str, strength: float, cid: str = "c-1") -> Correlation:
    return Correlation(
        id=cid,
        user_id="user-1",
        primary_factor=primary,
        secondary_factor=secondary,
        strength=strength,
        confidence=0.7,
        significance=Significance.VERY_STRONG if abs(strength) >= 0.8 else Significance.STRONG,
        direction=Direction.POSITIVE if strength > 0 else Direction.NEGATIVE,
        data_point_count=20,
        computed_at=FIXED_NOW,
    )


def _history_moment(hour: int, *, days_ago: int = 1, acknowledged: bool = True, delivered: bool = True):
    scheduled = (FIXED_NOW - timedelta(days=days_ago)).replace(hour=hour, minute=5)
    return MicroMoment(
        user_id="user-1",
        type=MomentType.MOOD_CHECK,
        scheduled_for=scheduled,
        window_start=scheduled,
        window_end=scheduled,
        ai_confidence=0.6,
        content=MomentContent("t", "m", "a", 30, "easy"),
        delivered_at=scheduled if delivered else None,
        acknowledged_at=scheduled + timedelta(minutes=2) if acknowledged else None,
    )


def _state(mood: float | None = None, steps: float | None = None) -> HealthState:
    latest = {}
    if mood is not None:
        latest[Category.MOOD] = make_record(category=Category.MOOD, mood={"overall": mood})
    if steps is not None:
        latest[Category.ACTIVITY] = make_record(category=Category.ACTIVITY, activity={"steps": steps})
    return HealthState(latest=latest, time_of_day="morning", is_workday=True)


class FailingWeather:
    async def fetch_weather_context(self, location):
        raise ConnectionError("weather down")


class RainyWeather:
    async def fetch_weather_context(self, location):
        return WeatherContext(temperature=14.0, condition="rain")


class FirstCallFailsDispatcher(RecordingDispatcher):
    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def dispatch(self, moment):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("push gateway 503")
        await super().dispatch(moment)


class FailingInsertStore(RepositoryHealthStore):
    async def insert_micro_moment(self, moment):
        raise RuntimeError("disk full")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

class TestClockHelpers:
    @pytest.mark.parametrize(
        ("hour", "label"),
        [(3, "early-morning"), (6, "morning"), (12, "afternoon"), (17, "evening"), (21, "night")],
    )
    def test_time_of_day(self, hour, label):
        assert time_of_day(FIXED_NOW.replace(hour=hour)) == label

    def test_workday(self):
        assert is_workday(FIXED_NOW)  # Wednesday
        assert not is_workday(FIXED_NOW + timedelta(days=3))  # Saturday

    def test_unknown_timezone_falls_back_to_utc(self):
        assert resolve_timezone("Mars/Olympus_Mons") == UTC
        assert resolve_timezone(None) == UTC
        assert resolve_timezone("Europe/Lisbon") == ZoneInfo("Europe/Lisbon")


class TestMergeWindows:
    def test_overlapping_windows_merge(self):
        windows = [TimeWindow(9, 11, 0.6), TimeWindow(10, 12, 0.7), TimeWindow(15, 16, 0.5)]
        merged = merge_overlapping_windows(windows)
        assert [(w.start, w.end) for w in merged] == [(9, 12), (15, 16)]
        assert merged[0].confidence == 0.7

    def test_input_is_not_modified(self):
        windows = [TimeWindow(9, 11, 0.6), TimeWindow(10, 12, 0.7)]
        merge_overlapping_windows(windows)
        assert (windows[0].start, windows[0].end) == (9, 11)

    def test_unsorted_and_touching(self):
        windows = [TimeWindow(15, 17, 0.6), TimeWindow(8, 10, 0.6), TimeWindow(13, 15, 0.6)]
        merged = merge_overlapping_windows(windows)
        assert [(w.start, w.end) for w in merged] == [(8, 10), (13, 17)]

    def test_kinds_are_joined(self):
        windows = [TimeWindow(8, 10, 0.6, "learned"), TimeWindow(9, 11, 0.8, "preference")]
        [merged] = merge_overlapping_windows(windows)
        assert merged.kind == "learned+preference"

    def test_result_is_non_overlapping(self):
        rng = random.Random(3)
        windows = []
        for _ in range(30):
            start = rng.randrange(0, 22)
            windows.append(TimeWindow(start, start + rng.randrange(1, 4), 0.5))
        merged = merge_overlapping_windows(windows)
        for a, b in zip(merged, merged[1:]):
            assert a.end < b.start


class TestBehaviorPatterns:
    def test_defaults_without_acknowledged_history(self):
        patterns = behavior_patterns([_history_moment(9, acknowledged=False)], UTC, SchedulerConfig())
        assert patterns.optimal_hours == [9, 14, 16]
        assert patterns.response_rate == 0.6
        assert not patterns.from_history

    def test_learned_hours_and_rate(self):
        moments = [
            _history_moment(11),
            _history_moment(11, days_ago=2),
            _history_moment(13),
            _history_moment(18, acknowledged=False),
        ]
        patterns = behavior_patterns(moments, UTC, SchedulerConfig())
        assert patterns.optimal_hours == [11, 13]
        assert patterns.response_rate == pytest.approx(3 / 4)
        assert patterns.from_history

    def test_hour_ties_go_to_earlier_hour(self):
        moments = [_history_moment(h) for h in (17, 8, 12, 10)]
        assert optimal_response_hours(moments, UTC) == [8, 10, 12]

    def test_hours_are_local(self):
        moments = [_history_moment(15)]
        assert optimal_response_hours(moments, ZoneInfo("Europe/Berlin")) == [16]

    def test_candidate_windows_include_preferences(self):
        patterns = behavior_patterns([], UTC, SchedulerConfig())
        profile = UserProfile(
            user_id="user-1",
            preferred_time_windows=[PreferredTimeWindow("19:00", "21:00"), PreferredTimeWindow("bad", "x")],
        )
        windows = candidate_windows(patterns, profile)
        assert [(w.start, w.end, w.kind) for w in windows] == [
            (8, 10, "learned"),
            (13, 15, "learned"),
            (15, 17, "learned"),
            (19, 21, "preference"),
        ]
        assert windows[-1].confidence == 0.8


class TestMomentTypeSelection:
    def test_low_mood_prefers_breathing(self):
        correlations = [_correlation("mood.overall", "mood.stress", 0.8)]
        assert select_optimal_moment_type(_state(mood=4), correlations) is MomentType.BREATHING_EXERCISE

    def test_low_steps_prefers_movement(self):
        correlations = [_correlation("activity.steps", "mood.overall", 0.7)]
        scores = priority_scores(_state(steps=1500), correlations)
        assert scores[MomentType.MOVEMENT_BREAK] == pytest.approx(0.7)
        assert select_optimal_moment_type(_state(steps=1500), correlations) is MomentType.MOVEMENT_BREAK

    def test_hydration_from_water_correlation(self):
        correlations = [_correlation("nutrition.water", "biometric.weight", 0.65)]
        assert select_optimal_moment_type(_state(), correlations) is MomentType.HYDRATION_REMINDER

    def test_good_state_selects_nothing(self):
        correlations = [_correlation("mood.overall", "mood.stress", 0.9)]
        assert select_optimal_moment_type(_state(mood=8, steps=9000), correlations) is None

    def test_score_must_exceed_threshold(self):
        correlations = [_correlation("nutrition.water", "biometric.weight", 0.3)]
        assert select_optimal_moment_type(_state(), correlations) is None
        assert select_optimal_moment_type(_state(), correlations, activation_threshold=0.29) is (
            MomentType.HYDRATION_REMINDER
        )

    def test_ties_follow_priority_order(self):
        correlations = [
            _correlation("nutrition.water", "biometric.weight", 0.7),
            _correlation("activity.steps", "mood.overall", 0.7),
        ]
        assert select_optimal_moment_type(_state(steps=100), correlations) is MomentType.HYDRATION_REMINDER

    def test_no_correlations_selects_nothing(self):
        assert select_optimal_moment_type(_state(mood=2, steps=0), []) is None


class TestOptimalTime:
    def test_midpoint_later_today(self):
        scheduled = calculate_optimal_time(FIXED_NOW, TimeWindow(13, 17, 0.6), random.Random(1))
        assert scheduled.date() == FIXED_NOW.date()
        assert scheduled.hour == 15
        assert 0 <= scheduled.minute < 60

    def test_past_hour_rolls_to_tomorrow(self):
        scheduled = calculate_optimal_time(FIXED_NOW, TimeWindow(8, 10, 0.6), random.Random(1))
        assert scheduled.date() == (FIXED_NOW + timedelta(days=1)).date()
        assert scheduled.hour == 9

    def test_hour_wraps_past_midnight(self):
        scheduled = calculate_optimal_time(FIXED_NOW, TimeWindow(23, 25, 0.6), random.Random(1))
        assert scheduled.hour == 0
        assert scheduled > FIXED_NOW

    def test_always_strictly_in_future(self):
        rng = random.Random(5)
        for start in range(0, 23):
            scheduled = calculate_optimal_time(FIXED_NOW, TimeWindow(start, start + 1, 0.5), rng)
            assert scheduled > FIXED_NOW
            assert scheduled - FIXED_NOW <= timedelta(days=1)


class TestHealthState:
    def test_context_factors(self):
        state = HealthState(time_of_day="morning", is_workday=True, weather=WeatherContext(20.0, "sunny"))
        assert state.context_factors() == ["weather-sunny", "workday", "time-morning"]

    def test_weekend_without_weather(self):
        state = HealthState(time_of_day="evening", is_workday=False)
        assert state.context_factors() == ["time-evening"]

    def test_snapshot_holds_sections_and_context(self):
        snapshot = _state(mood=4).snapshot()
        assert snapshot["sections"]["mood"]["overall"] == 4
        assert snapshot["context"]["is_workday"] is True


# ---------------------------------------------------------------------------
# Scheduler with a store
# ---------------------------------------------------------------------------

def _seed_low_mood_user(repository, user_id: str = "user-1") -> Correlation:
    repository.save_user_profile(UserProfile(user_id=user_id, first_name="Sam", timezone="UTC"))
    repository.save_health_record(
        make_record(user_id, days_ago=0.1, category=Category.MOOD, mood={"overall": 4})
    )
    correlation = _correlation("mood.overall", "mood.stress", 0.8, cid="")
    correlation.user_id = user_id
    stored = repository.upsert_correlation(correlation)
    repository.set_correlation_validation(
        user_id, "mood.overall", "mood.stress", ValidationStatus.CONFIRMED
    )
    return stored


@pytest.fixture
def seeded(repository):
    """A low-mood user with one confirmed strong mood correlation."""
    return _seed_low_mood_user(repository)


def _scheduler(store, fixed_clock, *, weather=None, dispatcher=None, config=None):
    return MicroMomentScheduler(
        store,
        weather or NullWeatherProvider(),
        dispatcher or LoggingDispatcher(),
        config,
        fixed_clock,
        random.Random(42),
    )


class TestSchedule:
    def test_schedules_one_moment_per_merged_window(self, repository, store, fixed_clock, seeded):
        dispatcher = RecordingDispatcher()
        moments = _run(_scheduler(store, fixed_clock, dispatcher=dispatcher).schedule("user-1"))

        # Default hours 9, 14, 16 -> windows [8,10] and [13,17].
        assert len(moments) == 2
        assert {m.scheduled_for.hour for m in moments} == {9, 15}
        for moment in moments:
            assert moment.type is MomentType.BREATHING_EXERCISE
            assert moment.state is MomentState.SCHEDULED
            assert moment.scheduled_for > FIXED_NOW
            assert moment.window_end - moment.window_start == timedelta(minutes=30)
            assert moment.ai_confidence == 0.6
            assert moment.based_on_correlations == [seeded.id]
            assert moment.content.message.startswith("Hi Sam!")
            assert moment.user_behavior_pattern == "learned"
            assert "workday" in moment.context_factors
        assert dispatcher.dispatched == [m.id for m in moments]
        assert len(repository.get_micro_moments("user-1")) == 2

    def test_same_seed_same_schedule(self, repository, store, fixed_clock, seeded):
        _seed_low_mood_user(repository, "user-2")
        first = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        second = _run(_scheduler(store, fixed_clock).schedule("user-2"))

        def plan(moments):
            return [
                (m.type, m.scheduled_for, m.window_start, m.window_end, m.ai_confidence)
                for m in moments
            ]

        assert len(first) == 2
        assert plan(first) == plan(second)

    def test_seed_only_moves_minutes_within_the_hour(self, repository, store, fixed_clock, seeded):
        _seed_low_mood_user(repository, "user-2")
        first = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        other = MicroMomentScheduler(
            store, NullWeatherProvider(), LoggingDispatcher(), None, fixed_clock, random.Random(7)
        )
        second = _run(other.schedule("user-2"))
        assert [(m.type, m.scheduled_for.hour) for m in first] == [
            (m.type, m.scheduled_for.hour) for m in second
        ]

    def test_snapshot_persisted(self, repository, store, fixed_clock, seeded):
        [first, _] = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        stored = repository.get_micro_moment(first.id)
        assert stored.health_snapshot["sections"]["mood"]["overall"] == 4

    def test_unconfirmed_correlations_are_ignored(self, repository, store, fixed_clock, seeded):
        repository.set_correlation_validation(
            "user-1", "mood.overall", "mood.stress", ValidationStatus.DISCOVERED
        )
        assert _run(_scheduler(store, fixed_clock).schedule("user-1")) == []

    def test_good_mood_schedules_nothing(self, repository, store, fixed_clock, seeded):
        repository.save_health_record(
            make_record(days_ago=0.05, category=Category.MOOD, mood={"overall": 8})
        )
        assert _run(_scheduler(store, fixed_clock).schedule("user-1")) == []

    def test_learned_hours_replace_defaults(self, repository, store, fixed_clock, seeded):
        for hour in (11, 11, 12):
            mid = repository.insert_micro_moment(_history_moment(hour, acknowledged=False, delivered=False))
            repository.mark_moment_delivered(mid)
            repository.record_moment_response(mid, MomentState.ACKNOWLEDGED)

        moments = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        # Learned hours 11 and 12 -> windows [10,12] and [11,13] merge to [10,13].
        [moment] = moments
        assert moment.scheduled_for.hour == 11
        assert moment.ai_confidence == pytest.approx(1.0)

    def test_preference_windows_are_added(self, repository, store, fixed_clock, seeded):
        repository.save_user_profile(UserProfile(
            user_id="user-1",
            first_name="Sam",
            preferred_time_windows=[PreferredTimeWindow("19:00", "21:00")],
        ))
        moments = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        assert sorted(m.scheduled_for.hour for m in moments) == [9, 15, 20]
        evening = next(m for m in moments if m.scheduled_for.hour == 20)
        assert evening.user_behavior_pattern == "preference"
        assert evening.ai_confidence == 0.8

    def test_daily_cap(self, store, fixed_clock, seeded):
        scheduler = _scheduler(store, fixed_clock, config=SchedulerConfig(max_moments_per_day=1))
        assert len(_run(scheduler.schedule("user-1"))) == 1

    def test_schedules_in_user_timezone(self, repository, store, fixed_clock, seeded):
        repository.save_user_profile(UserProfile(user_id="user-1", timezone="America/New_York"))
        moments = _run(_scheduler(store, fixed_clock).schedule("user-1"))
        # 05:00 local: both windows are still ahead today.
        local_hours = sorted(m.scheduled_for.hour for m in moments)
        assert local_hours == [9, 15]
        assert all(m.scheduled_for.utcoffset() == timedelta(hours=-5) for m in moments)
        assert all("time-early-morning" in m.context_factors for m in moments)

    def test_weather_context_is_recorded(self, store, fixed_clock, seeded):
        moments = _run(_scheduler(store, fixed_clock, weather=RainyWeather()).schedule("user-1"))
        assert moments[0].context_factors[0] == "weather-rain"

    def test_unknown_user(self, store, fixed_clock):
        with pytest.raises(UnknownUserError):
            _run(_scheduler(store, fixed_clock).schedule("nobody"))

    def test_weather_failure_aborts_run(self, repository, store, fixed_clock, seeded):
        with pytest.raises(DataUnavailableError) as excinfo:
            _run(_scheduler(store, fixed_clock, weather=FailingWeather()).schedule("user-1"))
        assert excinfo.value.operation == "fetch_weather_context"
        assert repository.get_micro_moments("user-1") == []

    def test_dispatch_failure_is_isolated(self, repository, store, fixed_clock, seeded):
        dispatcher = FirstCallFailsDispatcher()
        scheduler = _scheduler(store, fixed_clock, dispatcher=dispatcher)
        report = _run(scheduler.schedule_report("user-1"))
        assert len(report.items) == 2
        [failure] = report.write_failures
        assert failure.operation == "dispatch_notification"
        assert len(dispatcher.dispatched) == 1
        assert len(repository.get_micro_moments("user-1")) == 2

    def test_insert_failure_skips_dispatch(self, repository, fixed_clock, seeded):
        dispatcher = RecordingDispatcher()
        scheduler = _scheduler(FailingInsertStore(repository), fixed_clock, dispatcher=dispatcher)
        report = _run(scheduler.schedule_report("user-1"))
        assert report.items == []
        assert [f.operation for f in report.write_failures] == ["insert_micro_moment"] * 2
        assert dispatcher.dispatched == []

    def test_state_ignores_records_older_than_a_day(self, repository, store, fixed_clock):
        repository.save_user_profile(UserProfile(user_id="user-1"))
        repository.save_health_record(
            make_record(days_ago=2, category=Category.MOOD, mood={"overall": 2})
        )
        profile = repository.get_user_profile("user-1")
        now = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)
        state = _run(
            _scheduler(store, fixed_clock).current_health_state("user-1", profile, now, SchedulerConfig())
        )
        assert state.latest == {}
        assert state.mood_overall is None
