"""Synthetic health records for demos and tests.

Each day has a morning device-sync summary (category ``sleep``, every
section filled) for a plausible adult: sleep drives next-day energy and mood,
steps lift mood a little, everything else is noise. Evening activity and mood
check-ins follow, so the latest record per category stays current. Output is
fully determined by the arguments.
"""

from __future__ import annotations

import math
import random
import uuid
from datetime import datetime, timedelta, timezone

from healthsync.core.storage.models import (
    ActivityData,
    BiometricData,
    Category,
    HealthRecord,
    MoodData,
    NutritionData,
    SleepData,
    UserProfile,
)


def generate_mock_records(
    user_id: str,
    *,
    days: int = 30,
    end: datetime | None = None,
    seed: int = 7,
) -> list[HealthRecord]:
    """Return ``days`` days of records ending at ``end``, oldest first.

    Check-ins that would fall after ``end`` are left out.
    """
    rng = random.Random(seed)
    end = end or datetime.now(timezone.utc)
    first_day = (end - timedelta(days=days - 1)).replace(hour=7, minute=0, second=0, microsecond=0)
    if first_day > end - timedelta(days=days - 1):
        first_day -= timedelta(days=1)

    records: list[HealthRecord] = []
    for i in range(days):
        sleep_hours = 7.0 + 1.2 * math.sin(i * 0.7) + rng.uniform(-0.3, 0.3)
        sleep_quality = min(10.0, max(1.0, 1.1 * sleep_hours - 1.0 + rng.uniform(-0.5, 0.5)))
        energy = min(10.0, max(1.0, 0.9 * sleep_hours + rng.uniform(-0.4, 0.4)))
        steps = 6000 + 2500 * math.cos(i * 0.45) + rng.uniform(-800, 800)
        mood = min(10.0, max(1.0, 3.0 + 0.35 * energy + steps / 4000 + rng.uniform(-0.6, 0.6)))

        morning = first_day + timedelta(days=i)
        records.append(
            HealthRecord(
                id=_record_id(rng),
                user_id=user_id,
                timestamp=morning,
                category=Category.SLEEP,
                source="fitbit",
                sleep=SleepData(
                    duration=round(sleep_hours, 2),
                    quality=round(sleep_quality, 1),
                    efficiency=round(rng.uniform(82, 94), 1),
                    deep_sleep=round(sleep_hours * 0.2, 2),
                    rem_sleep=round(sleep_hours * 0.22, 2),
                ),
                activity=ActivityData(
                    steps=round(steps),
                    distance=round(steps * 0.00075, 2),
                    calories=round(1900 + steps * 0.04 + rng.uniform(-80, 80)),
                    active_minutes=round(20 + steps / 250 + rng.uniform(-5, 5)),
                ),
                mood=MoodData(
                    overall=round(mood, 1),
                    energy=round(energy, 1),
                    stress=round(rng.uniform(3, 6), 1),
                    focus=round(min(10.0, max(1.0, energy + rng.uniform(-1, 1))), 1),
                ),
                nutrition=NutritionData(
                    calories=round(rng.uniform(1800, 2300)),
                    protein=round(rng.uniform(60, 110)),
                    water=round(rng.uniform(1.5, 2.8), 2),
                ),
                biometric=BiometricData(
                    weight=round(72.0 + rng.uniform(-0.4, 0.4), 1),
                    resting_heart_rate=round(62 + rng.uniform(-3, 3)),
                ),
            )
        )

        activity_at = morning + timedelta(hours=11)
        evening_steps = steps * rng.uniform(0.6, 0.8)
        if activity_at <= end:
            records.append(
                HealthRecord(
                    id=_record_id(rng),
                    user_id=user_id,
                    timestamp=activity_at,
                    category=Category.ACTIVITY,
                    source="apple-health",
                    activity=ActivityData(
                        steps=round(evening_steps),
                        active_minutes=round(15 + evening_steps / 250 + rng.uniform(-5, 5)),
                    ),
                )
            )

        mood_at = morning + timedelta(hours=13)
        evening_mood = min(10.0, max(1.0, mood + rng.uniform(-1.0, 1.0)))
        if mood_at <= end:
            records.append(
                HealthRecord(
                    id=_record_id(rng),
                    user_id=user_id,
                    timestamp=mood_at,
                    category=Category.MOOD,
                    mood=MoodData(
                        overall=round(evening_mood, 1),
                        stress=round(rng.uniform(2, 7), 1),
                    ),
                )
            )
    return records


def _record_id(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128)))


def mock_user_profile(user_id: str) -> UserProfile:
    return UserProfile(user_id=user_id, first_name="Alex", timezone="UTC", location="Lisbon")
