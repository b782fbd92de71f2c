"""Shared test fixtures for HealthSync insights tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("WEATHER_API_URL", "")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "")
    monkeypatch.setenv("HEALTHSYNC_DEMO_USER", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from healthsync.core.storage.models import (  # noqa: E402
    ActivityData,
    Category,
    HealthRecord,
    MoodData,
    NutritionData,
    SleepData,
    UserProfile,
)
from healthsync.domains.health.connectors.notifications import LoggingDispatcher  # noqa: E402

# A Wednesday, mid-morning UTC.
FIXED_NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


def make_record(
    user_id: str = "user-1",
    *,
    days_ago: float = 0,
    now: datetime = FIXED_NOW,
    category: Category = Category.SLEEP,
    sleep: dict[str, Any] | None = None,
    activity: dict[str, Any] | None = None,
    mood: dict[str, Any] | None = None,
    nutrition: dict[str, Any] | None = None,
) -> HealthRecord:
    """Create a record ``days_ago`` before ``now`` with the given sections."""
    return HealthRecord(
        id="",
        user_id=user_id,
        timestamp=now - timedelta(days=days_ago),
        category=category,
        sleep=SleepData(**sleep) if sleep is not None else None,
        activity=ActivityData(**activity) if activity is not None else None,
        mood=MoodData(**mood) if mood is not None else None,
        nutrition=NutritionData(**nutrition) if nutrition is not None else None,
    )


def sleep_energy_records(
    user_id: str = "user-1", count: int = 12, now: datetime = FIXED_NOW
) -> list[HealthRecord]:
    """Daily records where energy tracks sleep duration exactly, oldest first."""
    durations = [6.0, 7.5, 5.5, 8.0, 6.5, 7.0, 9.0, 5.0, 8.5, 6.0, 7.5, 8.0, 6.5, 7.0]
    records = []
    for i in range(count):
        duration = durations[i % len(durations)]
        records.append(make_record(
            user_id,
            days_ago=count - i,
            now=now,
            sleep={"duration": duration},
            mood={"energy": duration - 1.0},
        ))
    return records


class FixedClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingDispatcher(LoggingDispatcher):
    """LoggingDispatcher that also remembers the ids it dispatched."""

    def __init__(self) -> None:
        self.dispatched: list[str] = []

    async def dispatch(self, moment) -> None:
        await super().dispatch(moment)
        self.dispatched.append(moment.id)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from healthsync.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from healthsync.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def repository(health_db, field_encryptor):
    """Create an InsightsRepository backed by in-memory SQLite."""
    from healthsync.core.storage.repository import InsightsRepository

    return InsightsRepository(health_db, field_encryptor)


@pytest.fixture
def store(repository):
    """HealthStore adapter over the in-memory repository."""
    from healthsync.domains.health.connectors.store import RepositoryHealthStore

    return RepositoryHealthStore(repository)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from healthsync.core.audit.logger import AuditLogger

    return AuditLogger(health_db)


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(user_id="user-1", first_name="Sam", timezone="UTC")


# ---------------------------------------------------------------------------
# MCP client helpers
# ---------------------------------------------------------------------------

def tool_payload(result: Any) -> Any:
    """Decode the JSON text returned by ``Client.call_tool``."""
    import json

    content = getattr(result, "content", result)
    return json.loads(content[0].text)


@pytest.fixture
def insights_app(repository, fixed_clock):
    """A server wired to the in-memory repository and the fixed clock."""
    import random

    from healthsync.core.config.settings import Settings
    from healthsync.core.server.app import create_app

    return create_app(
        settings_override=Settings(_env_file=None),
        repository_override=repository,
        clock=fixed_clock,
        rng=random.Random(0),
    )
