"""Collaborator contracts for the insight engines.

The engines read records and write results through ``HealthStore``, look up
environmental context through ``WeatherProvider`` and hand scheduled
micro-moments to a ``NotificationDispatcher``. None of them know whether the
other side is SQLite, an HTTP service or a test double.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable

from healthsync.core.storage.models import (
    Correlation,
    HealthRecord,
    MicroMoment,
    PredictionRecord,
    Significance,
    UserProfile,
    ValidationStatus,
    WeatherContext,
)


@runtime_checkable
class HealthStore(Protocol):
    """Inbound reads and outbound writes of the engines."""

    async def fetch_health_records(self, user_id: str, since: datetime) -> list[HealthRecord]:
        """Records with ``timestamp >= since``, oldest first."""
        ...

    async def fetch_correlations(
        self,
        user_id: str,
        *,
        significance: Iterable[Significance] | None = None,
        validation_status: ValidationStatus | None = None,
        limit: int | None = None,
    ) -> list[Correlation]:
        """Persisted correlations, strongest |r| first."""
        ...

    async def fetch_recent_micro_moments(
        self, user_id: str, since: datetime, *, acknowledged: bool | None = None
    ) -> list[MicroMoment]:
        ...

    async def fetch_user_profile(self, user_id: str) -> UserProfile | None:
        ...

    async def upsert_correlation(self, correlation: Correlation) -> Correlation:
        """Insert or overwrite by (user_id, primary_factor, secondary_factor)."""
        ...

    async def insert_prediction_record(self, prediction: PredictionRecord) -> str:
        ...

    async def insert_micro_moment(self, moment: MicroMoment) -> str:
        ...


@runtime_checkable
class WeatherProvider(Protocol):
    """Environmental context for scheduling."""

    async def fetch_weather_context(self, location: str | None) -> WeatherContext | None:
        """Current weather at ``location``; None when unknown."""
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Delivery channel for scheduled micro-moments."""

    async def dispatch(self, moment: MicroMoment) -> None:
        """Hand ``moment`` to the delivery pipeline. Raises on failure."""
        ...

    @property
    def channel(self) -> str:
        """Label for the delivery channel: 'log', 'webhook', ..."""
        ...
