"""HealthStore backed by the local insights repository (SQLite)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime

from healthsync.core.storage.models import (
    Correlation,
    HealthRecord,
    MicroMoment,
    PredictionRecord,
    Significance,
    UserProfile,
    ValidationStatus,
)
from healthsync.core.storage.repository import InsightsRepository

logger = logging.getLogger(__name__)


class RepositoryHealthStore:
    """Async adapter over the synchronous ``InsightsRepository``.

    Each repository call runs in a worker thread (the connection is opened
    with ``check_same_thread=False``) so the engines' store timeouts can
    abandon a slow read and a batch over many users overlaps its I/O.
    """

    def __init__(self, repository: InsightsRepository) -> None:
        self._repo = repository

    @property
    def repository(self) -> InsightsRepository:
        return self._repo

    async def fetch_health_records(self, user_id: str, since: datetime) -> list[HealthRecord]:
        return await asyncio.to_thread(self._repo.get_health_records, user_id, since=since)

    async def fetch_correlations(
        self,
        user_id: str,
        *,
        significance: Iterable[Significance] | None = None,
        validation_status: ValidationStatus | None = None,
        limit: int | None = None,
    ) -> list[Correlation]:
        return await asyncio.to_thread(
            self._repo.get_correlations,
            user_id,
            significance=significance,
            validation_status=validation_status,
            limit=limit,
        )

    async def fetch_recent_micro_moments(
        self, user_id: str, since: datetime, *, acknowledged: bool | None = None
    ) -> list[MicroMoment]:
        return await asyncio.to_thread(
            self._repo.get_micro_moments, user_id, since=since, acknowledged=acknowledged
        )

    async def fetch_user_profile(self, user_id: str) -> UserProfile | None:
        return await asyncio.to_thread(self._repo.get_user_profile, user_id)

    async def upsert_correlation(self, correlation: Correlation) -> Correlation:
        return await asyncio.to_thread(self._repo.upsert_correlation, correlation)

    async def insert_prediction_record(self, prediction: PredictionRecord) -> str:
        return await asyncio.to_thread(self._repo.insert_prediction, prediction)

    async def insert_micro_moment(self, moment: MicroMoment) -> str:
        return await asyncio.to_thread(self._repo.insert_micro_moment, moment)
