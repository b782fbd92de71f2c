"""InsightsService — per-user orchestration of the three insight engines.

Each operation checks that the user exists, runs the engine, and writes a
PHI-free audit event (hashed user reference, duration, status, counts).
``run_batch`` fans one operation out over many users with bounded
concurrency; a failure for one user never affects another.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from healthsync.core.storage.models import (
    Correlation,
    CorrelationInsight,
    MicroMoment,
    PredictionRecord,
    UserProfile,
)
from healthsync.domains.health.connectors import HealthStore
from healthsync.domains.health.domain_logic.correlation_engine import CorrelationEngine
from healthsync.domains.health.domain_logic.errors import (
    DataUnavailableError,
    InsightsError,
    RunReport,
    UnknownUserError,
    WriteFailure,
)
from healthsync.domains.health.domain_logic.guards import guarded_read
from healthsync.domains.health.domain_logic.micro_moment_scheduler import MicroMomentScheduler
from healthsync.domains.health.domain_logic.prediction_engine import PredictionEngine

if TYPE_CHECKING:
    from healthsync.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    ANALYZE_CORRELATIONS = "analyze_correlations"
    GENERATE_PREDICTIONS = "generate_predictions"
    SCHEDULE_MICRO_MOMENTS = "schedule_micro_moments"


class RunStatus(str, Enum):
    SUCCESS = "success"
    DATA_UNAVAILABLE = "data_unavailable"
    UNKNOWN_USER = "unknown_user"
    ERROR = "error"


@dataclass
class UserRunResult:
    """Outcome of one user's run inside a batch."""

    user_id: str
    operation: Operation
    status: RunStatus
    items: list[Any] = field(default_factory=list)
    write_failures: list[WriteFailure] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "operation": self.operation.value,
            "status": self.status.value,
            "result_count": len(self.items),
            "write_failures": [
                {"operation": f.operation, "key": f.key, "error_type": f.error_type}
                for f in self.write_failures
            ],
            "error": self.error,
        }


class InsightsService:
    """Entry point for tools, HTTP routes and scheduled batch jobs.

    Usage::

        service = InsightsService(store, correlations, predictions, scheduler, audit)
        correlations = await service.analyze_correlations("user-1")
        results = await service.run_batch(["user-1", "user-2"], Operation.GENERATE_PREDICTIONS)
    """

    def __init__(
        self,
        store: HealthStore,
        correlation_engine: CorrelationEngine,
        prediction_engine: PredictionEngine,
        scheduler: MicroMomentScheduler,
        audit_logger: AuditLogger | None = None,
        *,
        max_concurrency: int = 4,
        store_timeout_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._correlations = correlation_engine
        self._predictions = prediction_engine
        self._scheduler = scheduler
        self._audit = audit_logger
        self._max_concurrency = max(1, max_concurrency)
        self._store_timeout = store_timeout_seconds

    # ------------------------------------------------------------------
    # Single-user operations
    # ------------------------------------------------------------------

    async def analyze_correlations(
        self, user_id: str, lookback_days: int | None = None
    ) -> list[Correlation]:
        report = await self.run(Operation.ANALYZE_CORRELATIONS, user_id, lookback_days=lookback_days)
        return report.items

    async def generate_predictions(self, user_id: str) -> list[PredictionRecord]:
        report = await self.run(Operation.GENERATE_PREDICTIONS, user_id)
        return report.items

    async def schedule_micro_moments(self, user_id: str) -> list[MicroMoment]:
        report = await self.run(Operation.SCHEDULE_MICRO_MOMENTS, user_id)
        return report.items

    async def correlation_insights(self, user_id: str) -> list[CorrelationInsight]:
        await self.require_user(user_id)
        return await self._correlations.derive_insights(user_id)

    async def require_user(self, user_id: str) -> UserProfile:
        """Return the user's profile.

        Raises:
            UnknownUserError: If no profile exists.
            DataUnavailableError: If the profile lookup fails.
        """
        profile = await guarded_read(
            self._store.fetch_user_profile(user_id),
            user_id=user_id,
            operation="fetch_user_profile",
            timeout=self._store_timeout,
        )
        if profile is None:
            raise UnknownUserError(user_id)
        return profile

    async def run(
        self, operation: Operation, user_id: str, *, lookback_days: int | None = None
    ) -> RunReport:
        """Run one operation for one user and audit the outcome.

        Raises:
            UnknownUserError: If the user has no profile.
            DataUnavailableError: If a read fails or times out.
            InvalidRequestError: If a request parameter is out of range.

        Unexpected exceptions are audited as failures and re-raised.
        """
        start_time = time.monotonic()
        try:
            await self.require_user(user_id)
            report = await self._runner(operation, user_id, lookback_days)()
        except InsightsError as exc:
            self._audit_run(
                operation, user_id, start_time, status="failure", error_type=type(exc).__name__
            )
            logger.warning("%s failed for user %s: %s", operation.value, user_id, exc)
            raise
        except Exception as exc:
            self._audit_run(
                operation, user_id, start_time, status="failure", error_type=type(exc).__name__
            )
            raise

        self._audit_run(
            operation,
            user_id,
            start_time,
            status="partial" if report.write_failures else "success",
            result_count=len(report.items),
            write_failures=len(report.write_failures),
        )
        return report

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def run_batch(
        self, user_ids: Iterable[str], operation: Operation
    ) -> dict[str, UserRunResult]:
        """Run ``operation`` for every user, at most ``max_concurrency`` at a time."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(user_id: str) -> UserRunResult:
            async with semaphore:
                return await self._run_isolated(operation, user_id)

        unique_ids = list(dict.fromkeys(user_ids))
        results = await asyncio.gather(*(_one(uid) for uid in unique_ids))
        by_status: dict[str, int] = {}
        for result in results:
            by_status[result.status.value] = by_status.get(result.status.value, 0) + 1
        logger.info("Batch %s over %d users: %s", operation.value, len(unique_ids), by_status)
        return {result.user_id: result for result in results}

    async def _run_isolated(self, operation: Operation, user_id: str) -> UserRunResult:
        try:
            report = await self.run(operation, user_id)
        except UnknownUserError as exc:
            return UserRunResult(user_id, operation, RunStatus.UNKNOWN_USER, error=str(exc))
        except DataUnavailableError as exc:
            return UserRunResult(user_id, operation, RunStatus.DATA_UNAVAILABLE, error=str(exc))
        except Exception as exc:
            logger.exception("%s crashed for user %s", operation.value, user_id)
            return UserRunResult(user_id, operation, RunStatus.ERROR, error=type(exc).__name__)
        return UserRunResult(
            user_id,
            operation,
            RunStatus.SUCCESS,
            items=report.items,
            write_failures=report.write_failures,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _runner(
        self, operation: Operation, user_id: str, lookback_days: int | None
    ) -> Callable[[], Awaitable[RunReport]]:
        if operation is Operation.ANALYZE_CORRELATIONS:
            return lambda: self._correlations.analyze_report(user_id, lookback_days)
        if operation is Operation.GENERATE_PREDICTIONS:
            return lambda: self._predictions.predict_report(user_id)
        return lambda: self._scheduler.schedule_report(user_id)

    def _audit_run(
        self,
        operation: Operation,
        user_id: str,
        start_time: float,
        *,
        status: str,
        error_type: str | None = None,
        result_count: int = 0,
        write_failures: int = 0,
    ) -> None:
        if self._audit is None:
            return
        self._audit.log_analysis_run(
            operation.value,
            user_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
            status=status,
            error_type=error_type,
            result_count=result_count,
            write_failures=write_failures,
        )
