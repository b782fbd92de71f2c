"""MCP tools that run the insight engines and manage their outputs.

Engine tools return the produced list as JSON. An empty list is a normal
answer ("nothing significant yet"); errors come back as a status payload
naming the error kind.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from healthsync.core.storage.models import MomentState, ValidationStatus
from healthsync.core.storage.repository import RepositoryError, from_iso
from healthsync.domains.health.domain_logic.errors import (
    DataUnavailableError,
    InvalidRequestError,
    UnknownUserError,
)

if TYPE_CHECKING:
    from healthsync.core.audit.logger import AuditLogger
    from healthsync.core.storage.repository import InsightsRepository
    from healthsync.domains.health.domain_logic.service import InsightsService

logger = logging.getLogger(__name__)


def error_payload(
    exc: UnknownUserError | DataUnavailableError | InvalidRequestError,
) -> dict[str, Any]:
    """Status payload for the engine error kinds."""
    if isinstance(exc, UnknownUserError):
        return {"status": "error", "error": "unknown_user", "message": str(exc)}
    if isinstance(exc, InvalidRequestError):
        return {
            "status": "error",
            "error": "invalid_request",
            "parameter": exc.parameter,
            "message": str(exc),
        }
    return {
        "status": "error",
        "error": "data_unavailable",
        "operation": exc.operation,
        "message": str(exc),
    }


def register_analysis_tools(
    mcp: FastMCP,
    service: InsightsService,
    repository: InsightsRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register engine and review tools on the MCP server."""

    def _audit(tool_name: str, tool_input: dict, start_time: float, status: str = "success") -> None:
        if audit_logger is not None:
            audit_logger.log_tool_call(
                tool_name,
                tool_input,
                duration_ms=(time.monotonic() - start_time) * 1000,
                status=status,
            )

    @mcp.tool
    async def analyze_correlations(
        ctx: Context,
        user_id: str,
        lookback_days: int | None = None,
    ) -> str:
        """Find strong correlations between the user's health factors.

        Correlates every pair of tracked factors (sleep, activity, mood,
        nutrition, biometrics) over the lookback window and stores pairs with
        |r| >= 0.6 over at least 10 data points.

        Args:
            user_id: The user to analyze.
            lookback_days: How many days of records to consider (default: the
                configured correlation lookback, 30 unless overridden).
        """
        try:
            correlations = await service.analyze_correlations(user_id, lookback_days)
        except (UnknownUserError, DataUnavailableError, InvalidRequestError) as exc:
            return json.dumps(error_payload(exc))
        return json.dumps({
            "status": "ok",
            "user_id": user_id,
            "count": len(correlations),
            "correlations": [c.to_dict() for c in correlations],
        }, indent=2)

    @mcp.tool
    async def correlation_insights(ctx: Context, user_id: str) -> str:
        """Plain-language insights and recommendations from strong correlations.

        Args:
            user_id: The user whose stored correlations to explain.
        """
        try:
            insights = await service.correlation_insights(user_id)
        except (UnknownUserError, DataUnavailableError) as exc:
            return json.dumps(error_payload(exc))
        return json.dumps({
            "status": "ok",
            "user_id": user_id,
            "insights": [i.to_dict() for i in insights],
        }, indent=2)

    @mcp.tool
    async def generate_predictions(ctx: Context, user_id: str) -> str:
        """Forecast energy, mood, sleep quality, productivity and health score.

        Produces a 1-day and a 1-week forecast per type, each with a
        confidence band and suggested actions. Needs at least 7 records in
        the last 30 days.

        Args:
            user_id: The user to forecast for.
        """
        try:
            predictions = await service.generate_predictions(user_id)
        except (UnknownUserError, DataUnavailableError) as exc:
            return json.dumps(error_payload(exc))
        return json.dumps({
            "status": "ok",
            "user_id": user_id,
            "count": len(predictions),
            "predictions": [p.to_dict() for p in predictions],
        }, indent=2)

    @mcp.tool
    async def schedule_micro_moments(ctx: Context, user_id: str) -> str:
        """Schedule today's micro-moment nudges for a user.

        Args:
            user_id: The user to schedule for.
        """
        try:
            moments = await service.schedule_micro_moments(user_id)
        except (UnknownUserError, DataUnavailableError) as exc:
            return json.dumps(error_payload(exc))
        return json.dumps({
            "status": "ok",
            "user_id": user_id,
            "count": len(moments),
            "micro_moments": [m.to_dict() for m in moments],
        }, indent=2)

    @mcp.tool
    async def review_correlation(
        ctx: Context,
        user_id: str,
        primary_factor: str,
        secondary_factor: str,
        decision: str,
    ) -> str:
        """Confirm or reject a discovered correlation.

        Only confirmed correlations drive micro-moment selection.

        Args:
            user_id: Owner of the correlation.
            primary_factor: e.g. 'sleep.duration'.
            secondary_factor: e.g. 'mood.energy'.
            decision: 'confirmed', 'rejected' or 'validating'.
        """
        start_time = time.monotonic()
        try:
            status = ValidationStatus(decision)
        except ValueError:
            return json.dumps({
                "status": "error",
                "message": "decision must be one of: confirmed, rejected, validating.",
            })

        updated = repository.set_correlation_validation(
            user_id, primary_factor, secondary_factor, status
        )
        _audit("review_correlation", {"user_id": user_id, "decision": decision}, start_time)
        if not updated:
            return json.dumps({
                "status": "not_found",
                "message": f"No correlation {primary_factor} / {secondary_factor} for this user.",
            })
        return json.dumps({
            "status": "updated",
            "primary_factor": primary_factor,
            "secondary_factor": secondary_factor,
            "validation_status": status.value,
        })

    @mcp.tool
    async def record_moment_response(
        ctx: Context,
        moment_id: str,
        state: str,
        channel: str = "push",
        rating: int | None = None,
        feedback: str = "",
    ) -> str:
        """Record delivery of, or the user's response to, a micro-moment.

        Allowed progressions: scheduled -> delivered -> acknowledged|ignored,
        acknowledged -> completed|dismissed, ignored -> dismissed.

        Args:
            moment_id: The micro-moment id.
            state: 'delivered', 'acknowledged', 'ignored', 'completed' or 'dismissed'.
            channel: Delivery channel, used with state='delivered'.
            rating: Optional 1-5 rating of the moment.
            feedback: Optional free-text feedback.
        """
        start_time = time.monotonic()
        try:
            new_state = MomentState(state)
        except ValueError:
            return json.dumps({"status": "error", "message": f"Unknown state: {state!r}"})

        try:
            if new_state is MomentState.DELIVERED:
                moment = repository.mark_moment_delivered(moment_id, channel=channel)
            else:
                moment = repository.record_moment_response(
                    moment_id, new_state, rating=rating, feedback=feedback or None
                )
        except RepositoryError as exc:
            _audit("record_moment_response", {"moment_id": moment_id}, start_time, "failure")
            return json.dumps({"status": "error", "message": str(exc)})

        _audit("record_moment_response", {"moment_id": moment_id, "state": state}, start_time)
        return json.dumps({"status": "updated", "micro_moment": moment.to_dict()}, indent=2)

    @mcp.tool
    async def record_prediction_outcome(
        ctx: Context,
        prediction_id: str,
        actual_value: float,
        actual_date: str = "",
    ) -> str:
        """Record the observed value for a past prediction to track accuracy.

        Args:
            prediction_id: The prediction id.
            actual_value: Observed value on the 1-10 scale.
            actual_date: When it was observed (ISO 8601). Defaults to now.
        """
        start_time = time.monotonic()
        try:
            when = from_iso(actual_date) if actual_date else datetime.now(timezone.utc)
        except ValueError:
            return json.dumps({"status": "error", "message": "actual_date must be ISO 8601."})
        prediction = repository.attach_prediction_validation(prediction_id, actual_value, when)
        _audit("record_prediction_outcome", {"prediction_id": prediction_id}, start_time)
        if prediction is None:
            return json.dumps({
                "status": "not_found",
                "message": "No prediction found with that ID.",
            })
        return json.dumps({
            "status": "validated",
            "prediction_id": prediction_id,
            "predicted_value": prediction.value,
            "actual_value": actual_value,
            "accuracy": prediction.validation.accuracy if prediction.validation else None,
        })
