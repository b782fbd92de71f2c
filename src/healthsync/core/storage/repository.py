"""Insights repository — CRUD for health records and engine outputs.

The repository mediates between the model dataclasses and the SQLite
database, using FieldEncryptor to encrypt/decrypt raw record sections.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

from healthsync.core.storage.database import HealthDatabase
from healthsync.core.storage.encryption import FieldEncryptor
from healthsync.core.storage.models import (
    MOMENT_TRANSITIONS,
    ActionableInsight,
    Category,
    Correlation,
    Direction,
    HealthRecord,
    Horizon,
    MicroMoment,
    MomentContent,
    MomentState,
    MomentType,
    PredictionRecord,
    PredictionType,
    PredictionValidation,
    PreferredTimeWindow,
    Significance,
    UserProfile,
    ValidationStatus,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime as a sortable UTC ISO 8601 string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InsightsRepository:
    """CRUD repository for the insights store.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = InsightsRepository(db, FieldEncryptor(FieldEncryptor.generate_key()))

        repo.save_health_record(record)
        records = repo.get_health_records("user-1", since=cutoff)
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @property
    def database(self) -> HealthDatabase:
        return self._db

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return to_iso(datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------

    def save_user_profile(self, profile: UserProfile) -> str:
        """Insert or replace a user profile. Returns the user id."""
        windows = [asdict(w) for w in profile.preferred_time_windows]
        conn = self._db.connection
        conn.execute(
            """INSERT INTO user_profiles
                   (user_id, first_name, timezone, location, preferred_windows_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   first_name = excluded.first_name,
                   timezone = excluded.timezone,
                   location = excluded.location,
                   preferred_windows_json = excluded.preferred_windows_json""",
            (
                profile.user_id,
                profile.first_name,
                profile.timezone or "UTC",
                profile.location,
                json.dumps(windows, separators=(",", ":")),
                profile.created_at or self._now_iso(),
            ),
        )
        conn.commit()
        logger.info("Saved profile for user %s", profile.user_id)
        return profile.user_id

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        row = self._db.connection.execute(
            "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None

        windows: list[PreferredTimeWindow] = []
        for item in _load_json(row["preferred_windows_json"], []):
            if isinstance(item, dict) and "start" in item and "end" in item:
                windows.append(PreferredTimeWindow(start=str(item["start"]), end=str(item["end"])))

        return UserProfile(
            user_id=row["user_id"],
            first_name=row["first_name"],
            timezone=row["timezone"] or "UTC",
            location=row["location"],
            preferred_time_windows=windows,
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Health records
    # ------------------------------------------------------------------

    def save_health_record(self, record: HealthRecord, *, commit: bool = True) -> str:
        """Persist a health record with its sections encrypted.

        If ``record.id`` is empty a UUID is generated.
        """
        rid = record.id or self._new_id()
        self._db.connection.execute(
            """INSERT INTO health_records
                   (id, user_id, timestamp, category, source, payload_enc, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                rid,
                record.user_id,
                to_iso(record.timestamp),
                record.category.value,
                record.source,
                self._enc.encrypt(record.to_payload()),
                record.created_at or self._now_iso(),
            ),
        )
        if commit:
            self._db.connection.commit()
        return rid

    def save_health_records(self, records: Iterable[HealthRecord]) -> list[str]:
        """Persist several records in one transaction."""
        ids = [self.save_health_record(r, commit=False) for r in records]
        self._db.connection.commit()
        logger.info("Saved %d health records", len(ids))
        return ids

    def get_health_records(
        self,
        user_id: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        category: Category | None = None,
    ) -> list[HealthRecord]:
        """Query a user's records, oldest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]

        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(to_iso(since))
        if until is not None:
            conditions.append("timestamp <= ?")
            params.append(to_iso(until))
        if category is not None:
            conditions.append("category = ?")
            params.append(category.value)

        query = (
            "SELECT * FROM health_records WHERE "
            + " AND ".join(conditions)
            + " ORDER BY timestamp ASC, created_at ASC"
        )
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count_health_records(self, user_id: str | None = None) -> int:
        if user_id is None:
            row = self._db.connection.execute("SELECT COUNT(*) FROM health_records").fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM health_records WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0]

    def purge_records_before(self, before: datetime, *, user_id: str | None = None) -> int:
        """Delete records with ``timestamp < before``. Returns rows deleted."""
        query = "DELETE FROM health_records WHERE timestamp < ?"
        params: list[Any] = [to_iso(before)]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        cursor = self._db.connection.execute(query, params)
        self._db.connection.commit()
        logger.info("Purged %d health records older than %s", cursor.rowcount, to_iso(before))
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Correlations
    # ------------------------------------------------------------------

    def upsert_correlation(self, correlation: Correlation) -> Correlation:
        """Insert or overwrite a correlation keyed by (user, primary, secondary).

        Id and validation status of an existing row are preserved.

        Returns:
            The correlation as stored.
        """
        conn = self._db.connection
        conn.execute(
            """INSERT INTO correlations (
                   id, user_id, primary_factor, secondary_factor,
                   strength, confidence, significance, direction, data_point_count,
                   method, algorithm, time_range_start, time_range_end,
                   validation_status, computed_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, primary_factor, secondary_factor) DO UPDATE SET
                   strength = excluded.strength,
                   confidence = excluded.confidence,
                   significance = excluded.significance,
                   direction = excluded.direction,
                   data_point_count = excluded.data_point_count,
                   method = excluded.method,
                   algorithm = excluded.algorithm,
                   time_range_start = excluded.time_range_start,
                   time_range_end = excluded.time_range_end,
                   computed_at = excluded.computed_at""",
            (
                correlation.id or self._new_id(),
                correlation.user_id,
                correlation.primary_factor,
                correlation.secondary_factor,
                correlation.strength,
                correlation.confidence,
                correlation.significance.value,
                correlation.direction.value,
                correlation.data_point_count,
                correlation.method,
                correlation.algorithm,
                to_iso(correlation.time_range_start),
                to_iso(correlation.time_range_end),
                correlation.validation_status.value,
                to_iso(correlation.computed_at),
            ),
        )
        conn.commit()

        row = conn.execute(
            """SELECT * FROM correlations
               WHERE user_id = ? AND primary_factor = ? AND secondary_factor = ?""",
            correlation.key,
        ).fetchone()
        return self._row_to_correlation(row)

    def get_correlations(
        self,
        user_id: str,
        *,
        significance: Iterable[Significance] | None = None,
        validation_status: ValidationStatus | None = None,
        limit: int | None = None,
    ) -> list[Correlation]:
        """Query a user's correlations, strongest |r| first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]

        if significance is not None:
            levels = [s.value for s in significance]
            if not levels:
                return []
            conditions.append(f"significance IN ({','.join('?' for _ in levels)})")
            params.extend(levels)
        if validation_status is not None:
            conditions.append("validation_status = ?")
            params.append(validation_status.value)

        query = (
            "SELECT * FROM correlations WHERE "
            + " AND ".join(conditions)
            + " ORDER BY ABS(strength) DESC, primary_factor ASC, secondary_factor ASC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_correlation(row) for row in rows]

    def count_correlations(self, user_id: str) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM correlations WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    def set_correlation_validation(
        self,
        user_id: str,
        primary_factor: str,
        secondary_factor: str,
        status: ValidationStatus,
    ) -> bool:
        """Set the review status of a correlation. Returns False if not found."""
        cursor = self._db.connection.execute(
            """UPDATE correlations SET validation_status = ?, last_validated = ?
               WHERE user_id = ? AND primary_factor = ? AND secondary_factor = ?""",
            (status.value, self._now_iso(), user_id, primary_factor, secondary_factor),
        )
        self._db.connection.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Predictions (append-only)
    # ------------------------------------------------------------------

    def insert_prediction(self, prediction: PredictionRecord) -> str:
        pid = prediction.id or self._new_id()
        factors = {
            "primary": prediction.primary_factors,
            "weights": prediction.weights,
            "correlations_used": prediction.correlations_used,
        }
        model = {
            "algorithm": prediction.algorithm,
            "version": prediction.model_version,
            "accuracy": prediction.model_accuracy,
            "training_start": to_iso(prediction.training_start),
            "training_end": to_iso(prediction.training_end),
            "training_data_points": prediction.training_data_points,
        }
        insights = [asdict(i) for i in prediction.actionable_insights]

        self._db.connection.execute(
            """INSERT INTO predictions (
                   id, user_id, prediction_type, horizon, target_date,
                   value, confidence, range_min, range_max,
                   factors_json, model_json, insights_json, created_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                pid,
                prediction.user_id,
                prediction.prediction_type.value,
                prediction.horizon.value,
                to_iso(prediction.target_date),
                prediction.value,
                prediction.confidence,
                prediction.range_min,
                prediction.range_max,
                json.dumps(factors, separators=(",", ":")),
                json.dumps(model, separators=(",", ":")),
                json.dumps(insights, separators=(",", ":")),
                prediction.created_at or self._now_iso(),
            ),
        )
        self._db.connection.commit()
        return pid

    def get_prediction(self, prediction_id: str) -> PredictionRecord | None:
        row = self._db.connection.execute(
            "SELECT * FROM predictions WHERE id = ?", (prediction_id,)
        ).fetchone()
        return self._row_to_prediction(row) if row is not None else None

    def get_predictions(
        self,
        user_id: str,
        *,
        prediction_type: PredictionType | None = None,
        horizon: Horizon | None = None,
        limit: int = 50,
    ) -> list[PredictionRecord]:
        """Query a user's predictions, newest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if prediction_type is not None:
            conditions.append("prediction_type = ?")
            params.append(prediction_type.value)
        if horizon is not None:
            conditions.append("horizon = ?")
            params.append(horizon.value)

        query = (
            "SELECT * FROM predictions WHERE "
            + " AND ".join(conditions)
            + " ORDER BY created_at DESC, target_date DESC LIMIT ?"
        )
        params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_prediction(row) for row in rows]

    def count_predictions(self, user_id: str) -> int:
        row = self._db.connection.execute(
            "SELECT COUNT(*) FROM predictions WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row[0]

    def attach_prediction_validation(
        self,
        prediction_id: str,
        actual_value: float,
        actual_date: datetime | None = None,
    ) -> PredictionRecord | None:
        """Record the observed outcome for a prediction.

        Accuracy is ``max(0, 1 - |actual - predicted| / 9)`` on the 1-10 scale.

        Returns:
            The updated prediction, or None if the id is unknown.
        """
        prediction = self.get_prediction(prediction_id)
        if prediction is None:
            return None

        accuracy = max(0.0, 1.0 - abs(actual_value - prediction.value) / 9.0)
        when = actual_date or datetime.now(timezone.utc)
        self._db.connection.execute(
            """UPDATE predictions
               SET actual_value = ?, actual_date = ?, accuracy = ?, validated = 1
               WHERE id = ?""",
            (actual_value, to_iso(when), accuracy, prediction_id),
        )
        self._db.connection.commit()
        return self.get_prediction(prediction_id)

    # ------------------------------------------------------------------
    # Micro-moments
    # ------------------------------------------------------------------

    def insert_micro_moment(self, moment: MicroMoment) -> str:
        mid = moment.id or self._new_id()
        provenance = {
            "based_on_correlations": moment.based_on_correlations,
            "context_factors": moment.context_factors,
            "user_behavior_pattern": moment.user_behavior_pattern,
            "health_snapshot": moment.health_snapshot,
        }
        self._db.connection.execute(
            """INSERT INTO micro_moments (
                   id, user_id, type, state, scheduled_for, window_start, window_end,
                   ai_confidence, content_json, provenance_json,
                   delivered_at, channel, acknowledged_at, completed_at,
                   rating, feedback, created_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                mid,
                moment.user_id,
                moment.type.value,
                moment.state.value,
                to_iso(moment.scheduled_for),
                to_iso(moment.window_start),
                to_iso(moment.window_end),
                moment.ai_confidence,
                json.dumps(asdict(moment.content), separators=(",", ":")),
                json.dumps(provenance, separators=(",", ":")),
                to_iso(moment.delivered_at),
                moment.channel,
                to_iso(moment.acknowledged_at),
                to_iso(moment.completed_at),
                moment.rating,
                moment.feedback,
                moment.created_at or self._now_iso(),
            ),
        )
        self._db.connection.commit()
        return mid

    def get_micro_moment(self, moment_id: str) -> MicroMoment | None:
        row = self._db.connection.execute(
            "SELECT * FROM micro_moments WHERE id = ?", (moment_id,)
        ).fetchone()
        return self._row_to_moment(row) if row is not None else None

    def get_micro_moments(
        self,
        user_id: str,
        *,
        since: datetime | None = None,
        acknowledged: bool | None = None,
        limit: int | None = None,
    ) -> list[MicroMoment]:
        """Query a user's micro-moments by scheduled time, oldest first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since is not None:
            conditions.append("scheduled_for >= ?")
            params.append(to_iso(since))
        if acknowledged is True:
            conditions.append("acknowledged_at IS NOT NULL")
        elif acknowledged is False:
            conditions.append("acknowledged_at IS NULL")

        query = (
            "SELECT * FROM micro_moments WHERE "
            + " AND ".join(conditions)
            + " ORDER BY scheduled_for ASC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_moment(row) for row in rows]

    def transition_moment(
        self,
        moment_id: str,
        new_state: MomentState,
        *,
        at: datetime | None = None,
        channel: str | None = None,
        rating: int | None = None,
        feedback: str | None = None,
    ) -> MicroMoment:
        """Move a micro-moment along its lifecycle.

        Raises:
            RepositoryError: If the moment does not exist or the transition
                is not allowed from its current state.
        """
        moment = self.get_micro_moment(moment_id)
        if moment is None:
            raise RepositoryError(f"Unknown micro-moment: {moment_id!r}")
        if new_state not in MOMENT_TRANSITIONS[moment.state]:
            raise RepositoryError(
                f"Invalid transition {moment.state.value} -> {new_state.value} "
                f"for micro-moment {moment_id}"
            )

        when = to_iso(at or datetime.now(timezone.utc))
        assignments = ["state = ?"]
        params: list[Any] = [new_state.value]

        if new_state is MomentState.DELIVERED:
            assignments += ["delivered_at = ?", "channel = ?"]
            params += [when, channel]
        elif new_state is MomentState.ACKNOWLEDGED:
            assignments.append("acknowledged_at = ?")
            params.append(when)
        elif new_state is MomentState.COMPLETED:
            assignments.append("completed_at = ?")
            params.append(when)
        if rating is not None:
            assignments.append("rating = ?")
            params.append(rating)
        if feedback is not None:
            assignments.append("feedback = ?")
            params.append(feedback)

        params.append(moment_id)
        self._db.connection.execute(
            f"UPDATE micro_moments SET {', '.join(assignments)} WHERE id = ?", params
        )
        self._db.connection.commit()
        logger.info(
            "Micro-moment %s: %s -> %s", moment_id, moment.state.value, new_state.value
        )
        return self.get_micro_moment(moment_id)

    def mark_moment_delivered(
        self, moment_id: str, *, channel: str = "push", at: datetime | None = None
    ) -> MicroMoment:
        return self.transition_moment(moment_id, MomentState.DELIVERED, at=at, channel=channel)

    def record_moment_response(
        self,
        moment_id: str,
        response: MomentState,
        *,
        at: datetime | None = None,
        rating: int | None = None,
        feedback: str | None = None,
    ) -> MicroMoment:
        """Record the user's response to a delivered moment.

        ``response`` is one of acknowledged, ignored, completed or dismissed;
        the state machine decides whether it is valid from the current state.
        """
        if response in (MomentState.SCHEDULED, MomentState.DELIVERED):
            raise RepositoryError(f"Not a response state: {response.value}")
        return self.transition_moment(
            moment_id, response, at=at, rating=rating, feedback=feedback
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _row_to_record(self, row: Any) -> HealthRecord:
        payload = self._enc.decrypt(row["payload_enc"] or "")
        return HealthRecord(
            id=row["id"],
            user_id=row["user_id"],
            timestamp=from_iso(row["timestamp"]),
            category=Category(row["category"]),
            source=row["source"],
            created_at=row["created_at"],
            **HealthRecord.sections_from_payload(payload),
        )

    @staticmethod
    def _row_to_correlation(row: Any) -> Correlation:
        return Correlation(
            id=row["id"],
            user_id=row["user_id"],
            primary_factor=row["primary_factor"],
            secondary_factor=row["secondary_factor"],
            strength=row["strength"],
            confidence=row["confidence"],
            significance=Significance(row["significance"]),
            direction=Direction(row["direction"]),
            data_point_count=row["data_point_count"],
            computed_at=from_iso(row["computed_at"]),
            method=row["method"],
            algorithm=row["algorithm"] or "",
            time_range_start=from_iso(row["time_range_start"]),
            time_range_end=from_iso(row["time_range_end"]),
            validation_status=ValidationStatus(row["validation_status"]),
        )

    @staticmethod
    def _row_to_prediction(row: Any) -> PredictionRecord:
        factors = _load_json(row["factors_json"], {})
        model = _load_json(row["model_json"], {})
        insights = _load_json(row["insights_json"], [])

        validation = None
        if row["validated"]:
            validation = PredictionValidation(
                actual_value=row["actual_value"],
                actual_date=from_iso(row["actual_date"]),
                accuracy=row["accuracy"],
            )

        return PredictionRecord(
            id=row["id"],
            user_id=row["user_id"],
            prediction_type=PredictionType(row["prediction_type"]),
            horizon=Horizon(row["horizon"]),
            target_date=from_iso(row["target_date"]),
            value=row["value"],
            confidence=row["confidence"],
            range_min=row["range_min"],
            range_max=row["range_max"],
            primary_factors=factors.get("primary", []),
            weights=factors.get("weights", {}),
            correlations_used=factors.get("correlations_used", []),
            algorithm=model.get("algorithm", ""),
            model_version=model.get("version", "1.0"),
            model_accuracy=model.get("accuracy", 0.0),
            training_start=from_iso(model.get("training_start")),
            training_end=from_iso(model.get("training_end")),
            training_data_points=model.get("training_data_points", 0),
            actionable_insights=[ActionableInsight(**i) for i in insights],
            validation=validation,
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_moment(row: Any) -> MicroMoment:
        provenance = _load_json(row["provenance_json"], {})
        return MicroMoment(
            id=row["id"],
            user_id=row["user_id"],
            type=MomentType(row["type"]),
            state=MomentState(row["state"]),
            scheduled_for=from_iso(row["scheduled_for"]),
            window_start=from_iso(row["window_start"]),
            window_end=from_iso(row["window_end"]),
            ai_confidence=row["ai_confidence"],
            content=MomentContent(**_load_json(row["content_json"], {})),
            based_on_correlations=provenance.get("based_on_correlations", []),
            context_factors=provenance.get("context_factors", []),
            user_behavior_pattern=provenance.get("user_behavior_pattern", ""),
            health_snapshot=provenance.get("health_snapshot", {}),
            delivered_at=from_iso(row["delivered_at"]),
            channel=row["channel"],
            acknowledged_at=from_iso(row["acknowledged_at"]),
            completed_at=from_iso(row["completed_at"]),
            rating=row["rating"],
            feedback=row["feedback"],
            created_at=row["created_at"],
        )


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default
