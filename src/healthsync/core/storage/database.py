"""SQLite database management for the HealthSync insights store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id              TEXT PRIMARY KEY,
    first_name           TEXT,
    timezone             TEXT NOT NULL DEFAULT 'UTC',
    location             TEXT,
    preferred_windows_json TEXT,
    created_at           TEXT NOT NULL DEFAULT (datetime('now'))
);

-- One row per data capture; section data is encrypted
CREATE TABLE IF NOT EXISTS health_records (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL,
    timestamp    TEXT NOT NULL,
    category     TEXT NOT NULL,
    source       TEXT NOT NULL DEFAULT 'manual',
    payload_enc  TEXT,
    created_at   TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS correlations (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    primary_factor    TEXT NOT NULL,
    secondary_factor  TEXT NOT NULL,
    strength          REAL NOT NULL,
    confidence        REAL NOT NULL,
    significance      TEXT NOT NULL,
    direction         TEXT NOT NULL,
    data_point_count  INTEGER NOT NULL,
    method            TEXT NOT NULL DEFAULT 'pearson',
    algorithm         TEXT,
    time_range_start  TEXT,
    time_range_end    TEXT,
    validation_status TEXT NOT NULL DEFAULT 'discovered',
    last_validated    TEXT,
    computed_at       TEXT NOT NULL,
    UNIQUE (user_id, primary_factor, secondary_factor)
);

-- Append-only forecasts
CREATE TABLE IF NOT EXISTS predictions (
    id                     TEXT PRIMARY KEY,
    user_id                TEXT NOT NULL,
    prediction_type        TEXT NOT NULL,
    horizon                TEXT NOT NULL,
    target_date            TEXT NOT NULL,
    value                  REAL NOT NULL,
    confidence             REAL NOT NULL,
    range_min              REAL,
    range_max              REAL,
    factors_json           TEXT,
    model_json             TEXT,
    insights_json          TEXT,
    actual_value           REAL,
    actual_date            TEXT,
    accuracy               REAL,
    validated              INTEGER NOT NULL DEFAULT 0,
    created_at             TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS micro_moments (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    type             TEXT NOT NULL,
    state            TEXT NOT NULL DEFAULT 'scheduled',
    scheduled_for    TEXT NOT NULL,
    window_start     TEXT,
    window_end       TEXT,
    ai_confidence    REAL,
    content_json     TEXT,
    provenance_json  TEXT,
    delivered_at     TEXT,
    channel          TEXT,
    acknowledged_at  TEXT,
    completed_at     TEXT,
    rating           INTEGER,
    feedback         TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_records_user_ts     ON health_records(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_records_category    ON health_records(user_id, category, timestamp);
CREATE INDEX IF NOT EXISTS idx_corr_user_strength  ON correlations(user_id, strength);
CREATE INDEX IF NOT EXISTS idx_pred_user_target    ON predictions(user_id, target_date);
CREATE INDEX IF NOT EXISTS idx_moments_user_sched  ON micro_moments(user_id, scheduled_for);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (PHI-free record of engine runs and tool calls)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthDatabase:
    """SQLite database manager for the insights store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing and for running without an
    encryption key.

    Usage::

        with HealthDatabase(":memory:") as db:
            db.connection.execute("SELECT COUNT(*) FROM health_records")
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the connection and ensure the schema exists. Idempotent."""
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file), check_same_thread=False)
        else:
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)

        # Shared by the event loop and HTTP worker threads; access is never concurrent.
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._ensure_schema()
        logger.info("Insights database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection
        conn.executescript(_SCHEMA_V1)

        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Insights database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
