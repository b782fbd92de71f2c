"""Audit logger — PHI-free trail of engine runs, tool calls and deletions.

Every correlation/prediction/scheduling run is recorded with its duration,
outcome and result count. User ids and tool inputs are stored only as a
SHA-256 hash of canonical JSON, never raw.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from healthsync.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'analysis_run' | 'tool_invocation' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` table.

    Writes are committed immediately. A failed write is logged and dropped so
    the audit trail never aborts the operation being audited.

    Usage::

        audit = AuditLogger(db)
        audit.log_analysis_run(
            operation="analyze_correlations",
            user_id="user-1",
            duration_ms=12.5,
            result_count=3,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its id ("" if the write failed)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat(timespec="microseconds")
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":")) if event.metadata else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_analysis_run(
        self,
        operation: str,
        user_id: str,
        *,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        result_count: int = 0,
        write_failures: int = 0,
    ) -> str:
        """Log one engine run for one user."""
        return self.log_event(AuditEvent(
            action="analysis_run",
            tool_name=operation,
            tool_input_hash=_hash_input({"user_id": user_id}),
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata={"result_count": result_count, "write_failures": write_failures},
        ))

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an MCP tool invocation; the input is hashed, never stored."""
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion (retention purge)."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally filtered by action and start time."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]

    def count_failures(self, *, since: str | None = None) -> int:
        """Count events whose status is 'failure'."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE status = 'failure' AND timestamp >= ?",
                (since,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE status = 'failure'"
            ).fetchone()
        return row[0]
