"""MCP tools for the audit trail and record retention.

The audit trail is PHI-free: it records which engine or tool ran, when, how
long it took and whether it failed, with user references hashed.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from healthsync.core.audit.logger import AuditLogger
    from healthsync.core.storage.repository import InsightsRepository

logger = logging.getLogger(__name__)


def register_audit_tools(
    mcp: FastMCP,
    audit_logger: AuditLogger,
    repository: InsightsRepository,
) -> None:
    """Register audit trail and retention tools on the MCP server."""

    @mcp.tool
    async def audit_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """View recent engine runs, tool calls and deletions.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        recent_events = audit_logger.get_events(since=since, limit=20)
        display_events = [
            {
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "tool_name": event.get("tool_name"),
                "status": event.get("status"),
                "error_type": event.get("error_type"),
                "duration_ms": event.get("duration_ms"),
            }
            for event in recent_events
        ]

        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "analysis_runs": audit_logger.count_events(action="analysis_run", since=since),
            "failures": audit_logger.count_failures(since=since),
            "recent_events": display_events,
            "note": "This audit trail contains no health data.",
        }, indent=2)

    @mcp.tool
    async def purge_old_records(
        ctx: Context,
        older_than_days: int = 365,
        user_id: str = "",
    ) -> str:
        """Delete health records older than a number of days.

        Correlations and predictions already computed are kept.

        Args:
            older_than_days: Delete records older than this many days (default: 365).
            user_id: Limit the purge to one user (default: all users).
        """
        if older_than_days < 1:
            return json.dumps({
                "status": "error",
                "message": "older_than_days must be at least 1.",
            })

        start_time = time.monotonic()
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        count = repository.purge_records_before(cutoff, user_id=user_id or None)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if count > 0:
            audit_logger.log_data_delete(
                tool_name="purge_old_records",
                count=count,
                metadata={"older_than_days": older_than_days, "scoped": bool(user_id)},
            )

        return json.dumps({
            "status": "purged",
            "records_deleted": count,
            "older_than_days": older_than_days,
            "duration_ms": round(elapsed_ms, 1),
        })
