"""MCP tools for entering health records and user profiles.

Records land in the encrypted store and feed the next analysis run.
Device-sync adapters use the same path with their own ``source`` label.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastmcp import Context, FastMCP

from healthsync.core.storage.models import Category, HealthRecord, PreferredTimeWindow, UserProfile
from healthsync.core.storage.repository import from_iso

if TYPE_CHECKING:
    from healthsync.core.storage.repository import InsightsRepository

logger = logging.getLogger(__name__)

SOURCES = ("manual", "fitbit", "google-fit", "apple-health", "oura", "system")


def _parse_window(spec: str) -> PreferredTimeWindow | None:
    """Parse "HH:MM-HH:MM"; None if malformed."""
    start, sep, end = spec.partition("-")
    if not sep:
        return None
    try:
        for part in (start, end):
            hour, _, minute = part.strip().partition(":")
            if not (0 <= int(hour) <= 23 and 0 <= int(minute or 0) <= 59):
                return None
    except ValueError:
        return None
    return PreferredTimeWindow(start=start.strip(), end=end.strip())


def register_record_entry_tools(
    mcp: FastMCP,
    repository: InsightsRepository,
) -> None:
    """Register record and profile entry tools on the MCP server."""

    @mcp.tool
    async def register_user_profile(
        ctx: Context,
        user_id: str,
        first_name: str = "",
        timezone_name: str = "UTC",
        location: str = "",
        preferred_windows: list[str] | None = None,
    ) -> str:
        """Create or update a user profile used for scheduling and personalization.

        Args:
            user_id: Stable identifier for the user.
            first_name: Used to personalize micro-moment messages.
            timezone_name: IANA timezone, e.g. 'Europe/Lisbon' (default: UTC).
            location: City used for weather context (optional).
            preferred_windows: Delivery windows like '09:00-11:00'.
        """
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return json.dumps({"status": "error", "message": f"Unknown timezone: {timezone_name!r}"})

        windows: list[PreferredTimeWindow] = []
        for spec in preferred_windows or []:
            window = _parse_window(spec)
            if window is None:
                return json.dumps({
                    "status": "error",
                    "message": f"Malformed window {spec!r}; expected 'HH:MM-HH:MM'.",
                })
            windows.append(window)

        profile = UserProfile(
            user_id=user_id,
            first_name=first_name or None,
            timezone=timezone_name,
            location=location or None,
            preferred_time_windows=windows,
        )
        repository.save_user_profile(profile)
        logger.info("Saved profile for user %s (%d preferred windows)", user_id, len(windows))
        return json.dumps({
            "status": "saved",
            "user_id": user_id,
            "timezone": timezone_name,
            "preferred_windows": [f"{w.start}-{w.end}" for w in windows],
        })

    @mcp.tool
    async def log_health_record(
        ctx: Context,
        user_id: str,
        category: str,
        data: dict[str, dict[str, Any]],
        timestamp: str = "",
        source: str = "manual",
    ) -> str:
        """Store one health record.

        ``data`` maps section names to field values, e.g.
        ``{"sleep": {"duration": 7.5, "quality": 8}, "mood": {"energy": 7}}``.
        Sections: sleep, activity, mood, nutrition, biometric. Unknown fields
        are ignored.

        Args:
            user_id: Owner of the record.
            category: Primary data type: sleep, activity, mood, nutrition or biometric.
            data: Section values (see above).
            timestamp: When the data was captured (ISO 8601). Defaults to now.
            source: manual, fitbit, google-fit, apple-health, oura or system.
        """
        try:
            record_category = Category(category)
        except ValueError:
            return json.dumps({"status": "error", "message": f"Unknown category: {category!r}"})
        if source not in SOURCES:
            return json.dumps({"status": "error", "message": f"Unknown source: {source!r}"})

        sections = HealthRecord.sections_from_payload(data)
        if not sections:
            return json.dumps({
                "status": "error",
                "message": "data must contain at least one known section.",
            })

        try:
            when = from_iso(timestamp) if timestamp else datetime.now(timezone.utc)
        except ValueError:
            return json.dumps({"status": "error", "message": "timestamp must be ISO 8601."})

        record = HealthRecord(
            id="",
            user_id=user_id,
            timestamp=when,
            category=record_category,
            source=source,
            **sections,
        )
        record_id = repository.save_health_record(record)
        logger.info("Health record %s saved (%s, %s)", record_id, category, source)
        return json.dumps({
            "status": "saved",
            "record_id": record_id,
            "category": category,
            "sections": sorted(sections),
            "timestamp": when.isoformat(),
        })
