"""Unit tests for the profile and record entry MCP tools."""

from __future__ import annotations

import asyncio

import pytest
from fastmcp import Client

from conftest import tool_payload
from healthsync.domains.health.tools.record_entry_tools import _parse_window


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _call(app, tool: str, args: dict):
    async def _go():
        async with Client(app) as client:
            return tool_payload(await client.call_tool(tool, args))
    return _run(_go())


class TestParseWindow:
    def test_valid(self):
        window = _parse_window("09:00-11:30")
        assert (window.start, window.end) == ("09:00", "11:30")

    @pytest.mark.parametrize("spec", ["0900", "25:00-26:00", "09:00-10:75", "ab:cd-ef:gh"])
    def test_malformed(self, spec):
        assert _parse_window(spec) is None


class TestRegisterUserProfile:
    def test_saves_profile(self, repository, insights_app):
        payload = _call(insights_app, "register_user_profile", {
            "user_id": "user-9",
            "first_name": "Ana",
            "timezone_name": "Europe/Lisbon",
            "location": "Lisbon",
            "preferred_windows": ["08:00-09:00", "18:30-19:30"],
        })
        assert payload["status"] == "saved"
        stored = repository.get_user_profile("user-9")
        assert stored.timezone == "Europe/Lisbon"
        assert stored.location == "Lisbon"
        assert [(w.start, w.end) for w in stored.preferred_time_windows] == [
            ("08:00", "09:00"),
            ("18:30", "19:30"),
        ]

    def test_rejects_unknown_timezone(self, repository, insights_app):
        payload = _call(insights_app, "register_user_profile", {
            "user_id": "user-9", "timezone_name": "Mars/Olympus",
        })
        assert payload["status"] == "error"
        assert repository.get_user_profile("user-9") is None

    def test_rejects_malformed_window(self, insights_app):
        payload = _call(insights_app, "register_user_profile", {
            "user_id": "user-9", "preferred_windows": ["morning"],
        })
        assert payload["status"] == "error"


class TestLogHealthRecord:
    def test_saves_record(self, repository, insights_app):
        payload = _call(insights_app, "log_health_record", {
            "user_id": "user-1",
            "category": "sleep",
            "data": {"sleep": {"duration": 7.5, "quality": 8}, "mood": {"energy": 7}},
            "timestamp": "2026-03-03T07:00:00+00:00",
            "source": "oura",
        })
        assert payload["status"] == "saved"
        assert payload["sections"] == ["mood", "sleep"]

        [record] = repository.get_health_records("user-1")
        assert record.sleep.duration == 7.5
        assert record.mood.energy == 7
        assert record.source == "oura"

    @pytest.mark.parametrize(
        ("args", "message"),
        [
            ({"category": "dreams"}, "Unknown category"),
            ({"source": "fax"}, "Unknown source"),
            ({"data": {"horoscope": {"sign": 1}}}, "at least one known section"),
            ({"timestamp": "last tuesday"}, "ISO 8601"),
        ],
    )
    def test_validation_errors(self, repository, insights_app, args, message):
        base = {"user_id": "user-1", "category": "sleep", "data": {"sleep": {"duration": 7}}}
        payload = _call(insights_app, "log_health_record", {**base, **args})
        assert payload["status"] == "error"
        assert message in payload["message"]
        assert repository.count_health_records("user-1") == 0
