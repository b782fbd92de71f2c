"""Integration tests for the HealthSync Insights server."""

from __future__ import annotations

import asyncio
import random

import pytest
from fastmcp import Client
from starlette.testclient import TestClient

from conftest import sleep_energy_records, tool_payload
from healthsync.core.config.settings import Settings
from healthsync.core.server.app import create_app
from healthsync.core.server.main import _is_loopback_host
from healthsync.domains.health.connectors.store import RepositoryHealthStore


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


ALL_EXPECTED_TOOLS = [
    "health_check",
    "analyze_correlations",
    "correlation_insights",
    "generate_predictions",
    "schedule_micro_moments",
    "review_correlation",
    "record_moment_response",
    "record_prediction_outcome",
    "register_user_profile",
    "log_health_record",
    "audit_summary",
    "purge_old_records",
]


class OfflineRecordStore(RepositoryHealthStore):
    async def fetch_health_records(self, user_id, since):
        raise ConnectionError("records service offline")


@pytest.fixture
def seeded(repository, profile):
    repository.save_user_profile(profile)
    repository.save_health_records(sleep_energy_records(count=12))
    return repository


@pytest.fixture
def http(seeded, insights_app):
    return TestClient(insights_app.http_app())


# ---------------------------------------------------------------------------
# MCP surface
# ---------------------------------------------------------------------------

def test_server_starts_and_lists_tools(insights_app):
    """Server should start and expose all registered tools."""
    async def _check():
        async with Client(insights_app) as client:
            tools = await client.list_tools()
            tool_names = [t.name for t in tools]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
    _run(_check())


def test_health_check_reports_wiring(seeded, insights_app):
    async def _check():
        async with Client(insights_app) as client:
            return tool_payload(await client.call_tool("health_check", {}))
    payload = _run(_check())
    assert payload["status"] == "ok"
    assert payload["records_stored"] == 12
    assert payload["weather_enabled"] is False
    assert payload["dispatch_channel"] == "log"
    assert payload["correlation_threshold"] == 0.6


def test_default_app_uses_ephemeral_store():
    """Without an encryption key the server still starts, in memory."""
    app = create_app(settings_override=Settings(_env_file=None))

    async def _check():
        async with Client(app) as client:
            return tool_payload(await client.call_tool("health_check", {}))
    payload = _run(_check())
    assert payload["storage_persistent"] is False
    assert payload["records_stored"] == 0


def test_demo_user_is_seeded():
    app = create_app(settings_override=Settings(_env_file=None, healthsync_demo_user="demo"))

    async def _check():
        async with Client(app) as client:
            health = tool_payload(await client.call_tool("health_check", {}))
            found = tool_payload(await client.call_tool("analyze_correlations", {"user_id": "demo"}))
            return health, found
    health, found = _run(_check())
    # 30 morning summaries plus evening check-ins up to now.
    assert 88 <= health["records_stored"] <= 90
    assert found["status"] == "ok"
    assert found["count"] >= 1


def test_end_to_end_record_entry_then_analysis(repository, insights_app):
    """Profile and records entered through tools feed the engines."""
    async def _check():
        async with Client(insights_app) as client:
            await client.call_tool("register_user_profile", {"user_id": "user-7"})
            for record in sleep_energy_records("user-7", count=12):
                await client.call_tool("log_health_record", {
                    "user_id": "user-7",
                    "category": "sleep",
                    "data": {
                        "sleep": {"duration": record.sleep.duration},
                        "mood": {"energy": record.mood.energy},
                    },
                    "timestamp": record.timestamp.isoformat(),
                })
            return tool_payload(await client.call_tool("analyze_correlations", {"user_id": "user-7"}))
    payload = _run(_check())
    assert payload["count"] == 1
    assert repository.count_correlations("user-7") == 1


# ---------------------------------------------------------------------------
# HTTP routes
# ---------------------------------------------------------------------------

class TestHttpRoutes:
    def test_correlations_route(self, http):
        response = http.post("/analyze/correlations/user-1")
        assert response.status_code == 200
        [correlation] = response.json()
        assert correlation["secondary_factor"] == "mood.energy"

    def test_lookback_query(self, http):
        response = http.post("/analyze/correlations/user-1?lookback_days=3")
        assert response.status_code == 200
        assert response.json() == []

    def test_bad_lookback_query(self, http):
        response = http.post("/analyze/correlations/user-1?lookback_days=soon")
        assert response.status_code == 400

    @pytest.mark.parametrize("days", ["0", "-2", "1000000"])
    def test_out_of_range_lookback_query(self, http, days):
        response = http.post(f"/analyze/correlations/user-1?lookback_days={days}")
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "InvalidRequest"
        assert body["parameter"] == "lookback_days"

    def test_predictions_route(self, http):
        response = http.post("/analyze/predictions/user-1")
        assert response.status_code == 200
        assert len(response.json()) == 10

    def test_micro_moments_route_empty_list(self, http):
        response = http.post("/schedule/micro-moments/user-1")
        assert response.status_code == 200
        assert response.json() == []

    def test_unknown_user_is_400(self, http):
        response = http.post("/analyze/predictions/ghost")
        assert response.status_code == 400
        assert response.json() == {"error": "UnknownUser", "user_id": "ghost"}

    def test_unavailable_data_is_424(self, seeded, fixed_clock):
        app = create_app(
            settings_override=Settings(_env_file=None),
            repository_override=seeded,
            store_override=OfflineRecordStore(seeded),
            clock=fixed_clock,
            rng=random.Random(0),
        )
        response = TestClient(app.http_app()).post("/analyze/correlations/user-1")
        assert response.status_code == 424
        assert response.json() == {
            "error": "DataUnavailable",
            "user_id": "user-1",
            "operation": "fetch_health_records",
        }


# ---------------------------------------------------------------------------
# Entry point guard
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    ("host", "expected"),
    [("127.0.0.1", True), ("localhost", True), ("::1", True), ("0.0.0.0", False), ("10.1.2.3", False)],
)
def test_loopback_detection(host, expected):
    assert _is_loopback_host(host) is expected
