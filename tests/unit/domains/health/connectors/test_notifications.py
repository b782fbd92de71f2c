"""Tests for micro-moment notification dispatchers."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import FIXED_NOW, RecordingDispatcher
from healthsync.core.storage.models import MicroMoment, MomentContent, MomentType
from healthsync.domains.health.connectors import NotificationDispatcher
from healthsync.domains.health.connectors.notifications import (
    FanOutDispatcher,
    LoggingDispatcher,
    WebhookDispatcher,
)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _moment() -> MicroMoment:
    return MicroMoment(
        id="moment-1",
        user_id="user-1",
        type=MomentType.BREATHING_EXERCISE,
        scheduled_for=FIXED_NOW,
        window_start=FIXED_NOW,
        window_end=FIXED_NOW,
        ai_confidence=0.8,
        content=MomentContent(
            title="Take a breath",
            message="Two minutes of slow breathing.",
            action_required="Breathe in for 4, out for 6",
            duration_seconds=120,
            difficulty="easy",
        ),
        health_snapshot={"mood": {"overall": 4}},
    )


class BrokenDispatcher:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    async def dispatch(self, moment):
        self.calls += 1
        raise self.error

    @property
    def channel(self) -> str:
        return "broken"


class TestLoggingDispatcher:
    def test_logs_the_queued_moment(self, caplog):
        dispatcher = LoggingDispatcher()
        assert isinstance(dispatcher, NotificationDispatcher)
        with caplog.at_level("INFO"):
            _run(dispatcher.dispatch(_moment()))
        assert dispatcher.channel == "log"
        assert "moment-1" in caplog.text
        assert "breathing-exercise" in caplog.text

    def test_keeps_no_per_moment_state(self):
        dispatcher = LoggingDispatcher()
        before = dict(vars(dispatcher))
        for _ in range(3):
            _run(dispatcher.dispatch(_moment()))
        assert vars(dispatcher) == before


class TestWebhookDispatcher:
    def test_posts_without_health_snapshot(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        dispatcher = WebhookDispatcher("http://hooks.test/moments", transport=httpx.MockTransport(handler))
        _run(dispatcher.dispatch(_moment()))

        [body] = bodies
        assert body["id"] == "moment-1"
        assert body["type"] == "breathing-exercise"
        assert "health_snapshot" not in body
        assert dispatcher.channel == "webhook"

    def test_error_status_raises(self):
        dispatcher = WebhookDispatcher(
            "http://hooks.test/moments", transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        with pytest.raises(httpx.HTTPStatusError):
            _run(dispatcher.dispatch(_moment()))


class TestFanOutDispatcher:
    def test_requires_dispatchers(self):
        with pytest.raises(ValueError):
            FanOutDispatcher([])

    def test_channel_label(self):
        webhook = WebhookDispatcher("http://hooks.test/moments")
        assert FanOutDispatcher([LoggingDispatcher(), webhook]).channel == "log+webhook"

    def test_all_attempted_and_first_error_raised(self):
        first = BrokenDispatcher(RuntimeError("first"))
        logging_dispatcher = RecordingDispatcher()
        second = BrokenDispatcher(ConnectionError("second"))
        fan_out = FanOutDispatcher([first, logging_dispatcher, second])

        with pytest.raises(RuntimeError, match="first"):
            _run(fan_out.dispatch(_moment()))
        assert first.calls == 1
        assert second.calls == 1
        assert logging_dispatcher.dispatched == ["moment-1"]

    def test_success_passes_through(self):
        a, b = RecordingDispatcher(), RecordingDispatcher()
        _run(FanOutDispatcher([a, b]).dispatch(_moment()))
        assert a.dispatched == b.dispatched == ["moment-1"]
