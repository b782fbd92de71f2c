"""Notification dispatchers that hand scheduled micro-moments to delivery.

Dispatch only queues a moment for delivery; the delivered/acknowledged states
are recorded later through the repository by the response pipeline.
"""

from __future__ import annotations

import logging

import httpx

from healthsync.core.storage.models import MicroMoment
from healthsync.domains.health.connectors import NotificationDispatcher

logger = logging.getLogger(__name__)


class LoggingDispatcher:
    """Logs each moment instead of delivering it. Always available; stateless."""

    async def dispatch(self, moment: MicroMoment) -> None:
        logger.info(
            "Queued micro-moment %s (%s) for %s",
            moment.id,
            moment.type.value,
            moment.scheduled_for.isoformat(),
        )

    @property
    def channel(self) -> str:
        return "log"


class WebhookDispatcher:
    """POSTs the moment as JSON to a delivery webhook.

    Non-2xx responses raise ``httpx.HTTPStatusError`` so the scheduler records
    a write failure for that moment.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def dispatch(self, moment: MicroMoment) -> None:
        payload = moment.to_dict()
        # Never ship the health snapshot to a third party.
        payload.pop("health_snapshot", None)

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload)
        response.raise_for_status()
        logger.info("Webhook accepted micro-moment %s (%d)", moment.id, response.status_code)

    @property
    def channel(self) -> str:
        return "webhook"


class FanOutDispatcher:
    """Dispatches to several dispatchers in order.

    Every dispatcher is attempted; if any failed, the first error is re-raised
    after the rest have run.
    """

    def __init__(self, dispatchers: list[NotificationDispatcher]) -> None:
        if not dispatchers:
            raise ValueError("At least one dispatcher is required")
        self._dispatchers = dispatchers

    async def dispatch(self, moment: MicroMoment) -> None:
        first_error: Exception | None = None
        for dispatcher in self._dispatchers:
            try:
                await dispatcher.dispatch(moment)
            except Exception as exc:
                logger.warning(
                    "Dispatcher %s failed for micro-moment %s: %s",
                    dispatcher.channel,
                    moment.id,
                    type(exc).__name__,
                )
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    @property
    def channel(self) -> str:
        return "+".join(d.channel for d in self._dispatchers)
