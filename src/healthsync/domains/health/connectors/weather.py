"""Weather context providers for micro-moment scheduling."""

from __future__ import annotations

import logging

import httpx

from healthsync.core.storage.models import WeatherContext

logger = logging.getLogger(__name__)


class NullWeatherProvider:
    """No weather context. Used when no weather service is configured."""

    async def fetch_weather_context(self, location: str | None) -> WeatherContext | None:
        return None


class HttpWeatherProvider:
    """Looks up current conditions from an HTTP weather service.

    Expects ``GET {url}?location=...`` to answer with JSON carrying
    ``temperature`` and ``condition``. A 404 means the location is unknown and
    yields None; any other error status raises ``httpx.HTTPStatusError``.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def fetch_weather_context(self, location: str | None) -> WeatherContext | None:
        if not location:
            return None

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.get(self._url, params={"location": location})

        if response.status_code == 404:
            logger.info("No weather data for location")
            return None
        response.raise_for_status()

        data = response.json()
        temperature = data.get("temperature")
        condition = data.get("condition")
        return WeatherContext(
            temperature=float(temperature) if isinstance(temperature, (int, float)) else None,
            condition=str(condition) if condition else None,
        )
