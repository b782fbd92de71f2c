"""Plain HTTP invocation surface for the insight engines.

Served next to the MCP endpoint on the same app:

- ``POST /analyze/correlations/{user_id}``  (optional ``?lookback_days=N``)
- ``POST /analyze/predictions/{user_id}``
- ``POST /schedule/micro-moments/{user_id}``

200 with the produced list (possibly empty), 424 when an upstream read
failed, 400 for an unknown user or an out-of-range parameter.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from healthsync.domains.health.domain_logic.errors import (
    DataUnavailableError,
    InvalidRequestError,
    UnknownUserError,
)

if TYPE_CHECKING:
    from healthsync.domains.health.domain_logic.service import InsightsService

logger = logging.getLogger(__name__)


async def _respond(call: Callable[[], Awaitable[list[Any]]]) -> JSONResponse:
    try:
        items = await call()
    except UnknownUserError as exc:
        return JSONResponse({"error": "UnknownUser", "user_id": exc.user_id}, status_code=400)
    except InvalidRequestError as exc:
        return JSONResponse(
            {
                "error": "InvalidRequest",
                "user_id": exc.user_id,
                "parameter": exc.parameter,
                "message": exc.reason,
            },
            status_code=400,
        )
    except DataUnavailableError as exc:
        return JSONResponse(
            {"error": "DataUnavailable", "user_id": exc.user_id, "operation": exc.operation},
            status_code=424,
        )
    return JSONResponse([item.to_dict() for item in items], status_code=200)


def register_http_routes(server: FastMCP, service: InsightsService) -> None:
    """Register the engine routes as custom routes on the MCP server."""

    @server.custom_route("/analyze/correlations/{user_id}", methods=["POST"])
    async def analyze_correlations_route(request: Request) -> JSONResponse:
        user_id = request.path_params["user_id"]
        raw_days = request.query_params.get("lookback_days")
        try:
            lookback_days = int(raw_days) if raw_days else None
        except ValueError:
            return JSONResponse({"error": "lookback_days must be an integer"}, status_code=400)
        return await _respond(lambda: service.analyze_correlations(user_id, lookback_days))

    @server.custom_route("/analyze/predictions/{user_id}", methods=["POST"])
    async def generate_predictions_route(request: Request) -> JSONResponse:
        user_id = request.path_params["user_id"]
        return await _respond(lambda: service.generate_predictions(user_id))

    @server.custom_route("/schedule/micro-moments/{user_id}", methods=["POST"])
    async def schedule_micro_moments_route(request: Request) -> JSONResponse:
        user_id = request.path_params["user_id"]
        return await _respond(lambda: service.schedule_micro_moments(user_id))
