"""HealthSync Insights MCP Server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging
import random

from fastmcp import FastMCP

from healthsync.core.audit.logger import AuditLogger
from healthsync.core.config.settings import Settings, get_settings
from healthsync.core.server.routes import register_http_routes
from healthsync.core.storage.database import HealthDatabase
from healthsync.core.storage.encryption import EncryptionError, FieldEncryptor
from healthsync.core.storage.repository import InsightsRepository
from healthsync.domains.health.connectors import HealthStore, NotificationDispatcher, WeatherProvider
from healthsync.domains.health.connectors.mock_data import generate_mock_records, mock_user_profile
from healthsync.domains.health.connectors.notifications import (
    FanOutDispatcher,
    LoggingDispatcher,
    WebhookDispatcher,
)
from healthsync.domains.health.connectors.store import RepositoryHealthStore
from healthsync.domains.health.connectors.weather import HttpWeatherProvider, NullWeatherProvider
from healthsync.domains.health.domain_logic.correlation_engine import CorrelationEngine
from healthsync.domains.health.domain_logic.engine_config import (
    Clock,
    CorrelationConfig,
    PredictionConfig,
    SchedulerConfig,
    utc_now,
)
from healthsync.domains.health.domain_logic.micro_moment_scheduler import MicroMomentScheduler
from healthsync.domains.health.domain_logic.prediction_engine import PredictionEngine
from healthsync.domains.health.domain_logic.service import InsightsService
from healthsync.domains.health.tools.analysis_tools import register_analysis_tools
from healthsync.domains.health.tools.audit_tools import register_audit_tools
from healthsync.domains.health.tools.record_entry_tools import register_record_entry_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "HealthSync Insights"
SERVER_VERSION = "0.1.0"


def _open_repository(settings: Settings) -> tuple[InsightsRepository, bool]:
    """Open the configured store. Returns (repository, persistent)."""
    if settings.encryption_key:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
            database = HealthDatabase(settings.db_path)
            database.initialize()
            logger.info(
                "Insights store initialized: %s (schema v%d)",
                settings.db_path,
                database.get_schema_version(),
            )
            return InsightsRepository(database, encryptor), True
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)

    logger.warning(
        "No usable ENCRYPTION_KEY configured; using an in-memory store with an "
        "ephemeral key. Nothing survives a restart."
    )
    database = HealthDatabase(":memory:")
    database.initialize()
    return InsightsRepository(database, FieldEncryptor(FieldEncryptor.generate_key())), False


def _build_dispatcher(settings: Settings) -> NotificationDispatcher:
    if settings.notification_webhook_url:
        logger.info("Micro-moments dispatched to webhook")
        return FanOutDispatcher([
            LoggingDispatcher(),
            WebhookDispatcher(settings.notification_webhook_url, timeout=settings.context_timeout_seconds),
        ])
    logger.warning("No NOTIFICATION_WEBHOOK_URL configured; micro-moments are only logged")
    return LoggingDispatcher()


def _seed_demo_user(repository: InsightsRepository, user_id: str) -> None:
    if repository.get_user_profile(user_id) is not None:
        return
    repository.save_user_profile(mock_user_profile(user_id))
    repository.save_health_records(generate_mock_records(user_id))
    logger.info("Seeded demo user %s with synthetic records", user_id)


def create_app(
    *,
    settings_override: Settings | None = None,
    repository_override: InsightsRepository | None = None,
    store_override: HealthStore | None = None,
    weather_override: WeatherProvider | None = None,
    dispatcher_override: NotificationDispatcher | None = None,
    clock: Clock = utc_now,
    rng: random.Random | None = None,
) -> FastMCP:
    """Create and configure the HealthSync Insights server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the encrypted insights store (in-memory if no key is set)
    3. Wires the store, weather and notification collaborators
    4. Builds the three engines and the service that orchestrates them
    5. Registers MCP tools and the plain HTTP routes
    """
    settings = settings_override or get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "HealthSync insights server. Finds correlations between a user's "
            "sleep, activity, mood, nutrition and biometric data, forecasts "
            "energy, mood and related scores, and schedules short wellbeing "
            "nudges (micro-moments) at the times the user tends to respond."
        ),
    )

    # --- Storage ---
    if repository_override is not None:
        repository, persistent = repository_override, True
    else:
        repository, persistent = _open_repository(settings)
    audit_logger = AuditLogger(repository.database)

    if settings.healthsync_demo_user:
        _seed_demo_user(repository, settings.healthsync_demo_user)

    # --- Collaborators ---
    store = store_override or RepositoryHealthStore(repository)
    if weather_override is not None:
        weather = weather_override
    elif settings.weather_api_url:
        weather = HttpWeatherProvider(settings.weather_api_url, timeout=settings.context_timeout_seconds)
    else:
        weather = NullWeatherProvider()
    dispatcher = dispatcher_override or _build_dispatcher(settings)

    # --- Engines ---
    service = InsightsService(
        store,
        CorrelationEngine(store, CorrelationConfig.from_settings(settings), clock),
        PredictionEngine(store, PredictionConfig.from_settings(settings), clock),
        MicroMomentScheduler(
            store, weather, dispatcher, SchedulerConfig.from_settings(settings), clock, rng
        ),
        audit_logger,
        max_concurrency=settings.batch_max_concurrency,
        store_timeout_seconds=settings.store_timeout_seconds,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "storage_persistent": persistent,
            "records_stored": repository.count_health_records(),
            "weather_enabled": not isinstance(weather, NullWeatherProvider),
            "dispatch_channel": dispatcher.channel,
            "correlation_threshold": settings.correlation_threshold,
            "min_data_points": settings.min_data_points,
        }

    register_analysis_tools(server, service, repository, audit_logger)
    register_record_entry_tools(server, repository)
    register_audit_tools(server, audit_logger, repository)
    logger.info("Insight, record entry and audit tools registered")

    # --- Register HTTP routes ---
    register_http_routes(server, service)

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this attribute is accessed (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
