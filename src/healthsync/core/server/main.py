"""HealthSync server entry point — ``python -m healthsync.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from healthsync.core.config.settings import get_settings
from healthsync.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the HealthSync Insights server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.healthsync_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.healthsync_allow_insecure_bind and not _is_loopback_host(settings.healthsync_host):
        raise RuntimeError(
            "Refusing to bind HealthSync server to a non-loopback host without an auth layer. "
            "Set HEALTHSYNC_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting HealthSync Insights server on %s:%d",
        settings.healthsync_host,
        settings.healthsync_port,
    )

    mcp = create_app(settings_override=settings)
    mcp.run(
        transport="streamable-http",
        host=settings.healthsync_host,
        port=settings.healthsync_port,
    )


if __name__ == "__main__":
    run()
