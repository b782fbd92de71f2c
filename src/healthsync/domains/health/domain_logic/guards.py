"""Bounded, classified calls to external collaborators.

Reads fail fast: any exception or timeout becomes DataUnavailableError.
Writes fail soft: the failure is logged and returned as a WriteFailure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from healthsync.domains.health.domain_logic.errors import DataUnavailableError, WriteFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded_read(
    call: Awaitable[T],
    *,
    user_id: str,
    operation: str,
    timeout: float,
) -> T:
    """Await a read with a timeout, converting any failure to DataUnavailableError."""
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise DataUnavailableError(user_id, operation, f"timed out after {timeout}s") from None
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        raise DataUnavailableError(user_id, operation, type(exc).__name__) from exc


async def guarded_write(
    call: Awaitable[T],
    *,
    user_id: str,
    operation: str,
    key: str,
    timeout: float,
) -> tuple[T | None, WriteFailure | None]:
    """Await a write with a timeout; log and report failure instead of raising."""
    try:
        return await asyncio.wait_for(call, timeout=timeout), None
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.exception(
            "%s failed for user %s (key=%s); continuing with remaining items",
            operation,
            user_id,
            key,
        )
        return None, WriteFailure(
            user_id=user_id,
            operation=operation,
            key=key,
            error_type=type(exc).__name__,
        )
