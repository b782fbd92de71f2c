"""Error kinds raised by the insight engines.

Insufficient data and malformed record values are deliberately absent here:
the first is an empty result, the second an absent value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


class InsightsError(Exception):
    """Base class for insight engine errors."""


class DataUnavailableError(InsightsError):
    """A read from the store or a context provider failed or timed out.

    Aborts the run for this user only.
    """

    def __init__(self, user_id: str, operation: str, reason: str = "") -> None:
        self.user_id = user_id
        self.operation = operation
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Data unavailable for user {user_id!r} during {operation}{detail}")


class InvalidRequestError(InsightsError):
    """A request parameter is outside the range the engines accept."""

    def __init__(self, user_id: str, parameter: str, reason: str) -> None:
        self.user_id = user_id
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"Invalid {parameter} for user {user_id!r}: {reason}")


class UnknownUserError(InsightsError):
    """No profile exists for the requested user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Unknown user: {user_id!r}")


@dataclass
class WriteFailure:
    """One failed upsert/insert/dispatch in a batch. Logged, never raised."""

    user_id: str
    operation: str
    key: str
    error_type: str


@dataclass
class RunReport(Generic[T]):
    """Items produced by one engine run plus the writes that failed."""

    items: list[T] = field(default_factory=list)
    write_failures: list[WriteFailure] = field(default_factory=list)
