"""Gamification error taxonomy.

The engine either returns a valid result or raises one of these. Callers
decide what to show the user; ``is_retryable`` tells them whether running
the same operation again can succeed.
"""

from __future__ import annotations

from typing import Any


class GamificationError(Exception):
    """Base class for all engine errors."""

    is_retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigValidationError(GamificationError, ValueError):
    """An admin tried to store a gamification config that breaks an invariant."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class EventValidationError(GamificationError, ValueError):
    """XP event definition is inconsistent (bad window, missing target user...)."""


class StoreUnavailableError(GamificationError):
    """A read or write against the stats/events/achievements store failed."""

    is_retryable = True


class ConcurrentUpdateError(StoreUnavailableError):
    """Stats row kept changing underneath us; retry budget exhausted."""
