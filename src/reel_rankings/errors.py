from __future__ import annotations

from typing import Any, Optional

REORDER_FAILED_MESSAGE = "Failed to save new order. Please try again."
DELETE_FAILED_MESSAGE = "Failed to remove from rankings. Please try again."


class RankingError(Exception):
    """Base class for ranking failures."""


class RankingValidationError(RankingError, ValueError):
    """A move or delete intent that cannot apply to the current list."""

    def __init__(self, message: str, *, intent: Optional[Any] = None) -> None:
        super().__init__(message)
        self.intent = intent


class TransientPersistenceError(RankingError):
    """The remote store did not accept a mutation; safe to retry."""

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class ReloadError(RankingError):
    """Fetching the authoritative list after a mutation failed."""
