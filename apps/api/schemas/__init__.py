"""Pydantic schemas for API requests and responses."""

from .rankings import (
    RankedItemOut,
    RankedListOut,
    RankingCreateRequest,
    ReorderRequest,
    UserOut,
)

__all__ = [
    "RankedItemOut",
    "RankedListOut",
    "RankingCreateRequest",
    "ReorderRequest",
    "UserOut",
]
