"""Ranked list model, score policy, and reorder/delete engine."""

from .domain import ContentType, RankedItem
from .engine import delete_item, reorder
from .score import ScorePolicy, compute_score

__all__ = [
    "ContentType",
    "RankedItem",
    "ScorePolicy",
    "compute_score",
    "delete_item",
    "reorder",
]
