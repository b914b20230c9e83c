from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Mapping, Sequence


class ContentType(str, enum.Enum):
    MOVIE = "movie"
    TV = "tv"

    @classmethod
    def parse(cls, value: "ContentType | str") -> "ContentType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown content type: {value!r}") from None


@dataclass(frozen=True)
class RankedItem:
    item_id: str
    position: int
    display_score: float
    content_type: ContentType
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def with_position(self, position: int) -> "RankedItem":
        if position == self.position:
            return self
        return replace(self, position=position)

    def with_score(self, display_score: float) -> "RankedItem":
        return replace(self, display_score=display_score)


def round_score(value: float) -> float:
    """Round half-up to one decimal place (9.95 -> 10.0, not banker's 9.9)."""
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def renumber(items: Iterable[RankedItem]) -> List[RankedItem]:
    return [item.with_position(index) for index, item in enumerate(items, start=1)]


def is_dense(items: Sequence[RankedItem]) -> bool:
    return [item.position for item in items] == list(range(1, len(items) + 1))


def find_index(items: Sequence[RankedItem], item_id: str) -> int:
    for index, item in enumerate(items):
        if item.item_id == item_id:
            return index
    return -1
