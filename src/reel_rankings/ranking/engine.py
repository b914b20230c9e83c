from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from ..errors import RankingValidationError
from .domain import RankedItem, find_index, renumber
from .score import DEFAULT_POLICY, ScorePolicy


def validate_move(items: Sequence[RankedItem], from_index: int, to_index: int) -> None:
    size = len(items)
    for label, index in (("from_index", from_index), ("to_index", to_index)):
        if isinstance(index, bool) or not isinstance(index, int):
            raise RankingValidationError(
                f"{label} must be an integer, got {index!r}", intent=(from_index, to_index)
            )
        if not 0 <= index < size:
            raise RankingValidationError(
                f"{label}={index} is outside a list of {size} items",
                intent=(from_index, to_index),
            )


def reorder(
    items: Sequence[RankedItem],
    from_index: int,
    to_index: int,
    *,
    policy: ScorePolicy = DEFAULT_POLICY,
) -> Tuple[List[RankedItem], float]:
    """
    Move the item at `from_index` so it ends up at `to_index`.

    `to_index` addresses the list after the item has been taken out, the usual
    splice-out/splice-in convention, so the moved item always lands at
    `to_index` of the result. Only the moved item gets a new score; every other
    item keeps its score and just has its position rewritten.
    """
    validate_move(items, from_index, to_index)
    if from_index == to_index:
        return list(items), items[from_index].display_score

    working = list(items)
    moved = working.pop(from_index)
    working.insert(to_index, moved)

    above, below = moved_neighbors(working, to_index)
    score = policy.compute(
        above.display_score if above else None,
        below.display_score if below else None,
        current=moved.display_score,
    )
    working[to_index] = moved.with_score(score)
    return renumber(working), score


def delete_item(items: Sequence[RankedItem], item_id: str) -> List[RankedItem]:
    """Drop `item_id` and close the gap; surviving scores are left alone."""
    index = find_index(items, item_id)
    if index < 0:
        return list(items)
    remaining = list(items[:index]) + list(items[index + 1 :])
    return renumber(remaining)


def moved_neighbors(
    items: Sequence[RankedItem], index: int
) -> Tuple[Optional[RankedItem], Optional[RankedItem]]:
    above = items[index - 1] if index > 0 else None
    below = items[index + 1] if index + 1 < len(items) else None
    return above, below
