"""Display score for a title dropped between two neighbors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .domain import round_score

MIN_SCORE = 1.0
MAX_SCORE = 10.0
EDGE_STEP = 0.2


@dataclass(frozen=True)
class ScorePolicy:
    edge_step: float = EDGE_STEP
    min_score: float = MIN_SCORE
    max_score: float = MAX_SCORE

    @classmethod
    def from_settings(cls, settings) -> "ScorePolicy":
        ranking = settings.ranking
        return cls(
            edge_step=ranking.edge_step,
            min_score=ranking.min_score,
            max_score=ranking.max_score,
        )

    def compute(
        self,
        above: Optional[float],
        below: Optional[float],
        current: Optional[float] = None,
    ) -> Optional[float]:
        """
        Score for an item whose new neighbors score `above` and `below`.

        Only the moved item is rescored; with no neighbors at all the current
        score is returned unchanged.
        """
        if above is not None and below is not None:
            raw = (above + below) / 2
        elif above is not None:
            raw = max(above - self.edge_step, self.min_score)
        elif below is not None:
            raw = min(below + self.edge_step, self.max_score)
        else:
            return current
        return self.clamp(round_score(raw))

    def clamp(self, value: float) -> float:
        return min(max(value, self.min_score), self.max_score)


DEFAULT_POLICY = ScorePolicy()


def compute_score(
    above: Optional[float],
    below: Optional[float],
    current: Optional[float] = None,
) -> Optional[float]:
    return DEFAULT_POLICY.compute(above, below, current)
