from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from reel_rankings.ranking.domain import ContentType, RankedItem


class RankedItemOut(BaseModel):
    item_id: str
    position: int
    display_score: float
    content_type: ContentType
    metadata: Dict[str, Any] = {}

    @classmethod
    def from_item(cls, item: RankedItem) -> "RankedItemOut":
        return cls(
            item_id=item.item_id,
            position=item.position,
            display_score=item.display_score,
            content_type=item.content_type,
            metadata=dict(item.metadata),
        )


class RankedListOut(BaseModel):
    content_type: ContentType
    items: List[RankedItemOut]


class ReorderRequest(BaseModel):
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class RankingCreateRequest(BaseModel):
    external_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    release_year: int | None = None
    poster_url: str | None = None
    star_rating: int | None = Field(default=None, ge=1, le=5)


class UserOut(BaseModel):
    id: int
    username: str
    display_name: str | None = None
