from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from reel_rankings.config import RankingSettings
from reel_rankings.db import models
from reel_rankings.errors import RankingValidationError
from reel_rankings.ranking.domain import ContentType
from reel_rankings.ranking.score import ScorePolicy
from reel_rankings.services import rankings as ranking_service

from ..auth import require_owner
from ..dependencies import get_db_session, get_ranking_settings, get_score_policy
from ..schemas import RankedItemOut, RankedListOut, RankingCreateRequest, ReorderRequest


router = APIRouter(prefix="/users/{user_id}/rankings", tags=["rankings"])


def _list_out(content_type: ContentType, items) -> RankedListOut:
    return RankedListOut(
        content_type=content_type,
        items=[RankedItemOut.from_item(item) for item in items],
    )


@router.get("/{content_type}", response_model=RankedListOut, summary="Ranked list for one content type")
def read_rankings(
    content_type: ContentType,
    user: models.User = Depends(require_owner),
    session: Session = Depends(get_db_session),
) -> RankedListOut:
    items = ranking_service.fetch_rankings(session, user.id, content_type)
    return _list_out(content_type, items)


@router.post(
    "/{content_type}",
    response_model=RankedItemOut,
    status_code=status.HTTP_201_CREATED,
    summary="Append a newly ranked title",
)
def create_ranking(
    content_type: ContentType,
    payload: RankingCreateRequest,
    user: models.User = Depends(require_owner),
    session: Session = Depends(get_db_session),
    policy: ScorePolicy = Depends(get_score_policy),
    ranking_settings: RankingSettings = Depends(get_ranking_settings),
) -> RankedItemOut:
    try:
        item = ranking_service.add_ranking(
            session,
            user.id,
            content_type,
            ranking_service.TitlePayload(
                external_id=payload.external_id,
                title=payload.title,
                release_year=payload.release_year,
                poster_url=payload.poster_url,
            ),
            star_rating=payload.star_rating,
            policy=policy,
            first_score=ranking_settings.first_score,
        )
    except RankingValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return RankedItemOut.from_item(item)


@router.post("/{content_type}/reorder", response_model=RankedListOut, summary="Move one ranked title")
def reorder_rankings(
    content_type: ContentType,
    payload: ReorderRequest,
    user: models.User = Depends(require_owner),
    session: Session = Depends(get_db_session),
    policy: ScorePolicy = Depends(get_score_policy),
) -> RankedListOut:
    try:
        items = ranking_service.apply_reorder(
            session,
            user.id,
            content_type,
            payload.from_index,
            payload.to_index,
            policy=policy,
        )
    except RankingValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _list_out(content_type, items)


@router.delete(
    "/{content_type}/{item_id}",
    response_model=RankedListOut,
    summary="Remove a ranked title and its review",
)
def delete_ranking(
    content_type: ContentType,
    item_id: str,
    user: models.User = Depends(require_owner),
    session: Session = Depends(get_db_session),
) -> RankedListOut:
    try:
        items = ranking_service.delete_ranking(session, user.id, content_type, item_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _list_out(content_type, items)
