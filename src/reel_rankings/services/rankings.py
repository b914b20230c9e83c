"""Authoritative ranking storage: the server side of the ranking repository."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from hashlib import sha256
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, joinedload

from ..db import models
from ..errors import RankingValidationError
from ..ranking import engine
from ..ranking.domain import ContentType, RankedItem, round_score
from ..ranking.score import DEFAULT_POLICY, ScorePolicy

logger = logging.getLogger(__name__)

MIN_STARS = 1
MAX_STARS = 5


@dataclass
class TitlePayload:
    external_id: str
    title: str
    release_year: Optional[int] = None
    poster_url: Optional[str] = None


def hash_api_key(api_key: str) -> str:
    return sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> Tuple[str, str]:
    key = secrets.token_hex(24)
    return key, hash_api_key(key)


def get_or_create_user(session: Session, username: str, display_name: Optional[str] = None) -> models.User:
    stmt = select(models.User).where(models.User.username == username)
    user = session.scalars(stmt).one_or_none()
    if user:
        if display_name and user.display_name != display_name:
            user.display_name = display_name
        return user
    user = models.User(username=username, display_name=display_name)
    session.add(user)
    session.flush()
    return user


def create_api_user(
    session: Session, username: str, display_name: Optional[str] = None
) -> Tuple[models.User, str]:
    """Create (or re-key) a user and return the plaintext API key once."""
    user = get_or_create_user(session, username, display_name)
    api_key, hashed = generate_api_key()
    user.api_key_hash = hashed
    session.flush()
    return user, api_key


def get_user_by_api_key(session: Session, api_key: str) -> Optional[models.User]:
    stmt = select(models.User).where(models.User.api_key_hash == hash_api_key(api_key))
    return session.scalars(stmt).one_or_none()


def get_or_create_title(
    session: Session, content_type: ContentType, payload: TitlePayload
) -> models.Title:
    stmt = select(models.Title).where(
        models.Title.external_id == payload.external_id,
        models.Title.content_type == content_type.value,
    )
    title = session.scalars(stmt).one_or_none()
    if title:
        if payload.title and title.title != payload.title:
            title.title = payload.title
        if payload.poster_url and title.poster_url != payload.poster_url:
            title.poster_url = payload.poster_url
        if payload.release_year and not title.release_year:
            title.release_year = payload.release_year
        return title
    title = models.Title(
        external_id=payload.external_id,
        content_type=content_type.value,
        title=payload.title,
        release_year=payload.release_year,
        poster_url=payload.poster_url,
    )
    session.add(title)
    session.flush()
    return title


def fetch_rankings(session: Session, user_id: int, content_type: ContentType | str) -> List[RankedItem]:
    content_type = ContentType.parse(content_type)
    rows = _load_rows(session, user_id, content_type)
    stars = _star_ratings(session, user_id, [row.title_id for row in rows])
    return [_to_item(row, content_type, stars.get(row.title_id)) for row in rows]


def apply_reorder(
    session: Session,
    user_id: int,
    content_type: ContentType | str,
    from_index: int,
    to_index: int,
    *,
    policy: ScorePolicy = DEFAULT_POLICY,
) -> List[RankedItem]:
    """
    Move one ranking and persist the result.

    Runs the same reorder as the client, then applies the star promotion rule
    to the moved title's review. Returns the authoritative list afterwards.
    """
    content_type = ContentType.parse(content_type)
    rows = _load_rows(session, user_id, content_type, lock=True)
    items = [_to_item(row, content_type) for row in rows]
    new_items, score = engine.reorder(items, from_index, to_index, policy=policy)
    if from_index == to_index:
        return fetch_rankings(session, user_id, content_type)

    rows_by_item = {row.title.external_id: row for row in rows}
    moved_row = rows[from_index]
    moved_row.display_score = score
    _write_positions(session, [rows_by_item[item.item_id] for item in new_items])
    _promote_star_rating(session, user_id, new_items, to_index, rows_by_item)
    session.flush()
    logger.info(
        "user=%s %s: moved %s from %d to %d (score %.1f)",
        user_id,
        content_type.value,
        moved_row.title.external_id,
        from_index,
        to_index,
        score,
    )
    return fetch_rankings(session, user_id, content_type)


def delete_ranking(
    session: Session,
    user_id: int,
    content_type: ContentType | str,
    item_id: str,
) -> List[RankedItem]:
    """Remove a ranking together with the user's review of that title."""
    content_type = ContentType.parse(content_type)
    rows = _load_rows(session, user_id, content_type, lock=True)
    target = next((row for row in rows if row.title.external_id == item_id), None)
    if target is None:
        raise LookupError(f"{content_type.value} {item_id!r} is not ranked by user {user_id}")
    session.execute(
        delete(models.Review).where(
            models.Review.user_id == user_id,
            models.Review.title_id == target.title_id,
        )
    )
    session.delete(target)
    session.flush()
    _write_positions(session, [row for row in rows if row is not target])
    session.flush()
    logger.info("user=%s %s: removed %s", user_id, content_type.value, item_id)
    return fetch_rankings(session, user_id, content_type)


def add_ranking(
    session: Session,
    user_id: int,
    content_type: ContentType | str,
    payload: TitlePayload,
    *,
    star_rating: Optional[int] = None,
    policy: ScorePolicy = DEFAULT_POLICY,
    first_score: float = 10.0,
) -> RankedItem:
    """Append a newly ranked title to the bottom of the list."""
    content_type = ContentType.parse(content_type)
    if star_rating is not None and not MIN_STARS <= star_rating <= MAX_STARS:
        raise RankingValidationError(
            f"star_rating must be between {MIN_STARS} and {MAX_STARS}", intent=star_rating
        )
    title = get_or_create_title(session, content_type, payload)
    existing = session.scalars(
        select(models.Ranking).where(
            models.Ranking.user_id == user_id,
            models.Ranking.title_id == title.id,
        )
    ).one_or_none()
    if existing:
        raise RankingValidationError(
            f"{content_type.value} {payload.external_id!r} is already ranked", intent=payload.external_id
        )
    rows = _load_rows(session, user_id, content_type, lock=True)
    if rows:
        score = policy.compute(float(rows[-1].display_score), None)
    else:
        score = policy.clamp(round_score(first_score))
    ranking = models.Ranking(
        user_id=user_id,
        title_id=title.id,
        content_type=content_type.value,
        rank_position=len(rows) + 1,
        display_score=score,
    )
    session.add(ranking)
    if star_rating is not None:
        _upsert_review(session, user_id, title.id, star_rating)
    session.flush()
    ranking.title = title
    return _to_item(ranking, content_type, star_rating)


def rescore_rankings(session: Session, user_id: int, content_type: ContentType | str) -> int:
    """Overwrite every score with a linear 10 -> 1 spread by position."""
    content_type = ContentType.parse(content_type)
    rows = _load_rows(session, user_id, content_type, lock=True)
    total = len(rows)
    for row in rows:
        row.display_score = linear_score(row.rank_position, total)
    session.flush()
    return total


def linear_score(position: int, total: int) -> float:
    return round_score(10.0 - ((position - 1.0) / max(total - 1, 1)) * 9.0)


def promoted_star_rating(
    current: int, above_star: Optional[int], below_star: Optional[int]
) -> int:
    """
    Keep a moved title's stars between its new neighbors'.

    The title above caps the rating, the title below floors it. Neighbors
    without a review do not constrain anything; contradictory neighbors leave
    the rating alone.
    """
    if above_star is not None and below_star is not None and above_star < below_star:
        return current
    rating = current
    if above_star is not None:
        rating = min(rating, above_star)
    if below_star is not None:
        rating = max(rating, below_star)
    return rating


def _promote_star_rating(
    session: Session,
    user_id: int,
    new_items: Sequence[RankedItem],
    index: int,
    rows_by_item: Dict[str, models.Ranking],
) -> None:
    moved_row = rows_by_item[new_items[index].item_id]
    above, below = engine.moved_neighbors(new_items, index)
    neighbor_ids = [rows_by_item[item.item_id].title_id for item in (above, below) if item]
    stars = _star_ratings(session, user_id, [moved_row.title_id, *neighbor_ids])
    current = stars.get(moved_row.title_id)
    if current is None:
        return
    above_star = stars.get(rows_by_item[above.item_id].title_id) if above else None
    below_star = stars.get(rows_by_item[below.item_id].title_id) if below else None
    promoted = promoted_star_rating(current, above_star, below_star)
    if promoted != current:
        logger.info(
            "user=%s: %s stars %d -> %d after move",
            user_id,
            new_items[index].item_id,
            current,
            promoted,
        )
        _upsert_review(session, user_id, moved_row.title_id, promoted)


def _upsert_review(session: Session, user_id: int, title_id: int, star_rating: int) -> models.Review:
    review = session.scalars(
        select(models.Review).where(
            models.Review.user_id == user_id,
            models.Review.title_id == title_id,
        )
    ).one_or_none()
    if review:
        review.star_rating = star_rating
        review.updated_at = datetime.utcnow()
        return review
    review = models.Review(user_id=user_id, title_id=title_id, star_rating=star_rating)
    session.add(review)
    return review


def _write_positions(session: Session, ordered_rows: Sequence[models.Ranking]) -> None:
    # (user, content_type, rank_position) is unique and checked per statement,
    # so changed rows are parked on negative positions before taking final ones.
    changed = [
        (row, index)
        for index, row in enumerate(ordered_rows, start=1)
        if row.rank_position != index
    ]
    if not changed:
        return
    for row, _ in changed:
        row.rank_position = -row.id
    session.flush()
    for row, index in changed:
        row.rank_position = index
    session.flush()


def _load_rows(
    session: Session,
    user_id: int,
    content_type: ContentType,
    *,
    lock: bool = False,
) -> List[models.Ranking]:
    stmt = (
        select(models.Ranking)
        .options(joinedload(models.Ranking.title))
        .where(
            models.Ranking.user_id == user_id,
            models.Ranking.content_type == content_type.value,
        )
        .order_by(models.Ranking.rank_position.asc())
    )
    if lock:
        stmt = stmt.with_for_update(of=models.Ranking)
    return list(session.scalars(stmt).unique().all())


def _star_ratings(session: Session, user_id: int, title_ids: Sequence[int]) -> Dict[int, int]:
    if not title_ids:
        return {}
    stmt = select(models.Review.title_id, models.Review.star_rating).where(
        models.Review.user_id == user_id,
        models.Review.title_id.in_(list(title_ids)),
    )
    return {row.title_id: row.star_rating for row in session.execute(stmt)}


def _to_item(
    row: models.Ranking, content_type: ContentType, star_rating: Optional[int] = None
) -> RankedItem:
    title = row.title
    return RankedItem(
        item_id=title.external_id,
        position=row.rank_position,
        display_score=float(row.display_score),
        content_type=content_type,
        metadata={
            "title": title.title,
            "release_year": title.release_year,
            "poster_url": title.poster_url,
            "star_rating": star_rating,
        },
    )
