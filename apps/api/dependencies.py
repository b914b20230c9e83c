"""Request-scoped dependencies: settings, database session, score policy."""

from functools import lru_cache
from typing import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from reel_rankings.config import RankingSettings, Settings, load_settings
from reel_rankings.db.session import get_session
from reel_rankings.ranking.score import ScorePolicy


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return load_settings()


def get_settings() -> Settings:
    return _load_settings()


def get_ranking_settings(settings: Settings = Depends(get_settings)) -> RankingSettings:
    return settings.ranking


def get_db_session(settings: Settings = Depends(get_settings)) -> Iterator[Session]:
    # Commits when the route returns, rolls back when it raises.
    with get_session(settings) as session:
        yield session


def get_score_policy(settings: Settings = Depends(get_settings)) -> ScorePolicy:
    return ScorePolicy.from_settings(settings)
