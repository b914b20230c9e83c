from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reel_rankings.ranking.score import ScorePolicy

from ..dependencies import get_db_session, get_score_policy


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/", summary="Readiness check with a database round trip")
def read_health(
    session: Session = Depends(get_db_session),
    policy: ScorePolicy = Depends(get_score_policy),
) -> dict[str, object]:
    try:
        session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "score_range": [policy.min_score, policy.max_score],
    }
