from fastapi import APIRouter, Depends

from reel_rankings.db import models

from ..auth import require_api_user
from ..schemas import UserOut


router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut, summary="The user owning the API key")
def read_me(user: models.User = Depends(require_api_user)) -> UserOut:
    return UserOut(id=user.id, username=user.username, display_name=user.display_name)
