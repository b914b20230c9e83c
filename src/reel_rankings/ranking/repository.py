from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError

from ..config import Settings
from ..db.session import get_session
from ..errors import TransientPersistenceError
from ..services import rankings as ranking_service
from .domain import ContentType, RankedItem
from .score import ScorePolicy

logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 500, 502, 503, 504}


class RankingRepository(Protocol):
    async def fetch_rankings(self, user_id: int, content_type: ContentType) -> List[RankedItem]:
        ...

    async def persist_reorder(
        self, user_id: int, content_type: ContentType, from_index: int, to_index: int
    ) -> None:
        ...

    async def persist_delete(self, user_id: int, content_type: ContentType, item_id: str) -> None:
        ...

    async def add_ranking(
        self,
        user_id: int,
        content_type: ContentType,
        payload: ranking_service.TitlePayload,
        *,
        star_rating: Optional[int] = None,
    ) -> RankedItem:
        ...


def item_from_payload(payload: Dict[str, Any], content_type: ContentType) -> RankedItem:
    return RankedItem(
        item_id=str(payload["item_id"]),
        position=int(payload["position"]),
        display_score=float(payload["display_score"]),
        content_type=content_type,
        metadata=dict(payload.get("metadata") or {}),
    )


class HttpRankingRepository:
    """Talks to the rankings API over HTTP; reads retry throttled or 5xx responses, writes only 429."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        headers = {}
        if settings.api.api_key:
            headers["X-API-Key"] = settings.api.api_key
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.api.base_url.rstrip("/"),
            headers=headers,
            timeout=settings.api.request_timeout_seconds,
        )
        self._sleep = sleep

    async def fetch_rankings(self, user_id: int, content_type: ContentType) -> List[RankedItem]:
        response = await self._request("GET", self._path(user_id, content_type))
        payload = response.json()
        items = [item_from_payload(entry, content_type) for entry in payload.get("items", [])]
        return sorted(items, key=lambda item: item.position)

    async def persist_reorder(
        self, user_id: int, content_type: ContentType, from_index: int, to_index: int
    ) -> None:
        await self._request(
            "POST",
            f"{self._path(user_id, content_type)}/reorder",
            json={"from_index": from_index, "to_index": to_index},
        )

    async def persist_delete(self, user_id: int, content_type: ContentType, item_id: str) -> None:
        await self._request("DELETE", f"{self._path(user_id, content_type)}/{item_id}")

    async def add_ranking(
        self,
        user_id: int,
        content_type: ContentType,
        payload: ranking_service.TitlePayload,
        *,
        star_rating: Optional[int] = None,
    ) -> RankedItem:
        body = {
            "external_id": payload.external_id,
            "title": payload.title,
            "release_year": payload.release_year,
            "poster_url": payload.poster_url,
            "star_rating": star_rating,
        }
        response = await self._request("POST", self._path(user_id, content_type), json=body)
        return item_from_payload(response.json(), content_type)

    async def whoami(self) -> Dict[str, Any]:
        response = await self._request("GET", "/users/me")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                raise TransientPersistenceError(f"{method} {path} failed: {exc}") from exc
            if self._should_retry(method, response.status_code) and attempt < self.settings.api.retry_limit:
                attempt += 1
                delay = self.settings.api.retry_backoff_seconds * attempt
                logger.debug("%s %s -> %d; retry %d in %.1fs", method, path, response.status_code, attempt, delay)
                await self._sleep(delay)
                continue
            if response.is_error:
                raise TransientPersistenceError(
                    f"{method} {path} returned {response.status_code}: {_error_detail(response)}"
                )
            return response

    @staticmethod
    def _should_retry(method: str, status_code: int) -> bool:
        # A 5xx on a move or delete may follow a commit; only reads replay it.
        if status_code == 429:
            return True
        return method == "GET" and status_code in RETRY_STATUSES

    @staticmethod
    def _path(user_id: int, content_type: ContentType) -> str:
        return f"/users/{user_id}/rankings/{content_type.value}"


class LocalRankingRepository:
    """In-process repository over the SQL service layer; each call gets its own session."""

    def __init__(self, settings: Settings, *, policy: Optional[ScorePolicy] = None) -> None:
        self.settings = settings
        self.policy = policy or ScorePolicy.from_settings(settings)

    async def fetch_rankings(self, user_id: int, content_type: ContentType) -> List[RankedItem]:
        return await self._run(ranking_service.fetch_rankings, user_id, content_type)

    async def persist_reorder(
        self, user_id: int, content_type: ContentType, from_index: int, to_index: int
    ) -> None:
        await self._run(
            ranking_service.apply_reorder,
            user_id,
            content_type,
            from_index,
            to_index,
            policy=self.policy,
        )

    async def persist_delete(self, user_id: int, content_type: ContentType, item_id: str) -> None:
        await self._run(ranking_service.delete_ranking, user_id, content_type, item_id)

    async def add_ranking(
        self,
        user_id: int,
        content_type: ContentType,
        payload: ranking_service.TitlePayload,
        *,
        star_rating: Optional[int] = None,
    ) -> RankedItem:
        return await self._run(
            ranking_service.add_ranking,
            user_id,
            content_type,
            payload,
            star_rating=star_rating,
            policy=self.policy,
            first_score=self.settings.ranking.first_score,
        )

    async def _run(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def call() -> Any:
            with get_session(self.settings) as session:
                return func(session, *args, **kwargs)

        try:
            return await asyncio.to_thread(call)
        except (LookupError, ValueError) as exc:
            raise TransientPersistenceError(str(exc)) from exc
        except SQLAlchemyError as exc:
            raise TransientPersistenceError(f"{func.__name__} failed: {exc}") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and "detail" in payload:
        return str(payload["detail"])
    return str(payload)[:200]
