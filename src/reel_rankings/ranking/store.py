"""Client-side view of a user's ranked lists, one partition per content type."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from ..cache import TTLCache
from ..config import RankingSettings, Settings
from ..errors import (
    DELETE_FAILED_MESSAGE,
    REORDER_FAILED_MESSAGE,
    RankingValidationError,
    ReloadError,
)
from ..handoff import HandoffChannel
from ..services.rankings import TitlePayload
from . import engine
from .domain import ContentType, RankedItem, find_index
from .optimistic import MutationOutcome, OptimisticMutation
from .repository import RankingRepository
from .score import ScorePolicy

logger = logging.getLogger(__name__)

ErrorListener = Callable[[ContentType, str, BaseException], None]


@dataclass
class PartitionState:
    loading: bool = False
    refreshing: bool = False
    in_flight: bool = False
    dirty: bool = False
    load_task: Optional[asyncio.Task] = None
    # Bumped on every local change. A fetch spanning a bump, or landing while
    # a save is outstanding, is discarded.
    generation: int = 0


class RankingStore:
    """
    Owns the in-memory ranked lists for one user and reconciles them with the
    remote repository.

    Gestures are applied to local state synchronously, before any network call
    is issued; persistence then runs as a task on the running event loop. At
    most one mutation per content type is in flight: gestures arriving while
    one is outstanding are dropped.
    """

    def __init__(
        self,
        repository: RankingRepository,
        user_id: int,
        *,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        self.ranking_settings = settings.ranking if settings else RankingSettings()
        self.policy = ScorePolicy(
            edge_step=self.ranking_settings.edge_step,
            min_score=self.ranking_settings.min_score,
            max_score=self.ranking_settings.max_score,
        )
        self.active = ContentType.MOVIE
        self.edit_mode = False
        self.last_error: Optional[str] = None
        self._lists: TTLCache[List[RankedItem]] = TTLCache(
            self.ranking_settings.partition_ttl_seconds, clock=clock
        )
        self._state: Dict[ContentType, PartitionState] = {ct: PartitionState() for ct in ContentType}
        self._listeners: List[ErrorListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self.pending_titles: HandoffChannel[TitlePayload] = HandoffChannel(clock=clock)

    # -- reading -------------------------------------------------------

    def get_list(self, content_type: ContentType | str) -> List[RankedItem]:
        content_type = ContentType.parse(content_type)
        return list(self._lists.peek(content_type) or [])

    @property
    def items(self) -> List[RankedItem]:
        return self.get_list(self.active)

    def is_loaded(self, content_type: ContentType | str) -> bool:
        return self._lists.contains(ContentType.parse(content_type))

    def is_loading(self, content_type: ContentType | str) -> bool:
        return self._state[ContentType.parse(content_type)].loading

    def is_refreshing(self, content_type: ContentType | str) -> bool:
        return self._state[ContentType.parse(content_type)].refreshing

    def is_busy(self, content_type: ContentType | str) -> bool:
        return self._state[ContentType.parse(content_type)].in_flight

    def is_stale(self, content_type: ContentType | str) -> bool:
        content_type = ContentType.parse(content_type)
        if not self._lists.contains(content_type):
            return False
        return self._state[content_type].dirty or not self._lists.has(content_type)

    # -- listeners -----------------------------------------------------

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -- partitions ----------------------------------------------------

    def select(self, content_type: ContentType | str) -> Optional[asyncio.Task]:
        content_type = ContentType.parse(content_type)
        if content_type != self.active:
            self.edit_mode = False
        self.active = content_type
        return self.ensure_loaded(content_type)

    def ensure_loaded(self, content_type: ContentType | str) -> Optional[asyncio.Task]:
        """
        Start a load for a partition if it needs one.

        A partition seen for the first time shows the loading indicator; a
        cached one that went stale is refreshed quietly behind the cached list.
        """
        content_type = ContentType.parse(content_type)
        state = self._state[content_type]
        if state.load_task is not None and not state.load_task.done():
            return state.load_task
        if self._lists.contains(content_type):
            if not self.is_stale(content_type):
                return None
            state.refreshing = True
        else:
            state.loading = True
        state.load_task = self._spawn(self._load(content_type))
        return state.load_task

    async def reload(self, content_type: ContentType | str) -> bool:
        content_type = ContentType.parse(content_type)
        state = self._state[content_type]
        if not self._lists.contains(content_type):
            state.loading = True
        try:
            return await self._fetch(content_type)
        finally:
            state.loading = False

    def on_focus(self) -> Optional[asyncio.Task]:
        """Stop trusting local state from before the screen lost focus."""
        for content_type in ContentType:
            if self._lists.contains(content_type):
                self._state[content_type].dirty = True
        return self.ensure_loaded(self.active)

    def enter_edit_mode(self) -> bool:
        self.edit_mode = bool(self.items)
        return self.edit_mode

    def exit_edit_mode(self) -> None:
        self.edit_mode = False

    # -- mutations -----------------------------------------------------

    def request_reorder(
        self, content_type: ContentType | str, from_index: int, to_index: int
    ) -> Optional[asyncio.Task]:
        content_type = ContentType.parse(content_type)
        if self._reject_if_busy(content_type, "reorder"):
            return None
        before = self.get_list(content_type)
        try:
            after, score = engine.reorder(before, from_index, to_index, policy=self.policy)
        except RankingValidationError as exc:
            logger.warning("Ignoring reorder on %s: %s", content_type.value, exc)
            return None
        if from_index == to_index:
            return None
        logger.debug(
            "%s: %s %d -> %d, new score %.1f",
            content_type.value,
            before[from_index].item_id,
            from_index,
            to_index,
            score,
        )
        mutation = OptimisticMutation(
            apply=lambda: self._apply_local(content_type, after),
            inverse=lambda: self._apply_local(content_type, before),
            remote_call=lambda: self.repository.persist_reorder(
                self.user_id, content_type, from_index, to_index
            ),
            label=f"reorder[{content_type.value}:{from_index}->{to_index}]",
            error_message=REORDER_FAILED_MESSAGE,
        )
        return self._start(content_type, mutation, reload_on_success=True)

    def request_delete(self, content_type: ContentType | str, item_id: str) -> Optional[asyncio.Task]:
        content_type = ContentType.parse(content_type)
        if self._reject_if_busy(content_type, "delete"):
            return None
        before = self.get_list(content_type)
        if find_index(before, item_id) < 0:
            logger.warning("Ignoring delete on %s: %r is not in the list", content_type.value, item_id)
            return None
        after = engine.delete_item(before, item_id)
        mutation = OptimisticMutation(
            apply=lambda: self._apply_local(content_type, after),
            inverse=lambda: self._apply_local(content_type, before),
            remote_call=lambda: self.repository.persist_delete(self.user_id, content_type, item_id),
            label=f"delete[{content_type.value}:{item_id}]",
            error_message=DELETE_FAILED_MESSAGE,
        )
        return self._start(
            content_type, mutation, reload_on_success=self.ranking_settings.reload_after_delete
        )

    def offer_title(self, payload: TitlePayload) -> str:
        """Park a picked title until the ranking step claims it with the returned token."""
        return self.pending_titles.offer(payload)

    async def add_title(
        self,
        content_type: ContentType | str,
        token: str,
        *,
        star_rating: Optional[int] = None,
    ) -> Optional[RankedItem]:
        """
        Rank the title behind a handoff token at the bottom of a partition.

        Not optimistic: the server picks the score, so the partition is
        reloaded once the title is stored. Returns None when the partition is
        busy or the token was already claimed or expired; persistence errors
        propagate.
        """
        content_type = ContentType.parse(content_type)
        if self._reject_if_busy(content_type, "add"):
            return None
        payload = self.pending_titles.claim(token)
        if payload is None:
            logger.warning("No pending title for token %s", token)
            return None
        state = self._state[content_type]
        state.in_flight = True
        try:
            item = await self.repository.add_ranking(
                self.user_id, content_type, payload, star_rating=star_rating
            )
            state.generation += 1
            await self._fetch(content_type, saving=True)
        finally:
            state.in_flight = False
        return item

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internals -----------------------------------------------------

    def _reject_if_busy(self, content_type: ContentType, action: str) -> bool:
        if self._state[content_type].in_flight:
            logger.info("Dropping %s on %s: a change is still being saved", action, content_type.value)
            return True
        return False

    def _start(
        self,
        content_type: ContentType,
        mutation: OptimisticMutation,
        *,
        reload_on_success: bool,
    ) -> asyncio.Task:
        state = self._state[content_type]
        mutation.apply_now()
        state.in_flight = True
        return self._spawn(self._settle(content_type, mutation, reload_on_success))

    async def _settle(
        self,
        content_type: ContentType,
        mutation: OptimisticMutation,
        reload_on_success: bool,
    ) -> MutationOutcome:
        state = self._state[content_type]
        try:
            outcome = await mutation.commit()
            # Fetches that overlapped the remote call may hold the pre-commit list.
            state.generation += 1
            if not outcome.succeeded:
                self._emit(content_type, outcome)
                await self._fetch(content_type, saving=True)
            elif reload_on_success:
                await self._fetch(content_type, saving=True)
            return outcome
        finally:
            state.in_flight = False

    async def _load(self, content_type: ContentType) -> bool:
        state = self._state[content_type]
        try:
            return await self._fetch(content_type)
        finally:
            state.loading = False
            state.refreshing = False

    async def _fetch(self, content_type: ContentType, *, saving: bool = False) -> bool:
        state = self._state[content_type]
        generation = state.generation
        try:
            items = await self.repository.fetch_rankings(self.user_id, content_type)
        except Exception as exc:
            error = ReloadError(f"Could not reload {content_type.value} rankings: {exc}")
            error.__cause__ = exc
            logger.warning("%s", error)
            return False
        if state.generation != generation or (state.in_flight and not saving):
            logger.debug("Discarding %s rankings fetched across a local change", content_type.value)
            state.dirty = True
            return False
        state.dirty = False
        self._replace(content_type, sorted(items, key=lambda item: item.position))
        return True

    def _apply_local(self, content_type: ContentType, items: List[RankedItem]) -> None:
        self._state[content_type].generation += 1
        self._replace(content_type, items)

    def _replace(self, content_type: ContentType, items: List[RankedItem]) -> None:
        self._lists.set(content_type, list(items))
        if content_type == self.active and not items:
            self.edit_mode = False

    def _emit(self, content_type: ContentType, outcome: MutationOutcome) -> None:
        message = outcome.user_message or ""
        self.last_error = message
        for listener in list(self._listeners):
            try:
                listener(content_type, message, outcome.error)
            except Exception:
                logger.exception("Error listener %r failed", listener)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
