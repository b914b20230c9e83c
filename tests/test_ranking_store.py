import asyncio
from typing import Dict, List, Optional

import pytest

from reel_rankings.config import DatabaseSettings, RankingSettings, Settings
from reel_rankings.errors import (
    DELETE_FAILED_MESSAGE,
    REORDER_FAILED_MESSAGE,
    TransientPersistenceError,
)
from reel_rankings.ranking import engine
from reel_rankings.ranking.domain import ContentType, RankedItem
from reel_rankings.ranking.store import RankingStore
from reel_rankings.services.rankings import TitlePayload

MOVIE = ContentType.MOVIE
TV = ContentType.TV


def make_list(content_type, *pairs) -> List[RankedItem]:
    return [
        RankedItem(item_id=item_id, position=index, display_score=score, content_type=content_type)
        for index, (item_id, score) in enumerate(pairs, start=1)
    ]


def summary(items):
    return [(item.item_id, item.position, item.display_score) for item in items]


class FakeRepository:
    def __init__(self, lists: Optional[Dict[ContentType, List[RankedItem]]] = None):
        self.lists = {ct: list(items) for ct, items in (lists or {}).items()}
        self.calls: list[tuple] = []
        self.fail_fetch = False
        self.fail_reorder = False
        self.fail_delete = False
        self.gate: Optional[asyncio.Event] = None
        self.fetch_gate: Optional[asyncio.Event] = None

    async def fetch_rankings(self, user_id, content_type):
        self.calls.append(("fetch", user_id, content_type))
        if self.fail_fetch:
            raise TransientPersistenceError("fetch timed out")
        snapshot = list(self.lists.get(content_type, []))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        return snapshot

    async def persist_reorder(self, user_id, content_type, from_index, to_index):
        self.calls.append(("reorder", user_id, content_type, from_index, to_index))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_reorder:
            raise TransientPersistenceError("503 Service Unavailable")
        self.lists[content_type], _ = engine.reorder(self.lists[content_type], from_index, to_index)

    async def persist_delete(self, user_id, content_type, item_id):
        self.calls.append(("delete", user_id, content_type, item_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_delete:
            raise TransientPersistenceError("503 Service Unavailable")
        self.lists[content_type] = engine.delete_item(self.lists[content_type], item_id)

    async def add_ranking(self, user_id, content_type, payload, *, star_rating=None):
        self.calls.append(("add", user_id, content_type, payload.external_id))
        items = self.lists.setdefault(content_type, [])
        score = round(items[-1].display_score - 0.2, 1) if items else 10.0
        item = RankedItem(
            item_id=payload.external_id,
            position=len(items) + 1,
            display_score=score,
            content_type=content_type,
            metadata={"title": payload.title, "star_rating": star_rating},
        )
        items.append(item)
        return item

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


def default_lists():
    return {
        MOVIE: make_list(MOVIE, ("A", 9.0), ("B", 7.0), ("C", 5.0)),
        TV: make_list(TV, ("X", 8.0), ("Y", 4.0)),
    }


async def loaded_store(repository, **kwargs) -> RankingStore:
    store = RankingStore(repository, user_id=7, **kwargs)
    await store.select(MOVIE)
    return store


@pytest.mark.asyncio
async def test_first_load_shows_loading_indicator():
    store = RankingStore(FakeRepository(default_lists()), user_id=7)
    task = store.select(MOVIE)
    assert store.is_loading(MOVIE)
    assert store.get_list(MOVIE) == []
    await task
    assert not store.is_loading(MOVIE)
    assert summary(store.items) == [("A", 1, 9.0), ("B", 2, 7.0), ("C", 3, 5.0)]


@pytest.mark.asyncio
async def test_switching_back_to_loaded_partition_uses_cache():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    tv_task = store.select(TV)
    assert store.is_loading(TV)
    await tv_task
    assert store.select(MOVIE) is None
    assert not store.is_loading(MOVIE)
    assert repository.count("fetch") == 2
    assert [item.item_id for item in store.get_list(TV)] == ["X", "Y"]
    assert [item.item_id for item in store.get_list(MOVIE)] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_reorder_is_visible_before_persistence_and_reloads_after():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    task = store.request_reorder(MOVIE, 2, 0)
    assert task is not None
    assert summary(store.items) == [("C", 1, 9.2), ("A", 2, 9.0), ("B", 3, 7.0)]
    assert store.is_busy(MOVIE)
    outcome = await task
    assert outcome.succeeded
    assert not store.is_busy(MOVIE)
    assert repository.calls[1] == ("reorder", 7, MOVIE, 2, 0)
    assert repository.count("fetch") == 2
    assert summary(store.items) == [("C", 1, 9.2), ("A", 2, 9.0), ("B", 3, 7.0)]


@pytest.mark.asyncio
async def test_reload_after_reorder_picks_up_server_side_changes():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)

    async def persist_and_adjust(user_id, content_type, from_index, to_index):
        repository.lists[content_type] = make_list(MOVIE, ("B", 7.5), ("A", 9.0), ("C", 5.0))

    repository.persist_reorder = persist_and_adjust
    await store.request_reorder(MOVIE, 1, 0)
    assert summary(store.items) == [("B", 1, 7.5), ("A", 2, 9.0), ("C", 3, 5.0)]


@pytest.mark.asyncio
async def test_failed_reorder_restores_exact_previous_list():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    before = store.get_list(MOVIE)
    errors = []
    store.add_error_listener(lambda ct, message, exc: errors.append((ct, message, exc)))
    repository.fail_reorder = True
    repository.fail_fetch = True  # resync attempt fails too; rollback alone must hold
    outcome = await store.request_reorder(MOVIE, 0, 2)
    assert not outcome.succeeded
    assert store.get_list(MOVIE) == before
    assert summary(store.get_list(MOVIE)) == summary(before)
    assert errors[0][0] == MOVIE
    assert errors[0][1] == REORDER_FAILED_MESSAGE
    assert isinstance(errors[0][2], TransientPersistenceError)
    assert store.last_error == REORDER_FAILED_MESSAGE


@pytest.mark.asyncio
async def test_failed_reorder_attempts_resync():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    repository.fail_reorder = True
    await store.request_reorder(MOVIE, 0, 2)
    assert repository.count("fetch") == 2


@pytest.mark.asyncio
async def test_invalid_or_noop_reorder_never_reaches_repository():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    assert store.request_reorder(MOVIE, 0, 3) is None
    assert store.request_reorder(MOVIE, -1, 0) is None
    assert store.request_reorder(MOVIE, 1, 1) is None
    assert store.request_reorder(TV, 0, 1) is None  # partition not loaded yet
    assert repository.count("reorder") == 0
    assert [item.item_id for item in store.items] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_overlapping_gesture_is_dropped_while_saving():
    repository = FakeRepository(default_lists())
    repository.gate = asyncio.Event()
    store = await loaded_store(repository)
    first = store.request_reorder(MOVIE, 2, 0)
    assert store.request_reorder(MOVIE, 0, 1) is None
    assert store.request_delete(MOVIE, "A") is None
    repository.gate.set()
    await first
    assert repository.count("reorder") == 1
    assert repository.count("delete") == 0
    assert store.request_reorder(MOVIE, 0, 1) is not None
    await store.wait_idle()


@pytest.mark.asyncio
async def test_partitions_mutate_independently():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    await store.select(TV)
    repository.gate = asyncio.Event()
    movie_task = store.request_reorder(MOVIE, 0, 1)
    tv_task = store.request_reorder(TV, 1, 0)
    assert movie_task is not None and tv_task is not None
    repository.gate.set()
    await store.wait_idle()
    assert [item.item_id for item in store.get_list(MOVIE)] == ["B", "A", "C"]
    assert [item.item_id for item in store.get_list(TV)] == ["Y", "X"]
    assert all(item.content_type == TV for item in store.get_list(TV))


@pytest.mark.asyncio
async def test_delete_is_optimistic_and_does_not_reload_by_default():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    task = store.request_delete(MOVIE, "B")
    assert summary(store.items) == [("A", 1, 9.0), ("C", 2, 5.0)]
    outcome = await task
    assert outcome.succeeded
    assert repository.count("fetch") == 1
    assert summary(store.items) == [("A", 1, 9.0), ("C", 2, 5.0)]


@pytest.mark.asyncio
async def test_delete_can_reload_when_configured():
    settings = Settings(
        database=DatabaseSettings(url="sqlite://"),
        ranking=RankingSettings(reload_after_delete=True),
    )
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository, settings=settings)
    await store.request_delete(MOVIE, "B")
    assert repository.count("fetch") == 2


@pytest.mark.asyncio
async def test_failed_delete_restores_list_and_reports():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    before = store.get_list(MOVIE)
    messages = []
    store.add_error_listener(lambda ct, message, exc: messages.append(message))
    repository.fail_delete = True
    repository.fail_fetch = True
    outcome = await store.request_delete(MOVIE, "A")
    assert not outcome.succeeded
    assert store.get_list(MOVIE) == before
    assert messages == [DELETE_FAILED_MESSAGE]


@pytest.mark.asyncio
async def test_delete_of_unknown_item_is_ignored():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    assert store.request_delete(MOVIE, "Z") is None
    assert repository.count("delete") == 0


@pytest.mark.asyncio
async def test_emptying_the_list_exits_edit_mode():
    repository = FakeRepository({MOVIE: make_list(MOVIE, ("A", 6.0))})
    store = await loaded_store(repository)
    assert store.enter_edit_mode()
    task = store.request_delete(MOVIE, "A")
    assert store.items == []
    assert not store.edit_mode
    await task
    assert not store.enter_edit_mode()


@pytest.mark.asyncio
async def test_reload_failure_after_success_keeps_optimistic_state(caplog):
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    messages = []
    store.add_error_listener(lambda ct, message, exc: messages.append(message))
    repository.fail_fetch = True
    outcome = await store.request_reorder(MOVIE, 2, 0)
    assert outcome.succeeded
    assert messages == []
    assert summary(store.items) == [("C", 1, 9.2), ("A", 2, 9.0), ("B", 3, 7.0)]
    assert "Could not reload movie rankings" in caplog.text


@pytest.mark.asyncio
async def test_focus_refreshes_without_loading_indicator():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    repository.lists[MOVIE] = make_list(MOVIE, ("B", 7.0), ("A", 9.0))
    task = store.on_focus()
    assert task is not None
    assert store.is_refreshing(MOVIE)
    assert not store.is_loading(MOVIE)
    assert [item.item_id for item in store.items] == ["A", "B", "C"]
    await task
    assert not store.is_refreshing(MOVIE)
    assert [item.item_id for item in store.items] == ["B", "A"]
    assert not store.is_stale(MOVIE)


@pytest.mark.asyncio
async def test_expired_partition_is_refreshed_quietly():
    now = [0.0]
    settings = Settings(
        database=DatabaseSettings(url="sqlite://"),
        ranking=RankingSettings(partition_ttl_seconds=60),
    )
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository, settings=settings, clock=lambda: now[0])
    assert store.ensure_loaded(MOVIE) is None
    now[0] = 61.0
    assert store.is_stale(MOVIE)
    task = store.ensure_loaded(MOVIE)
    assert task is not None
    assert not store.is_loading(MOVIE)
    assert store.get_list(MOVIE) != []
    await task
    assert repository.count("fetch") == 2


@pytest.mark.asyncio
async def test_removed_listener_is_not_called():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    messages = []
    remove = store.add_error_listener(lambda ct, message, exc: messages.append(message))
    remove()
    repository.fail_reorder = True
    await store.request_reorder(MOVIE, 0, 1)
    assert messages == []


@pytest.mark.asyncio
async def test_refresh_started_before_delete_does_not_restore_item():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    repository.fetch_gate = asyncio.Event()
    refresh = store.on_focus()
    await asyncio.sleep(0)
    assert repository.count("fetch") == 2

    outcome = await store.request_delete(MOVIE, "B")
    assert outcome.succeeded
    repository.fetch_gate.set()
    assert await refresh is False

    assert [item.item_id for item in store.items] == ["A", "C"]
    assert [item.item_id for item in repository.lists[MOVIE]] == ["A", "C"]
    assert store.is_stale(MOVIE)


@pytest.mark.asyncio
async def test_refresh_overlapping_a_save_is_discarded_then_reloaded():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    repository.gate = asyncio.Event()
    task = store.request_reorder(MOVIE, 2, 0)
    repository.fetch_gate = asyncio.Event()
    refresh = store.on_focus()
    await asyncio.sleep(0)
    repository.gate.set()
    repository.fetch_gate.set()
    outcome = await task
    assert await refresh is False
    await store.wait_idle()
    assert repository.count("fetch") == 3

    assert outcome.succeeded
    assert summary(store.items) == [("C", 1, 9.2), ("A", 2, 9.0), ("B", 3, 7.0)]


@pytest.mark.asyncio
async def test_failing_listener_does_not_skip_other_listeners_or_resync(caplog):
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    messages = []

    def broken(ct, message, exc):
        raise RuntimeError("toast queue closed")

    store.add_error_listener(broken)
    store.add_error_listener(lambda ct, message, exc: messages.append(message))
    repository.fail_reorder = True
    outcome = await store.request_reorder(MOVIE, 0, 2)

    assert not outcome.succeeded
    assert messages == [REORDER_FAILED_MESSAGE]
    assert repository.count("fetch") == 2
    assert not store.is_busy(MOVIE)
    assert "Error listener" in caplog.text


@pytest.mark.asyncio
async def test_added_title_is_claimed_once_and_reloaded():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    token = store.offer_title(TitlePayload(external_id="D", title="Dune"))

    item = await store.add_title(MOVIE, token, star_rating=4)
    assert (item.item_id, item.position, item.display_score) == ("D", 4, 4.8)
    assert summary(store.items)[-1] == ("D", 4, 4.8)
    assert repository.count("fetch") == 2
    assert not store.is_busy(MOVIE)

    assert await store.add_title(MOVIE, token) is None
    assert repository.count("add") == 1


@pytest.mark.asyncio
async def test_add_title_is_dropped_while_saving():
    repository = FakeRepository(default_lists())
    store = await loaded_store(repository)
    token = store.offer_title(TitlePayload(external_id="D", title="Dune"))
    repository.gate = asyncio.Event()
    task = store.request_delete(MOVIE, "A")

    assert await store.add_title(MOVIE, token) is None
    repository.gate.set()
    await task
    assert repository.count("add") == 0
    assert (await store.add_title(MOVIE, token)).item_id == "D"
