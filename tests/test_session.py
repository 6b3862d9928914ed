"""
End-to-end tests of BoardSession with a fake API and fake push transport.
"""
import asyncio
import time
from unittest.mock import MagicMock

import pytest

from boardsync.api import RequestError
from boardsync.cache import board_key, boards_key
from boardsync.channel import ConnectionStatus
from boardsync.schema import ActivityEntry, BoardEvent, Comment
from boardsync.session import BoardSession

from conftest import FakeAPI, FakeTransport, wait_for


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def session(cfg, tokens, fake_api, transport):
    s = BoardSession(cfg, token_provider=tokens, api=fake_api, transport=transport)
    yield s
    s.close()


def test_open_board_fetches_and_subscribes(session, fake_api):
    async def scenario():
        board = await session.open_board("b1")
        channel = session.hub.get("b1")
        await wait_for(lambda: channel.status == ConnectionStatus.CONNECTED)
        assert session.hub.refcount("b1") == 1
        session.close_board("b1")
        assert session.hub.refcount("b1") == 0
        return board

    board = asyncio.run(scenario())
    assert len(board.tasks) == 6
    assert fake_api.count("get_board") == 1
    assert fake_api.count("get_board_tasks") == 1


def test_failed_open_releases_channel(session, fake_api):
    fake_api.get_board = MagicMock(side_effect=RequestError(404))

    async def scenario():
        with pytest.raises(RequestError):
            await session.open_board("b1")

    asyncio.run(scenario())
    assert session.hub.refcount("b1") == 0


def test_remote_event_refetches_observed_board(session, fake_api, transport):
    updates = []

    async def scenario():
        await session.open_board("b1")
        session.subscribe(board_key("b1"), lambda key, data: updates.append(data))
        await wait_for(lambda: transport.connections)
        transport.connections[0].push(BoardEvent(type="TASK_CREATED", board_id="b1", entity_id="t9"))
        await wait_for(lambda: fake_api.count("get_board") == 2)
        await session.cache.wait_idle()

    asyncio.run(scenario())
    assert len(updates) == 1


def test_successful_move_does_not_refetch(session, fake_api):
    async def scenario():
        await session.open_board("b1")
        session.subscribe(board_key("b1"), lambda key, data: None)
        await session.move_task("b1", "a2", "B", 0)
        await session.cache.wait_idle()

    asyncio.run(scenario())
    assert fake_api.count("get_board") == 1
    assert [t.id for t in session.board("b1").column_tasks("B")] == ["a2", "b0", "b1"]


def test_event_during_move_deferred_until_settled(session, fake_api, transport):
    seen_during_request = []

    async def scenario():
        await session.open_board("b1")
        session.subscribe(board_key("b1"), lambda key, data: None)
        await wait_for(lambda: transport.connections)
        conn = transport.connections[0]

        def move_with_concurrent_edit(*args):
            session._loop.call_soon_threadsafe(
                conn.push, BoardEvent(type="TASK_CREATED", board_id="b1", entity_id="t9")
            )
            time.sleep(0.05)
            seen_during_request.append(
                (session.reconciler.is_deferred(board_key("b1")), session.cache.is_stale(board_key("b1")))
            )

        fake_api.move_task = move_with_concurrent_edit
        await session.move_task("b1", "a2", "B", 0)
        await wait_for(lambda: fake_api.count("get_board") == 2)
        await session.cache.wait_idle()

    asyncio.run(scenario())
    assert seen_during_request == [(True, False)]
    assert not session.reconciler.is_deferred(board_key("b1"))


def test_toggle_favorite(session, fake_api):
    async def scenario():
        await session.list_boards()
        await session.open_board("b1")
        await session.toggle_favorite("b1")

    asyncio.run(scenario())
    assert session.board("b1").is_favorite
    assert session.cache.get_data(boards_key())[0].is_favorite
    assert fake_api.count("toggle_favorite") == 1


def test_feed_merges_comments_and_activity(session):
    feed = asyncio.run(session.feed("b1", "t1"))
    assert [item.id for item in feed] == ["x1", "c1", "x2"]
    assert isinstance(feed[1], Comment)
    assert isinstance(feed[0], ActivityEntry)


def test_accept_invite_invalidates_board_list(session):
    async def scenario():
        await session.list_boards()
        return await session.accept_invite("abc")

    result = asyncio.run(scenario())
    assert result.board_id == "b1"
    assert session.cache.is_stale(boards_key())


def test_add_comment_invalidates_comments(session, fake_api):
    async def scenario():
        await session.comments("b1", "t1")
        await session.add_comment("b1", "t1", "looks good")

    asyncio.run(scenario())
    assert ("create_comment", "b1", "t1", "looks good") in fake_api.calls


class TestAuthHooks:

    def setup_method(self):
        self.hook = MagicMock()
        self.forbidden = MagicMock()

    def make(self, cfg, tokens):
        return BoardSession(
            cfg,
            token_provider=tokens,
            transport=FakeTransport(),
            on_auth_required=self.hook,
            on_forbidden=self.forbidden,
        )

    def test_auth_required_invalidates_everything(self, cfg, tokens):
        session = self.make(cfg, tokens)
        session.cache.set_data(boards_key(), ["b1"])
        session.api.on_auth_required()
        assert session.cache.is_stale(boards_key())
        self.hook.assert_called_once()

    def test_forbidden_keeps_data(self, cfg, tokens):
        session = self.make(cfg, tokens)
        session.cache.set_data(board_key("b1"), "board")
        session.api.on_forbidden()
        assert session.cache.is_stale(board_key("b1"))
        assert session.cache.get_data(board_key("b1")) == "board"
        self.forbidden.assert_called_once()
        self.hook.assert_not_called()


def test_close_disconnects_channels(session):
    async def scenario():
        await session.open_board("b1")
        channel = session.hub.get("b1")
        session.close()
        return channel

    channel = asyncio.run(scenario())
    assert channel.status == ConnectionStatus.DISCONNECTED
