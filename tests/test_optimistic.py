"""
Tests for optimistic mutations: immediate cache writes, rollback on failure,
no refetch on success.
"""
import asyncio
import copy
import threading
from dataclasses import replace

import pytest

from boardsync.api import RequestError
from boardsync.cache import QueryCache, board_key, boards_key
from boardsync.optimistic import OptimisticCoordinator
from boardsync.ordering import is_dense
from boardsync.reconcile import Decision, Reconciler
from boardsync.schema import BoardEvent, BoardSummary

from conftest import FakeAPI, make_board, wait_for

KEY = board_key("b1")


class TestOptimisticCoordinator:

    def setup_method(self):
        self.api = FakeAPI()
        self.cache = QueryCache()
        self.cache.set_data(KEY, make_board())
        self.cache.set_data(boards_key(), [BoardSummary(id="b1", name="Roadmap"), BoardSummary(id="b2", name="x")])
        self.reconciler = Reconciler(self.cache)
        self.notices = []
        self.coordinator = OptimisticCoordinator(
            self.api, self.cache, self.reconciler,
            notifier=lambda message, error: self.notices.append(message),
        )

    def board(self):
        return self.cache.get_data(KEY)

    def test_move_task_applied_and_sent(self):
        asyncio.run(self.coordinator.move_task("b1", "a2", "B", 0))

        board = self.board()
        assert [t.id for t in board.column_tasks("B")] == ["a2", "b0", "b1"]
        assert [t.position for t in board.column_tasks("A")] == [0, 1, 2]
        assert self.api.calls == [("move_task", "a2", "B", 0, None, None)]
        assert not self.reconciler.is_pending("a2")
        assert self.notices == []

    def test_move_task_by_neighbour(self):
        asyncio.run(self.coordinator.move_task("b1", "a0", "B", after_task_id="b0"))
        assert [t.id for t in self.board().column_tasks("B")] == ["b0", "a0", "b1"]
        assert self.api.calls[0][3] == 1

    def test_move_within_column_excludes_moved_task(self):
        asyncio.run(self.coordinator.move_task("b1", "a0", "A", before_task_id="a3"))
        assert [t.id for t in self.board().column_tasks("A")] == ["a1", "a2", "a0", "a3"]

    def test_move_without_neighbours_goes_to_end(self):
        asyncio.run(self.coordinator.move_task("b1", "a0", "C"))
        assert [t.id for t in self.board().column_tasks("C")] == ["a0"]

    def test_noop_move_sends_nothing(self):
        asyncio.run(self.coordinator.move_task("b1", "a1", "A", 1))
        assert self.api.calls == []

    def test_failed_move_rolls_back_exactly(self):
        before = copy.deepcopy(self.board())
        self.api.fail = RequestError(500, {"message": "boom"})

        with pytest.raises(RequestError):
            asyncio.run(self.coordinator.move_task("b1", "a2", "B", 0))

        assert self.board() == before
        assert self.notices == ["Failed to move task"]
        assert not self.reconciler.is_pending("a2")
        assert len(self.api.calls) == 1  # no retry

    def test_move_column(self):
        asyncio.run(self.coordinator.move_column("b1", "C", 0))
        columns = self.board().sorted_columns()
        assert [c.id for c in columns] == ["C", "A", "B"]
        assert is_dense(c.position for c in columns)
        assert self.api.calls == [("move_column", "b1", "C", 0)]

    def test_failed_move_column_rolls_back(self):
        before = copy.deepcopy(self.board())
        self.api.fail = RequestError(409)
        with pytest.raises(RequestError):
            asyncio.run(self.coordinator.move_column("b1", "A", 2))
        assert self.board() == before
        assert self.notices == ["Failed to move column"]

    def test_toggle_favorite_updates_both_entries(self):
        asyncio.run(self.coordinator.toggle_favorite("b1"))
        assert self.board().is_favorite
        summaries = self.cache.get_data(boards_key())
        assert summaries[0].is_favorite
        assert not summaries[1].is_favorite

    def test_failed_favorite_rolls_back_both(self):
        self.api.fail = RequestError(500)
        with pytest.raises(RequestError):
            asyncio.run(self.coordinator.toggle_favorite("b1"))
        assert not self.board().is_favorite
        assert not self.cache.get_data(boards_key())[0].is_favorite
        assert self.notices == ["Failed to update favorite status"]

    def test_favorite_without_board_list_loaded(self):
        self.cache.remove(boards_key())
        asyncio.run(self.coordinator.toggle_favorite("b1"))
        assert self.board().is_favorite
        assert self.cache.get_data(boards_key()) is None

    def test_unloaded_board_rejected(self):
        with pytest.raises(LookupError):
            asyncio.run(self.coordinator.move_task("b9", "a0", "B", 0))
        with pytest.raises(LookupError):
            asyncio.run(self.coordinator.move_task("b1", "zz", "B", 0))

    def test_in_flight_fetch_does_not_overwrite_optimistic_state(self):
        gate = threading.Event()
        stale = make_board()

        def slow_fetch():
            gate.wait(2)
            return stale

        async def scenario():
            fetch = asyncio.ensure_future(self.cache.fetch(KEY, slow_fetch))
            await asyncio.sleep(0.01)
            await self.coordinator.move_task("b1", "a2", "B", 0)
            gate.set()
            await fetch

        asyncio.run(scenario())
        assert [t.id for t in self.board().column_tasks("B")] == ["a2", "b0", "b1"]

    def test_push_event_suppressed_while_request_in_flight(self):
        decisions = []
        original = self.api.move_task

        def move_and_echo(*args):
            decisions.append(self.reconciler.reconcile(
                BoardEvent(type="TASK_MOVED", board_id="b1", entity_id="a2")
            ))
            original(*args)

        self.api.move_task = move_and_echo
        asyncio.run(self.coordinator.move_task("b1", "a2", "B", 0))
        assert decisions == [Decision.SUPPRESSED]
        # The echo may carry edits by others, so the board is refreshed after settling
        assert self.cache.is_stale(KEY)
        assert not self.reconciler.is_deferred(KEY)

    def test_rollback_refreshes_board_changed_by_concurrent_mutation(self):
        # Server state once move_task("a2" -> B) has been applied
        server = make_board()
        server = replace(server, tasks=[
            replace(t, column_id="B", position=0) if t.id == "a2" else t for t in server.tasks
        ])
        fetched = []

        def fetcher():
            fetched.append(1)
            return make_board() if len(fetched) == 1 else server

        started = threading.Event()
        gate = threading.Event()

        def slow_failing_move_column(board_id, column_id, new_position):
            started.set()
            gate.wait(2)
            raise RequestError(500, {"message": "boom"})

        self.api.move_column = slow_failing_move_column

        async def scenario():
            await self.cache.fetch(KEY, fetcher)
            self.cache.subscribe(KEY, lambda k, d: None)

            column_move = asyncio.ensure_future(self.coordinator.move_column("b1", "C", 0))
            await wait_for(started.is_set)
            await self.coordinator.move_task("b1", "a2", "B", 0)
            assert not self.cache.is_stale(KEY)

            gate.set()
            with pytest.raises(RequestError):
                await column_move
            await self.cache.wait_idle()

        asyncio.run(scenario())
        assert len(fetched) == 2
        assert self.board() is server
        assert "a2" in [t.id for t in self.board().column_tasks("B")]
        assert not self.cache.is_stale(KEY)
        assert not self.reconciler.is_deferred(KEY)
        assert self.notices == ["Failed to move column"]
