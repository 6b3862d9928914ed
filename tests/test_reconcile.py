"""
Tests for the reconciler's precedence rules.
"""
import asyncio

from boardsync.cache import QueryCache, board_key, boards_key, task_key
from boardsync.reconcile import Decision, Reconciler, Settlement
from boardsync.schema import BoardEvent

KEY = board_key("b1")


def event(type_, entity_id=None, board_id="b1"):
    return BoardEvent(type=type_, board_id=board_id, entity_id=entity_id)


class TestRemoteEvents:

    def setup_method(self):
        self.cache = QueryCache()
        self.cache.set_data(KEY, "board")
        self.reconciler = Reconciler(self.cache)

    def test_structural_event_invalidates(self):
        assert self.reconciler.reconcile(event("TASK_MOVED", "t1")) == Decision.INVALIDATED
        assert self.cache.is_stale(KEY)

    def test_event_for_pending_entity_suppressed(self):
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(event("TASK_MOVED", "t1")) == Decision.SUPPRESSED
        assert not self.cache.is_stale(KEY)
        assert self.reconciler.is_deferred(KEY)

    def test_other_entity_on_pending_board_deferred(self):
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(event("TASK_CREATED", "t9")) == Decision.DEFERRED
        assert not self.cache.is_stale(KEY)
        assert self.reconciler.is_deferred(KEY)

    def test_other_board_not_affected_by_pending(self):
        self.cache.set_data(board_key("b2"), "other")
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(event("COLUMN_MOVED", "c1", board_id="b2")) == Decision.INVALIDATED
        assert self.cache.is_stale(board_key("b2"))

    def test_handshake_and_unknown_events_ignored(self):
        assert self.reconciler.reconcile(event("CONNECTED")) == Decision.IGNORED
        assert self.reconciler.reconcile(event("COMMENT_ADDED", "x")) == Decision.IGNORED
        assert not self.cache.is_stale(KEY)

    def test_board_updated_refreshes_board_list(self):
        self.cache.set_data(boards_key(), [])
        self.reconciler.reconcile(event("BOARD_UPDATED"))
        assert self.cache.is_stale(boards_key())

    def test_board_event_suppressed_while_favorite_pending(self):
        self.reconciler.begin("b1", KEY)
        assert self.reconciler.reconcile(event("BOARD_UPDATED", "b1")) == Decision.SUPPRESSED

    def test_task_event_refreshes_task_entry(self):
        self.cache.set_data(task_key("t1"), "task")
        self.reconciler.reconcile(event("TASK_UPDATED", "t1"))
        assert self.cache.is_stale(task_key("t1"))


class TestSettle:

    def setup_method(self):
        self.cache = QueryCache()
        self.cache.set_data(KEY, "optimistic")
        self.reconciler = Reconciler(self.cache)

    def test_success_keeps_state(self):
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(Settlement("t1", KEY)) == Decision.KEPT
        assert not self.reconciler.is_pending("t1")
        assert self.cache.get_data(KEY) == "optimistic"
        assert not self.cache.is_stale(KEY)

    def test_success_runs_deferred_invalidation(self):
        self.reconciler.begin("t1", KEY)
        self.reconciler.reconcile(event("TASK_CREATED", "t9"))
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert self.cache.is_stale(KEY)
        assert not self.reconciler.is_deferred(KEY)

    def test_deferred_waits_for_all_pending(self):
        self.reconciler.begin("t1", KEY)
        self.reconciler.begin("t2", KEY)
        self.reconciler.reconcile(event("TASK_CREATED", "t9"))
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert not self.cache.is_stale(KEY)
        self.reconciler.reconcile(Settlement("t2", KEY))
        assert self.cache.is_stale(KEY)

    def test_failure_restores_snapshot(self):
        self.reconciler.begin("t1", KEY)
        settlement = Settlement("t1", KEY, error=RuntimeError("500"), snapshots={KEY: "original"})
        assert self.reconciler.reconcile(settlement) == Decision.ROLLED_BACK
        assert self.cache.get_data(KEY) == "original"
        assert not self.reconciler.is_pending("t1")

    def test_failure_runs_deferred_invalidation(self):
        self.reconciler.begin("t1", KEY)
        self.reconciler.reconcile(event("COLUMN_CREATED", "c9"))
        self.reconciler.reconcile(Settlement("t1", KEY, error=RuntimeError("x"), snapshots={KEY: "original"}))
        assert self.cache.is_stale(KEY)

    def test_failure_refreshes_after_other_mutations_settle(self):
        self.reconciler.begin("c1", KEY)
        self.reconciler.begin("t1", KEY)
        self.reconciler.reconcile(Settlement("t1", KEY))
        settlement = Settlement("c1", KEY, error=RuntimeError("500"), snapshots={KEY: "before t1"})
        assert self.reconciler.reconcile(settlement) == Decision.ROLLED_BACK
        assert self.cache.get_data(KEY) == "before t1"
        assert self.cache.is_stale(KEY)
        assert not self.reconciler.is_deferred(KEY)

    def test_failure_waits_for_other_pending_mutation(self):
        self.reconciler.begin("c1", KEY)
        self.reconciler.begin("t1", KEY)
        self.reconciler.reconcile(Settlement("c1", KEY, error=RuntimeError("500"), snapshots={KEY: "snap"}))
        assert not self.cache.is_stale(KEY)
        assert self.reconciler.is_deferred(KEY)
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert self.cache.is_stale(KEY)
        assert not self.reconciler.is_deferred(KEY)

    def test_suppressed_event_refreshes_after_settle(self):
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(event("TASK_UPDATED", "t1")) == Decision.SUPPRESSED
        assert not self.cache.is_stale(KEY)
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert self.cache.is_stale(KEY)

    def test_suppressed_non_structural_event_needs_no_refresh(self):
        self.reconciler.begin("t1", KEY)
        assert self.reconciler.reconcile(event("COMMENT_ADDED", "t1")) == Decision.SUPPRESSED
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert not self.cache.is_stale(KEY)

    def test_overlapping_mutations_of_same_entity(self):
        self.reconciler.begin("t1", KEY)
        self.reconciler.begin("t1", KEY)
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert self.reconciler.is_pending("t1")
        self.reconciler.reconcile(Settlement("t1", KEY))
        assert not self.reconciler.is_pending("t1")


def test_pending_expires_after_timeout():
    cache = QueryCache()
    cache.set_data(KEY, "board")
    reconciler = Reconciler(cache, pending_timeout=0.01)

    async def scenario():
        reconciler.begin("t1", KEY)
        reconciler.reconcile(event("TASK_CREATED", "t9"))
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert not reconciler.is_pending("t1")
    assert cache.is_stale(KEY)
    assert reconciler.reconcile(event("TASK_MOVED", "t1")) == Decision.INVALIDATED
