"""
Reconciliation between local optimistic mutations and remote push events.

Both paths go through Reconciler.reconcile(), which applies these rules in
order:

    remote event, entity pending                → SUPPRESSED (refresh deferred until it settles)
    remote event, other mutations pending on key → DEFERRED (until they settle)
    remote structural event, nothing pending     → INVALIDATED
    remote non-structural event                  → IGNORED
    settle ok                                    → KEPT (deferred invalidation runs
                                                   once nothing is pending on the key)
    settle failed                                → ROLLED_BACK (snapshot restored, key
                                                   refreshed once nothing is pending)

Pending ids expire after `pending_timeout` seconds so a lost settle can
never suppress events forever.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from .cache import Key, QueryCache, board_key, boards_key, task_key
from .schema import BoardEvent

logger = logging.getLogger(__name__)

STRUCTURAL_EVENTS = frozenset({
    "TASK_CREATED",
    "TASK_UPDATED",
    "TASK_DELETED",
    "TASK_MOVED",
    "BOARD_UPDATED",
    "COLUMN_CREATED",
    "COLUMN_UPDATED",
    "COLUMN_DELETED",
    "COLUMN_MOVED",
})


class Decision(Enum):
    SUPPRESSED = "suppressed"
    DEFERRED = "deferred"
    INVALIDATED = "invalidated"
    IGNORED = "ignored"
    KEPT = "kept"
    ROLLED_BACK = "rolled_back"


@dataclass
class Settlement:
    """Outcome of a local mutation's network request."""
    entity_id: str
    key: Key
    error: Optional[BaseException] = None
    snapshots: Dict[Key, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Pending:
    key: Key
    count: int = 0
    timer: Optional[asyncio.TimerHandle] = None


class Reconciler:

    def __init__(self, cache: QueryCache, pending_timeout: float = 5.0):
        self.cache = cache
        self.pending_timeout = pending_timeout
        self._pending: Dict[str, _Pending] = {}
        self._deferred: Set[Key] = set()

    # ── Pending registry ─────────────────────────────────────────────────────

    def begin(self, entity_id: str, key: Key) -> None:
        """Register an optimistic mutation of `entity_id` cached under `key`."""
        pending = self._pending.get(entity_id)
        if pending is None:
            pending = self._pending[entity_id] = _Pending(key)
        pending.count += 1

        if pending.timer is not None:
            pending.timer.cancel()
            pending.timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        pending.timer = loop.call_later(self.pending_timeout, self._expire, entity_id)

    def is_pending(self, entity_id: Optional[str]) -> bool:
        return entity_id is not None and entity_id in self._pending

    def pending_on(self, key: Key) -> List[str]:
        return [eid for eid, p in self._pending.items() if p.key == key]

    def is_deferred(self, key: Key) -> bool:
        return key in self._deferred

    def _finish(self, entity_id: str) -> None:
        pending = self._pending.get(entity_id)
        if pending is None:
            return
        pending.count -= 1
        if pending.count <= 0:
            if pending.timer is not None:
                pending.timer.cancel()
            del self._pending[entity_id]

    def _expire(self, entity_id: str) -> None:
        pending = self._pending.pop(entity_id, None)
        if pending is None:
            return
        logger.warning(
            f"Mutation of {entity_id} still pending after {self.pending_timeout}s, releasing"
        )
        self._flush(pending.key)

    def _flush(self, key: Key) -> None:
        """Run a deferred invalidation once nothing is pending on the key."""
        if key in self._deferred and not self.pending_on(key):
            self._deferred.discard(key)
            logger.debug(f"Running deferred invalidation of {key}")
            self.cache.invalidate(key)

    # ── Decision point ───────────────────────────────────────────────────────

    def reconcile(self, change: Union[BoardEvent, Settlement]) -> Decision:
        if isinstance(change, Settlement):
            self._finish(change.entity_id)
            if change.ok:
                self._flush(change.key)
                return Decision.KEPT
            for key, snapshot in change.snapshots.items():
                self.cache.restore(key, snapshot)
            # The snapshot may predate other mutations on the same key
            self._deferred.add(change.key)
            logger.info(f"Rolled back mutation of {change.entity_id}: {change.error}")
            self._flush(change.key)
            return Decision.ROLLED_BACK

        event = change
        key = board_key(event.board_id)
        entity = event.entity_id or event.board_id

        if self.is_pending(entity):
            # Refresh once the mutation settles so edits by others are not lost
            if event.type in STRUCTURAL_EVENTS:
                self._deferred.add(key)
            logger.debug(f"Suppressed {event.type} for pending {entity}")
            return Decision.SUPPRESSED

        if event.type not in STRUCTURAL_EVENTS:
            return Decision.IGNORED

        if self.pending_on(key):
            self._deferred.add(key)
            logger.debug(f"Deferred {event.type} on {key}")
            return Decision.DEFERRED

        self.cache.invalidate(key)
        if event.type == "BOARD_UPDATED":
            self.cache.invalidate(boards_key())
        elif event.type.startswith("TASK_") and event.entity_id:
            self.cache.invalidate(task_key(event.entity_id))
        return Decision.INVALIDATED

    def handle_event(self, event: BoardEvent) -> None:
        """Channel callback."""
        self.reconcile(event)

    def close(self) -> None:
        for pending in self._pending.values():
            if pending.timer is not None:
                pending.timer.cancel()
        self._pending.clear()
        self._deferred.clear()
