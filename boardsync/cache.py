"""
Query cache shared by the board views.

Entries are keyed by tuples and matched by prefix, so () addresses the
whole cache and ("board", board_id) a single board aggregate. All methods
run on the event loop; fetchers are blocking callables executed through
asyncio.to_thread.

Staleness has two forms:
    invalidate(prefix) → data kept, marked stale, observed entries refetched
    cancel(prefix)     → responses of fetches already in flight are dropped
"""
import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

Key = Tuple[str, ...]
Observer = Callable[[Key, Any], None]


# ── Query keys ───────────────────────────────────────────────────────────────

def boards_key() -> Key:
    return ("boards",)


def board_key(board_id: str) -> Key:
    return ("board", board_id)


def task_key(task_id: str) -> Key:
    return ("task", task_id)


def labels_key(board_id: str) -> Key:
    return ("labels", board_id)


def comments_key(board_id: str, task_id: str) -> Key:
    return ("comments", board_id, task_id)


def activity_key(board_id: str, task_id: str) -> Key:
    return ("activity", board_id, task_id)


def invites_key(board_id: str) -> Key:
    return ("invites", board_id)


def matches(key: Key, prefix: Key) -> bool:
    return key[:len(prefix)] == prefix


@dataclass
class _Entry:
    data: Any = None
    stale: bool = True
    generation: int = 0
    fetcher: Optional[Callable[[], Any]] = None
    observers: List[Observer] = field(default_factory=list)
    inflight: Optional[asyncio.Future] = None


class QueryCache:
    """In-memory query cache with observers, invalidation and fetch cancellation."""

    def __init__(self):
        self._entries: Dict[Key, _Entry] = {}
        self._refetches: Set[asyncio.Task] = set()

    def _entry(self, key: Key) -> _Entry:
        if key not in self._entries:
            self._entries[key] = _Entry()
        return self._entries[key]

    def keys(self, prefix: Key = ()) -> List[Key]:
        return [k for k in self._entries if matches(k, prefix)]

    # ──────────────────────────────────────────
    # Reads & writes
    # ──────────────────────────────────────────

    def get_data(self, key: Key) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def is_stale(self, key: Key) -> bool:
        entry = self._entries.get(key)
        return entry.stale if entry else True

    def set_data(self, key: Key, value: Any) -> Any:
        """
        Replace an entry's data. A callable is treated as an updater that
        receives the current data; returning the same object is a no-op.
        """
        entry = self._entry(key)
        new = value(entry.data) if callable(value) else value
        if new is entry.data:
            return new
        entry.data = new
        entry.stale = False
        self._notify(key, entry)
        return new

    def snapshot(self, key: Key) -> Any:
        """Deep copy of the current data, suitable for a verbatim rollback."""
        return copy.deepcopy(self.get_data(key))

    def restore(self, key: Key, snapshot: Any) -> None:
        entry = self._entry(key)
        entry.data = snapshot
        self._notify(key, entry)

    def remove(self, prefix: Key) -> None:
        for key in self.keys(prefix):
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    # ──────────────────────────────────────────
    # Observers
    # ──────────────────────────────────────────

    def subscribe(self, key: Key, observer: Observer) -> Callable[[], None]:
        """Observe one key; returns the unsubscribe callable."""
        entry = self._entry(key)
        entry.observers.append(observer)

        def unsubscribe():
            if observer in entry.observers:
                entry.observers.remove(observer)

        return unsubscribe

    def _notify(self, key: Key, entry: _Entry) -> None:
        for observer in list(entry.observers):
            try:
                observer(key, entry.data)
            except Exception as e:
                logger.error(f"Cache observer for {key} failed: {e}")

    # ──────────────────────────────────────────
    # Fetching
    # ──────────────────────────────────────────

    async def fetch(self, key: Key, fetcher: Optional[Callable[[], Any]] = None) -> Any:
        """
        Run the entry's fetcher and store the result. Concurrent callers share
        one in-flight request. If the entry is cancelled while the request is
        in flight, the response is discarded and the current data returned.
        """
        entry = self._entry(key)
        if fetcher is not None:
            entry.fetcher = fetcher
        if entry.fetcher is None:
            raise KeyError(f"No fetcher registered for {key}")
        if entry.inflight is None or entry.inflight.done():
            entry.inflight = asyncio.ensure_future(self._run_fetch(key, entry, entry.generation))
        return await entry.inflight

    async def _run_fetch(self, key: Key, entry: _Entry, generation: int) -> Any:
        data = await asyncio.to_thread(entry.fetcher)
        if entry.generation != generation:
            logger.debug(f"Dropped stale response for {key}")
            # Restarted by invalidate(): hand callers the newer response
            if entry.inflight is not None:
                return await entry.inflight
            return entry.data
        entry.inflight = None
        entry.data = data
        entry.stale = False
        self._notify(key, entry)
        return data

    def cancel(self, prefix: Key) -> None:
        """Mark in-flight fetches under `prefix` stale so their results are dropped."""
        for key in self.keys(prefix):
            entry = self._entries[key]
            entry.generation += 1
            entry.inflight = None

    def invalidate(self, prefix: Key = (), refetch: bool = True) -> List[Key]:
        """
        Mark entries stale. When a loop is running and `refetch` is True, a
        fetch already in flight is restarted (its response would predate the
        change) and idle entries with observers are refetched in the background.
        """
        invalidated = self.keys(prefix)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for key in invalidated:
            entry = self._entries[key]
            entry.stale = True
            if not (refetch and loop and entry.fetcher):
                continue
            if entry.inflight is not None and not entry.inflight.done():
                # The running request predates the change: restart it
                entry.generation += 1
                entry.inflight = loop.create_task(self._run_fetch(key, entry, entry.generation))
                self._track(entry.inflight)
            elif entry.observers:
                self._track(loop.create_task(self._background_refetch(key)))
        if invalidated:
            logger.debug(f"Invalidated {len(invalidated)} entr{'y' if len(invalidated) == 1 else 'ies'} under {prefix}")
        return invalidated

    def _track(self, task: asyncio.Task) -> None:
        self._refetches.add(task)
        task.add_done_callback(self._refetches.discard)

    async def _background_refetch(self, key: Key) -> None:
        try:
            await self.fetch(key)
        except Exception as e:
            logger.warning(f"Refetch of {key} failed: {e}")

    async def wait_idle(self) -> None:
        """Wait for background refetches scheduled so far."""
        while self._refetches:
            await asyncio.gather(*list(self._refetches), return_exceptions=True)
