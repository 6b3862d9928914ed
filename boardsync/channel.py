"""
Push channel: board change notifications over Server-Sent Events.

    GET {push_url}/boards/{boardId}/events?access_token=…
    event: TASK_MOVED
    data: {"type": "TASK_MOVED", "boardId": "…", "entityId": "…", "details": …}

Connection lifecycle:
    DISCONNECTED → CONNECTING → CONNECTED
                        ↓            ↓
                      ERROR ← ← ← ← ┘   (stream failed or closed)
                        ↓
        retry after min(base * 2**attempt, cap), up to max_attempts,
        then give up and settle in DISCONNECTED.

A successful open (or a CONNECTED event) resets the attempt counter,
reconnect() resets it and connects immediately, disconnect() cancels any
pending retry and closes the stream.
"""
import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional

import requests

from .schema import BoardEvent

logger = logging.getLogger(__name__)

CONNECTED_EVENT = "CONNECTED"

# Server sends heartbeat comments well inside this window
READ_TIMEOUT = 90.0


class ConnectionStatus(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectionLost(Exception):
    """The event stream failed or could not be opened."""
    pass


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number `attempt` (0-based): doubling from base, capped."""
    return min(base * (2 ** attempt), cap)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SSE wire format
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class SSEMessage:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None


def parse_sse(lines: Iterable[str]) -> Iterator[SSEMessage]:
    """
    Split an SSE line stream into messages.

    A blank line dispatches the pending message; `data:` lines are joined
    with newlines; lines starting with ':' are comments (heartbeats).
    Messages without any data line are not dispatched.
    """
    event, data, has_data, last_id = "", [], False, None
    for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if has_data:
                yield SSEMessage(event=event or "message", data="\n".join(data), id=last_id)
            event, data, has_data = "", [], False
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
            has_data = True
        elif name == "id":
            last_id = value
        # "retry" and unknown fields are ignored

    if has_data:
        yield SSEMessage(event=event or "message", data="\n".join(data), id=last_id)


def to_board_event(message: SSEMessage, board_id: str) -> Optional[BoardEvent]:
    """Decode a message's JSON payload; the SSE event name fills a missing type."""
    try:
        payload = json.loads(message.data)
    except (json.JSONDecodeError, TypeError):
        payload = None

    if not isinstance(payload, dict):
        if message.event == CONNECTED_EVENT:
            return BoardEvent(type=CONNECTED_EVENT, board_id=board_id)
        logger.debug(f"Ignoring non-JSON event {message.event!r}")
        return None

    event = BoardEvent.from_dict(payload)
    if not event.type:
        event.type = message.event
    if not event.board_id:
        event.board_id = board_id
    return event


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Transport
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_EOF = object()


class SSEConnection:
    """
    One open event stream. A reader thread drains the blocking response and
    hands messages to the event loop; iterate with `async for`.
    """

    def __init__(self, response: requests.Response, board_id: str):
        self.board_id = board_id
        self._response = response
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop = asyncio.get_running_loop()
        self._reader = threading.Thread(target=self._read, daemon=True)
        self._reader.start()

    def _post(self, item) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            pass  # loop already closed

    def _read(self) -> None:
        if self._response.encoding is None:
            self._response.encoding = "utf-8"
        try:
            for message in parse_sse(self._response.iter_lines(decode_unicode=True)):
                self._post(message)
        except Exception as e:
            self._post(e)
        else:
            self._post(_EOF)

    def __aiter__(self):
        return self

    async def __anext__(self) -> BoardEvent:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                raise StopAsyncIteration
            if isinstance(item, Exception):
                raise ConnectionLost(str(item)) from item
            event = to_board_event(item, self.board_id)
            if event is not None:
                return event

    def close(self) -> None:
        self._response.close()


class SSETransport:
    """Opens SSE streams for boards."""

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.session = session or requests.Session()

    def _open(self, url: str, token: str) -> requests.Response:
        try:
            r = self.session.get(
                url,
                params={"access_token": token},
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.connect_timeout, READ_TIMEOUT),
            )
        except requests.RequestException as e:
            raise ConnectionLost(f"Cannot open {url}: {e}") from e
        if not r.ok:
            r.close()
            raise ConnectionLost(f"Event stream rejected: {r.status_code}")
        return r

    async def connect(self, board_id: str, token: str) -> SSEConnection:
        url = f"{self.base_url}/boards/{board_id}/events"
        opening = asyncio.ensure_future(asyncio.to_thread(self._open, url, token))
        try:
            response = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The request still completes in its worker thread
            opening.add_done_callback(_close_late_response)
            raise
        return SSEConnection(response, board_id)


def _close_late_response(opening: asyncio.Future) -> None:
    if opening.cancelled() or opening.exception() is not None:
        return
    logger.debug("Closing event stream opened after disconnect")
    opening.result().close()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardChannel: connection state machine
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

EventListener = Callable[[BoardEvent], None]
StatusListener = Callable[[ConnectionStatus], None]


class BoardChannel:
    """
    Long-lived push connection for one board.

    `on_event` (the reconciler) sees every event before the registered
    listeners. A listener that raises is logged and skipped.
    """

    def __init__(
        self,
        board_id: str,
        transport,
        token_provider,
        on_event: Optional[EventListener] = None,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
    ):
        self.board_id = board_id
        self.transport = transport
        self.tokens = token_provider
        self.on_event = on_event
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts

        self.status = ConnectionStatus.DISCONNECTED
        self.attempts = 0
        self.last_delay: Optional[float] = None

        self._listeners: List[EventListener] = []
        self._status_listeners: List[StatusListener] = []
        self._task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._connection = None

    @property
    def next_delay(self) -> float:
        return backoff_delay(self.attempts, self.initial_delay, self.max_delay)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    # ──────────────────────────────────────────
    # Listeners
    # ──────────────────────────────────────────

    def register_listener(self, listener: EventListener) -> Callable[[], None]:
        """Add an event listener; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe():
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        logger.debug(f"Board {self.board_id} channel: {self.status.value} → {status.value}")
        self.status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    def connect(self) -> None:
        """Start (or restart) the connection. Must be called on the event loop."""
        self._cancel_retry()
        self._stop_task()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def reconnect(self) -> None:
        """Manual reconnect: forget previous failures and connect now."""
        self.attempts = 0
        self.connect()

    def disconnect(self) -> None:
        self._cancel_retry()
        self._stop_task()
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self.attempts = 0
        self._set_status(ConnectionStatus.DISCONNECTED)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _stop_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        self._set_status(ConnectionStatus.CONNECTING)
        connection = None
        try:
            token = await asyncio.to_thread(self.tokens.get_token)
            connection = await self.transport.connect(self.board_id, token)
            self._connection = connection
            self._opened()
            async for event in connection:
                self._dispatch(event)
            logger.info(f"Board {self.board_id} event stream closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Board {self.board_id} event stream failed: {e}")
        finally:
            if connection is not None:
                connection.close()
                if self._connection is connection:
                    self._connection = None
        self._schedule_retry()

    def _opened(self) -> None:
        self.attempts = 0
        self._set_status(ConnectionStatus.CONNECTED)

    def _schedule_retry(self) -> None:
        self._set_status(ConnectionStatus.ERROR)
        if self.attempts >= self.max_attempts:
            logger.warning(
                f"Board {self.board_id}: giving up after {self.attempts} reconnect attempts"
            )
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        delay = self.next_delay
        self.attempts += 1
        self.last_delay = delay
        logger.info(f"Board {self.board_id}: reconnecting in {delay:.1f}s (attempt {self.attempts})")
        self._retry_handle = asyncio.get_running_loop().call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_handle = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _dispatch(self, event: BoardEvent) -> None:
        if event.type == CONNECTED_EVENT:
            self._opened()
            return
        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception as e:
                logger.error(f"Event handler failed on {event.type}: {e}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in board event listener: {e}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ChannelHub: one shared connection per board
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ChannelHub:
    """
    Reference-counts consumers per board so any number of views share one
    connection. The first acquire connects, the last release disconnects.
    """

    def __init__(self, factory: Callable[[str], BoardChannel]):
        self._factory = factory
        self._channels: Dict[str, BoardChannel] = {}
        self._refs: Dict[str, int] = {}

    def get(self, board_id: str) -> Optional[BoardChannel]:
        return self._channels.get(board_id)

    def refcount(self, board_id: str) -> int:
        return self._refs.get(board_id, 0)

    def acquire(self, board_id: str) -> BoardChannel:
        channel = self._channels.get(board_id)
        if channel is None:
            channel = self._factory(board_id)
            self._channels[board_id] = channel
            self._refs[board_id] = 0
            channel.connect()
        self._refs[board_id] += 1
        return channel

    def release(self, board_id: str) -> None:
        if board_id not in self._refs:
            return
        self._refs[board_id] -= 1
        if self._refs[board_id] <= 0:
            channel = self._channels.pop(board_id)
            del self._refs[board_id]
            channel.disconnect()

    def subscribe(self, board_id: str, listener: EventListener) -> Callable[[], None]:
        """Acquire the board's channel and register a listener; undo both on unsubscribe."""
        channel = self.acquire(board_id)
        unregister = channel.register_listener(listener)
        released = False

        def unsubscribe():
            nonlocal released
            if released:
                return
            released = True
            unregister()
            self.release(board_id)

        return unsubscribe

    def close(self) -> None:
        for channel in self._channels.values():
            channel.disconnect()
        self._channels.clear()
        self._refs.clear()
