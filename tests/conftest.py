"""Shared fixtures and fakes for boardsync tests."""

import asyncio
import threading
import time

import pytest

from boardsync.auth import StaticTokenProvider
from boardsync.channel import ConnectionLost
from boardsync.config import Config
from boardsync.schema import (
    AcceptInviteResult,
    ActivityEntry,
    Board,
    BoardSummary,
    Column,
    Comment,
    InvitePreview,
    Task,
)


def make_board(board_id: str = "b1") -> Board:
    """Two columns: A holds a0..a3, B holds b0..b1."""
    tasks = [Task(id=f"a{i}", title=f"A{i}", column_id="A", position=i) for i in range(4)]
    tasks += [Task(id=f"b{i}", title=f"B{i}", column_id="B", position=i) for i in range(2)]
    return Board(
        id=board_id,
        name="Roadmap",
        columns=[
            Column(id="A", name="Todo", position=0, board_id=board_id),
            Column(id="B", name="Doing", position=1, board_id=board_id),
            Column(id="C", name="Done", position=2, board_id=board_id),
        ],
        tasks=tasks,
    )


async def wait_for(predicate, timeout: float = 2.0):
    """Poll `predicate` on the loop until it is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.002)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Fake API
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FakeAPI:
    """In-memory stand-in for KanbanAPI. Set `fail` to make mutations raise."""

    def __init__(self, board: Board = None):
        self.board = board or make_board()
        self.fail = None
        self.calls = []
        self.lock = threading.Lock()

    def _record(self, name, *args):
        with self.lock:
            self.calls.append((name, *args))
        if self.fail is not None and name in ("move_task", "move_column", "toggle_favorite"):
            raise self.fail

    def count(self, name) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    def list_boards(self):
        self._record("list_boards")
        return [
            BoardSummary(id=self.board.id, name=self.board.name, total_tasks=len(self.board.tasks)),
            BoardSummary(id="b2", name="Other"),
        ]

    def get_board(self, board_id):
        self._record("get_board", board_id)
        return Board(
            id=self.board.id,
            name=self.board.name,
            is_favorite=self.board.is_favorite,
            columns=list(self.board.columns),
        )

    def get_board_tasks(self, board_id):
        self._record("get_board_tasks", board_id)
        return list(self.board.tasks)

    def move_task(self, task_id, new_column_id, new_position, before_task_id=None, after_task_id=None):
        self._record("move_task", task_id, new_column_id, new_position, before_task_id, after_task_id)

    def move_column(self, board_id, column_id, new_position):
        self._record("move_column", board_id, column_id, new_position)

    def toggle_favorite(self, board_id):
        self._record("toggle_favorite", board_id)

    def list_comments(self, board_id, task_id):
        self._record("list_comments", board_id, task_id)
        return [Comment(id="c1", content="hi", task_id=task_id, date_created="2025-03-02T10:00:00Z")]

    def create_comment(self, board_id, task_id, content):
        self._record("create_comment", board_id, task_id, content)
        return Comment(id="c2", content=content, task_id=task_id)

    def list_activity(self, board_id, task_id):
        self._record("list_activity", board_id, task_id)
        return [
            ActivityEntry(id="x1", type="TASK_CREATED", task_id=task_id, date_created="2025-03-01T10:00:00Z"),
            ActivityEntry(id="x2", type="TASK_MOVED", task_id=task_id, date_created="2025-03-03T10:00:00Z"),
        ]

    def list_labels(self, board_id):
        self._record("list_labels", board_id)
        return []

    def list_invites(self, board_id):
        self._record("list_invites", board_id)
        return []

    def preview_invite(self, code):
        self._record("preview_invite", code)
        return InvitePreview(board_name="Roadmap", valid=True)

    def accept_invite(self, code):
        self._record("accept_invite", code)
        return AcceptInviteResult(board_id="b1", board_name="Roadmap")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Fake push transport
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FakeConnection:

    def __init__(self):
        self.queue = asyncio.Queue()
        self.closed = False

    def push(self, item):
        """Queue a BoardEvent, an exception to raise, or None to end the stream."""
        self.queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.queue.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


class FakeTransport:
    """Fails the first `failures` connects (all of them when failures is None)."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.connections = []

    async def connect(self, board_id, token):
        self.attempts += 1
        if self.failures is None or self.attempts <= self.failures:
            raise ConnectionLost("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


@pytest.fixture
def cfg():
    return Config(
        api_url="https://kanban.test/api",
        push_url="https://kanban.test/api",
        auth_domain="auth.test",
        auth_client_id="client",
        auth_audience="https://kanban.test",
        access_token="tok",
        retry_initial_delay=0.001,
        retry_max_delay=0.004,
        retry_max_attempts=3,
    )


@pytest.fixture
def tokens():
    return StaticTokenProvider("tok")


@pytest.fixture
def fake_api():
    return FakeAPI()
