"""
Board session: everything one signed-in user needs to browse and edit boards.

Owns the REST client, query cache, reconciler, optimistic coordinator and
push-channel hub, and wires them together:

    KanbanAPI ──fetchers──▶ QueryCache ◀──invalidate── Reconciler ◀── BoardChannel
                               ▲                           ▲
                               └──── OptimisticCoordinator ┘
"""
import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, List, Optional

from .activity import build_feed
from .api import KanbanAPI
from .auth import provider_from_config
from .cache import (
    Key,
    QueryCache,
    activity_key,
    board_key,
    boards_key,
    comments_key,
    invites_key,
    labels_key,
)
from .channel import BoardChannel, ChannelHub, SSETransport
from .config import Config
from .optimistic import Notifier, OptimisticCoordinator
from .reconcile import Reconciler
from .schema import AcceptInviteResult, Board, BoardSummary, Comment, Invite, InvitePreview, Label

logger = logging.getLogger(__name__)


class BoardSession:

    def __init__(
        self,
        cfg: Config,
        token_provider=None,
        api=None,
        transport=None,
        notifier: Optional[Notifier] = None,
        on_auth_required: Optional[Callable[[], None]] = None,
        on_forbidden: Optional[Callable[[], None]] = None,
    ):
        self.cfg = cfg
        self.on_auth_required = on_auth_required
        self.on_forbidden = on_forbidden
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.tokens = token_provider or provider_from_config(cfg)
        self.api = api or KanbanAPI(
            cfg.api_url,
            self.tokens,
            timeout=cfg.request_timeout,
            on_auth_required=lambda: self._from_worker(self._auth_lost),
            on_forbidden=lambda: self._from_worker(self._forbidden),
        )
        self.cache = QueryCache()
        self.reconciler = Reconciler(self.cache, cfg.pending_mutation_timeout)
        self.coordinator = OptimisticCoordinator(self.api, self.cache, self.reconciler, notifier)
        self.transport = transport or SSETransport(cfg.push_url, cfg.request_timeout)
        self.hub = ChannelHub(self._make_channel)

    def _make_channel(self, board_id: str) -> BoardChannel:
        return BoardChannel(
            board_id,
            self.transport,
            self.tokens,
            on_event=self.reconciler.handle_event,
            initial_delay=self.cfg.retry_initial_delay,
            max_delay=self.cfg.retry_max_delay,
            max_attempts=self.cfg.retry_max_attempts,
        )

    # ── Auth hooks ───────────────────────────────────────────────────────────
    # The API client runs in worker threads; cache work belongs on the loop.
    # No refetch here: it would fail the same way.

    def _bind_loop(self) -> None:
        self._loop = asyncio.get_running_loop()

    def _from_worker(self, callback: Callable[[], None]) -> None:
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(callback)
        else:
            callback()

    def _auth_lost(self) -> None:
        logger.warning("Session expired, sign-in required")
        self.cache.invalidate((), refetch=False)
        if self.on_auth_required:
            self.on_auth_required()

    def _forbidden(self) -> None:
        self.cache.invalidate((), refetch=False)
        if self.on_forbidden:
            self.on_forbidden()

    # ── Boards ───────────────────────────────────────────────────────────────

    async def list_boards(self) -> List[BoardSummary]:
        self._bind_loop()
        return await self.cache.fetch(boards_key(), self.api.list_boards)

    def _load_board(self, board_id: str) -> Board:
        board = self.api.get_board(board_id)
        return replace(board, tasks=self.api.get_board_tasks(board_id))

    async def open_board(self, board_id: str) -> Board:
        """Fetch the board and keep it fresh through its push channel."""
        self._bind_loop()
        self.hub.acquire(board_id)
        try:
            return await self.cache.fetch(board_key(board_id), lambda: self._load_board(board_id))
        except Exception:
            self.hub.release(board_id)
            raise

    def close_board(self, board_id: str) -> None:
        self.hub.release(board_id)

    def board(self, board_id: str) -> Optional[Board]:
        return self.cache.get_data(board_key(board_id))

    def subscribe(self, key: Key, observer: Callable[[Key, Any], None]) -> Callable[[], None]:
        return self.cache.subscribe(key, observer)

    # ── Optimistic mutations ─────────────────────────────────────────────────

    async def move_task(
        self,
        board_id: str,
        task_id: str,
        new_column_id: str,
        position: Optional[int] = None,
        before_task_id: Optional[str] = None,
        after_task_id: Optional[str] = None,
    ) -> None:
        self._bind_loop()
        await self.coordinator.move_task(
            board_id, task_id, new_column_id, position, before_task_id, after_task_id
        )

    async def move_column(self, board_id: str, column_id: str, new_position: int) -> None:
        self._bind_loop()
        await self.coordinator.move_column(board_id, column_id, new_position)

    async def toggle_favorite(self, board_id: str) -> None:
        self._bind_loop()
        await self.coordinator.toggle_favorite(board_id)

    # ── Labels, comments, activity ───────────────────────────────────────────

    async def labels(self, board_id: str) -> List[Label]:
        self._bind_loop()
        return await self.cache.fetch(labels_key(board_id), lambda: self.api.list_labels(board_id))

    async def comments(self, board_id: str, task_id: str) -> List[Comment]:
        self._bind_loop()
        return await self.cache.fetch(
            comments_key(board_id, task_id), lambda: self.api.list_comments(board_id, task_id)
        )

    async def add_comment(self, board_id: str, task_id: str, content: str) -> Comment:
        self._bind_loop()
        comment = await asyncio.to_thread(self.api.create_comment, board_id, task_id, content)
        self.cache.invalidate(comments_key(board_id, task_id))
        return comment

    async def feed(self, board_id: str, task_id: str) -> list:
        """Comments and activity of a task merged in creation order."""
        self._bind_loop()
        comments, activity = await asyncio.gather(
            self.comments(board_id, task_id),
            self.cache.fetch(
                activity_key(board_id, task_id), lambda: self.api.list_activity(board_id, task_id)
            ),
        )
        return build_feed(comments, activity)

    # ── Invites ──────────────────────────────────────────────────────────────

    async def invites(self, board_id: str) -> List[Invite]:
        self._bind_loop()
        return await self.cache.fetch(invites_key(board_id), lambda: self.api.list_invites(board_id))

    async def preview_invite(self, code: str) -> InvitePreview:
        self._bind_loop()
        return await asyncio.to_thread(self.api.preview_invite, code)

    async def accept_invite(self, code: str) -> AcceptInviteResult:
        self._bind_loop()
        result = await asyncio.to_thread(self.api.accept_invite, code)
        self.cache.invalidate(boards_key())
        return result

    def close(self) -> None:
        self.hub.close()
        self.reconciler.close()
