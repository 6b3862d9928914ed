"""
Optimistic structural mutations.

Each operation follows the same sequence:
  1. cancel in-flight fetches for the affected keys
  2. snapshot the affected entries
  3. write the new state into the cache
  4. register the entity as pending with the reconciler
  5. send the request
  6. settle through the reconciler (keep on success, roll back on failure)

Failures are reported through the notifier and re-raised; nothing is retried.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from . import ordering
from .cache import Key, QueryCache, board_key, boards_key
from .reconcile import Reconciler, Settlement
from .schema import Board, BoardSummary

logger = logging.getLogger(__name__)

Notifier = Callable[[str, BaseException], None]


def log_notifier(message: str, error: BaseException) -> None:
    logger.warning(f"{message}: {error}")


class OptimisticCoordinator:

    def __init__(
        self,
        api,
        cache: QueryCache,
        reconciler: Reconciler,
        notifier: Optional[Notifier] = None,
    ):
        self.api = api
        self.cache = cache
        self.reconciler = reconciler
        self.notify = notifier or log_notifier

    def _board(self, board_id: str) -> Board:
        board = self.cache.get_data(board_key(board_id))
        if board is None:
            raise LookupError(f"Board {board_id} is not loaded")
        return board

    async def _mutate(
        self,
        entity_id: str,
        key: Key,
        updates: Dict[Key, Callable[[Any], Any]],
        request: Callable[[], Any],
        failure_message: str,
    ) -> Any:
        for k in updates:
            self.cache.cancel(k)
        snapshots = {
            k: self.cache.snapshot(k) for k in updates if self.cache.get_data(k) is not None
        }
        for k, updater in updates.items():
            self.cache.set_data(k, updater)
        self.reconciler.begin(entity_id, key)

        try:
            result = await asyncio.to_thread(request)
        except Exception as e:
            self.reconciler.reconcile(Settlement(entity_id, key, error=e, snapshots=snapshots))
            self.notify(failure_message, e)
            raise

        self.reconciler.reconcile(Settlement(entity_id, key))
        return result

    # ──────────────────────────────────────────
    # Operations
    # ──────────────────────────────────────────

    async def move_task(
        self,
        board_id: str,
        task_id: str,
        new_column_id: str,
        position: Optional[int] = None,
        before_task_id: Optional[str] = None,
        after_task_id: Optional[str] = None,
    ) -> None:
        """
        Move a task to `new_column_id`. Without an explicit position the
        index is derived from the neighbouring task ids.
        """
        board = self._board(board_id)
        task = next((t for t in board.tasks if t.id == task_id), None)
        if task is None:
            raise LookupError(f"Task {task_id} is not on board {board_id}")

        if position is None:
            siblings: List[str] = [
                t.id for t in board.column_tasks(new_column_id) if t.id != task_id
            ]
            position = ordering.resolve_drop_index(siblings, before_task_id, after_task_id)

        if task.column_id == new_column_id and task.position == position:
            return

        def apply(current: Board) -> Board:
            return replace(
                current,
                tasks=ordering.move_task(current.tasks, task_id, new_column_id, position),
            )

        key = board_key(board_id)
        await self._mutate(
            task_id,
            key,
            {key: apply},
            lambda: self.api.move_task(
                task_id, new_column_id, position, before_task_id, after_task_id
            ),
            "Failed to move task",
        )

    async def move_column(self, board_id: str, column_id: str, new_position: int) -> None:
        board = self._board(board_id)
        column = next((c for c in board.columns if c.id == column_id), None)
        if column is None or column.position == new_position:
            return

        def apply(current: Board) -> Board:
            return replace(
                current,
                columns=ordering.move_column(current.columns, column_id, new_position),
            )

        key = board_key(board_id)
        await self._mutate(
            column_id,
            key,
            {key: apply},
            lambda: self.api.move_column(board_id, column_id, new_position),
            "Failed to move column",
        )

    async def toggle_favorite(self, board_id: str) -> None:
        """Flip the favorite flag on both the board and its board-list entry."""

        def apply_board(current: Optional[Board]) -> Optional[Board]:
            if current is None:
                return current
            return replace(current, is_favorite=not current.is_favorite)

        def apply_list(current: Optional[List[BoardSummary]]) -> Optional[List[BoardSummary]]:
            if current is None:
                return current
            return [
                replace(b, is_favorite=not b.is_favorite) if b.id == board_id else b
                for b in current
            ]

        key = board_key(board_id)
        await self._mutate(
            board_id,
            key,
            {key: apply_board, boards_key(): apply_list},
            lambda: self.api.toggle_favorite(board_id),
            "Failed to update favorite status",
        )
