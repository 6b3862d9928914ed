"""
boardsync — command line client.

    boardsync boards
    boardsync show BOARD_ID [--assignee ID] [--priority P,..] [--labels ID,..] [--due WHEN]
    boardsync watch BOARD_ID [filters as for show]
    boardsync move-task BOARD_ID TASK_ID COLUMN_ID POSITION
    boardsync invite CODE
    boardsync accept CODE
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

from .activity import format_date
from .api import KanbanError
from .auth import AuthError
from .cache import board_key
from .config import Config, ConfigError
from .filters import (
    DUE_CHOICES,
    TaskFilters,
    filter_tasks,
    filters_to_params,
    has_active_filters,
    parse_filters,
)
from .schema import Board, describe_invite_reason
from .session import BoardSession

logger = logging.getLogger(__name__)


def render_board(board: Board, filters: Optional[TaskFilters] = None) -> str:
    lines = [f"{'★ ' if board.is_favorite else ''}{board.name}  [{board.id}]"]
    if board.description:
        lines.append(f"  {board.description}")
    if filters is not None and has_active_filters(filters):
        active = ", ".join(f"{k}={v}" for k, v in filters_to_params(filters).items())
        lines.append(f"  filtered by {active}")
    for column in board.sorted_columns():
        tasks = board.column_tasks(column.id)
        if filters is not None:
            tasks = filter_tasks(tasks, filters)
        lines.append("")
        lines.append(f"── {column.name} ({len(tasks)}) ──")
        for task in tasks:
            flags = []
            if task.priority:
                flags.append(task.priority.value)
            if task.assigned_to:
                flags.append(f"@{task.assigned_to.username}")
            if task.due_date:
                flags.append(f"due {format_date(task.due_date)}")
            suffix = f"  ({', '.join(flags)})" if flags else ""
            mark = "✓" if task.is_completed else "•"
            lines.append(f"  {task.position:>2} {mark} {task.title}  [{task.id}]{suffix}")
    return "\n".join(lines)


# ── Commands ─────────────────────────────────────────────────────────────────

async def cmd_boards(session: BoardSession, args) -> int:
    boards = await session.list_boards()
    if not boards:
        print("No boards.")
    for b in boards:
        star = "★" if b.is_favorite else " "
        print(f"{star} {b.name:<30} {b.completed_tasks}/{b.total_tasks} done  [{b.id}]")
    return 0


def _filters(args) -> TaskFilters:
    return parse_filters({
        "assignee": args.assignee,
        "priority": args.priority,
        "labels": args.labels,
        "due": args.due,
    })


async def cmd_show(session: BoardSession, args) -> int:
    board = await session.open_board(args.board_id)
    session.close_board(args.board_id)
    print(render_board(board, _filters(args)))
    return 0


async def cmd_watch(session: BoardSession, args) -> int:
    filters = _filters(args)
    board = await session.open_board(args.board_id)
    print(render_board(board, filters))

    def redraw(key, data):
        if data is not None:
            print()
            print(render_board(data, filters))

    session.subscribe(board_key(args.board_id), redraw)
    channel = session.hub.get(args.board_id)
    channel.on_status(lambda status: logger.info(f"Push channel: {status.value}"))
    print("\nWatching for changes. Ctrl+C to stop.\n")
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        session.close_board(args.board_id)


async def cmd_move_task(session: BoardSession, args) -> int:
    await session.open_board(args.board_id)
    try:
        await session.move_task(args.board_id, args.task_id, args.column_id, args.position)
    finally:
        session.close_board(args.board_id)
    print(render_board(session.board(args.board_id)))
    return 0


async def cmd_invite(session: BoardSession, args) -> int:
    preview = await session.preview_invite(args.code)
    if preview.valid:
        print(f"Invite to '{preview.board_name}' is valid.")
        return 0
    # error_message carries the reason code (expired, max_uses_reached, revoked)
    title, description = describe_invite_reason(preview.error_message)
    print(f"{title}: {description}")
    return 1


async def cmd_accept(session: BoardSession, args) -> int:
    result = await session.accept_invite(args.code)
    if result.already_member:
        print(f"You are already a member of '{result.board_name}'.")
    else:
        print(f"Joined '{result.board_name}'  [{result.board_id}]")
    return 0


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--assignee", help="User id, or 'unassigned'")
    p.add_argument("--priority", help="Comma-separated priorities, e.g. HIGH,URGENT")
    p.add_argument("--labels", help="Comma-separated label ids (any one matches)")
    p.add_argument("--due", choices=DUE_CHOICES, help="Due date window")


COMMANDS = {
    "boards": cmd_boards,
    "show": cmd_show,
    "watch": cmd_watch,
    "move-task": cmd_move_task,
    "invite": cmd_invite,
    "accept": cmd_accept,
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="boardsync", description="Kanban board client")
    ap.add_argument("--config", default=None, help="Path to config.yaml")
    ap.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("boards", help="List your boards")

    p = sub.add_parser("show", help="Print a board")
    p.add_argument("board_id")
    _add_filter_args(p)

    p = sub.add_parser("watch", help="Print a board and follow live changes")
    p.add_argument("board_id")
    _add_filter_args(p)

    p = sub.add_parser("move-task", help="Move a task to a column position")
    p.add_argument("board_id")
    p.add_argument("task_id")
    p.add_argument("column_id")
    p.add_argument("position", type=int)

    p = sub.add_parser("invite", help="Check an invite code")
    p.add_argument("code")

    p = sub.add_parser("accept", help="Accept an invite code")
    p.add_argument("code")
    return ap


async def _run(cfg: Config, args) -> int:
    session = BoardSession(cfg)
    try:
        return await COMMANDS[args.command](session, args)
    finally:
        session.close()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [boardsync] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        cfg = Config.load(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run(cfg, args))
    except KeyboardInterrupt:
        print("\nStopping...")
        return 0
    except (KanbanError, AuthError, LookupError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
