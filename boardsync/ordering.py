"""
Dense position bookkeeping for columns and tasks.

Every container (a board's columns, a column's tasks) keeps positions as a
dense zero-based sequence. All functions here are pure: they return new
objects and never mutate their inputs, so callers can keep the originals
as rollback snapshots.
"""
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def is_dense(positions: Iterable[int]) -> bool:
    """True when positions are exactly 0..n-1 with no gaps or duplicates."""
    values = sorted(positions)
    return values == list(range(len(values)))


def resequence(items: Sequence[T]) -> List[T]:
    """Renumber items 0..n-1 in their current order."""
    return [
        item if item.position == index else replace(item, position=index)
        for index, item in enumerate(items)
    ]


def resolve_drop_index(
    ids: Sequence[str],
    before_id: Optional[str] = None,
    after_id: Optional[str] = None,
) -> int:
    """
    Insertion index for an item dropped next to neighbours.

    `before_id` is the item that should follow the dropped one, `after_id`
    the one that should precede it. Falls back to the end of the list when
    neither reference is present in `ids`.
    """
    if before_id is not None and before_id in ids:
        return list(ids).index(before_id)
    if after_id is not None and after_id in ids:
        return list(ids).index(after_id) + 1
    return len(ids)


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


def move_column(columns: Sequence[T], column_id: str, new_position: int) -> List[T]:
    """Move one column to `new_position` and re-densify the board's columns."""
    ordered = sorted(columns, key=lambda c: c.position)
    moving = next((c for c in ordered if c.id == column_id), None)
    if moving is None or moving.position == new_position:
        return list(columns)

    rest = [c for c in ordered if c.id != column_id]
    index = _clamp(new_position, len(rest))
    rest.insert(index, moving)
    return resequence(rest)


def move_task(
    tasks: Sequence[T],
    task_id: str,
    new_column_id: str,
    new_position: int,
) -> List[T]:
    """
    Move one task into `new_column_id` at `new_position`.

    The source column is re-densified after removal and the destination
    column after insertion. Tasks in any other column keep their positions.
    The result is sorted by position (stable with respect to the input).
    """
    moving = next((t for t in tasks if t.id == task_id), None)
    if moving is None:
        return list(tasks)
    old_column_id = moving.column_id
    if old_column_id == new_column_id and moving.position == new_position:
        return list(tasks)

    def column(column_id: str) -> List[T]:
        return sorted(
            (t for t in tasks if t.column_id == column_id and t.id != task_id),
            key=lambda t: t.position,
        )

    destination = column(new_column_id)
    index = _clamp(new_position, len(destination))
    destination.insert(index, replace(moving, column_id=new_column_id))

    updated = {t.id: t for t in resequence(destination)}
    if old_column_id != new_column_id:
        updated.update({t.id: t for t in resequence(column(old_column_id))})

    result = [updated.get(t.id, t) for t in tasks]
    return sorted(result, key=lambda t: t.position)
