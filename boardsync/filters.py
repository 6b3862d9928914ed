"""
Task filtering for board views.

Filters travel as query parameters (assignee, priority, labels, due) with
multi-select values comma-joined, so a filtered view can be shared as a URL.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from .schema import Task

UNASSIGNED = "unassigned"
DUE_CHOICES = ("overdue", "today", "week", "none")


@dataclass
class TaskFilters:
    assignee: Optional[str] = None       # user id or "unassigned"
    priorities: List[str] = field(default_factory=list)
    label_ids: List[str] = field(default_factory=list)
    due: Optional[str] = None            # one of DUE_CHOICES


def has_active_filters(filters: TaskFilters) -> bool:
    return bool(filters.assignee or filters.priorities or filters.label_ids or filters.due)


def _due_day(task: Task) -> Optional[date]:
    if not task.due_date:
        return None
    try:
        return date.fromisoformat(task.due_date[:10])
    except ValueError:
        return None


def _matches(task: Task, filters: TaskFilters, today: date) -> bool:
    if filters.assignee:
        if filters.assignee == UNASSIGNED:
            if task.assigned_to:
                return False
        elif not task.assigned_to or task.assigned_to.id != filters.assignee:
            return False

    if filters.priorities:
        if not task.priority or task.priority.value not in filters.priorities:
            return False

    # Any one matching label is enough
    if filters.label_ids:
        if not {l.id for l in task.labels} & set(filters.label_ids):
            return False

    if filters.due:
        due = _due_day(task)
        if filters.due == "none":
            return due is None
        if due is None:
            return False
        if filters.due == "overdue":
            return due < today
        if filters.due == "today":
            return due == today
        if filters.due == "week":
            return today <= due <= today + timedelta(days=7)

    return True


def filter_tasks(tasks: List[Task], filters: TaskFilters, today: Optional[date] = None) -> List[Task]:
    """Tasks matching every active filter, input order preserved."""
    if not has_active_filters(filters):
        return list(tasks)
    today = today or date.today()
    return [t for t in tasks if _matches(t, filters, today)]


def parse_filters(params: Dict[str, str]) -> TaskFilters:
    """Build TaskFilters from query parameters."""
    def split(value: Optional[str]) -> List[str]:
        return [v for v in (value or "").split(",") if v]

    due = params.get("due") or None
    if due not in DUE_CHOICES:
        due = None
    return TaskFilters(
        assignee=params.get("assignee") or None,
        priorities=split(params.get("priority")),
        label_ids=split(params.get("labels")),
        due=due,
    )


def filters_to_params(filters: TaskFilters) -> Dict[str, str]:
    """Inverse of parse_filters; inactive filters are left out."""
    params = {}
    if filters.assignee:
        params["assignee"] = filters.assignee
    if filters.priorities:
        params["priority"] = ",".join(filters.priorities)
    if filters.label_ids:
        params["labels"] = ",".join(filters.label_ids)
    if filters.due:
        params["due"] = filters.due
    return params
