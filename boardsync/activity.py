"""
Task activity feed: human-readable activity lines and the merged
comment/activity timeline.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from .schema import ActivityEntry, Comment, parse_timestamp

ACTIVITY_LABELS = {
    "TASK_CREATED": "created this task",
    "TASK_UPDATED": "updated the task",
    "TASK_MOVED": "moved the task",
    "TASK_DELETED": "deleted the task",
    "ASSIGNEE_CHANGED": "changed assignee",
    "LABELS_CHANGED": "changed labels",
    "PRIORITY_CHANGED": "changed priority",
    "DUE_DATE_CHANGED": "changed due date",
}


def _parse_details(details: Optional[str]) -> Optional[Dict[str, Any]]:
    if not details:
        return None
    try:
        parsed = json.loads(details)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _format_details(activity_type: str, details: Optional[Dict[str, Any]]) -> Optional[str]:
    if not details:
        return None

    if activity_type == "TASK_UPDATED":
        parts = []
        if details.get("oldTitle") and details.get("newTitle"):
            parts.append(f'title from "{details["oldTitle"]}" to "{details["newTitle"]}"')
        if details.get("descriptionChanged"):
            parts.append("description")
        return f"Changed {' and '.join(parts)}" if parts else None

    if activity_type == "ASSIGNEE_CHANGED":
        username = details.get("newAssigneeUsername")
        return f"Assigned to {username}" if username else "Unassigned the task"

    if activity_type == "PRIORITY_CHANGED":
        old = (details.get("oldPriority") or "none").lower()
        new = (details.get("newPriority") or "none").lower()
        return f"From {old} to {new}"

    if activity_type == "DUE_DATE_CHANGED":
        old, new = details.get("oldDueDate"), details.get("newDueDate")
        if not old and new:
            return f"Set to {new}"
        if old and not new:
            return "Removed due date"
        return f"Changed from {old} to {new}"

    return None


def describe_activity(entry: ActivityEntry) -> Tuple[str, Optional[str]]:
    """(label, detail) for one activity entry; detail may be None."""
    label = ACTIVITY_LABELS.get(entry.type, entry.type.lower().replace("_", " "))
    return label, _format_details(entry.type, _parse_details(entry.details))


FeedItem = Union[Comment, ActivityEntry]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def build_feed(comments: List[Comment], activities: List[ActivityEntry]) -> List[FeedItem]:
    """Merge comments and activity into one timeline, oldest first."""
    def created(item: FeedItem) -> datetime:
        return parse_timestamp(item.date_created) or _EPOCH

    return sorted([*comments, *activities], key=created)


def format_date(value: Optional[str]) -> str:
    """'March 4, 2025' for dates, 'March 4, 2025, 09:30 AM' when a time is present."""
    if not value:
        return "Not set"
    parsed = parse_timestamp(value)
    if parsed is None:
        return "Not set"
    day = f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"
    if "T" not in value:
        return day
    return f"{day}, {parsed.strftime('%I:%M %p')}"
