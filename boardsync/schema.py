"""
Board data model as seen by the client.

Wire format is the server's camelCase JSON; every type converts with
to_dict() / from_dict(). Board, column and task positions are dense
zero-based ordering keys (see ordering.py).
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (trailing Z allowed). Naive values are UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class Priority(Enum):
    """Task priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @classmethod
    def from_str(cls, value: Optional[str]) -> Optional["Priority"]:
        if not value:
            return None
        try:
            return cls[value.upper()]
        except KeyError:
            return None


class LabelColor(Enum):
    """Label palette. GRAY is the fallback for colors the client does not know."""
    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    TEAL = "teal"
    BLUE = "blue"
    PURPLE = "purple"
    PINK = "pink"
    GRAY = "gray"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "LabelColor":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.GRAY


class BoardRole(Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "BoardRole":
        try:
            return cls[str(value).upper()]
        except KeyError:
            return cls.MEMBER


class ActivityType(Enum):
    """Kinds of entries in a task's activity log."""
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_MOVED = "TASK_MOVED"
    TASK_DELETED = "TASK_DELETED"
    ASSIGNEE_CHANGED = "ASSIGNEE_CHANGED"
    LABELS_CHANGED = "LABELS_CHANGED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    DUE_DATE_CHANGED = "DUE_DATE_CHANGED"


class InviteExpiration(Enum):
    """Expiration choices offered when creating an invite."""
    ONE_DAY = "ONE_DAY"
    SEVEN_DAYS = "SEVEN_DAYS"
    THIRTY_DAYS = "THIRTY_DAYS"
    NEVER = "NEVER"

    @property
    def duration(self) -> Optional[timedelta]:
        return {
            "ONE_DAY": timedelta(days=1),
            "SEVEN_DAYS": timedelta(days=7),
            "THIRTY_DAYS": timedelta(days=30),
        }.get(self.value)


class InviteMaxUses(Enum):
    """Usage caps offered when creating an invite."""
    ONE = "ONE"
    FIVE = "FIVE"
    TEN = "TEN"
    TWENTY_FIVE = "TWENTY_FIVE"
    UNLIMITED = "UNLIMITED"

    @property
    def uses(self) -> Optional[int]:
        return {"ONE": 1, "FIVE": 5, "TEN": 10, "TWENTY_FIVE": 25}.get(self.value)


# ── People ───────────────────────────────────────────────────────────────────


@dataclass
class UserSummary:
    id: str
    username: str = ""
    profile_image_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "profileImageUrl": self.profile_image_url,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["UserSummary"]:
        if not data:
            return None
        return cls(
            id=str(data.get("id", "")),
            username=data.get("username", ""),
            profile_image_url=data.get("profileImageUrl", ""),
        )


@dataclass
class Collaborator:
    user: UserSummary
    role: BoardRole = BoardRole.MEMBER

    def to_dict(self) -> Dict[str, Any]:
        return {"user": self.user.to_dict(), "role": self.role.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Collaborator":
        return cls(
            user=UserSummary.from_dict(data.get("user")) or UserSummary(id=""),
            role=BoardRole.from_str(data.get("role")),
        )


# ── Board structure ──────────────────────────────────────────────────────────


@dataclass
class LabelSummary:
    id: str
    name: str
    color: LabelColor = LabelColor.GRAY

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LabelSummary":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            color=LabelColor.from_str(data.get("color")),
        )


@dataclass
class Label:
    id: str
    name: str
    board_id: str
    color: LabelColor = LabelColor.GRAY
    date_created: Optional[str] = None
    date_modified: Optional[str] = None

    def summary(self) -> LabelSummary:
        return LabelSummary(id=self.id, name=self.name, color=self.color)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color.value,
            "boardId": self.board_id,
            "dateCreated": self.date_created,
            "dateModified": self.date_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Label":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            board_id=str(data.get("boardId", "")),
            color=LabelColor.from_str(data.get("color")),
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
        )


@dataclass
class Column:
    id: str
    name: str
    position: int = 0
    board_id: str = ""
    is_archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "position": self.position,
            "boardId": self.board_id,
            "isArchived": self.is_archived,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], board_id: str = "") -> "Column":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            position=int(data.get("position", 0)),
            board_id=str(data.get("boardId", board_id) or ""),
            is_archived=bool(data.get("isArchived", False)),
        )


@dataclass
class Task:
    """A task card. Summary payloads simply leave the detail fields empty."""

    id: str
    title: str
    column_id: str
    position: int = 0
    description: str = ""
    due_date: Optional[str] = None
    priority: Optional[Priority] = None
    labels: List[LabelSummary] = field(default_factory=list)
    assigned_to: Optional[UserSummary] = None
    created_by: Optional[UserSummary] = None
    is_completed: bool = False
    is_archived: bool = False
    date_created: Optional[str] = None
    date_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "columnId": self.column_id,
            "position": self.position,
            "description": self.description,
            "dueDate": self.due_date,
            "priority": self.priority.value if self.priority else None,
            "labels": [label.to_dict() for label in self.labels],
            "assignedTo": self.assigned_to.to_dict() if self.assigned_to else None,
            "createdBy": self.created_by.to_dict() if self.created_by else None,
            "isCompleted": self.is_completed,
            "isArchived": self.is_archived,
            "dateCreated": self.date_created,
            "dateModified": self.date_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            column_id=str(data.get("columnId", "")),
            position=int(data.get("position", 0)),
            description=data.get("description") or "",
            due_date=data.get("dueDate"),
            priority=Priority.from_str(data.get("priority")),
            labels=[LabelSummary.from_dict(l) for l in data.get("labels") or []],
            assigned_to=UserSummary.from_dict(data.get("assignedTo")),
            created_by=UserSummary.from_dict(data.get("createdBy")),
            is_completed=bool(data.get("isCompleted", False)),
            is_archived=bool(data.get("isArchived", False)),
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
        )


@dataclass
class Board:
    """Full board aggregate, the unit the push channel invalidates."""

    id: str
    name: str
    description: str = ""
    is_favorite: bool = False
    is_archived: bool = False
    is_default: bool = False
    created_by: Optional[UserSummary] = None
    collaborators: List[Collaborator] = field(default_factory=list)
    columns: List[Column] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    labels: List[Label] = field(default_factory=list)
    date_created: Optional[str] = None
    date_modified: Optional[str] = None

    def column_tasks(self, column_id: str) -> List[Task]:
        """Tasks of one column ordered by position."""
        return sorted(
            (t for t in self.tasks if t.column_id == column_id),
            key=lambda t: t.position,
        )

    def sorted_columns(self) -> List[Column]:
        return sorted(self.columns, key=lambda c: c.position)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isFavorite": self.is_favorite,
            "isArchived": self.is_archived,
            "isDefault": self.is_default,
            "createdBy": self.created_by.to_dict() if self.created_by else None,
            "collaborators": [c.to_dict() for c in self.collaborators],
            "columns": [c.to_dict() for c in self.columns],
            "tasks": [t.to_dict() for t in self.tasks],
            "labels": [l.to_dict() for l in self.labels],
            "dateCreated": self.date_created,
            "dateModified": self.date_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        board_id = str(data.get("id", ""))
        return cls(
            id=board_id,
            name=data.get("name", ""),
            description=data.get("description") or "",
            is_favorite=bool(data.get("isFavorite", False)),
            is_archived=bool(data.get("isArchived", False)),
            is_default=bool(data.get("isDefault", False)),
            created_by=UserSummary.from_dict(data.get("createdBy")),
            collaborators=[Collaborator.from_dict(c) for c in data.get("collaborators") or []],
            columns=[Column.from_dict(c, board_id) for c in data.get("columns") or []],
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
            labels=[Label.from_dict(l) for l in data.get("labels") or []],
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
        )


@dataclass
class BoardSummary:
    """One row of the signed-in user's board list."""

    id: str
    name: str
    description: str = ""
    date_modified: Optional[str] = None
    completed_tasks: int = 0
    total_tasks: int = 0
    is_favorite: bool = False
    is_archived: bool = False
    is_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "dateModified": self.date_modified,
            "completedTasks": self.completed_tasks,
            "totalTasks": self.total_tasks,
            "isFavorite": self.is_favorite,
            "isArchived": self.is_archived,
            "isDefault": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardSummary":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            description=data.get("description") or "",
            date_modified=data.get("dateModified"),
            completed_tasks=int(data.get("completedTasks", 0)),
            total_tasks=int(data.get("totalTasks", 0)),
            is_favorite=bool(data.get("isFavorite", False)),
            is_archived=bool(data.get("isArchived", False)),
            is_default=bool(data.get("isDefault", False)),
        )


# ── Comments & activity (append-only) ────────────────────────────────────────


@dataclass
class Comment:
    id: str
    content: str
    task_id: str
    author: Optional[UserSummary] = None
    date_created: Optional[str] = None
    date_modified: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "taskId": self.task_id,
            "author": self.author.to_dict() if self.author else None,
            "dateCreated": self.date_created,
            "dateModified": self.date_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content", ""),
            task_id=str(data.get("taskId", "")),
            author=UserSummary.from_dict(data.get("author")),
            date_created=data.get("dateCreated"),
            date_modified=data.get("dateModified"),
        )


@dataclass
class ActivityEntry:
    id: str
    type: str
    task_id: str
    details: Optional[str] = None  # JSON string, shape depends on type
    user: Optional[UserSummary] = None
    date_created: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "taskId": self.task_id,
            "details": self.details,
            "user": self.user.to_dict() if self.user else None,
            "dateCreated": self.date_created,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEntry":
        return cls(
            id=str(data.get("id", "")),
            type=data.get("type", ""),
            task_id=str(data.get("taskId", "")),
            details=data.get("details"),
            user=UserSummary.from_dict(data.get("user")),
            date_created=data.get("dateCreated"),
        )


# ── Invites ──────────────────────────────────────────────────────────────────

INVITE_REVOKED = "revoked"
INVITE_EXPIRED = "expired"
INVITE_MAX_USES_REACHED = "max_uses_reached"

_INVITE_MESSAGES = {
    INVITE_EXPIRED: (
        "Invite Expired",
        "This invite link has expired and is no longer valid.",
    ),
    INVITE_MAX_USES_REACHED: (
        "Invite Limit Reached",
        "This invite link has reached its maximum number of uses.",
    ),
    INVITE_REVOKED: (
        "Invite Revoked",
        "This invite link has been revoked by a board admin.",
    ),
}


def describe_invite_reason(reason: Optional[str]) -> tuple:
    """(title, description) shown for an invalid invite reason."""
    return _INVITE_MESSAGES.get(
        reason or "",
        ("Invalid Invite", "This invite link is no longer valid."),
    )


@dataclass
class Invite:
    id: str
    code: str
    board_id: str
    created_by: Optional[UserSummary] = None
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int = 0
    revoked: bool = False
    date_created: Optional[str] = None

    def invalid_reason(self, now: Optional[datetime] = None) -> Optional[str]:
        """
        Why this invite can no longer be used, or None if it can.

        Checked in order: revoked, expired, max_uses_reached. An expired
        invite reports "expired" no matter how many uses remain.
        """
        now = now or datetime.now(timezone.utc)
        if self.revoked:
            return INVITE_REVOKED
        if self.expires_at is not None and now > self.expires_at:
            return INVITE_EXPIRED
        if self.max_uses is not None and self.use_count >= self.max_uses:
            return INVITE_MAX_USES_REACHED
        return None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.invalid_reason(now) is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "boardId": self.board_id,
            "createdBy": self.created_by.to_dict() if self.created_by else None,
            "expiresAt": format_timestamp(self.expires_at),
            "maxUses": self.max_uses,
            "useCount": self.use_count,
            "revoked": self.revoked,
            "dateCreated": self.date_created,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Invite":
        max_uses = data.get("maxUses")
        return cls(
            id=str(data.get("id", "")),
            code=data.get("code", ""),
            board_id=str(data.get("boardId", "")),
            created_by=UserSummary.from_dict(data.get("createdBy")),
            expires_at=parse_timestamp(data.get("expiresAt")),
            max_uses=int(max_uses) if max_uses is not None else None,
            use_count=int(data.get("useCount", 0)),
            revoked=bool(data.get("revoked", False)),
            date_created=data.get("dateCreated"),
        )


@dataclass
class InvitePreview:
    board_name: str
    valid: bool
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvitePreview":
        return cls(
            board_name=data.get("boardName", ""),
            valid=bool(data.get("valid", False)),
            error_message=data.get("errorMessage"),
        )


@dataclass
class AcceptInviteResult:
    board_id: str
    board_name: str
    already_member: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AcceptInviteResult":
        return cls(
            board_id=str(data.get("boardId", "")),
            board_name=data.get("boardName", ""),
            already_member=bool(data.get("alreadyMember", False)),
        )


# ── Push events ──────────────────────────────────────────────────────────────


@dataclass
class BoardEvent:
    """One notification from the push channel."""

    type: str
    board_id: str
    entity_id: Optional[str] = None
    details: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardEvent":
        # "payload" is the SSE name for what the broker calls "details"
        details = data.get("details")
        if details is None:
            details = data.get("payload")
        entity_id = data.get("entityId")
        return cls(
            type=str(data.get("type", "")),
            board_id=str(data.get("boardId", "")),
            entity_id=str(entity_id) if entity_id is not None else None,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "boardId": self.board_id,
            "entityId": self.entity_id,
            "details": self.details,
        }
