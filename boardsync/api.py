"""
REST client for the kanban API.

One method per endpoint, returning schema objects. Error policy:
    401 → AuthenticationRequired (cached identity cleared, on_auth_required hook)
    403 → AccessDenied (on_forbidden hook)
    other non-2xx → RequestError
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from .schema import (
    AcceptInviteResult,
    ActivityEntry,
    Board,
    BoardRole,
    BoardSummary,
    Column,
    Comment,
    Invite,
    InviteExpiration,
    InviteMaxUses,
    InvitePreview,
    Label,
    LabelColor,
    Task,
)

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Exceptions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class KanbanError(Exception):
    """Base class for API failures."""
    pass


class RequestError(KanbanError):
    """Non-2xx response (other than 401/403) or transport failure."""

    def __init__(self, status: int, body: Any = None, message: str = ""):
        self.status = status
        self.body = body
        super().__init__(message or f"API error: {status} {body if body is not None else ''}".rstrip())


class AuthenticationRequired(KanbanError):
    """401: the user must sign in again."""
    pass


class AccessDenied(KanbanError):
    """403: the user may not access this resource."""
    pass


def _body(response: requests.Response) -> Any:
    """Decode a response body by content type; empty bodies become None."""
    if not response.content:
        return None
    content_type = response.headers.get("Content-Type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class KanbanAPI:
    """Thin synchronous client; the async layers call it through asyncio.to_thread."""

    def __init__(
        self,
        base_url: str,
        token_provider,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        on_auth_required: Optional[Callable[[], None]] = None,
        on_forbidden: Optional[Callable[[], None]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.tokens = token_provider
        self.timeout = timeout
        self.session = session or requests.Session()
        self.on_auth_required = on_auth_required
        self.on_forbidden = on_forbidden

    # ──────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────

    def _auth_failed(self):
        self.tokens.clear()
        if self.on_auth_required:
            self.on_auth_required()
        raise AuthenticationRequired("User is not authenticated!")

    def request(self, method: str, path: str, json: Any = None, params: Optional[Dict] = None) -> Any:
        token = self.tokens.get_token()
        if not token:
            self._auth_failed()

        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            r = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RequestError(0, message=f"{method} {path} failed: {e}") from e

        data = _body(r)
        if r.status_code == 401:
            logger.warning(f"{method} {path} → 401, sign-in required")
            self._auth_failed()
        if r.status_code == 403:
            logger.warning(f"{method} {path} → 403")
            if self.on_forbidden:
                self.on_forbidden()
            raise AccessDenied(f"Access denied: {path}")
        if not r.ok:
            raise RequestError(r.status_code, data)
        return data

    # ──────────────────────────────────────────
    # Boards
    # ──────────────────────────────────────────

    def list_boards(self) -> List[BoardSummary]:
        return [BoardSummary.from_dict(b) for b in self.request("GET", "/boards") or []]

    def get_board(self, board_id: str) -> Board:
        return Board.from_dict(self.request("GET", f"/boards/{board_id}"))

    def get_board_tasks(self, board_id: str) -> List[Task]:
        return [Task.from_dict(t) for t in self.request("GET", f"/boards/{board_id}/tasks") or []]

    def create_board(self, name: str, description: str = "") -> Board:
        body = {"name": name, "description": description, "isArchived": False}
        return Board.from_dict(self.request("POST", "/boards", json=body))

    def update_board(self, board_id: str, name: str, description: str = "", is_archived: bool = False) -> Board:
        body = {"name": name, "description": description, "isArchived": is_archived}
        return Board.from_dict(self.request("PUT", f"/boards/{board_id}", json=body))

    def toggle_favorite(self, board_id: str) -> None:
        self.request("POST", f"/boards/{board_id}/favorite")

    def add_collaborator(self, board_id: str, user_id: str, role: BoardRole = BoardRole.MEMBER) -> None:
        body = {"userId": user_id, "role": role.value}
        self.request("POST", f"/boards/{board_id}/collaborators", json=body)

    def remove_collaborator(self, board_id: str, user_id: str) -> None:
        self.request("DELETE", f"/boards/{board_id}/collaborators/{user_id}")

    def update_collaborator_role(self, board_id: str, user_id: str, role: BoardRole) -> None:
        self.request("PUT", f"/boards/{board_id}/collaborators/{user_id}", json={"role": role.value})

    # ──────────────────────────────────────────
    # Columns
    # ──────────────────────────────────────────

    def create_column(self, board_id: str, name: str, position: Optional[int] = None) -> Column:
        body = {"name": name, "position": position}
        return Column.from_dict(self.request("POST", f"/boards/{board_id}/columns", json=body), board_id)

    def update_column(self, board_id: str, column_id: str, name: str) -> Column:
        data = self.request("PUT", f"/boards/{board_id}/columns/{column_id}", json={"name": name})
        return Column.from_dict(data, board_id)

    def delete_column(self, board_id: str, column_id: str) -> None:
        self.request("DELETE", f"/boards/{board_id}/columns/{column_id}")

    def move_column(self, board_id: str, column_id: str, new_position: int) -> None:
        self.request(
            "PATCH",
            f"/boards/{board_id}/columns/{column_id}/move",
            json={"newPosition": new_position},
        )

    # ──────────────────────────────────────────
    # Tasks
    # ──────────────────────────────────────────

    def get_task(self, task_id: str) -> Task:
        return Task.from_dict(self.request("GET", f"/tasks/{task_id}"))

    def create_task(
        self,
        board_id: str,
        column_id: str,
        title: str,
        description: str = "",
        assignee_id: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: Optional[str] = None,
    ) -> Task:
        body = {
            "boardId": board_id,
            "columnId": column_id,
            "title": title,
            "description": description,
            "assigneeId": assignee_id,
            "priority": priority,
            "dueDate": due_date,
            "isCompleted": False,
            "isArchived": False,
        }
        return Task.from_dict(self.request("POST", "/tasks", json=body))

    def update_task(self, task_id: str, **fields: Any) -> Task:
        """Update a task; keyword names are the wire (camelCase) field names."""
        return Task.from_dict(self.request("PUT", f"/tasks/{task_id}", json=fields))

    def move_task(
        self,
        task_id: str,
        new_column_id: str,
        new_position: int,
        before_task_id: Optional[str] = None,
        after_task_id: Optional[str] = None,
    ) -> None:
        body = {"newColumnId": new_column_id, "newPosition": new_position}
        if before_task_id:
            body["beforeTaskId"] = before_task_id
        if after_task_id:
            body["afterTaskId"] = after_task_id
        self.request("PATCH", f"/tasks/{task_id}", json=body)

    def delete_task(self, task_id: str) -> None:
        self.request("DELETE", f"/tasks/{task_id}")

    # ──────────────────────────────────────────
    # Labels
    # ──────────────────────────────────────────

    def list_labels(self, board_id: str) -> List[Label]:
        data = self.request("GET", f"/boards/{board_id}/labels") or []
        return [Label.from_dict({"boardId": board_id, **l}) for l in data]

    def get_label(self, label_id: str) -> Label:
        return Label.from_dict(self.request("GET", f"/labels/{label_id}"))

    def create_label(self, board_id: str, name: str, color: LabelColor) -> Label:
        body = {"boardId": board_id, "name": name, "color": color.value}
        return Label.from_dict(self.request("POST", "/labels", json=body))

    def update_label(self, label_id: str, board_id: str, name: str, color: LabelColor) -> Label:
        body = {"boardId": board_id, "name": name, "color": color.value}
        return Label.from_dict(self.request("PUT", f"/labels/{label_id}", json=body))

    def delete_label(self, label_id: str) -> None:
        self.request("DELETE", f"/labels/{label_id}")

    def add_label_to_task(self, task_id: str, label_id: str) -> None:
        self.request("POST", f"/tasks/{task_id}/labels/{label_id}")

    def remove_label_from_task(self, task_id: str, label_id: str) -> None:
        self.request("DELETE", f"/tasks/{task_id}/labels/{label_id}")

    # ──────────────────────────────────────────
    # Comments & activity
    # ──────────────────────────────────────────

    def list_comments(self, board_id: str, task_id: str) -> List[Comment]:
        data = self.request("GET", f"/boards/{board_id}/tasks/{task_id}/comments") or []
        return [Comment.from_dict(c) for c in data]

    def create_comment(self, board_id: str, task_id: str, content: str) -> Comment:
        data = self.request(
            "POST", f"/boards/{board_id}/tasks/{task_id}/comments", json={"content": content}
        )
        return Comment.from_dict(data)

    def update_comment(self, board_id: str, task_id: str, comment_id: str, content: str) -> Comment:
        data = self.request(
            "PUT",
            f"/boards/{board_id}/tasks/{task_id}/comments/{comment_id}",
            json={"content": content},
        )
        return Comment.from_dict(data)

    def delete_comment(self, board_id: str, task_id: str, comment_id: str) -> None:
        self.request("DELETE", f"/boards/{board_id}/tasks/{task_id}/comments/{comment_id}")

    def list_activity(self, board_id: str, task_id: str) -> List[ActivityEntry]:
        data = self.request("GET", f"/boards/{board_id}/tasks/{task_id}/activity") or []
        return [ActivityEntry.from_dict(a) for a in data]

    # ──────────────────────────────────────────
    # Invites
    # ──────────────────────────────────────────

    def create_invite(
        self,
        board_id: str,
        expiration: InviteExpiration = InviteExpiration.SEVEN_DAYS,
        max_uses: InviteMaxUses = InviteMaxUses.UNLIMITED,
    ) -> Invite:
        body = {"boardId": board_id, "expiration": expiration.value, "maxUses": max_uses.value}
        return Invite.from_dict(self.request("POST", "/invites", json=body))

    def list_invites(self, board_id: str) -> List[Invite]:
        return [Invite.from_dict(i) for i in self.request("GET", f"/boards/{board_id}/invites") or []]

    def revoke_invite(self, invite_id: str) -> None:
        self.request("DELETE", f"/invites/{invite_id}")

    def preview_invite(self, code: str) -> InvitePreview:
        return InvitePreview.from_dict(self.request("GET", f"/invites/{code}/preview"))

    def accept_invite(self, code: str) -> AcceptInviteResult:
        return AcceptInviteResult.from_dict(self.request("POST", f"/invites/{code}/accept"))

    # ──────────────────────────────────────────
    # Users
    # ──────────────────────────────────────────

    def get_default_board(self) -> Optional[str]:
        data = self.request("GET", "/users/default-board")
        return str(data).strip('"') if data else None

    def set_default_board(self, board_id: str) -> None:
        self.request("POST", "/users/default-board", json=board_id)
