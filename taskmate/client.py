"""
HTTP client for the TaskMate JSON API.

Keeps the session cookie in a ``requests.Session`` cookie jar, so a
login/register call authenticates every call that follows it.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from .errors import AuthorizationError, TaskMateError, ValidationError
from .schema import Board, Tag, Task, User

logger = logging.getLogger(__name__)


class ApiError(TaskMateError):
    """Raised for non-2xx responses that are neither 400 nor 401."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class TaskMateClient:
    """Thin wrapper over the JSON endpoints; returns schema objects."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.http = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, json: Any = None, headers: Optional[dict] = None,
                 params: Optional[dict] = None) -> Any:
        r = self.http.request(
            method,
            f"{self.base_url}{path}",
            json=json,
            headers=headers,
            params=params,
            timeout=self.timeout,
        )
        try:
            body = r.json()
        except ValueError:
            body = {}
        if r.ok:
            return body
        message = body.get("error") if isinstance(body, dict) else None
        message = message or f"HTTP {r.status_code}"
        logger.warning(f"{method} {path} failed: {r.status_code} {message}")
        if r.status_code == 400:
            raise ValidationError(message)
        if r.status_code == 401:
            raise AuthorizationError(message)
        raise ApiError(message, r.status_code)

    # ── Auth ─────────────────────────────────────────────────────────────────

    def register(self, email: str, password: str, name: str) -> User:
        body = self._request("POST", "/api/auth/register", json={"email": email, "password": password, "name": name})
        return User.from_row(body["user"])

    def login(self, email: str, password: str) -> User:
        body = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        return User.from_row(body["user"])

    def logout(self) -> None:
        self._request("POST", "/api/auth/logout")

    def me(self) -> User:
        return User.from_row(self._request("GET", "/api/auth/me"))

    # ── Tasks ────────────────────────────────────────────────────────────────

    def get_tasks(self, board_id: Optional[str] = None) -> List[Task]:
        params = {"board_id": board_id} if board_id else None
        return [Task.from_dict(t) for t in self._request("GET", "/api/tasks", params=params)]

    def create_task(self, data: Dict[str, Any]) -> Task:
        return Task.from_dict(self._request("POST", "/api/tasks", json=data))

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        return Task.from_dict(self._request("PUT", f"/api/tasks/{task_id}", json=updates))

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}")

    def move_task(self, task_id: str, board_id: str, position: Optional[int] = None) -> Task:
        payload: Dict[str, Any] = {"board_id": board_id}
        if position is not None:
            payload["position"] = position
        return Task.from_dict(self._request("POST", f"/api/tasks/{task_id}/move", json=payload))

    # ── Boards / tags / users ────────────────────────────────────────────────

    def get_boards(self) -> List[Board]:
        return [Board.from_dict(b) for b in self._request("GET", "/api/boards")]

    def get_tags(self) -> List[Tag]:
        return [Tag.from_row(t) for t in self._request("GET", "/api/tags")]

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        return Tag.from_row(self._request("POST", "/api/tags", json={"name": name, "color": color}))

    def get_users(self) -> List[User]:
        return [User.from_row(u) for u in self._request("GET", "/api/users")]

    # ── Cleanup ──────────────────────────────────────────────────────────────

    def cleanup_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/api/cleanup")["stats"]

    def run_cleanup(self) -> Dict[str, Any]:
        return self._request("POST", "/api/cleanup")

    def trigger_cron_cleanup(self, api_key: str = "") -> Dict[str, Any]:
        headers = {"X-API-Key": api_key} if api_key else None
        return self._request("POST", "/api/cron/cleanup", headers=headers)
