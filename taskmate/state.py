"""
Client-side board state with optimistic mutation.

Every user edit is a Command: ``apply`` changes local state at once,
``remote`` performs the API call, ``reconcile`` folds the server's
answer back in, and ``compensate`` undoes ``apply`` when the call
fails. OptimisticExecutor runs that sequence the same way for every
command.
"""
import copy
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from .client import TaskMateClient
from .errors import TaskMateError
from .filters import FilterOptions, filter_and_sort
from .schema import Board, BoardSlug, Priority, Tag, Task, User, parse_iso, utc_now

logger = logging.getLogger(__name__)


def wip_status(board: Board, task_count: Optional[int] = None) -> Dict[str, bool]:
    """WIP flags for a lane; both False when the lane has no limit."""
    count = len(board.tasks) if task_count is None else task_count
    limit = board.wip_limit
    return {
        "isWipLimitReached": bool(limit) and count >= limit,
        "isOverWipLimit": bool(limit) and count > limit,
    }


class BoardState:
    """In-memory mirror of the server's tasks, boards, tags and users."""

    def __init__(self):
        self.tasks: List[Task] = []
        self.boards: List[Board] = []
        self.tags: List[Tag] = []
        self.users: List[User] = []
        self.filters = FilterOptions()
        self.is_loading = False
        self.error: Optional[str] = None

    def load(self, client: TaskMateClient) -> None:
        """Replace everything with a fresh snapshot from the server."""
        self.is_loading = True
        try:
            self.boards = client.get_boards()
            self.tasks = [t for b in self.boards for t in b.tasks]
            self.tags = client.get_tags()
            self.users = client.get_users()
            self.error = None
        finally:
            self.is_loading = False

    # ── Queries ──────────────────────────────────────────────────────────────

    def find_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def find_board(self, board_id: str) -> Optional[Board]:
        return next((b for b in self.boards if b.id == board_id), None)

    def tasks_by_board(self, board_id: str) -> List[Task]:
        return [t for t in self.tasks if t.board_id == board_id]

    def board_by_slug(self, slug: BoardSlug) -> Optional[Board]:
        return next((b for b in self.boards if b.slug == slug), None)

    def filtered_and_sorted(self, board_id: str) -> List[Task]:
        return filter_and_sort(self.tasks_by_board(board_id), self.filters)

    def clear_filters(self) -> None:
        self.filters = FilterOptions()

    def clear_error(self) -> None:
        self.error = None

    # ── Mutations (used by commands) ─────────────────────────────────────────

    def insert_task(self, task: Task, index: Optional[int] = None) -> None:
        if index is None:
            self.tasks.append(task)
        else:
            self.tasks.insert(index, task)
        self._sync_boards()

    def replace_task(self, task_id: str, task: Task) -> None:
        self.tasks = [task if t.id == task_id else t for t in self.tasks]
        self._sync_boards()

    def remove_task(self, task_id: str) -> None:
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self._sync_boards()

    def _sync_boards(self) -> None:
        for board in self.boards:
            board.tasks = self.tasks_by_board(board.id)


class Command:
    """One optimistic edit and its compensating action."""

    def apply(self, state: BoardState) -> None:
        raise NotImplementedError

    def remote(self, client: TaskMateClient) -> Any:
        raise NotImplementedError

    def reconcile(self, state: BoardState, result: Any) -> None:
        pass

    def compensate(self, state: BoardState) -> None:
        raise NotImplementedError


class AddTaskCommand(Command):
    def __init__(self, data: Dict[str, Any]):
        self.data = data
        self.temp_id = f"temp-{int(time.time() * 1000)}"

    def apply(self, state: BoardState) -> None:
        board = state.find_board(self.data.get("board_id", ""))
        task = Task(
            id=self.temp_id,
            title=self.data.get("title", ""),
            board_id=self.data.get("board_id", ""),
            creator_id="current-user",
            description=self.data.get("description") or "",
            assignee_id=self.data.get("assignee_id"),
            priority=Priority.from_str(self.data.get("priority")),
            due_date=parse_iso(self.data.get("due_date")),
            estimated_hours=self.data.get("estimated_hours"),
            tags=[t for t in state.tags if t.id in set(self.data.get("tag_ids") or [])],
        )
        if board is not None:
            task.position = len(state.tasks_by_board(board.id)) + 1
        state.insert_task(task)

    def remote(self, client: TaskMateClient) -> Task:
        return client.create_task(self.data)

    def reconcile(self, state: BoardState, result: Task) -> None:
        state.replace_task(self.temp_id, result)

    def compensate(self, state: BoardState) -> None:
        state.remove_task(self.temp_id)


class UpdateTaskCommand(Command):
    _SIMPLE_FIELDS = ("title", "description", "assignee_id", "position", "estimated_hours", "actual_hours")

    def __init__(self, task_id: str, updates: Dict[str, Any]):
        self.task_id = task_id
        self.updates = updates
        self.previous: Optional[Task] = None

    def apply(self, state: BoardState) -> None:
        current = state.find_task(self.task_id)
        if current is None:
            return
        self.previous = copy.deepcopy(current)
        updated = copy.deepcopy(current)
        for name in self._SIMPLE_FIELDS:
            if name in self.updates:
                setattr(updated, name, self.updates[name])
        if "priority" in self.updates:
            updated.priority = Priority.from_str(self.updates["priority"])
        if "due_date" in self.updates:
            updated.due_date = parse_iso(self.updates["due_date"])
        if "board_id" in self.updates:
            updated.board_id = self.updates["board_id"]
        if "tag_ids" in self.updates:
            wanted = set(self.updates["tag_ids"] or [])
            updated.tags = [t for t in state.tags if t.id in wanted]
        updated.updated_at = utc_now()
        state.replace_task(self.task_id, updated)

    def remote(self, client: TaskMateClient) -> Task:
        return client.update_task(self.task_id, self.updates)

    def reconcile(self, state: BoardState, result: Task) -> None:
        state.replace_task(self.task_id, result)

    def compensate(self, state: BoardState) -> None:
        if self.previous is not None:
            state.replace_task(self.task_id, self.previous)


class DeleteTaskCommand(Command):
    def __init__(self, task_id: str):
        self.task_id = task_id
        self.previous: Optional[Task] = None
        self.index: Optional[int] = None

    def apply(self, state: BoardState) -> None:
        for i, task in enumerate(state.tasks):
            if task.id == self.task_id:
                self.previous, self.index = task, i
                break
        state.remove_task(self.task_id)

    def remote(self, client: TaskMateClient) -> None:
        client.delete_task(self.task_id)

    def compensate(self, state: BoardState) -> None:
        if self.previous is not None and state.find_task(self.task_id) is None:
            state.insert_task(self.previous, self.index)


class MoveTaskCommand(Command):
    def __init__(self, task_id: str, board_id: str, position: Optional[int] = None):
        self.task_id = task_id
        self.board_id = board_id
        self.position = position
        self.previous: Optional[Task] = None

    def apply(self, state: BoardState) -> None:
        current = state.find_task(self.task_id)
        if current is None:
            return
        self.previous = copy.deepcopy(current)
        moved = copy.deepcopy(current)
        moved.board_id = self.board_id
        if self.position is not None:
            moved.position = self.position
        moved.updated_at = utc_now()
        state.replace_task(self.task_id, moved)

    def remote(self, client: TaskMateClient) -> Task:
        return client.move_task(self.task_id, self.board_id, self.position)

    def reconcile(self, state: BoardState, result: Task) -> None:
        state.replace_task(self.task_id, result)

    def compensate(self, state: BoardState) -> None:
        if self.previous is not None:
            state.replace_task(self.task_id, self.previous)


class OptimisticExecutor:
    """Runs commands: apply locally, call the server, compensate on failure."""

    def __init__(self, state: BoardState, client: TaskMateClient):
        self.state = state
        self.client = client

    def execute(self, command: Command) -> Any:
        command.apply(self.state)
        try:
            result = command.remote(self.client)
        except Exception as e:
            command.compensate(self.state)
            self.state.error = str(e)
            logger.warning(f"{type(command).__name__} failed, local change rolled back: {e}")
            raise
        command.reconcile(self.state, result)
        return result

    def handle_drop(self, task_id: str, target_board_id: Optional[str]) -> Optional[Task]:
        """
        Drag-and-drop end handler. Dropping outside any lane, on an
        unknown lane, or back on the task's own lane does nothing. A
        failed move is rolled back and reported through ``state.error``.
        """
        if not target_board_id or self.state.find_board(target_board_id) is None:
            return None
        task = self.state.find_task(task_id)
        if task is None or task.board_id == target_board_id:
            return None
        try:
            return self.execute(MoveTaskCommand(task_id, target_board_id))
        except (TaskMateError, requests.RequestException):
            return None
