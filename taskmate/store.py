"""
Board / task / tag storage for one owner (SQLite).

Provides CRUD operations and the board-move lifecycle. Every method is
scoped to ``owner_id``: rows belonging to other users are reported as
AuthorizationError, never as "not found".
"""
import logging
import sqlite3
import uuid
from typing import Any, Dict, Iterable, List, Optional

from .database import Database
from .errors import AuthorizationError, ValidationError
from .schema import (
    DEFAULT_PROJECT_NAME,
    Board,
    BoardSlug,
    Priority,
    Project,
    Tag,
    Task,
    User,
    parse_iso,
    to_iso,
    utc_now,
)

logger = logging.getLogger(__name__)

_TASK_SELECT = """
    SELECT
        t.*,
        u.name AS assignee_name, u.email AS assignee_email, u.avatar_url AS assignee_avatar_url,
        b.name AS board_name, b.slug AS board_slug, b.color AS board_color, b.wip_limit AS board_wip_limit,
        (
            SELECT json_group_array(json_object(
                'id', tg.id, 'name', tg.name, 'color', tg.color,
                'project_id', tg.project_id, 'created_at', tg.created_at))
            FROM task_tags tt
            JOIN tags tg ON tg.id = tt.tag_id
            WHERE tt.task_id = t.id
        ) AS tags
    FROM tasks t
    LEFT JOIN users u ON u.id = t.assignee_id
    LEFT JOIN boards b ON b.id = t.board_id
"""

# Columns a client may set through update_task(), in statement order.
UPDATABLE_FIELDS = (
    "title",
    "description",
    "board_id",
    "assignee_id",
    "priority",
    "due_date",
    "position",
    "estimated_hours",
    "actual_hours",
)


def _clean_priority(value: Any) -> str:
    try:
        return Priority(value).value
    except ValueError:
        raise ValidationError(
            f"Invalid priority: {value!r}. Allowed: {', '.join(p.value for p in Priority)}",
            field="priority",
        )


def _clean_due_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        return to_iso(parse_iso(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid due_date: {value!r}", field="due_date")


def _clean_text(name: str, value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"Parameter {name} must be a string, got: {value!r}", field=name)
    return value.strip()


def _clean_id(name: str, value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Parameter {name} must be a string id, got: {value!r}", field=name)
    return value


def _clean_number(name: str, value: Any, kind=float):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Parameter {name} must be a number, got: {value!r}", field=name)
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Parameter {name} must be a number, got: {value!r}", field=name)
    if number < 0:
        raise ValidationError(f"Parameter {name} must be >= 0, got: {number}", field=name)
    return number


class TaskStore:
    """SQLite-backed store for one owner's boards, tasks and tags."""

    def __init__(self, db: Database, owner_id: str):
        self.db = db
        self.owner_id = owner_id

    # ── Project / boards ─────────────────────────────────────────────────────

    def default_project(self, conn: Optional[sqlite3.Connection] = None) -> Project:
        sql = "SELECT * FROM projects WHERE owner_id = ? AND name = ?"
        params = (self.owner_id, DEFAULT_PROJECT_NAME)
        row = conn.execute(sql, params).fetchone() if conn else self.db.query(sql, params).first()
        if row is None:
            raise AuthorizationError("Default project not found")
        return Project.from_row(row)

    def done_board_id(self, conn: Optional[sqlite3.Connection] = None) -> str:
        """Resolve the owner's "done" lane. Raises AuthorizationError if it is missing."""
        project = self.default_project(conn)
        sql = "SELECT id FROM boards WHERE project_id = ? AND slug = ?"
        params = (project.id, BoardSlug.DONE.value)
        row = conn.execute(sql, params).fetchone() if conn else self.db.query(sql, params).first()
        if row is None:
            raise AuthorizationError("Done board not found")
        return row["id"]

    def _require_board(self, conn: sqlite3.Connection, board_id: str) -> None:
        row = conn.execute(
            """SELECT b.id FROM boards b JOIN projects p ON p.id = b.project_id
               WHERE b.id = ? AND p.owner_id = ?""",
            (board_id, self.owner_id),
        ).fetchone()
        if row is None:
            raise AuthorizationError("Board not found or access denied")

    def get_boards(self) -> List[Board]:
        """All lanes of the default project in position order, each with its tasks."""
        project = self.default_project()
        boards = [
            Board.from_row(r)
            for r in self.db.query(
                "SELECT * FROM boards WHERE project_id = ? ORDER BY position ASC", (project.id,)
            ).rows
        ]
        by_id = {b.id: b for b in boards}
        for task in self.get_tasks():
            if task.board_id in by_id:
                by_id[task.board_id].tasks.append(task)
        return boards

    # ── Tasks ────────────────────────────────────────────────────────────────

    def get_tasks(self, board_id: Optional[str] = None) -> List[Task]:
        sql = _TASK_SELECT + " WHERE t.creator_id = ?"
        params: List[Any] = [self.owner_id]
        if board_id:
            sql += " AND t.board_id = ?"
            params.append(board_id)
        sql += " ORDER BY t.position ASC, t.created_at ASC"
        return [Task.from_row(r) for r in self.db.query(sql, params).rows]

    def get_task(self, task_id: str, conn: Optional[sqlite3.Connection] = None) -> Task:
        sql = _TASK_SELECT + " WHERE t.id = ? AND t.creator_id = ?"
        params = (task_id, self.owner_id)
        row = conn.execute(sql, params).fetchone() if conn else self.db.query(sql, params).first()
        if row is None:
            raise AuthorizationError("Task not found or access denied")
        return Task.from_row(row)

    def create_task(self, data: Dict[str, Any]) -> Task:
        """
        Insert a task at the end of its board, with optional tags.

        Required: title, board_id. Optional: description, assignee_id,
        priority (default medium), due_date, estimated_hours, tag_ids.
        """
        title = _clean_text("title", data.get("title"))
        if not title:
            raise ValidationError("Task title is required", field="title")
        board_id = _clean_id("board_id", data.get("board_id"))
        if not board_id:
            raise ValidationError("Board ID is required", field="board_id")

        priority = _clean_priority(data.get("priority") or Priority.MEDIUM.value)
        due_date = _clean_due_date(data.get("due_date"))
        description = _clean_text("description", data.get("description"))
        estimated_hours = _clean_number("estimated_hours", data.get("estimated_hours"))
        tag_ids = data.get("tag_ids") or []
        task_id = str(uuid.uuid4())
        now = to_iso(utc_now())

        with self.db.transaction() as conn:
            self._require_board(conn, board_id)
            assignee_id = self._check_assignee(conn, data.get("assignee_id"))
            self._check_tags(conn, tag_ids)

            next_position = conn.execute(
                "SELECT COALESCE(MAX(position), 0) + 1 FROM tasks WHERE board_id = ?", (board_id,)
            ).fetchone()[0]
            conn.execute(
                """INSERT INTO tasks (id, title, description, board_id, assignee_id, creator_id, priority,
                                      due_date, position, estimated_hours, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    task_id,
                    title,
                    description,
                    board_id,
                    assignee_id,
                    self.owner_id,
                    priority,
                    due_date,
                    next_position,
                    estimated_hours,
                    now,
                    now,
                ),
            )
            self._replace_tags(conn, task_id, tag_ids)
            task = self.get_task(task_id, conn)

        logger.info(f"Task created: {task_id} (board={board_id}, owner={self.owner_id})")
        return task

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        """
        Apply a partial update. Recognised keys are UPDATABLE_FIELDS plus
        ``tag_ids`` (replaces the tag set). A board change goes through the
        same completion tracking as move_task().

        Raises:
            ValidationError if no recognised key is present or a value is invalid.
            AuthorizationError if the task does not belong to the owner.
        """
        with self.db.transaction() as conn:
            self._update_in_transaction(conn, task_id, updates)
            return self.get_task(task_id, conn)

    def move_task(self, task_id: str, target_board_id: str, position: Optional[int] = None) -> Task:
        """
        Move a task to another lane, stamping or clearing ``completed_at``
        when the move crosses into or out of the done board.
        """
        if not target_board_id:
            raise ValidationError("Board ID is required", field="board_id")
        updates: Dict[str, Any] = {"board_id": target_board_id}
        if position is not None:
            updates["position"] = position
        with self.db.transaction() as conn:
            self._update_in_transaction(conn, task_id, updates)
            task = self.get_task(task_id, conn)
        logger.info(f"Task moved: {task_id} -> board {target_board_id}")
        return task

    def delete_task(self, task_id: str) -> None:
        result = self.db.query(
            "DELETE FROM tasks WHERE id = ? AND creator_id = ?", (task_id, self.owner_id)
        )
        if result.rowcount == 0:
            raise AuthorizationError("Task not found or access denied")
        logger.info(f"Task deleted: {task_id}")

    def _update_in_transaction(self, conn: sqlite3.Connection, task_id: str, updates: Dict[str, Any]) -> None:
        current = conn.execute(
            "SELECT board_id FROM tasks WHERE id = ? AND creator_id = ?", (task_id, self.owner_id)
        ).fetchone()
        if current is None:
            raise AuthorizationError("Task not found or access denied")
        previous_board_id = current["board_id"]

        assignments: List[str] = []
        values: List[Any] = []
        for name in UPDATABLE_FIELDS:
            if name not in updates:
                continue
            assignments.append(f"{name} = ?")
            values.append(self._clean_field(conn, name, updates[name]))

        tag_ids = updates.get("tag_ids")
        if not assignments and tag_ids is None:
            raise ValidationError("No updates provided")
        if tag_ids is not None:
            self._check_tags(conn, tag_ids)

        now = to_iso(utc_now())
        target_board_id = updates.get("board_id", previous_board_id)
        if "board_id" in updates:
            done_board_id = self.done_board_id(conn)
            if previous_board_id != done_board_id and target_board_id == done_board_id:
                assignments.append("completed_at = ?")
                values.append(now)
            elif previous_board_id == done_board_id and target_board_id != done_board_id:
                assignments.append("completed_at = NULL")

        assignments.append("updated_at = ?")
        values.append(now)
        values.extend([task_id, self.owner_id])
        conn.execute(
            f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ? AND creator_id = ?",
            values,
        )

        if tag_ids is not None:
            self._replace_tags(conn, task_id, tag_ids)

    def _clean_field(self, conn: sqlite3.Connection, name: str, value: Any) -> Any:
        if name == "title":
            title = _clean_text("title", value)
            if not title:
                raise ValidationError("Task title cannot be empty", field="title")
            return title
        if name == "description":
            return _clean_text("description", value)
        if name == "board_id":
            board_id = _clean_id("board_id", value)
            if not board_id:
                raise ValidationError("Board ID is required", field="board_id")
            self._require_board(conn, board_id)
            return board_id
        if name == "assignee_id":
            return self._check_assignee(conn, value)
        if name == "priority":
            return _clean_priority(value)
        if name == "due_date":
            return _clean_due_date(value)
        if name == "position":
            position = _clean_number("position", value, kind=int)
            return 0 if position is None else position
        return _clean_number(name, value)

    def _check_assignee(self, conn: sqlite3.Connection, assignee_id: Optional[str]) -> Optional[str]:
        assignee_id = _clean_id("assignee_id", assignee_id)
        if not assignee_id:
            return None
        row = conn.execute("SELECT id FROM users WHERE id = ?", (assignee_id,)).fetchone()
        if row is None:
            raise ValidationError(f"Unknown assignee: {assignee_id}", field="assignee_id")
        return assignee_id

    def _check_tags(self, conn: sqlite3.Connection, tag_ids: Iterable[str]) -> None:
        """All tag ids must belong to the owner's default project."""
        if isinstance(tag_ids, str) or not isinstance(tag_ids, (list, tuple)):
            raise ValidationError("tag_ids must be a list", field="tag_ids")
        if not all(isinstance(t, str) for t in tag_ids):
            raise ValidationError("tag_ids must contain string ids", field="tag_ids")
        wanted = set(tag_ids)
        if not wanted:
            return
        project = self.default_project(conn)
        placeholders = ",".join("?" for _ in wanted)
        found = {
            r["id"]
            for r in conn.execute(
                f"SELECT id FROM tags WHERE project_id = ? AND id IN ({placeholders})",
                (project.id, *wanted),
            ).fetchall()
        }
        missing = wanted - found
        if missing:
            raise ValidationError(f"Unknown tags: {', '.join(sorted(missing))}", field="tag_ids")

    def _replace_tags(self, conn: sqlite3.Connection, task_id: str, tag_ids: Iterable[str]) -> None:
        conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
        for tag_id in dict.fromkeys(tag_ids):
            conn.execute("INSERT INTO task_tags (task_id, tag_id) VALUES (?, ?)", (task_id, tag_id))

    # ── Tags / users ─────────────────────────────────────────────────────────

    def get_tags(self) -> List[Tag]:
        project = self.default_project()
        rows = self.db.query(
            "SELECT * FROM tags WHERE project_id = ? ORDER BY name ASC", (project.id,)
        ).rows
        return [Tag.from_row(r) for r in rows]

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        name = _clean_text("name", name)
        color = _clean_text("color", color)
        if not name:
            raise ValidationError("Tag name is required", field="name")
        project = self.default_project()
        if self.db.query(
            "SELECT id FROM tags WHERE project_id = ? AND name = ?", (project.id, name)
        ).rows:
            raise ValidationError(f"Tag '{name}' already exists", field="name")
        tag_id = str(uuid.uuid4())
        self.db.query(
            "INSERT INTO tags (id, name, color, project_id, created_at) VALUES (?, ?, ?, ?, ?)",
            (tag_id, name, color or "#6B7280", project.id, to_iso(utc_now())),
        )
        row = self.db.query("SELECT * FROM tags WHERE id = ?", (tag_id,)).first()
        return Tag.from_row(row)

    def get_users(self) -> List[User]:
        """Users visible to the owner. A personal board only has the owner."""
        row = self.db.query(
            """SELECT id, email, name, avatar_url, timezone, wip_limit, created_at, updated_at
               FROM users WHERE id = ?""",
            (self.owner_id,),
        ).first()
        if row is None:
            raise AuthorizationError("User not found")
        return [User.from_row(row)]
