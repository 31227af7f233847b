"""
TaskMate data model and the row mapping boundary.

Board lanes:
  Backlog → To Do → In Progress → Done

Every raw sqlite3 row becomes a dataclass through one ``from_row``
classmethod per entity; every JSON payload leaves through ``to_dict``.
Timestamps are UTC datetimes in Python and fixed-width ISO-8601 strings
in the database, so SQL string comparison orders them chronologically.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

DEFAULT_PROJECT_NAME = "My Tasks"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as the fixed-width UTC string stored in the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse a stored or client-supplied timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        try:
            dt = datetime.strptime(text, ISO_FORMAT)
        except ValueError:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class BoardSlug(Enum):
    """The four fixed lanes of every project."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3, "urgent": 4}[self.value]

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Priority":
        try:
            return cls(value)
        except ValueError:
            return cls.MEDIUM


# Created for every new account, in lane order.
DEFAULT_BOARDS = [
    {"name": "Backlog", "slug": BoardSlug.BACKLOG, "color": "#8B5CF6", "position": 0, "wip_limit": None},
    {"name": "To Do", "slug": BoardSlug.TODO, "color": "#6B7280", "position": 1, "wip_limit": None},
    {"name": "In Progress", "slug": BoardSlug.IN_PROGRESS, "color": "#3B82F6", "position": 2, "wip_limit": 1},
    {"name": "Done", "slug": BoardSlug.DONE, "color": "#10B981", "position": 3, "wip_limit": None},
]

DEFAULT_TAGS = [
    {"name": "frontend", "color": "#3B82F6"},
    {"name": "backend", "color": "#10B981"},
    {"name": "urgent", "color": "#EF4444"},
    {"name": "bug", "color": "#F59E0B"},
    {"name": "feature", "color": "#8B5CF6"},
]


def _iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    id: str
    email: str
    name: str
    timezone: str = "UTC"
    wip_limit: int = 1
    avatar_url: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row) -> "User":
        data = dict(row)
        return cls(
            id=data["id"],
            email=data["email"],
            name=data["name"],
            timezone=data.get("timezone") or "UTC",
            wip_limit=data.get("wip_limit") if data.get("wip_limit") is not None else 1,
            avatar_url=data.get("avatar_url"),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize without the password hash, which never leaves the database layer."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "avatar_url": self.avatar_url,
            "timezone": self.timezone,
            "wip_limit": self.wip_limit,
            "created_at": _iso_or_none(self.created_at),
            "updated_at": _iso_or_none(self.updated_at),
        }


@dataclass
class Project:
    id: str
    name: str
    owner_id: str
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row) -> "Project":
        data = dict(row)
        return cls(
            id=data["id"],
            name=data["name"],
            owner_id=data["owner_id"],
            description=data.get("description") or "",
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Tag:
    id: str
    name: str
    color: str
    project_id: str = ""
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row) -> "Tag":
        data = dict(row)
        return cls(
            id=data["id"],
            name=data["name"],
            color=data.get("color") or "#6B7280",
            project_id=data.get("project_id") or "",
            created_at=parse_iso(data.get("created_at")) or utc_now(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "project_id": self.project_id,
            "created_at": _iso_or_none(self.created_at),
        }


@dataclass
class AssigneeSummary:
    """The slice of a User embedded in a task payload."""
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email, "avatar_url": self.avatar_url}


@dataclass
class BoardSummary:
    """The slice of a Board embedded in a task payload."""
    id: str
    name: str
    slug: BoardSlug
    color: str
    wip_limit: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug.value,
            "color": self.color,
            "wip_limit": self.wip_limit,
        }


@dataclass
class Task:
    """A card on one of the project's boards, with its joined relations."""

    id: str
    title: str
    board_id: str
    creator_id: str
    description: str = ""
    assignee_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    position: int = 0
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Joined relations
    assignee: Optional[AssigneeSummary] = None
    board: Optional[BoardSummary] = None
    tags: List[Tag] = field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "Task":
        """Convert a joined task row (see TaskStore._TASK_SELECT) to a Task."""
        data = dict(row)

        assignee = None
        if data.get("assignee_name") is not None:
            assignee = AssigneeSummary(
                id=data["assignee_id"],
                name=data["assignee_name"],
                email=data.get("assignee_email") or "",
                avatar_url=data.get("assignee_avatar_url"),
            )

        board = None
        if data.get("board_slug"):
            board = BoardSummary(
                id=data["board_id"],
                name=data.get("board_name") or "",
                slug=BoardSlug(data["board_slug"]),
                color=data.get("board_color") or "",
                wip_limit=data.get("board_wip_limit"),
            )

        # tags arrive as a JSON array from json_group_array()
        tags: List[Tag] = []
        raw_tags = data.get("tags")
        if raw_tags:
            try:
                parsed = json.loads(raw_tags) if isinstance(raw_tags, str) else raw_tags
            except (json.JSONDecodeError, TypeError):
                parsed = []
            tags = [Tag.from_row(t) for t in parsed if t and t.get("id")]
            tags.sort(key=lambda t: t.name)

        return cls(
            id=data["id"],
            title=data["title"],
            board_id=data["board_id"],
            creator_id=data["creator_id"],
            description=data.get("description") or "",
            assignee_id=data.get("assignee_id"),
            priority=Priority.from_str(data.get("priority")),
            due_date=parse_iso(data.get("due_date")),
            position=data.get("position") or 0,
            estimated_hours=data.get("estimated_hours"),
            actual_hours=data.get("actual_hours"),
            completed_at=parse_iso(data.get("completed_at")),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
            assignee=assignee,
            board=board,
            tags=tags,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize an API payload (the inverse of to_dict)."""
        assignee = data.get("assignee")
        board = data.get("board")
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            board_id=data.get("board_id", ""),
            creator_id=data.get("creator_id", ""),
            description=data.get("description") or "",
            assignee_id=data.get("assignee_id"),
            priority=Priority.from_str(data.get("priority")),
            due_date=parse_iso(data.get("due_date")),
            position=data.get("position") or 0,
            estimated_hours=data.get("estimated_hours"),
            actual_hours=data.get("actual_hours"),
            completed_at=parse_iso(data.get("completed_at")),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
            assignee=AssigneeSummary(**assignee) if assignee else None,
            board=BoardSummary(
                id=board["id"],
                name=board.get("name", ""),
                slug=BoardSlug(board["slug"]),
                color=board.get("color", ""),
                wip_limit=board.get("wip_limit"),
            ) if board else None,
            tags=[Tag.from_row(t) for t in data.get("tags", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "board_id": self.board_id,
            "assignee_id": self.assignee_id,
            "creator_id": self.creator_id,
            "priority": self.priority.value,
            "due_date": _iso_or_none(self.due_date),
            "position": self.position,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "completed_at": _iso_or_none(self.completed_at),
            "created_at": _iso_or_none(self.created_at),
            "updated_at": _iso_or_none(self.updated_at),
            "assignee": self.assignee.to_dict() if self.assignee else None,
            "board": self.board.to_dict() if self.board else None,
            "tags": [t.to_dict() for t in self.tags],
        }


@dataclass
class Board:
    id: str
    name: str
    slug: BoardSlug
    project_id: str
    position: int = 0
    description: str = ""
    color: str = "#6B7280"
    wip_limit: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    tasks: List[Task] = field(default_factory=list)

    @classmethod
    def from_row(cls, row) -> "Board":
        data = dict(row)
        return cls(
            id=data["id"],
            name=data["name"],
            slug=BoardSlug(data["slug"]),
            project_id=data["project_id"],
            position=data.get("position") or 0,
            description=data.get("description") or "",
            color=data.get("color") or "#6B7280",
            wip_limit=data.get("wip_limit"),
            created_at=parse_iso(data.get("created_at")) or utc_now(),
            updated_at=parse_iso(data.get("updated_at")) or utc_now(),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        board = cls.from_row({k: v for k, v in data.items() if k not in ("tasks", "taskCount")})
        board.tasks = [Task.from_dict(t) for t in data.get("tasks", [])]
        return board

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug.value,
            "description": self.description,
            "project_id": self.project_id,
            "position": self.position,
            "wip_limit": self.wip_limit,
            "color": self.color,
            "created_at": _iso_or_none(self.created_at),
            "updated_at": _iso_or_none(self.updated_at),
            "tasks": [t.to_dict() for t in self.tasks],
            "taskCount": len(self.tasks),
        }


@dataclass
class Session:
    """Server-held mapping from an opaque cookie value to a user."""
    session_id: str
    user_id: str
    expires: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.expires > (now or utc_now())

    def to_json(self) -> str:
        return json.dumps({"user_id": self.user_id, "expires": to_iso(self.expires)})

    @classmethod
    def from_json(cls, session_id: str, payload: str) -> "Session":
        data = json.loads(payload)
        return cls(session_id=session_id, user_id=data["user_id"], expires=parse_iso(data["expires"]))
