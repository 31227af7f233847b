"""
SQLite storage backend for TaskMate.

Provides the schema, a query helper that retries transient failures,
and a transaction context manager for multi-statement writes.
"""
import logging
import sqlite3
import time
from contextlib import closing, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, List, Sequence

from .errors import DatabaseError, TaskMateError, ValidationError

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        avatar_url TEXT,
        timezone TEXT NOT NULL DEFAULT 'UTC',
        wip_limit INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        owner_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS boards (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT NOT NULL CHECK (slug IN ('backlog', 'todo', 'in_progress', 'done')),
        description TEXT,
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        position INTEGER NOT NULL DEFAULT 0,
        wip_limit INTEGER,
        color TEXT NOT NULL DEFAULT '#6B7280',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (project_id, slug)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT '#6B7280',
        project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        UNIQUE (project_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        board_id TEXT NOT NULL REFERENCES boards(id) ON DELETE CASCADE,
        assignee_id TEXT REFERENCES users(id) ON DELETE SET NULL,
        creator_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
        due_date TEXT,
        position INTEGER NOT NULL DEFAULT 0,
        estimated_hours REAL,
        actual_hours REAL,
        completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_tags (
        task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        PRIMARY KEY (task_id, tag_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_board ON tasks(board_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(creator_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_completed ON tasks(board_id, completed_at)",
]


@dataclass
class QueryResult:
    rows: List[sqlite3.Row] = field(default_factory=list)
    rowcount: int = 0

    def first(self):
        return self.rows[0] if self.rows else None


def _connect(db_path: str) -> sqlite3.Connection:
    """Open an autocommit connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


TRANSIENT_MESSAGES = ("locked", "busy", "unable to open")


def is_transient(error: sqlite3.OperationalError) -> bool:
    """True for lock, busy and unopenable-file errors; only these are retried."""
    message = str(error).lower()
    return any(m in message for m in TRANSIENT_MESSAGES)


def translate_error(error: Exception) -> TaskMateError:
    """Map a driver exception onto the TaskMate error taxonomy."""
    if isinstance(error, TaskMateError):
        return error
    message = str(error)
    if "WIP limit" in message:
        return ValidationError(message)
    if isinstance(error, sqlite3.IntegrityError):
        upper = message.upper()
        if "UNIQUE" in upper:
            return DatabaseError("Duplicate entry", code="unique", details=message)
        if "FOREIGN KEY" in upper:
            return DatabaseError("Foreign key constraint violation", code="foreign_key", details=message)
        if "CHECK" in upper:
            return DatabaseError("Check constraint violation", code="check", details=message)
        if "NOT NULL" in upper:
            return DatabaseError("Not null constraint violation", code="not_null", details=message)
    return DatabaseError("Database operation failed", details=message)


class Database:
    """Connection factory plus the retrying query helper."""

    def __init__(self, db_path: str, retries: int = 3, retry_delay: float = 1.0):
        self.db_path = db_path
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with closing(_connect(self.db_path)) as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def connect(self) -> sqlite3.Connection:
        return _connect(self.db_path)

    def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """
        Run one statement on a fresh autocommit connection.

        Transient failures (sqlite3.OperationalError: locked database,
        unopenable file, ...) are retried up to ``self.retries`` attempts
        with a fixed delay. Constraint violations are never retried.
        """
        last_error: Exception = None
        for attempt in range(1, self.retries + 1):
            try:
                with closing(self.connect()) as conn:
                    cur = conn.execute(sql, tuple(params))
                    rows = cur.fetchall()
                    return QueryResult(rows=rows, rowcount=cur.rowcount)
            except sqlite3.OperationalError as e:
                if not is_transient(e):
                    logger.error(f"Database query failed: {e}")
                    raise translate_error(e) from e
                last_error = e
                logger.warning(f"Database query error ({attempt}/{self.retries}): {e}")
                if attempt < self.retries:
                    time.sleep(self.retry_delay)
            except sqlite3.Error as e:
                logger.error(f"Database query failed: {e}")
                raise translate_error(e) from e
        raise translate_error(last_error) from last_error

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        BEGIN, hand the connection to the caller, COMMIT.

        Any exception raised inside the block rolls the whole transaction
        back and propagates (driver errors translated). Statements inside
        the block are not retried individually.
        """
        conn = self._connect_with_retry()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise translate_error(e) from e
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    logger.error(f"Transaction rolled back: {e}")
                    raise translate_error(e) from e
                raise
        finally:
            conn.close()

    def _connect_with_retry(self) -> sqlite3.Connection:
        last_error: Exception = None
        for attempt in range(1, self.retries + 1):
            try:
                return self.connect()
            except sqlite3.OperationalError as e:
                last_error = e
                logger.warning(f"Database connect error ({attempt}/{self.retries}): {e}")
                if attempt < self.retries:
                    time.sleep(self.retry_delay)
        raise translate_error(last_error) from last_error

    def check_connection(self) -> bool:
        """Health check: True if ``SELECT 1`` succeeds."""
        try:
            with closing(self.connect()) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Database connection check error: {e}")
            return False
