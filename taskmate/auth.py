"""
Authentication: password hashing, account registration, login and
session-to-user resolution.
"""
import logging
import uuid
from typing import Optional, Tuple

from werkzeug.http import parse_cookie
from werkzeug.security import check_password_hash, generate_password_hash

from .database import Database
from .errors import AuthorizationError, DatabaseError, ValidationError
from .schema import DEFAULT_BOARDS, DEFAULT_PROJECT_NAME, DEFAULT_TAGS, Session, User, to_iso, utc_now
from .sessions import SessionRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
DEFAULT_COOKIE_NAME = "taskmate-session"

_USER_COLUMNS = "id, email, name, avatar_url, timezone, wip_limit, created_at, updated_at"
DUPLICATE_EMAIL = "User with this email already exists"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


def _require_strings(**values):
    for name, value in values.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Parameter {name} must be a string", field=name)


def session_id_from_cookie_header(header: Optional[str], cookie_name: str = DEFAULT_COOKIE_NAME) -> Optional[str]:
    """Extract the session id from a raw ``Cookie`` header."""
    if not header:
        return None
    return parse_cookie(header).get(cookie_name) or None


class AuthService:
    """Issues and resolves sessions for registered users."""

    def __init__(self, db: Database, sessions: SessionRepository):
        self.db = db
        self.sessions = sessions

    def register(self, email: str, password: str, name: str) -> Tuple[User, Session]:
        """
        Create a user together with their default project, the four lanes
        and the starter tags, then open a session.

        Raises:
            ValidationError on missing fields, short passwords or a taken email.
        """
        _require_strings(email=email, password=password, name=name)
        email = (email or "").strip().lower()
        name = (name or "").strip()
        if not email or not password or not name:
            raise ValidationError("Email, password, and name are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", field="password"
            )

        if self._email_taken(email):
            raise ValidationError(DUPLICATE_EMAIL, field="email")

        user_id = str(uuid.uuid4())
        project_id = str(uuid.uuid4())
        now = to_iso(utc_now())

        try:
            self._create_account(user_id, project_id, email, password, name, now)
        except DatabaseError as e:
            if e.code == "unique" and "users.email" in str(e.details):
                raise ValidationError(DUPLICATE_EMAIL, field="email") from e
            raise

        user = self.get_user(user_id)
        logger.info(f"Registered user {user.email} ({user.id})")
        return user, self.sessions.create(user.id)

    def _email_taken(self, email: str) -> bool:
        return bool(self.db.query("SELECT id FROM users WHERE email = ?", (email,)).rows)

    def _create_account(self, user_id: str, project_id: str, email: str, password: str, name: str, now: str):
        """Insert the user, the default project, its lanes and starter tags in one transaction."""
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO users (id, email, name, password_hash, timezone, wip_limit, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, email, name, hash_password(password), "UTC", 1, now, now),
            )
            conn.execute(
                """INSERT INTO projects (id, name, description, owner_id, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (project_id, DEFAULT_PROJECT_NAME, "Default project for personal tasks", user_id, now, now),
            )
            for board in DEFAULT_BOARDS:
                conn.execute(
                    """INSERT INTO boards (id, name, slug, description, project_id, position, wip_limit, color,
                                           created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        str(uuid.uuid4()),
                        board["name"],
                        board["slug"].value,
                        f"{board['name']} tasks",
                        project_id,
                        board["position"],
                        board["wip_limit"],
                        board["color"],
                        now,
                        now,
                    ),
                )
            for tag in DEFAULT_TAGS:
                conn.execute(
                    "INSERT INTO tags (id, name, color, project_id, created_at) VALUES (?, ?, ?, ?, ?)",
                    (str(uuid.uuid4()), tag["name"], tag["color"], project_id, now),
                )

    def login(self, email: str, password: str) -> Tuple[User, Session]:
        """Verify credentials and open a session. Raises AuthorizationError on mismatch."""
        _require_strings(email=email, password=password)
        if not email or not password:
            raise ValidationError("Email and password are required")
        row = self.db.query(
            f"SELECT {_USER_COLUMNS}, password_hash FROM users WHERE email = ?",
            (email.strip().lower(),),
        ).first()
        if row is None or not verify_password(password, row["password_hash"]):
            logger.warning(f"Failed login for {email!r}")
            raise AuthorizationError("Invalid email or password")
        user = User.from_row(row)
        return user, self.sessions.create(user.id)

    def logout(self, session_id: Optional[str]) -> None:
        if session_id:
            self.sessions.delete(session_id)

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.db.query(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).first()
        return User.from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self.db.query(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", ((email or "").strip().lower(),)
        ).first()
        return User.from_row(row) if row else None

    def current_user(self, session_id: Optional[str]) -> Optional[User]:
        """Resolve a session id to its user; None for unknown or expired sessions."""
        if not session_id:
            return None
        session = self.sessions.get(session_id)
        if session is None:
            return None
        return self.get_user(session.user_id)

    def require_user(self, session_id: Optional[str]) -> User:
        """Like current_user, but raise AuthorizationError instead of returning None."""
        if not session_id:
            raise AuthorizationError("No session found")
        user = self.current_user(session_id)
        if user is None:
            raise AuthorizationError("Invalid session")
        return user
