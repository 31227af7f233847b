"""
Tests for registration, login and session resolution.
"""
from datetime import timedelta

import pytest

from taskmate.auth import (
    AuthService,
    hash_password,
    session_id_from_cookie_header,
    verify_password,
)
from taskmate.errors import AuthorizationError, ValidationError
from taskmate.schema import BoardSlug, utc_now
from taskmate.sessions import InMemorySessionRepository
from taskmate.store import TaskStore

from conftest import OWNER_EMAIL, OWNER_PASSWORD


def test_password_hash_roundtrip():
    hashed = hash_password("hunter22")
    assert hashed != "hunter22"
    assert verify_password("hunter22", hashed)
    assert not verify_password("hunter23", hashed)


def test_session_id_from_cookie_header():
    header = "theme=dark; taskmate-session=abc-123; other=1"
    assert session_id_from_cookie_header(header) == "abc-123"
    assert session_id_from_cookie_header("theme=dark") is None
    assert session_id_from_cookie_header(None) is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Registration
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRegister:

    def test_creates_default_workspace(self, db, auth):
        user, session = auth.register(OWNER_EMAIL, OWNER_PASSWORD, "Ada")
        store = TaskStore(db, user.id)

        boards = store.get_boards()
        assert [b.slug for b in boards] == [
            BoardSlug.BACKLOG, BoardSlug.TODO, BoardSlug.IN_PROGRESS, BoardSlug.DONE,
        ]
        assert [b.name for b in boards] == ["Backlog", "To Do", "In Progress", "Done"]
        assert boards[2].wip_limit == 1
        assert all(b.wip_limit is None for b in boards if b.slug != BoardSlug.IN_PROGRESS)

        tag_names = {t.name for t in store.get_tags()}
        assert tag_names == {"frontend", "backend", "urgent", "bug", "feature"}
        assert store.default_project().name == "My Tasks"
        assert session.user_id == user.id

    def test_email_is_normalised(self, auth):
        user, _ = auth.register("  Ada@Example.COM ", OWNER_PASSWORD, "Ada")
        assert user.email == "ada@example.com"

    def test_duplicate_email(self, auth, user):
        with pytest.raises(ValidationError, match="User with this email already exists"):
            auth.register(OWNER_EMAIL, "another-pass", "Ada again")

    def test_duplicate_email_lost_race(self, auth, user, monkeypatch):
        """A concurrent insert that wins after the pre-check still reads as a taken email"""
        monkeypatch.setattr(auth, "_email_taken", lambda email: False)
        with pytest.raises(ValidationError, match="User with this email already exists"):
            auth.register(OWNER_EMAIL, "another-pass", "Ada again")

    def test_non_string_fields_rejected(self, auth):
        with pytest.raises(ValidationError, match="email must be a string"):
            auth.register(5, OWNER_PASSWORD, "Bob")

    def test_short_password(self, auth):
        with pytest.raises(ValidationError, match="at least 6"):
            auth.register("bob@example.com", "12345", "Bob")

    @pytest.mark.parametrize("email,password,name", [
        ("", "password", "Bob"),
        ("bob@example.com", "", "Bob"),
        ("bob@example.com", "password", "  "),
    ])
    def test_missing_fields(self, auth, email, password, name):
        with pytest.raises(ValidationError, match="required"):
            auth.register(email, password, name)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Login / sessions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestLogin:

    def test_login_opens_session(self, auth, user):
        logged_in, session = auth.login(OWNER_EMAIL, OWNER_PASSWORD)
        assert logged_in.id == user.id
        assert auth.current_user(session.session_id).id == user.id

    def test_wrong_password(self, auth, user):
        with pytest.raises(AuthorizationError, match="Invalid email or password"):
            auth.login(OWNER_EMAIL, "wrong-password")

    def test_unknown_email(self, auth):
        with pytest.raises(AuthorizationError, match="Invalid email or password"):
            auth.login("nobody@example.com", OWNER_PASSWORD)

    def test_missing_credentials(self, auth):
        with pytest.raises(ValidationError):
            auth.login("", "")

    def test_logout_invalidates_session(self, auth, user):
        _, session = auth.login(OWNER_EMAIL, OWNER_PASSWORD)
        auth.logout(session.session_id)
        assert auth.current_user(session.session_id) is None


class TestCurrentUser:

    def test_unknown_session(self, auth, user):
        assert auth.current_user("not-a-session") is None
        assert auth.current_user(None) is None

    def test_expired_session(self, db, user):
        now = {"t": utc_now()}
        repo = InMemorySessionRepository(ttl=timedelta(hours=24), clock=lambda: now["t"])
        service = AuthService(db, repo)
        _, session = service.login(OWNER_EMAIL, OWNER_PASSWORD)

        now["t"] += timedelta(hours=25)
        assert service.current_user(session.session_id) is None

    def test_require_user_errors(self, auth, user):
        with pytest.raises(AuthorizationError, match="No session found"):
            auth.require_user(None)
        with pytest.raises(AuthorizationError, match="Invalid session"):
            auth.require_user("bogus")
