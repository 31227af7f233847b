"""Shared test fixtures for TaskMate tests."""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Ensure the project root (taskmate package, server module) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskmate.auth import AuthService
from taskmate.config import Config
from taskmate.database import Database
from taskmate.schema import to_iso, utc_now
from taskmate.sessions import InMemorySessionRepository
from taskmate.store import TaskStore

OWNER_EMAIL = "ada@example.com"
OWNER_PASSWORD = "password123"


@pytest.fixture
def cfg(tmp_path):
    return Config(
        db_path=str(tmp_path / "taskmate.db"),
        retry_delay_secs=0,
        cron_secret="s3cret",
        cron_owner_email=OWNER_EMAIL,
    )


@pytest.fixture
def db(cfg):
    return Database(cfg.db_path, retries=cfg.query_retries, retry_delay=0)


@pytest.fixture
def sessions():
    return InMemorySessionRepository()


@pytest.fixture
def auth(db, sessions):
    return AuthService(db, sessions)


@pytest.fixture
def user(auth):
    registered, _ = auth.register(OWNER_EMAIL, OWNER_PASSWORD, "Ada")
    return registered


@pytest.fixture
def store(db, user):
    return TaskStore(db, user.id)


@pytest.fixture
def lanes(store):
    """Board ids keyed by slug value: backlog, todo, in_progress, done."""
    return {b.slug.value: b.id for b in store.get_boards()}


@pytest.fixture
def backdate(db):
    """Set a task's completed_at to ``hours`` ago."""
    def _backdate(task_id, hours):
        db.query(
            "UPDATE tasks SET completed_at = ? WHERE id = ?",
            (to_iso(utc_now() - timedelta(hours=hours)), task_id),
        )
    return _backdate


@pytest.fixture
def app(cfg, db, sessions):
    from taskmate_server import create_app

    application = create_app(cfg, db=db, sessions=sessions)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client):
    """A test client holding a session cookie for a freshly registered user."""
    r = client.post("/api/auth/register", json={
        "email": OWNER_EMAIL, "password": OWNER_PASSWORD, "name": "Ada",
    })
    assert r.status_code == 200
    return client
