"""
Tests for session repositories (in-memory and Redis).
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from taskmate.config import Config
from taskmate.errors import ConfigError
from taskmate.schema import Session
from taskmate.sessions import (
    InMemorySessionRepository,
    RedisSessionRepository,
    build_session_repository,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestInMemorySessionRepository:

    def test_create_and_get(self):
        repo = InMemorySessionRepository(clock=FakeClock())
        session = repo.create("user-1")
        assert session.expires == T0 + timedelta(hours=24)
        assert repo.get(session.session_id) == session

    def test_session_ids_are_unique(self):
        repo = InMemorySessionRepository()
        assert repo.create("u").session_id != repo.create("u").session_id

    def test_unknown_session(self):
        assert InMemorySessionRepository().get("nope") is None

    def test_expired_session_deleted_on_access(self):
        clock = FakeClock()
        repo = InMemorySessionRepository(clock=clock)
        session = repo.create("user-1")
        clock.advance(hours=24)
        assert repo.get(session.session_id) is None
        assert len(repo) == 0

    def test_session_valid_just_before_expiry(self):
        clock = FakeClock()
        repo = InMemorySessionRepository(clock=clock)
        session = repo.create("user-1")
        clock.advance(hours=23, minutes=59)
        assert repo.get(session.session_id) is not None

    def test_delete(self):
        repo = InMemorySessionRepository()
        session = repo.create("user-1")
        repo.delete(session.session_id)
        repo.delete(session.session_id)
        assert repo.get(session.session_id) is None


class TestRedisSessionRepository:

    def test_put_uses_setex_with_remaining_ttl(self):
        client = MagicMock()
        repo = RedisSessionRepository(client, clock=FakeClock())
        session = repo.create("user-1")
        key, seconds, payload = client.setex.call_args[0]
        assert key == f"taskmate:session:{session.session_id}"
        assert seconds == 24 * 3600
        assert json.loads(payload)["user_id"] == "user-1"

    def test_put_skips_expired_session(self):
        client = MagicMock()
        repo = RedisSessionRepository(client, clock=FakeClock())
        repo.put(Session("s1", "user-1", T0 - timedelta(seconds=1)))
        client.setex.assert_not_called()

    def test_get_decodes_stored_payload(self):
        client = MagicMock()
        stored = Session("s1", "user-1", T0 + timedelta(hours=1))
        client.get.return_value = stored.to_json().encode("utf-8")
        repo = RedisSessionRepository(client, clock=FakeClock())
        assert repo.get("s1") == stored
        client.get.assert_called_with("taskmate:session:s1")

    def test_get_missing_key(self):
        client = MagicMock()
        client.get.return_value = None
        assert RedisSessionRepository(client).get("s1") is None

    def test_get_deletes_expired_payload(self):
        client = MagicMock()
        client.get.return_value = Session("s1", "user-1", T0).to_json()
        repo = RedisSessionRepository(client, clock=FakeClock())
        assert repo.get("s1") is None
        client.delete.assert_called_with("taskmate:session:s1")


class TestBuildSessionRepository:

    def test_memory_backend(self):
        repo = build_session_repository(Config(session_backend="memory", session_ttl_hours=2))
        assert isinstance(repo, InMemorySessionRepository)
        assert repo.ttl == timedelta(hours=2)

    def test_redis_backend(self, monkeypatch):
        fake = MagicMock()
        monkeypatch.setattr("taskmate.sessions.redis.Redis.from_url", lambda url: fake)
        repo = build_session_repository(Config(session_backend="redis"))
        assert isinstance(repo, RedisSessionRepository)
        assert repo.client is fake

    def test_unknown_backend(self):
        with pytest.raises(ConfigError):
            build_session_repository(Config(session_backend="memcached"))
