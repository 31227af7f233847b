"""
Session repositories.

A session maps an opaque id (the cookie value) to a user id and an
expiry. It is valid iff present and ``expires > now``; an expired entry
is deleted the moment it is looked up. Two backends:

    InMemorySessionRepository: process-local, for development and tests
    RedisSessionRepository:    shared across workers, TTL enforced by Redis
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import redis

from .config import Config
from .errors import ConfigError
from .schema import Session, utc_now

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionRepository:
    """Interface: get / put / delete with server-side expiry."""

    def __init__(self, ttl: timedelta = timedelta(hours=24), clock: Callable[[], datetime] = utc_now):
        self.ttl = ttl
        self.clock = clock

    def create(self, user_id: str) -> Session:
        """Issue a fresh session for ``user_id`` and store it."""
        session = Session(session_id=new_session_id(), user_id=user_id, expires=self.clock() + self.ttl)
        self.put(session)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def put(self, session: Session) -> None:
        raise NotImplementedError

    def delete(self, session_id: str) -> None:
        raise NotImplementedError


class InMemorySessionRepository(SessionRepository):
    """Dict-backed repository. Expired entries are dropped on access only."""

    def __init__(self, ttl: timedelta = timedelta(hours=24), clock: Callable[[], datetime] = utc_now):
        super().__init__(ttl, clock)
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None or not session.is_valid(self.clock()):
            self._sessions.pop(session_id, None)
            return None
        return session

    def put(self, session: Session) -> None:
        self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionRepository(SessionRepository):
    """Redis-backed repository; each key carries its own TTL."""

    KEY_PREFIX = "taskmate:session:"

    def __init__(
        self,
        client: "redis.Redis",
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(ttl, clock)
        self.client = client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def get(self, session_id: str) -> Optional[Session]:
        payload = self.client.get(self._key(session_id))
        if payload is None:
            return None
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        session = Session.from_json(session_id, payload)
        if not session.is_valid(self.clock()):
            self.client.delete(self._key(session_id))
            return None
        return session

    def put(self, session: Session) -> None:
        remaining = int((session.expires - self.clock()).total_seconds())
        if remaining <= 0:
            return
        self.client.setex(self._key(session.session_id), remaining, session.to_json())

    def delete(self, session_id: str) -> None:
        self.client.delete(self._key(session_id))


def build_session_repository(cfg: Config) -> SessionRepository:
    """Pick the repository named by ``cfg.session_backend``."""
    ttl = timedelta(hours=cfg.session_ttl_hours)
    if cfg.session_backend == "memory":
        return InMemorySessionRepository(ttl=ttl)
    if cfg.session_backend == "redis":
        logger.info(f"Using Redis session store at {cfg.redis_url}")
        return RedisSessionRepository(redis.Redis.from_url(cfg.redis_url), ttl=ttl)
    raise ConfigError(
        f"Unknown session_backend '{cfg.session_backend}'. Use 'memory' or 'redis'."
    )
