"""Server-side session stores.

A session maps an opaque session id to the voter's CNP and expires after a
fixed window.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class SessionStore:
    """Interface shared by the session backends."""

    async def create(self, cnp: str) -> str:
        raise NotImplementedError

    async def get(self, session_id: str) -> Optional[str]:
        raise NotImplementedError

    async def destroy(self, session_id: str) -> bool:
        raise NotImplementedError

    async def check_health(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def new_session_id() -> str:
    return uuid.uuid4().hex


class InMemorySessionStore(SessionStore):
    """Sessions kept in a dict; expired entries are dropped on access and on create."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._sessions: Dict[str, Tuple[str, float]] = {}

    def _prune(self) -> None:
        now = self.clock()
        for session_id in [sid for sid, (_, exp) in self._sessions.items() if exp <= now]:
            del self._sessions[session_id]

    async def create(self, cnp: str) -> str:
        self._prune()
        session_id = new_session_id()
        self._sessions[session_id] = (cnp, self.clock() + self.ttl_seconds)
        return session_id

    async def get(self, session_id: str) -> Optional[str]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        cnp, expires_at = entry
        if self.clock() >= expires_at:
            self._sessions.pop(session_id, None)
            return None
        return cnp

    async def destroy(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


class RedisSessionStore(SessionStore):
    """Sessions stored as Redis keys with a TTL."""

    KEY_PREFIX = "session:"

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int) -> 'RedisSessionStore':
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, ttl_seconds)

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def create(self, cnp: str) -> str:
        session_id = new_session_id()
        await self.client.setex(self._key(session_id), self.ttl_seconds, cnp)
        return session_id

    async def get(self, session_id: str) -> Optional[str]:
        try:
            return await self.client.get(self._key(session_id))
        except RedisError as e:
            logger.error(f"Redis error reading session: {e}")
            raise

    async def destroy(self, session_id: str) -> bool:
        return bool(await self.client.delete(self._key(session_id)))

    async def check_health(self) -> bool:
        try:
            await self.client.ping()
            return True
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.close()
