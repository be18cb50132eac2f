# besty/services/session_store.py
import abc
import secrets
import time
from typing import Dict, Optional, Tuple

import redis.asyncio as redis
from loguru import logger


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore(abc.ABC):
    """Server-side sessions: an opaque id maps to a user id. Nothing else is kept."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds

    @abc.abstractmethod
    async def create(self, user_id: int) -> str: ...

    @abc.abstractmethod
    async def get(self, session_id: str) -> Optional[int]: ...

    @abc.abstractmethod
    async def destroy(self, session_id: str) -> None: ...


class MemorySessionStore(SessionStore):
    def __init__(self, ttl_seconds: int = 24 * 60 * 60):
        super().__init__(ttl_seconds)
        self._sessions: Dict[str, Tuple[int, float]] = {}

    def _purge_expired(self, now: float) -> None:
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if now >= expires_at]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Purged {len(expired)} expired sessions")

    async def create(self, user_id: int) -> str:
        now = time.monotonic()
        self._purge_expired(now)
        session_id = new_session_id()
        self._sessions[session_id] = (user_id, now + self.ttl_seconds)
        return session_id

    async def get(self, session_id: str) -> Optional[int]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        user_id, expires_at = entry
        if time.monotonic() >= expires_at:
            self._sessions.pop(session_id, None)
            return None
        return user_id

    async def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class RedisSessionStore(SessionStore):
    REDIS_SESSION_KEY_PREFIX = "session:"

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 24 * 60 * 60):
        super().__init__(ttl_seconds)
        self.redis_client = redis_client

    def _key(self, session_id: str) -> str:
        return f"{self.REDIS_SESSION_KEY_PREFIX}{session_id}"

    async def create(self, user_id: int) -> str:
        session_id = new_session_id()
        await self.redis_client.set(self._key(session_id), str(user_id), ex=self.ttl_seconds)
        logger.debug(f"Session stored in Redis for user_id:{user_id}")
        return session_id

    async def get(self, session_id: str) -> Optional[int]:
        raw = await self.redis_client.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return int(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        except (ValueError, UnicodeDecodeError):
            logger.error(f"Corrupt session entry for key {self._key(session_id)}; discarding it")
            await self.redis_client.delete(self._key(session_id))
            return None

    async def destroy(self, session_id: str) -> None:
        await self.redis_client.delete(self._key(session_id))
