"""Redis-based conversation state store."""

import logging
from typing import Optional

from redis.exceptions import RedisError

from app.config import settings
from app.core.clock import utcnow
from app.infra.redis import get_redis, APP_PREFIX
from .models import CorruptSessionError, UserState

logger = logging.getLogger(__name__)

# Session key prefix (extends existing APP_PREFIX)
STATE_PREFIX = f"{APP_PREFIX}state:"


class SessionManager:
    """
    Per-user state store backed by Redis.

    Key pattern: agenda:v1:state:{user_id}

    get() never returns None: a missing or unreadable record comes back
    as an empty UserState. Falls back to an in-memory dict when Redis
    is unavailable.
    """

    def __init__(self, use_redis: bool = True, ttl: Optional[int] = None):
        """Initialize session manager.

        Args:
            use_redis: Set False to keep state in memory only (tests)
            ttl: Seconds a state record lives in Redis
        """
        self._use_redis = use_redis
        self._ttl = ttl or settings.redis_session_ttl
        self._in_memory_fallback: dict[str, str] = {}

    def _key(self, user_id: str) -> str:
        """Generate Redis key."""
        return f"{STATE_PREFIX}{user_id}"

    async def _redis(self):
        if not self._use_redis:
            return None
        return await get_redis()

    async def get(self, user_id: str) -> UserState:
        """
        Get a user's state.

        Args:
            user_id: Chat user identifier (usually the phone number)

        Returns:
            Stored UserState, or an empty one when absent or corrupt
        """
        raw: Optional[str] = None
        redis = await self._redis()

        if redis:
            try:
                raw = await redis.get(self._key(user_id))
            except RedisError as e:
                logger.warning(f"Redis read failed for {user_id}, using in-memory fallback: {e}")
                raw = self._in_memory_fallback.get(user_id)
        else:
            raw = self._in_memory_fallback.get(user_id)

        if not raw:
            return UserState(user_id=user_id)

        try:
            return UserState.from_json(raw)
        except CorruptSessionError as e:
            logger.warning(f"Corrupt state for {user_id}, resetting: {e}")
            await self.delete(user_id)
            return UserState(user_id=user_id)

    async def set(self, user_id: str, state: Optional[UserState]) -> None:
        """
        Persist the whole state, or delete it.

        Args:
            user_id: Chat user identifier
            state: New state; None or an empty state deletes the record
        """
        if state is None or state.is_empty:
            await self.delete(user_id)
            return

        state.updated_at = utcnow()
        payload = state.to_json()
        redis = await self._redis()

        if redis:
            try:
                await redis.setex(self._key(user_id), self._ttl, payload)
                logger.debug(f"State saved for {user_id}")
                return
            except RedisError as e:
                logger.warning(f"Redis write failed for {user_id}, using in-memory fallback: {e}")
        elif self._use_redis:
            logger.warning(f"Redis unavailable, using in-memory fallback for {user_id}")

        self._in_memory_fallback[user_id] = payload

    async def delete(self, user_id: str) -> bool:
        """
        Delete a user's state.

        Returns:
            True if something was deleted
        """
        deleted = self._in_memory_fallback.pop(user_id, None) is not None
        redis = await self._redis()

        if redis:
            try:
                deleted = bool(await redis.delete(self._key(user_id))) or deleted
            except RedisError as e:
                logger.warning(f"Redis delete failed for {user_id}: {e}")

        if deleted:
            logger.debug(f"State deleted for {user_id}")
        return deleted


# Singleton
_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get singleton SessionManager."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager
