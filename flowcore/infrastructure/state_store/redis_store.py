"""Redis-based dialogue session store.

Sessions are stored as JSON under ``session:{identity_key}`` with a Redis
TTL equal to the sliding session window, so expiry is enforced by Redis.
When Redis is unreachable the store falls back to an in-memory store for
the rest of the process lifetime.

Example:
    ```python
    import os
    os.environ["REDIS_URL"] = "redis://localhost:6379/0"

    from flowcore.infrastructure.state_store.redis_store import RedisSessionStore

    store = RedisSessionStore()
    await store.save(session, ttl_seconds=1800)
    session = await store.get("anon:3f2a")
    ```
"""

import os

import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from flowcore.domain.interfaces.entity_repository import StateStoreError
from flowcore.domain.interfaces.session_store import SessionStore
from flowcore.domain.models.dialog_session import DialogSession
from flowcore.infrastructure.state_store.memory_store import InMemorySessionStore

logger = structlog.get_logger(__name__)

KEY_PATTERN_SESSION = "session:{identity_key}"


class RedisSessionStore(SessionStore):
    """Redis-based implementation of SessionStore.

    Attributes:
        _redis: Redis async client instance
        _connection_pool: Redis connection pool
        _fallback_store: InMemorySessionStore used when Redis is unavailable
        _use_fallback: Flag indicating if fallback mode is active
    """

    def __init__(self, redis_url: str | None = None, connection_timeout: int = 5) -> None:
        """Initialize RedisSessionStore with connection configuration.

        Args:
            redis_url: Redis connection URL. If None, reads from REDIS_URL environment variable.
                     If not provided and REDIS_URL not set, will use fallback mode.
            connection_timeout: Connection timeout in seconds (default: 5).
        """
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        self._connection_timeout = connection_timeout

        self._redis: Redis | None = None
        self._connection_pool: ConnectionPool | None = None
        self._use_fallback = False
        self._fallback_store = InMemorySessionStore()

        if self._redis_url:
            try:
                self._connection_pool = ConnectionPool.from_url(
                    self._redis_url,
                    max_connections=10,
                    socket_connect_timeout=connection_timeout,
                    socket_timeout=connection_timeout,
                    retry_on_timeout=True,
                )
                self._redis = Redis(connection_pool=self._connection_pool)
            except Exception as e:
                logger.warning(
                    "Failed to initialize Redis connection, using fallback mode",
                    error=str(e),
                )
                self._use_fallback = True
        else:
            logger.warning("REDIS_URL not provided, using fallback in-memory session store")
            self._use_fallback = True

    @property
    def using_fallback(self) -> bool:
        return self._use_fallback

    async def _ensure_connection(self) -> None:
        """Ensure Redis connection is available, fallback if not."""
        if self._use_fallback:
            return

        if self._redis is None:
            self._use_fallback = True
            logger.warning("Redis connection not available, using fallback mode")
            return

        try:
            await self._redis.ping()
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(
                "Redis connection failed, switching to fallback mode",
                error=str(e),
            )
            self._use_fallback = True

    async def get(self, identity_key: str) -> DialogSession | None:
        await self._ensure_connection()

        if self._use_fallback:
            return await self._fallback_store.get(identity_key)

        try:
            if self._redis is None:
                raise StateStoreError("Redis connection not available")
            raw = await self._redis.get(KEY_PATTERN_SESSION.format(identity_key=identity_key))
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(
                "Failed to load session from Redis, using fallback",
                identity_key=identity_key,
                error=str(e),
            )
            self._use_fallback = True
            return await self._fallback_store.get(identity_key)
        except StateStoreError:
            raise
        except Exception as e:
            raise StateStoreError(f"Failed to get session {identity_key}: {e}") from e

        if raw is None:
            return None
        try:
            return DialogSession.model_validate_json(raw)
        except PydanticValidationError as e:
            # Unreadable sessions are dropped; the visitor starts a new conversation
            logger.warning(
                "Discarding undecodable session",
                identity_key=identity_key,
                error=str(e),
            )
            return None

    async def save(self, session: DialogSession, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise StateStoreError(f"ttl_seconds must be positive, got {ttl_seconds}")

        await self._ensure_connection()

        if self._use_fallback:
            await self._fallback_store.save(session, ttl_seconds)
            return

        try:
            if self._redis is None:
                raise StateStoreError("Redis connection not available")
            redis_key = KEY_PATTERN_SESSION.format(identity_key=session.identity_key)
            await self._redis.setex(redis_key, ttl_seconds, session.model_dump_json())
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(
                "Failed to save session to Redis, using fallback",
                identity_key=session.identity_key,
                error=str(e),
            )
            await self._fallback_store.save(session, ttl_seconds)
            self._use_fallback = True
        except StateStoreError:
            raise
        except Exception as e:
            raise StateStoreError(f"Failed to save session {session.identity_key}: {e}") from e

    async def delete(self, identity_key: str) -> None:
        await self._ensure_connection()

        if self._use_fallback:
            await self._fallback_store.delete(identity_key)
            return

        try:
            if self._redis is None:
                raise StateStoreError("Redis connection not available")
            await self._redis.delete(KEY_PATTERN_SESSION.format(identity_key=identity_key))
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(
                "Failed to delete session from Redis, using fallback",
                identity_key=identity_key,
                error=str(e),
            )
            await self._fallback_store.delete(identity_key)
            self._use_fallback = True
        except StateStoreError:
            raise
        except Exception as e:
            raise StateStoreError(f"Failed to delete session {identity_key}: {e}") from e

    async def check_connection(self) -> bool:
        """Check if Redis connection is healthy.

        Returns:
            True if connection is healthy, False otherwise.
        """
        if self._use_fallback or self._redis is None:
            return False

        try:
            await self._redis.ping()
            return True
        except (ConnectionError, TimeoutError, RedisError):
            return False

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._connection_pool is not None:
            await self._connection_pool.disconnect()
            self._connection_pool = None
