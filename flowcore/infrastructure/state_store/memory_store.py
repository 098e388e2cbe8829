"""In-memory entity repository and session store implementations.

These are the default backends: no external dependencies, safe for
concurrent coroutines in one process. Stored objects are deep-copied on
the way in and out, so callers never share state with the store.

Example:
    ```python
    from flowcore.domain.models.entity import EntityType, Ticket
    from flowcore.infrastructure.state_store.memory_store import InMemoryEntityRepository

    tickets = InMemoryEntityRepository(EntityType.Ticket)
    await tickets.insert(Ticket(id="t1", subject="Login issue"))
    ticket = await tickets.find_by_id("t1")
    ```
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from flowcore.domain.interfaces.entity_repository import EntityRepository, StateStoreError
from flowcore.domain.interfaces.session_store import SessionStore
from flowcore.domain.models.dialog_session import DialogSession
from flowcore.domain.models.entity import EntityType, TransitionableEntity
from flowcore.domain.models.errors import ConcurrentModificationError
from flowcore.domain.models.state_transition import utc_now


class InMemoryEntityRepository(EntityRepository):
    """In-memory implementation of EntityRepository for one entity type.

    Thread Safety:
        - Writes and marker claims use an asyncio.Lock, so a marker can be
          claimed by exactly one caller.
        - Reads return deep copies and need no lock.

    Attributes:
        entity_type: The EntityType this repository stores.
        _entities: Dictionary storing entities keyed by entity id
        _write_lock: asyncio.Lock for write operations
    """

    def __init__(self, entity_type: EntityType) -> None:
        self.entity_type = entity_type
        self._entities: dict[str, TransitionableEntity] = {}
        self._write_lock = asyncio.Lock()

    def _check_type(self, entity: TransitionableEntity) -> None:
        if type(entity).entity_type != self.entity_type:
            raise StateStoreError(
                f"Cannot store {type(entity).__name__} in {self.entity_type.value} repository"
            )

    async def find_by_id(self, entity_id: str) -> TransitionableEntity | None:
        entity = self._entities.get(entity_id)
        return entity.model_copy(deep=True) if entity is not None else None

    async def save(
        self,
        entity: TransitionableEntity,
        expected_version: int | None = None,
    ) -> None:
        """Upsert an entity; conditional on ``expected_version`` when given.

        Stored markers are kept as they are; they only change through
        ``claim_marker`` and ``release_marker``.
        """
        self._check_type(entity)
        async with self._write_lock:
            stored = self._entities.get(entity.id)
            if expected_version is not None and (
                stored is None or stored.version != expected_version
            ):
                raise ConcurrentModificationError(
                    self.entity_type.value, entity.id, expected_version
                )
            copy = entity.model_copy(deep=True)
            if stored is not None:
                copy.markers = list(stored.markers)
            self._entities[entity.id] = copy

    async def insert(self, entity: TransitionableEntity) -> None:
        self._check_type(entity)
        async with self._write_lock:
            if entity.id in self._entities:
                raise StateStoreError(f"{self.entity_type.value} {entity.id} already exists")
            self._entities[entity.id] = entity.model_copy(deep=True)

    async def list_by_status(self, status: str, limit: int = 100) -> list[TransitionableEntity]:
        matches = sorted(
            (e for e in self._entities.values() if e.status == status),
            key=lambda e: e.created_at,
        )
        return [e.model_copy(deep=True) for e in matches[: max(limit, 0)]]

    async def claim_marker(self, entity_id: str, marker: str) -> bool:
        async with self._write_lock:
            entity = self._entities.get(entity_id)
            if entity is None or marker in entity.markers:
                return False
            entity.markers.append(marker)
            return True

    async def release_marker(self, entity_id: str, marker: str) -> None:
        async with self._write_lock:
            entity = self._entities.get(entity_id)
            if entity is not None and marker in entity.markers:
                entity.markers.remove(marker)

    def __len__(self) -> int:
        return len(self._entities)


class InMemorySessionStore(SessionStore):
    """In-memory implementation of SessionStore.

    Expired entries are reported as missing on read and swept on every
    save. If max_sessions is reached, the session expiring soonest is
    evicted.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_sessions: int = 10000,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Returns the current UTC time. Defaults to utc_now.
            max_sessions: Maximum number of live sessions to keep.
                0 means unlimited.
        """
        self._sessions: dict[str, tuple[DialogSession, datetime]] = {}
        self._write_lock = asyncio.Lock()
        self._clock = clock or utc_now
        self._max_sessions = max_sessions if max_sessions > 0 else 0  # 0 means unlimited

    async def get(self, identity_key: str) -> DialogSession | None:
        entry = self._sessions.get(identity_key)
        if entry is None:
            return None
        session, expires_at = entry
        if expires_at <= self._clock():
            async with self._write_lock:
                self._sessions.pop(identity_key, None)
            return None
        return session.model_copy(deep=True)

    async def save(self, session: DialogSession, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise StateStoreError(f"ttl_seconds must be positive, got {ttl_seconds}")
        now = self._clock()
        expires_at = now + timedelta(seconds=ttl_seconds)
        async with self._write_lock:
            self._sweep_expired(now)
            self._sessions.pop(session.identity_key, None)
            if self._max_sessions > 0 and len(self._sessions) >= self._max_sessions:
                oldest = min(self._sessions, key=lambda key: self._sessions[key][1])
                del self._sessions[oldest]
            self._sessions[session.identity_key] = (session.model_copy(deep=True), expires_at)

    async def delete(self, identity_key: str) -> None:
        async with self._write_lock:
            self._sessions.pop(identity_key, None)

    def _sweep_expired(self, now: datetime) -> None:
        expired = [key for key, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for key in expired:
            del self._sessions[key]

    def __len__(self) -> int:
        return len(self._sessions)
