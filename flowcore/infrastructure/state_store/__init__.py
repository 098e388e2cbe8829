"""State store implementations."""

from flowcore.infrastructure.state_store.memory_store import (
    InMemoryEntityRepository,
    InMemorySessionStore,
)
from flowcore.infrastructure.state_store.mongo_store import (
    MongoEntityRepository,
    MongoEntityStore,
)
from flowcore.infrastructure.state_store.redis_store import RedisSessionStore

__all__ = [
    "InMemoryEntityRepository",
    "InMemorySessionStore",
    "MongoEntityStore",
    "MongoEntityRepository",
    "RedisSessionStore",
]
