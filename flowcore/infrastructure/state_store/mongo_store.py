"""MongoDB entity repositories.

``MongoEntityStore`` owns the motor client and Beanie initialization;
``MongoEntityRepository`` is the per-type EntityRepository it hands out.
Conditional saves and marker claims are single-document atomic updates.

Example:
    ```python
    import os
    os.environ["MONGODB_URL"] = "mongodb://localhost:27017"

    from flowcore.domain.models.entity import EntityType
    from flowcore.infrastructure.state_store.mongo_store import MongoEntityStore

    store = MongoEntityStore()
    await store.initialize()
    orders = store.repository(EntityType.Order)
    order = await orders.find_by_id("665f1c")
    ```
"""

import os
from typing import Any

import structlog
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    DuplicateKeyError,
    NetworkTimeout,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from flowcore.domain.interfaces.entity_repository import EntityRepository, StateStoreError
from flowcore.domain.models.entity import EntityType, TransitionableEntity
from flowcore.domain.models.errors import ConcurrentModificationError
from flowcore.infrastructure.state_store.mongo_models import (
    EntityDocument,
    document_id,
    initialize_beanie_models,
)

logger = structlog.get_logger(__name__)


class MongoEntityStore:
    """Connection owner for the MongoDB entity repositories.

    Connection Configuration:
        - Connection string from MONGODB_URL environment variable
        - Connection pooling configured via motor client options
        - Timezone-aware datetimes (``tz_aware=True``)
        - Health check via ping operation

    Attributes:
        _client: AsyncIOMotorClient instance for MongoDB connection
        _database_name: Name of the MongoDB database to use
        _initialized: Whether the connection has been initialized
    """

    def __init__(
        self,
        connection_url: str | None = None,
        database_name: str = "flowcore",
        max_pool_size: int = 100,
        min_pool_size: int = 0,
        connect_timeout_ms: int = 20000,
        server_selection_timeout_ms: int = 5000,
    ) -> None:
        """Initialize MongoEntityStore with connection configuration.

        Args:
            connection_url: MongoDB connection string. If None, reads from
                           MONGODB_URL environment variable.
            database_name: Name of the MongoDB database to use. Default is "flowcore".
            max_pool_size: Maximum number of connections in the pool. Default is 100.
            min_pool_size: Minimum number of connections in the pool. Default is 0.
            connect_timeout_ms: Connection timeout in milliseconds. Default is 20000 (20s).
            server_selection_timeout_ms: Server selection timeout in milliseconds.
                                        Default is 5000 (5s).

        Raises:
            StateStoreError: If connection URL is missing or invalid.
        """
        if connection_url is None:
            connection_url = os.getenv("MONGODB_URL")
            if connection_url is None:
                raise StateStoreError(
                    "MongoDB connection URL not provided. "
                    "Set MONGODB_URL environment variable or pass connection_url parameter."
                )

        self._database_name = database_name
        self._initialized = False
        self._repositories: dict[EntityType, MongoEntityRepository] = {}

        try:
            self._client: AsyncIOMotorClient | None = AsyncIOMotorClient(
                connection_url,
                maxPoolSize=max_pool_size,
                minPoolSize=min_pool_size,
                connectTimeoutMS=connect_timeout_ms,
                serverSelectionTimeoutMS=server_selection_timeout_ms,
                tz_aware=True,
            )
            logger.info("MongoDB client created", database=database_name)
        except (ConfigurationError, ValueError) as e:
            error_msg = f"Invalid MongoDB connection URL: {e}"
            logger.error("mongodb_connection_error", error=error_msg)
            raise StateStoreError(error_msg) from e

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Verify connectivity and initialize Beanie.

        Raises:
            StateStoreError: If connection fails or health check fails.
        """
        if self._initialized:
            return

        if self._client is None:
            raise StateStoreError("MongoDB client not initialized")

        try:
            await self._client.admin.command("ping")
            await initialize_beanie_models(self._client[self._database_name])
            self._initialized = True
            logger.info(
                "MongoDB connection established and Beanie initialized",
                database=self._database_name,
            )
        except (ConnectionFailure, ServerSelectionTimeoutError, NetworkTimeout) as e:
            error_msg = f"Failed to connect to MongoDB: {e}"
            logger.error("mongodb_connection_failure", error=error_msg)
            raise StateStoreError(error_msg) from e
        except OperationFailure as e:
            if e.code == 18 or "authentication" in str(e).lower():
                error_msg = f"MongoDB authentication failed: {e}"
                logger.error("mongodb_authentication_failure", error=error_msg)
                raise StateStoreError(error_msg) from e
            raise
        except Exception as e:
            error_msg = f"Unexpected error during MongoDB initialization: {e}"
            logger.error("mongodb_initialization_error", error=error_msg)
            raise StateStoreError(error_msg) from e

    async def check_connection(self) -> bool:
        """Check if MongoDB connection is healthy."""
        if self._client is None:
            return False

        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning("mongodb_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close MongoDB connection and cleanup resources."""
        if self._client is not None:
            self._client.close()
            self._client = None
            self._initialized = False
            logger.info("MongoDB connection closed")

    def repository(self, entity_type: EntityType) -> "MongoEntityRepository":
        """Repository for one entity type, created on first use."""
        if entity_type not in self._repositories:
            self._repositories[entity_type] = MongoEntityRepository(self, entity_type)
        return self._repositories[entity_type]

    def repositories(self) -> dict[EntityType, EntityRepository]:
        """One repository per EntityType, for wiring into the TransitionEngine."""
        return {entity_type: self.repository(entity_type) for entity_type in EntityType}


class MongoEntityRepository(EntityRepository):
    """MongoDB implementation of EntityRepository for one entity type."""

    def __init__(self, store: MongoEntityStore, entity_type: EntityType) -> None:
        self._store = store
        self.entity_type = entity_type

    async def _collection(self) -> Any:
        if not self._store.initialized:
            await self._store.initialize()
        return EntityDocument.get_motor_collection()

    def _check_type(self, entity: TransitionableEntity) -> None:
        if type(entity).entity_type != self.entity_type:
            raise StateStoreError(
                f"Cannot store {type(entity).__name__} in {self.entity_type.value} repository"
            )

    async def find_by_id(self, entity_id: str) -> TransitionableEntity | None:
        if not self._store.initialized:
            await self._store.initialize()

        try:
            doc = await EntityDocument.get(document_id(self.entity_type, entity_id))
            return doc.to_domain_model() if doc is not None else None
        except Exception as e:
            error_msg = f"Failed to get {self.entity_type.value} {entity_id}: {e}"
            logger.error("mongodb_find_entity_error", entity_id=entity_id, error=error_msg)
            raise StateStoreError(error_msg) from e

    async def save(
        self,
        entity: TransitionableEntity,
        expected_version: int | None = None,
    ) -> None:
        """Write status, logs and derived fields in one update.

        Unconditional saves upsert. Conditional saves match on the stored
        version and never insert.
        """
        self._check_type(entity)
        collection = await self._collection()
        doc = EntityDocument.from_domain_model(entity)

        query: dict[str, Any] = {"_id": doc.id}
        if expected_version is not None:
            query["version"] = expected_version
        update = {
            "$set": doc.mutable_fields(),
            "$setOnInsert": {
                "entity_type": doc.entity_type,
                "entity_id": doc.entity_id,
                "markers": doc.markers,
                "created_at": doc.created_at,
            },
        }

        try:
            result = await collection.update_one(query, update, upsert=expected_version is None)
        except Exception as e:
            error_msg = f"Failed to save {self.entity_type.value} {entity.id}: {e}"
            logger.error("mongodb_save_entity_error", entity_id=entity.id, error=error_msg)
            raise StateStoreError(error_msg) from e

        if expected_version is not None and result.matched_count == 0:
            raise ConcurrentModificationError(self.entity_type.value, entity.id, expected_version)

    async def insert(self, entity: TransitionableEntity) -> None:
        self._check_type(entity)
        if not self._store.initialized:
            await self._store.initialize()

        try:
            await EntityDocument.from_domain_model(entity).insert()
        except DuplicateKeyError as e:
            raise StateStoreError(f"{self.entity_type.value} {entity.id} already exists") from e
        except Exception as e:
            error_msg = f"Failed to insert {self.entity_type.value} {entity.id}: {e}"
            logger.error("mongodb_insert_entity_error", entity_id=entity.id, error=error_msg)
            raise StateStoreError(error_msg) from e

    async def list_by_status(self, status: str, limit: int = 100) -> list[TransitionableEntity]:
        if not self._store.initialized:
            await self._store.initialize()

        try:
            docs = (
                await EntityDocument.find(
                    EntityDocument.entity_type == self.entity_type.value,
                    EntityDocument.status == status,
                )
                .sort("+created_at")
                .limit(limit)
                .to_list()
            )
            return [doc.to_domain_model() for doc in docs]
        except Exception as e:
            error_msg = f"Failed to list {self.entity_type.value} in {status}: {e}"
            logger.error("mongodb_list_entities_error", status=status, error=error_msg)
            raise StateStoreError(error_msg) from e

    async def claim_marker(self, entity_id: str, marker: str) -> bool:
        collection = await self._collection()
        try:
            result = await collection.update_one(
                {"_id": document_id(self.entity_type, entity_id), "markers": {"$ne": marker}},
                {"$addToSet": {"markers": marker}},
            )
        except Exception as e:
            error_msg = f"Failed to claim {marker} on {self.entity_type.value} {entity_id}: {e}"
            logger.error("mongodb_claim_marker_error", entity_id=entity_id, error=error_msg)
            raise StateStoreError(error_msg) from e
        return result.modified_count == 1

    async def release_marker(self, entity_id: str, marker: str) -> None:
        collection = await self._collection()
        try:
            await collection.update_one(
                {"_id": document_id(self.entity_type, entity_id)},
                {"$pull": {"markers": marker}},
            )
        except Exception as e:
            error_msg = f"Failed to release {marker} on {self.entity_type.value} {entity_id}: {e}"
            logger.error("mongodb_release_marker_error", entity_id=entity_id, error=error_msg)
            raise StateStoreError(error_msg) from e
