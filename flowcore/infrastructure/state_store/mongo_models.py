"""MongoDB document models using Beanie ODM.

All lifecycle entities share one collection. Status, version and
markers are top-level fields so conditional writes and marker claims
can filter on them; the rest of the entity is kept as a JSON-mode dump.

Example:
    ```python
    from motor.motor_asyncio import AsyncIOMotorClient
    from flowcore.infrastructure.state_store.mongo_models import initialize_beanie_models

    client = AsyncIOMotorClient("mongodb://localhost:27017", tz_aware=True)
    await initialize_beanie_models(client["flowcore"])
    ```
"""

from datetime import datetime
from typing import Any

from beanie import Document, Indexed, init_beanie
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import IndexModel

from flowcore.domain.models.entity import ENTITY_MODELS, EntityType, TransitionableEntity

# Top-level fields that are not duplicated inside ``data``
_TOP_LEVEL_FIELDS = {"id", "status", "version", "markers"}


def document_id(entity_type: EntityType, entity_id: str) -> str:
    """Collection-wide ``_id`` for an entity of ``entity_type``."""
    return f"{entity_type.value}:{entity_id}"


class EntityDocument(Document):
    """Beanie document model for every TransitionableEntity.

    Indexes:
        - id: ``{entity_type}:{entity_id}`` (primary key)
        - entity_type + status + created_at: sweep queries, oldest first
        - entity_type + user_id: per-user listings
    """

    id: str  # Maps to MongoDB _id
    entity_type: Indexed(str)  # type: ignore[valid-type]
    entity_id: str
    status: str
    version: int = 0
    markers: list[str] = []
    user_id: str | None = None
    created_at: datetime
    updated_at: datetime
    data: dict[str, Any] = {}

    class Settings:
        """Beanie document settings."""

        name = "entities"
        indexes = [
            IndexModel([("entity_type", 1), ("status", 1), ("created_at", 1)]),
            IndexModel([("entity_type", 1), ("user_id", 1)]),
        ]

    @classmethod
    def from_domain_model(cls, entity: TransitionableEntity) -> "EntityDocument":
        """Create EntityDocument from a domain entity.

        Args:
            entity: Domain entity instance.

        Returns:
            EntityDocument instance.
        """
        entity_type = type(entity).entity_type
        return cls(
            id=document_id(entity_type, entity.id),
            entity_type=entity_type.value,
            entity_id=entity.id,
            status=entity.status,
            version=entity.version,
            markers=list(entity.markers),
            user_id=entity.user_id,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            data=entity.model_dump(mode="json", exclude=_TOP_LEVEL_FIELDS),
        )

    def to_domain_model(self) -> TransitionableEntity:
        """Convert EntityDocument to its domain entity model.

        Returns:
            The entity, typed by ``entity_type``.
        """
        model = ENTITY_MODELS[EntityType(self.entity_type)]
        return model.model_validate(
            {
                **self.data,
                "id": self.entity_id,
                "status": self.status,
                "version": self.version,
                "markers": self.markers,
            }
        )

    def mutable_fields(self) -> dict[str, Any]:
        """Fields written by ``save``; markers are excluded."""
        return {
            "status": self.status,
            "version": self.version,
            "user_id": self.user_id,
            "updated_at": self.updated_at,
            "data": self.data,
        }


async def initialize_beanie_models(database: AsyncIOMotorDatabase) -> None:
    """Initialize Beanie with all document models.

    Registers the document models and creates indexes. Call once at startup.

    Args:
        database: MongoDB database instance from motor client.

    Raises:
        Exception: If Beanie initialization fails.
    """
    await init_beanie(database=database, document_models=[EntityDocument])
