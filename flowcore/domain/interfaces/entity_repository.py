"""EntityRepository interface for lifecycle entity persistence."""

from abc import ABC, abstractmethod

from flowcore.domain.models.entity import EntityType, TransitionableEntity


class EntityRepository(ABC):
    """Abstract persistence for one entity type.

    The transition engine depends only on ``find_by_id`` and ``save``;
    sweep jobs additionally use ``list_by_status`` and the marker methods.

    Implementations must write the status, the status log and the timeline
    of an entity as one unit in ``save`` so an audit entry never exists
    without its status change (or vice versa).

    Example:
        ```python
        class MyRepository(EntityRepository):
            entity_type = EntityType.Ticket

            async def find_by_id(self, entity_id: str) -> TransitionableEntity | None:
                ...
        ```
    """

    entity_type: EntityType

    @abstractmethod
    async def find_by_id(self, entity_id: str) -> TransitionableEntity | None:
        """Load an entity by id.

        Args:
            entity_id: Entity identifier.

        Returns:
            The entity, or None when it does not exist.

        Raises:
            StateStoreError: If the lookup fails.
        """
        pass

    @abstractmethod
    async def save(
        self,
        entity: TransitionableEntity,
        expected_version: int | None = None,
    ) -> None:
        """Persist an entity as one atomic write.

        Markers already stored for the entity are left untouched; they only
        change through ``claim_marker`` and ``release_marker``.

        Args:
            entity: Entity to persist.
            expected_version: When given, the write only succeeds if the
                stored version still equals this value.

        Raises:
            ConcurrentModificationError: If ``expected_version`` no longer matches.
            StateStoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def insert(self, entity: TransitionableEntity) -> None:
        """Create a new entity.

        Raises:
            StateStoreError: If an entity with the same id exists or the write fails.
        """
        pass

    @abstractmethod
    async def list_by_status(self, status: str, limit: int = 100) -> list[TransitionableEntity]:
        """List entities currently in ``status``, oldest first.

        Raises:
            StateStoreError: If the query fails.
        """
        pass

    @abstractmethod
    async def claim_marker(self, entity_id: str, marker: str) -> bool:
        """Atomically add ``marker`` to an entity if it is not already present.

        Returns:
            True if this call added the marker, False if it was already set
            or the entity does not exist.

        Raises:
            StateStoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def release_marker(self, entity_id: str, marker: str) -> None:
        """Remove ``marker`` so a failed job run can be retried.

        Raises:
            StateStoreError: If the write fails.
        """
        pass


class StateStoreError(Exception):
    """Raised when a repository or session store operation fails."""

    pass
