"""TransitionEngine component for validated entity status changes."""

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from flowcore.domain.components.event_bus import TRANSITION_EVENT, EventBus
from flowcore.domain.components.state_graph import DEFAULT_STATE_GRAPH, StateGraphRegistry
from flowcore.domain.interfaces.entity_repository import EntityRepository, StateStoreError
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.models.entity import EntityType, TransitionableEntity
from flowcore.domain.models.errors import (
    ConfigError,
    InvalidTransitionError,
    NotFoundError,
    OrchestrationError,
    ValidationError,
)
from flowcore.domain.models.state_transition import (
    AuditEntry,
    CanTransitionResult,
    StatusLogEntry,
    TransitionMeta,
    utc_now,
)
from flowcore.domain.models.transition_event import BatchTransitionResult, TransitionEvent


class TransitionEngine:
    """Validates and executes entity status changes against the state graph.

    One call runs read -> validate -> mutate -> persist -> publish. The
    status, the status log line and the timeline entry are persisted in a
    single repository ``save``. Events are published after persistence and
    are not awaited.

    Concurrent transitions of the same entity are last write wins unless
    ``optimistic_concurrency`` is enabled, in which case the save is
    conditional on the version that was loaded.
    """

    def __init__(
        self,
        repositories: Mapping[EntityType, EntityRepository],
        event_bus: EventBus,
        observability_manager: ObservabilityManager,
        state_graph: StateGraphRegistry | None = None,
        optimistic_concurrency: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize TransitionEngine with dependencies.

        Args:
            repositories: Repository per entity type. Types without a
                repository raise ConfigError when used.
            event_bus: Bus that receives the per-state and generic events.
            observability_manager: ObservabilityManager for events and logging.
            state_graph: Registry of legal edges. Defaults to the built-in graphs.
            optimistic_concurrency: Make saves conditional on the loaded version.
            clock: Source of timestamps; defaults to timezone-aware UTC now.
        """
        self._repositories = dict(repositories)
        self._event_bus = event_bus
        self._observability = observability_manager
        self._state_graph = state_graph or DEFAULT_STATE_GRAPH
        self._optimistic_concurrency = optimistic_concurrency
        self._clock = clock or utc_now

    @property
    def state_graph(self) -> StateGraphRegistry:
        """The registry of legal transitions, for introspection and UI rendering."""
        return self._state_graph

    def repository(self, entity_type: EntityType | str) -> EntityRepository:
        """Return the repository for ``entity_type``.

        Raises:
            ConfigError: If the type is unknown or has no repository.
        """
        resolved = self._state_graph.coerce_type(entity_type)
        repository = self._repositories.get(resolved)
        if repository is None:
            raise ConfigError(f"No repository registered for entity type {resolved.value}")
        return repository

    @staticmethod
    def _coerce_meta(meta: TransitionMeta | dict[str, Any] | None) -> TransitionMeta:
        if meta is None:
            return TransitionMeta()
        if isinstance(meta, TransitionMeta):
            return meta
        if not isinstance(meta, dict):
            raise ValidationError(
                f"Transition metadata must be a mapping, got {type(meta).__name__}",
                field="meta",
            )
        try:
            return TransitionMeta(**meta)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "meta"
            raise ValidationError(
                f"Invalid transition metadata: {first['msg']}", field=field
            ) from e

    async def transition(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        next_state: str,
        meta: TransitionMeta | dict[str, Any] | None = None,
    ) -> TransitionableEntity:
        """Move an entity to ``next_state`` if the state graph allows it.

        Args:
            entity_type: Entity type (enum or its string value).
            entity_id: Id of an existing entity.
            next_state: Target status.
            meta: ``{actor, reason, data}`` describing who asked and why.

        Returns:
            The updated, persisted entity.

        Raises:
            ConfigError: If the type is unknown, has no repository, or the
                entity's current status is missing from the graph.
            ValidationError: If ``meta`` is malformed.
            NotFoundError: If the entity does not exist.
            InvalidTransitionError: If ``next_state`` is not an allowed edge.
                Nothing is written in this case.
            ConcurrentModificationError: If optimistic concurrency is on and
                the entity changed since it was loaded.
            StateStoreError: If the save fails.
        """
        resolved = self._state_graph.coerce_type(entity_type)
        transition_meta = self._coerce_meta(meta)
        repository = self.repository(resolved)

        entity = await repository.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(resolved.value, entity_id)

        current_state = entity.status
        allowed = self._state_graph.allowed(resolved, current_state)
        if next_state not in allowed:
            raise InvalidTransitionError(
                entity_type=resolved.value,
                entity_id=entity_id,
                current_state=current_state,
                next_state=next_state,
                allowed=allowed,
            )

        now = self._clock()
        loaded_version = entity.version

        entity.status = next_state
        entity.status_log.append(
            StatusLogEntry(
                text=self._status_log_text(current_state, next_state, transition_meta),
                by=transition_meta.actor,
                at=now,
            )
        )
        entity.timeline.append(
            AuditEntry(
                event=next_state,
                from_state=current_state,
                to_state=next_state,
                at=now,
                actor=transition_meta.actor,
                reason=transition_meta.reason,
                meta=transition_meta.data,
            )
        )
        entity.apply_transition_effects(current_state, next_state, now)
        entity.updated_at = now
        entity.version = loaded_version + 1

        await repository.save(
            entity,
            expected_version=loaded_version if self._optimistic_concurrency else None,
        )

        event = TransitionEvent(
            entity_type=resolved,
            entity_id=entity_id,
            item=entity.model_copy(deep=True),
            previous_state=current_state,
            next_state=next_state,
            meta=transition_meta,
            transitioned_at=now,
        )
        self._event_bus.publish(event.event_name, event)
        self._event_bus.publish(TRANSITION_EVENT, event)

        await self._observability.try_emit(
            event_type="entity_transitioned",
            payload=event.summary(),
            metadata={"timestamp": now.isoformat()},
        )

        return entity

    @staticmethod
    def _status_log_text(current_state: str, next_state: str, meta: TransitionMeta) -> str:
        text = f"Status changed from {current_state} to {next_state}"
        if meta.reason:
            text = f"{text}: {meta.reason}"
        return text

    async def can_transition(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        next_state: str,
    ) -> CanTransitionResult:
        """Pre-flight check. Performs no writes for any input.

        Raises:
            ConfigError: If the type is unknown or the current status is
                missing from the graph.
        """
        resolved = self._state_graph.coerce_type(entity_type)
        entity = await self.repository(resolved).find_by_id(entity_id)
        if entity is None:
            return CanTransitionResult(
                allowed=False,
                current_state=None,
                reason=f"{resolved.value} not found: {entity_id}",
            )

        allowed = self._state_graph.allowed(resolved, entity.status)
        if next_state in allowed:
            return CanTransitionResult(
                allowed=True,
                current_state=entity.status,
                allowed_states=sorted(allowed),
            )

        reason = (
            f"{entity.status} is a terminal state"
            if not allowed
            else f"Cannot move from {entity.status} to {next_state}"
        )
        return CanTransitionResult(
            allowed=False,
            current_state=entity.status,
            allowed_states=sorted(allowed),
            reason=reason,
        )

    async def batch_transition(
        self,
        entity_type: EntityType | str,
        entity_ids: Iterable[str],
        next_state: str,
        meta: TransitionMeta | dict[str, Any] | None = None,
    ) -> list[BatchTransitionResult]:
        """Apply ``transition`` to each id independently.

        One failure does not abort the others and there is no atomicity
        across the batch.

        Raises:
            ConfigError: If the type is unknown (checked once, before any id).
            ValidationError: If ``meta`` is malformed (checked once).
        """
        resolved = self._state_graph.coerce_type(entity_type)
        transition_meta = self._coerce_meta(meta)
        self.repository(resolved)

        results: list[BatchTransitionResult] = []
        for entity_id in entity_ids:
            try:
                item = await self.transition(resolved, entity_id, next_state, transition_meta)
            except OrchestrationError as e:
                results.append(
                    BatchTransitionResult(
                        id=entity_id,
                        success=False,
                        error=str(e),
                        error_category=e.category.value,
                    )
                )
            except StateStoreError as e:
                results.append(
                    BatchTransitionResult(
                        id=entity_id,
                        success=False,
                        error=str(e),
                        error_category="state_store_error",
                    )
                )
            else:
                results.append(BatchTransitionResult(id=entity_id, success=True, item=item))
        return results

    async def get_current_state(self, entity_type: EntityType | str, entity_id: str) -> str | None:
        """Current status of an entity, or None if it does not exist."""
        entity = await self.repository(entity_type).find_by_id(entity_id)
        return entity.status if entity is not None else None

    def allowed_transitions(self, entity_type: EntityType | str, state: str) -> list[str]:
        """Sorted legal next states from ``state``."""
        return sorted(self._state_graph.allowed(entity_type, state))
