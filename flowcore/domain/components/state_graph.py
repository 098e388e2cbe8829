"""StateGraphRegistry: the static table of legal entity status changes."""

from collections import deque
from collections.abc import Mapping
from types import MappingProxyType

from flowcore.domain.models.entity import EntityType
from flowcore.domain.models.errors import ConfigError

StateGraph = Mapping[str, frozenset[str]]


def _graph(edges: dict[str, set[str]]) -> StateGraph:
    return MappingProxyType({state: frozenset(targets) for state, targets in edges.items()})


ENTITY_STATE_GRAPHS: Mapping[EntityType, StateGraph] = MappingProxyType(
    {
        EntityType.Order: _graph(
            {
                "pending": {"in_progress", "cancelled"},
                "in_progress": {"waiting_user", "completed", "cancelled"},
                "waiting_user": {"in_progress", "completed", "cancelled"},
                "completed": set(),
                "cancelled": set(),
            }
        ),
        EntityType.Ticket: _graph(
            {
                "open": {"in_progress", "waiting_user", "closed"},
                "in_progress": {"waiting_user", "closed"},
                "waiting_user": {"in_progress", "closed"},
                "closed": set(),
            }
        ),
        EntityType.Rental: _graph(
            {
                "pending": {"active", "cancelled"},
                "active": {"expired", "cancelled", "renewed"},
                "expired": {"renewed"},
                "cancelled": set(),
                "renewed": {"active", "expired"},
            }
        ),
        EntityType.Wallet: _graph(
            {
                "pending": {"completed", "failed", "cancelled"},
                "completed": set(),
                "failed": set(),
                "cancelled": set(),
            }
        ),
        EntityType.AffiliateWithdrawal: _graph(
            {
                "pending": {"approved", "rejected"},
                "approved": {"paid"},
                "paid": set(),
                "rejected": set(),
            }
        ),
        EntityType.ServiceRequest: _graph(
            {
                "draft": {"new", "cancelled"},
                "new": {"contacted", "in_progress", "closed", "cancelled"},
                "contacted": {"in_progress", "converted", "closed"},
                "in_progress": {"converted", "closed"},
                "converted": set(),
                "closed": set(),
                "cancelled": set(),
            }
        ),
    }
)

INITIAL_STATES: Mapping[EntityType, str] = MappingProxyType(
    {
        EntityType.Order: "pending",
        EntityType.Ticket: "open",
        EntityType.Rental: "pending",
        EntityType.Wallet: "pending",
        EntityType.AffiliateWithdrawal: "pending",
        EntityType.ServiceRequest: "draft",
    }
)


class StateGraphRegistry:
    """Immutable registry of per-entity-type state graphs.

    The registry validates itself on construction: every ``EntityType``
    must have a graph and an initial state, and every state reachable from
    the initial state must appear as a key (terminal states map to an
    empty set). A registry that fails these checks raises ``ConfigError``,
    so a missing graph surfaces at import time through ``DEFAULT_STATE_GRAPH``.

    Example:
        ```python
        registry = StateGraphRegistry()
        registry.allowed(EntityType.Ticket, "open")
        # frozenset({'in_progress', 'waiting_user', 'closed'})
        ```
    """

    def __init__(
        self,
        graphs: Mapping[EntityType, Mapping[str, frozenset[str] | set[str]]] = ENTITY_STATE_GRAPHS,
        initial_states: Mapping[EntityType, str] = INITIAL_STATES,
    ) -> None:
        """Initialize and validate the registry.

        Args:
            graphs: Edges per entity type. Copied into read-only mappings.
            initial_states: Initial status per entity type.

        Raises:
            ConfigError: If a type is missing or a reachable state is unmapped.
        """
        self._graphs: Mapping[EntityType, StateGraph] = MappingProxyType(
            {
                entity_type: MappingProxyType(
                    {state: frozenset(targets) for state, targets in edges.items()}
                )
                for entity_type, edges in graphs.items()
            }
        )
        self._initial_states: Mapping[EntityType, str] = MappingProxyType(dict(initial_states))
        self._validate()

    def _validate(self) -> None:
        for entity_type in EntityType:
            graph = self._graphs.get(entity_type)
            if graph is None:
                raise ConfigError(f"No state graph registered for entity type {entity_type.value}")

            initial = self._initial_states.get(entity_type)
            if initial is None:
                raise ConfigError(
                    f"No initial state registered for entity type {entity_type.value}"
                )

            seen: set[str] = set()
            queue: deque[str] = deque([initial])
            while queue:
                state = queue.popleft()
                if state in seen:
                    continue
                seen.add(state)
                if state not in graph:
                    raise ConfigError(
                        f"State {state!r} of {entity_type.value} is reachable but has no entry "
                        "in the state graph",
                        details={"entity_type": entity_type.value, "state": state},
                    )
                queue.extend(graph[state] - seen)

    @staticmethod
    def coerce_type(entity_type: EntityType | str) -> EntityType:
        """Resolve a raw type string to ``EntityType``.

        Raises:
            ConfigError: If the value is not a known entity type.
        """
        if isinstance(entity_type, EntityType):
            return entity_type
        try:
            return EntityType(entity_type)
        except ValueError as e:
            raise ConfigError(
                f"Unknown entity type: {entity_type!r}",
                details={"entity_type": str(entity_type)},
            ) from e

    def graph_for(self, entity_type: EntityType | str) -> StateGraph:
        return self._graphs[self.coerce_type(entity_type)]

    def allowed(self, entity_type: EntityType | str, state: str) -> frozenset[str]:
        """Return the legal next states from ``state``.

        Raises:
            ConfigError: If the type is unknown or ``state`` is not in its graph.
        """
        resolved = self.coerce_type(entity_type)
        graph = self._graphs[resolved]
        if state not in graph:
            raise ConfigError(
                f"State {state!r} is not defined for entity type {resolved.value}",
                details={"entity_type": resolved.value, "state": state},
            )
        return graph[state]

    def is_valid(self, entity_type: EntityType | str, from_state: str, to_state: str) -> bool:
        return to_state in self.allowed(entity_type, from_state)

    def initial_state(self, entity_type: EntityType | str) -> str:
        return self._initial_states[self.coerce_type(entity_type)]

    def states(self, entity_type: EntityType | str) -> frozenset[str]:
        return frozenset(self.graph_for(entity_type))

    def terminal_states(self, entity_type: EntityType | str) -> frozenset[str]:
        graph = self.graph_for(entity_type)
        return frozenset(state for state, targets in graph.items() if not targets)

    def as_dict(self) -> dict[str, dict[str, list[str]]]:
        """Plain, sorted representation for UI rendering and API responses."""
        return {
            entity_type.value: {state: sorted(targets) for state, targets in graph.items()}
            for entity_type, graph in self._graphs.items()
        }


DEFAULT_STATE_GRAPH = StateGraphRegistry()
