"""Orchestrator - composition root for lifecycle and dialogue orchestration."""

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from flowcore.domain.components.chat_service import ChatService
from flowcore.domain.components.event_bus import EventBus
from flowcore.domain.components.flow_hooks import FlowHooks, register_flow_hooks
from flowcore.domain.components.intent_classifier import RegexIntentClassifier
from flowcore.domain.components.lead_capture import LeadCaptureFlow
from flowcore.domain.components.session_manager import SessionManager
from flowcore.domain.components.state_graph import StateGraphRegistry
from flowcore.domain.components.sweep_jobs import SweepJobs
from flowcore.domain.components.transition_engine import TransitionEngine
from flowcore.domain.interfaces.collaborators import (
    CommissionProcessor,
    IdentityResolver,
    IntentClassifier,
    LLMProvider,
    Notifier,
    ServiceCatalog,
)
from flowcore.domain.interfaces.entity_repository import EntityRepository
from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.interfaces.session_store import SessionStore
from flowcore.domain.models.chat import ChatMode, ChatRequest, ChatResponse
from flowcore.domain.models.entity import EntityType, TransitionableEntity
from flowcore.domain.models.service_offering import SweepReport
from flowcore.domain.models.state_transition import CanTransitionResult, TransitionMeta
from flowcore.domain.models.transition_event import BatchTransitionResult
from flowcore.infrastructure.adapters.identity_resolver import FernetIdentityResolver
from flowcore.infrastructure.adapters.llm_adapter import OpenAICompatibleProvider
from flowcore.infrastructure.adapters.notifier import LoggingNotifier
from flowcore.infrastructure.config.settings import OrchestratorSettings
from flowcore.infrastructure.observability.logger import DefaultObservabilityManager
from flowcore.infrastructure.state_store.memory_store import (
    InMemoryEntityRepository,
    InMemorySessionStore,
)
from flowcore.infrastructure.state_store.mongo_store import MongoEntityStore
from flowcore.infrastructure.state_store.redis_store import RedisSessionStore
from flowcore.infrastructure.utils.encryption import EncryptionService


class Orchestrator:
    """Main entry point for library.

    Owns the EventBus and wires the transition engine, lifecycle hooks,
    dialogue components and sweep jobs from one configuration.

    Example:
        ```python
        # Basic initialization: in-memory stores, logging notifier
        orchestrator = Orchestrator()

        # With configuration
        orchestrator = Orchestrator(config={"anonymous_session_ttl_seconds": 600})

        # Async context manager (connects and closes external stores)
        async with Orchestrator() as orchestrator:
            response = await orchestrator.chat("hi")
        ```
    """

    def __init__(
        self,
        repositories: Mapping[EntityType, EntityRepository] | None = None,
        session_store: SessionStore | None = None,
        observability_manager: ObservabilityManager | None = None,
        notifier: Notifier | None = None,
        commission_processor: CommissionProcessor | None = None,
        llm_provider: LLMProvider | None = None,
        service_catalog: ServiceCatalog | None = None,
        identity_resolver: IdentityResolver | None = None,
        intent_classifier: IntentClassifier | None = None,
        state_graph: StateGraphRegistry | None = None,
        config: OrchestratorSettings | dict[str, Any] | None = None,
    ) -> None:
        """Initialize Orchestrator with dependencies.

        Args:
            repositories: Optional repository per EntityType. If not provided,
                uses MongoDB when ``mongodb_url`` is configured and in-memory
                repositories otherwise. A ServiceRequest repository is required.
            session_store: Optional SessionStore. If not provided, uses Redis
                when ``redis_url`` is configured and in-memory otherwise.
            observability_manager: Optional ObservabilityManager implementation.
                If not provided, defaults to DefaultObservabilityManager.
            notifier: Optional Notifier. Defaults to LoggingNotifier.
            commission_processor: Optional CommissionProcessor for paid orders.
            llm_provider: Optional LLMProvider. If not provided and an API key
                is configured, uses OpenAICompatibleProvider.
            service_catalog: Optional ServiceCatalog consulted by purchase flows.
            identity_resolver: Optional IdentityResolver. Defaults to
                FernetIdentityResolver with the configured secret.
            intent_classifier: Optional IntentClassifier. Defaults to
                RegexIntentClassifier.
            state_graph: Optional StateGraphRegistry. Defaults to the built-in graphs.
            config: Optional configuration. Can be:
                   - OrchestratorSettings instance
                   - Dictionary with configuration values
                   - None (loads from environment variables)

        Raises:
            ValueError: If configuration is invalid.
            ConfigError: If no ServiceRequest repository is available.
        """
        if config is None:
            self._config = OrchestratorSettings()
        elif isinstance(config, dict):
            self._config = OrchestratorSettings.from_dict(config)
        elif isinstance(config, OrchestratorSettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected OrchestratorSettings, dict, or None"
            )

        if observability_manager is None:
            self._observability_manager: ObservabilityManager = DefaultObservabilityManager(
                log_level=self._config.log_level,
                json_format=self._config.json_logs,
            )
        else:
            self._observability_manager = observability_manager

        self._mongo_store: MongoEntityStore | None = None
        if repositories is None:
            if self._config.mongodb_url:
                self._mongo_store = MongoEntityStore(
                    connection_url=self._config.mongodb_url,
                    database_name=self._config.mongodb_database,
                )
                repositories = self._mongo_store.repositories()
            else:
                repositories = {t: InMemoryEntityRepository(t) for t in EntityType}
        self._repositories = dict(repositories)

        if session_store is None:
            if self._config.redis_url:
                session_store = RedisSessionStore(redis_url=self._config.redis_url)
            else:
                session_store = InMemorySessionStore()
        self._session_store = session_store

        if llm_provider is None and self._config.llm_api_key:
            llm_provider = OpenAICompatibleProvider(
                api_key=self._config.llm_api_key,
                base_url=self._config.llm_base_url,
                model=self._config.llm_model,
                timeout=self._config.llm_timeout_seconds,
            )

        if identity_resolver is None:
            identity_resolver = FernetIdentityResolver(
                EncryptionService(self._config.anonymous_token_secret)
            )

        self._notifier = notifier or LoggingNotifier()

        # The bus is owned here and passed by reference to publishers and subscribers
        self._event_bus = EventBus(self._observability_manager)

        self._transition_engine = TransitionEngine(
            repositories=self._repositories,
            event_bus=self._event_bus,
            observability_manager=self._observability_manager,
            state_graph=state_graph,
            optimistic_concurrency=self._config.optimistic_concurrency,
        )

        self._flow_hooks = register_flow_hooks(
            self._event_bus,
            notifier=self._notifier,
            observability_manager=self._observability_manager,
            commission_processor=commission_processor,
        )

        self._session_manager = SessionManager(
            store=self._session_store,
            observability_manager=self._observability_manager,
            authenticated_ttl_seconds=self._config.authenticated_session_ttl_seconds,
            anonymous_ttl_seconds=self._config.anonymous_session_ttl_seconds,
            history_size=self._config.history_size,
            history_max_chars=self._config.history_max_chars,
        )

        self._lead_capture = LeadCaptureFlow(
            transition_engine=self._transition_engine,
            observability_manager=self._observability_manager,
        )

        self._chat_service = ChatService(
            session_manager=self._session_manager,
            identity_resolver=identity_resolver,
            intent_classifier=intent_classifier or RegexIntentClassifier(),
            lead_capture=self._lead_capture,
            transition_engine=self._transition_engine,
            observability_manager=self._observability_manager,
            llm_provider=llm_provider,
            service_catalog=service_catalog,
            max_message_chars=self._config.chat_max_chars,
        )

        self._sweep_jobs = SweepJobs(
            transition_engine=self._transition_engine,
            notifier=self._notifier,
            observability_manager=self._observability_manager,
            reminder_after_hours=self._config.payment_reminder_after_hours,
            batch_limit=self._config.sweep_batch_limit,
        )

    async def __aenter__(self) -> "Orchestrator":
        """Async context manager entry.

        Returns:
            Self for use in async with statement.
        """
        if self._mongo_store is not None:
            await self._mongo_store.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit.

        Args:
            exc_type: Exception type if any.
            exc_val: Exception value if any.
            exc_tb: Exception traceback if any.
        """
        await self.close()

    async def close(self) -> None:
        """Wait for in-flight hooks, then close stores this orchestrator opened."""
        await self._event_bus.drain()
        if isinstance(self._session_store, RedisSessionStore):
            await self._session_store.close()
        if self._mongo_store is not None:
            await self._mongo_store.close()

    @property
    def config(self) -> OrchestratorSettings:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        """Get EventBus instance.

        Returns:
            EventBus instance.
        """
        return self._event_bus

    @property
    def transition_engine(self) -> TransitionEngine:
        """Get TransitionEngine instance.

        Returns:
            TransitionEngine instance.
        """
        return self._transition_engine

    @property
    def flow_hooks(self) -> FlowHooks:
        return self._flow_hooks

    @property
    def session_manager(self) -> SessionManager:
        """Get SessionManager instance.

        Returns:
            SessionManager instance.
        """
        return self._session_manager

    @property
    def lead_capture(self) -> LeadCaptureFlow:
        return self._lead_capture

    @property
    def chat_service(self) -> ChatService:
        return self._chat_service

    @property
    def sweep_jobs(self) -> SweepJobs:
        return self._sweep_jobs

    @property
    def observability_manager(self) -> ObservabilityManager:
        """Get ObservabilityManager instance.

        Returns:
            ObservabilityManager instance.
        """
        return self._observability_manager

    def repository(self, entity_type: EntityType | str) -> EntityRepository:
        return self._transition_engine.repository(entity_type)

    async def transition(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        next_state: str,
        meta: TransitionMeta | dict[str, Any] | None = None,
    ) -> TransitionableEntity:
        """Move an entity to ``next_state``. See ``TransitionEngine.transition``."""
        return await self._transition_engine.transition(entity_type, entity_id, next_state, meta)

    async def can_transition(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        next_state: str,
    ) -> CanTransitionResult:
        return await self._transition_engine.can_transition(entity_type, entity_id, next_state)

    async def batch_transition(
        self,
        entity_type: EntityType | str,
        entity_ids: Iterable[str],
        next_state: str,
        meta: TransitionMeta | dict[str, Any] | None = None,
    ) -> list[BatchTransitionResult]:
        return await self._transition_engine.batch_transition(
            entity_type, entity_ids, next_state, meta
        )

    async def get_current_state(self, entity_type: EntityType | str, entity_id: str) -> str | None:
        return await self._transition_engine.get_current_state(entity_type, entity_id)

    def allowed_transitions(self, entity_type: EntityType | str, state: str) -> list[str]:
        return self._transition_engine.allowed_transitions(entity_type, state)

    @property
    def state_graph(self) -> StateGraphRegistry:
        """Get the StateGraphRegistry used by the transition engine.

        Returns:
            StateGraphRegistry instance.
        """
        return self._transition_engine.state_graph

    async def chat(
        self,
        message: str | ChatRequest,
        user_id: str | None = None,
        anonymous_token: str | None = None,
        mode: ChatMode = ChatMode.Public,
    ) -> ChatResponse:
        """Handle one chat turn.

        Args:
            message: Message text, or a complete ChatRequest.
            user_id: Authenticated user id, if any.
            anonymous_token: Anonymous session token from the previous reply.
            mode: Public or admin chat.

        Returns:
            ChatResponse. Never raises for dialogue failures.
        """
        if isinstance(message, ChatRequest):
            request = message
        else:
            request = ChatRequest(
                message=message,
                user_id=user_id,
                anonymous_token=anonymous_token,
                mode=mode,
            )
        return await self._chat_service.chat(request)

    async def expire_rentals(self, now: datetime | None = None) -> SweepReport:
        return await self._sweep_jobs.expire_rentals(now)

    async def payment_reminders(self, now: datetime | None = None) -> SweepReport:
        return await self._sweep_jobs.payment_reminders(now)
