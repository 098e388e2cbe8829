"""Domain components."""

from flowcore.domain.components.chat_service import ChatService
from flowcore.domain.components.event_bus import TRANSITION_EVENT, EventBus
from flowcore.domain.components.flow_hooks import FlowHooks, register_flow_hooks
from flowcore.domain.components.intent_classifier import RegexIntentClassifier
from flowcore.domain.components.lead_capture import LeadCaptureFlow, next_lead_question
from flowcore.domain.components.session_manager import SessionManager
from flowcore.domain.components.state_graph import (
    DEFAULT_STATE_GRAPH,
    ENTITY_STATE_GRAPHS,
    StateGraphRegistry,
)
from flowcore.domain.components.sweep_jobs import SweepJobs
from flowcore.domain.components.transition_engine import TransitionEngine

__all__ = [
    "StateGraphRegistry",
    "ENTITY_STATE_GRAPHS",
    "DEFAULT_STATE_GRAPH",
    "TransitionEngine",
    "EventBus",
    "TRANSITION_EVENT",
    "FlowHooks",
    "register_flow_hooks",
    "SessionManager",
    "RegexIntentClassifier",
    "LeadCaptureFlow",
    "next_lead_question",
    "ChatService",
    "SweepJobs",
]
