"""SessionManager component for dialogue session lifecycle.

Sessions go non-existent -> active -> expired. They are created lazily on
first contact, loaded and saved once per turn, and expire on a sliding
window that restarts on every save.
"""

import re
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Literal

from flowcore.domain.interfaces.observability_manager import ObservabilityManager
from flowcore.domain.interfaces.session_store import SessionStore
from flowcore.domain.models.chat import Identity
from flowcore.domain.models.dialog_session import ChatMessage, DialogSession
from flowcore.domain.models.state_transition import utc_now

CONFUSION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"don'?t understand", re.IGNORECASE),
    re.compile(r"don'?t get it", re.IGNORECASE),
    re.compile(r"what do you mean", re.IGNORECASE),
    re.compile(r"^\s*huh\b", re.IGNORECASE),
    re.compile(r"\?\s*\?"),
    re.compile(r"not sure", re.IGNORECASE),
    re.compile(r"confus", re.IGNORECASE),
    re.compile(r"\bexplain\b", re.IGNORECASE),
)


def clamp_text(value: Any, max_length: int) -> str:
    """Trim and truncate free text; non-strings become empty."""
    if not isinstance(value, str):
        return ""
    value = value.strip()
    return value[:max_length]


def is_confused(text: str) -> bool:
    """True if ``text`` matches any confusion pattern."""
    return any(pattern.search(text or "") for pattern in CONFUSION_PATTERNS)


class SessionManager:
    """Loads, slides and saves dialogue sessions; owns anti-repeat bookkeeping."""

    def __init__(
        self,
        store: SessionStore,
        observability_manager: ObservabilityManager,
        authenticated_ttl_seconds: int = 7 * 24 * 60 * 60,
        anonymous_ttl_seconds: int = 30 * 60,
        history_size: int = 10,
        history_max_chars: int = 300,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize SessionManager.

        Args:
            store: SessionStore implementation for persistence.
            observability_manager: ObservabilityManager for logging.
            authenticated_ttl_seconds: Sliding window for signed-in users.
            anonymous_ttl_seconds: Sliding window for anonymous visitors.
            history_size: Capacity of the message ring buffer.
            history_max_chars: Each stored message is truncated to this length.
            clock: Source of timestamps; defaults to timezone-aware UTC now.
        """
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._store = store
        self._observability = observability_manager
        self._authenticated_ttl = authenticated_ttl_seconds
        self._anonymous_ttl = anonymous_ttl_seconds
        self._history_size = history_size
        self._history_max_chars = history_max_chars
        self._clock = clock or utc_now

    @property
    def store(self) -> SessionStore:
        return self._store

    def ttl_for(self, session: DialogSession) -> int:
        return self._authenticated_ttl if session.authenticated else self._anonymous_ttl

    async def get_or_create(self, identity: Identity) -> DialogSession:
        """Load the live session for ``identity`` or start a fresh one.

        A fresh session has no flow and no step. It is not persisted until
        ``save`` is called at the end of the turn.
        """
        session = await self._store.get(identity.key)
        now = self._clock()
        if session is not None and not session.is_expired(now):
            if identity.authenticated and not session.authenticated:
                session.authenticated = True
            return session

        session = DialogSession(
            identity_key=identity.key,
            authenticated=identity.authenticated,
            created_at=now,
            updated_at=now,
        )
        await self._observability.try_log(
            level="DEBUG",
            message="Dialogue session created",
            context={"identity_key": identity.key, "authenticated": identity.authenticated},
        )
        return session

    async def save(self, session: DialogSession) -> DialogSession:
        """Persist the session and restart its expiry window."""
        now = self._clock()
        ttl = self.ttl_for(session)
        session.updated_at = now
        session.expires_at = now + timedelta(seconds=ttl)
        await self._store.save(session, ttl_seconds=ttl)
        return session

    async def clear(self, identity_key: str) -> None:
        await self._store.delete(identity_key)

    @staticmethod
    def has_asked(session: DialogSession, question_key: str) -> bool:
        return question_key in session.asked_questions

    @staticmethod
    def mark_asked(session: DialogSession, question_key: str) -> None:
        session.asked_questions.add(question_key)

    def should_rephrase(self, session: DialogSession, question_key: str | None, text: str) -> bool:
        """A repeat is allowed only as a rephrase, and only after a confusion message."""
        if not question_key:
            return False
        return is_confused(text) and self.has_asked(session, question_key)

    def append_message(
        self,
        session: DialogSession,
        role: Literal["user", "assistant"],
        content: str,
    ) -> None:
        """Append to the ring buffer, dropping the oldest entries past capacity."""
        session.message_history.append(
            ChatMessage(
                role=role,
                content=clamp_text(content, self._history_max_chars),
                at=self._clock(),
            )
        )
        overflow = len(session.message_history) - self._history_size
        if overflow > 0:
            del session.message_history[:overflow]

    @staticmethod
    def summary(session: DialogSession) -> dict[str, Any]:
        """Log- and client-safe view of the session state."""
        return {
            "flow": session.flow.value if session.flow else None,
            "step": session.step.value if session.step else None,
            "asked": sorted(session.asked_questions),
            "turns": session.turn_count,
            "authenticated": session.authenticated,
            "expires_at": session.expires_at.isoformat() if session.expires_at else None,
        }
