"""SessionStore interface for dialogue session persistence."""

from abc import ABC, abstractmethod

from flowcore.domain.models.dialog_session import DialogSession


class SessionStore(ABC):
    """Keyed persistence for dialogue sessions with per-record TTL.

    Sessions whose TTL has elapsed must behave as if they do not exist.
    No locking is implied: concurrent saves for the same key are last
    write wins.
    """

    @abstractmethod
    async def get(self, identity_key: str) -> DialogSession | None:
        """Load a live session.

        Args:
            identity_key: Stable identity key.

        Returns:
            The session, or None if it never existed or has expired.

        Raises:
            StateStoreError: If the lookup fails.
        """
        pass

    @abstractmethod
    async def save(self, session: DialogSession, ttl_seconds: int) -> None:
        """Persist a session and (re)start its expiry window.

        Args:
            session: Session to store.
            ttl_seconds: Seconds until the session expires.

        Raises:
            StateStoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def delete(self, identity_key: str) -> None:
        """Remove a session. Missing keys are ignored.

        Raises:
            StateStoreError: If the delete fails.
        """
        pass
