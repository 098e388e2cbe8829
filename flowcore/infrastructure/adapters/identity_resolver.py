"""Identity resolution for chat requests."""

import re
import uuid

import structlog

from flowcore.domain.interfaces.collaborators import IdentityResolver
from flowcore.domain.models.chat import Identity
from flowcore.infrastructure.utils.encryption import EncryptionError, EncryptionService

logger = structlog.get_logger(__name__)

_TOKEN_PREFIX = "anon."
_ANON_ID = re.compile(r"^[0-9a-f]{32}$")


class FernetIdentityResolver(IdentityResolver):
    """Resolves ``user:{id}`` for signed-in users and ``anon:{id}`` otherwise.

    The anonymous cookie token is a Fernet token wrapping a random id, so a
    visitor cannot pick another visitor's session key. A missing, tampered
    or expired token is replaced by a freshly minted one.
    """

    def __init__(
        self,
        encryption_service: EncryptionService,
        max_token_age_seconds: int | None = None,
    ) -> None:
        self._encryption = encryption_service
        self._max_token_age = max_token_age_seconds

    def resolve(self, user_id: str | None, anonymous_token: str | None) -> Identity:
        if user_id and str(user_id).strip():
            user_id = str(user_id).strip()
            return Identity(key=f"user:{user_id}", authenticated=True, user_id=user_id)

        if anonymous_token:
            anon_id = self._read_token(anonymous_token)
            if anon_id is not None:
                return Identity(key=f"anon:{anon_id}", anonymous_token=anonymous_token)

        anon_id = uuid.uuid4().hex
        token = self._encryption.encrypt(f"{_TOKEN_PREFIX}{anon_id}")
        return Identity(key=f"anon:{anon_id}", anonymous_token=token, issued=True)

    def _read_token(self, token: str) -> str | None:
        try:
            value = self._encryption.decrypt(token, max_age_seconds=self._max_token_age)
        except EncryptionError as e:
            logger.info("Rejected anonymous session token", error=str(e))
            return None
        if not value.startswith(_TOKEN_PREFIX):
            return None
        anon_id = value[len(_TOKEN_PREFIX) :]
        return anon_id if _ANON_ID.match(anon_id) else None
