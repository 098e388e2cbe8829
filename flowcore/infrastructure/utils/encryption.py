"""Encryption utilities for signed anonymous session tokens."""

import os
from base64 import urlsafe_b64encode

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""

    pass


class EncryptionService:
    """Encrypts and authenticates short strings with Fernet.

    Tokens are URL-safe strings, suitable for cookies. The key is loaded
    from the argument or the FLOWCORE_SECRET_KEY environment variable.
    """

    def __init__(self, secret_key: str | None = None) -> None:
        """Initialize EncryptionService with a secret key.

        Args:
            secret_key: Fernet key or password. If None, loads from the
                FLOWCORE_SECRET_KEY environment variable. Outside production
                (ENVIRONMENT != 'production') a key is generated when none is
                set, so tokens do not survive a restart.

        Raises:
            EncryptionError: If no key is available in production mode.
        """
        if secret_key is None:
            secret_key = os.getenv("FLOWCORE_SECRET_KEY")
            if not secret_key:
                environment = os.getenv("ENVIRONMENT", os.getenv("ENV", "development")).lower()
                if environment == "production":
                    raise EncryptionError(
                        "FLOWCORE_SECRET_KEY environment variable is required in production"
                    )
                secret_key = Fernet.generate_key().decode()
                os.environ["FLOWCORE_SECRET_KEY"] = secret_key

        self._fernet = Fernet(self._get_fernet_key(secret_key))

    def _get_fernet_key(self, key_str: str) -> bytes:
        """Get Fernet key from string (either direct Fernet key or password).

        Args:
            key_str: Fernet key or password.

        Returns:
            Fernet key as bytes.
        """
        # A 44-character value is taken to be a Fernet key already
        if len(key_str) == 44:
            return key_str.encode()

        salt = os.getenv("FLOWCORE_SECRET_SALT", "flowcore-salt").encode()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )
        return urlsafe_b64encode(kdf.derive(key_str.encode()))

    def encrypt(self, value: str) -> str:
        """Encrypt ``value`` into a URL-safe token.

        Raises:
            EncryptionError: If encryption fails.
        """
        try:
            return self._fernet.encrypt(value.encode()).decode()
        except Exception as e:
            raise EncryptionError(f"Failed to encrypt value: {e}") from e

    def decrypt(self, token: str, max_age_seconds: int | None = None) -> str:
        """Decrypt a token produced by ``encrypt``.

        Args:
            token: Token string.
            max_age_seconds: Reject tokens older than this, when given.

        Raises:
            EncryptionError: If the token is malformed, tampered with, signed
                with another key, or too old.
        """
        try:
            return self._fernet.decrypt(token.encode(), ttl=max_age_seconds).decode()
        except (InvalidToken, UnicodeError, TypeError, AttributeError) as e:
            raise EncryptionError(f"Failed to decrypt token: {e or 'invalid token'}") from e
