"""Shared infrastructure utilities."""

from flowcore.infrastructure.utils.encryption import EncryptionError, EncryptionService

__all__ = ["EncryptionService", "EncryptionError"]
