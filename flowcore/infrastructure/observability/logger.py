"""structlog-backed observability for flowcore.

Every record passes through ``redact_processor`` before rendering, so
tokens, secrets and customer emails never reach the log sink, whichever
component logged them.
"""

import logging
import re
from collections.abc import MutableMapping
from typing import Any

import structlog

from flowcore.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from flowcore.domain.models.state_transition import utc_now

SENSITIVE_KEYS = frozenset(
    {
        "anonymous_token",
        "token",
        "api_key",
        "llm_api_key",
        "secret",
        "secret_key",
        "anonymous_token_secret",
        "password",
        "authorization",
    }
)
PROVIDER_KEY_PREFIXES = ("sk-", "gsk_", "pk-", "xai-")
REDACTED = "[REDACTED]"

_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


def _mask_email(match: re.Match[str]) -> str:
    local, _, domain = match.group(0).partition("@")
    return f"{local[:1]}***@{domain}"


def sanitize_for_logging(data: Any) -> Any:
    """Redact secrets and mask customer emails in ``data``.

    Dict values under a key from ``SENSITIVE_KEYS`` are replaced (unless
    None), strings that look like provider API keys are replaced, and
    email addresses inside strings keep only their first letter. Tuples
    come back as lists.
    """
    if isinstance(data, dict):
        return {
            key: (
                REDACTED
                if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and value is not None
                else sanitize_for_logging(value)
            )
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize_for_logging(item) for item in data]
    if isinstance(data, str):
        if data.startswith(PROVIDER_KEY_PREFIXES) and len(data) > 20:
            return REDACTED
        return _EMAIL.sub(_mask_email, data)
    return data


def redact_processor(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying ``sanitize_for_logging`` to a record."""
    return sanitize_for_logging(dict(event_dict))


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog and the stdlib root logger for flowcore.

    JSON lines in production; ``json_format=False`` switches to the
    colored console renderer for local development.
    """
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_processor,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s",
    )


def _without_reserved(fields: dict[str, Any]) -> dict[str, Any]:
    # structlog uses "event" for the message itself
    if "event" in fields:
        fields = dict(fields)
        fields["event_name"] = fields.pop("event")
    return fields


class DefaultObservabilityManager(ObservabilityManager):
    """ObservabilityManager writing structured records through structlog."""

    def __init__(self, log_level: str = "INFO", json_format: bool = True) -> None:
        self._log_level = log_level
        self._json_format = json_format
        configure_logging(log_level, json_format)
        self._logger = structlog.get_logger("flowcore")

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a domain event such as ``entity_transitioned``.

        Raises:
            ObservabilityError: If the record cannot be written.
        """
        try:
            fields = _without_reserved(payload)
            if metadata:
                fields = {**fields, "metadata": {"timestamp": utc_now().isoformat(), **metadata}}
            self._logger.info("Event emitted", event_type=event_type, **fields)
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event: {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        try:
            log_method = getattr(self._logger, level.lower(), self._logger.info)
            log_method(message, **_without_reserved(context or {}))
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
