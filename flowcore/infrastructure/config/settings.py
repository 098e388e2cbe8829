"""Configuration settings using pydantic-settings."""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Configuration settings for the flowcore Orchestrator.

    Settings can be loaded from environment variables or passed as a dictionary.
    Environment variables should be prefixed with 'FLOWCORE_'
    (e.g., FLOWCORE_REDIS_URL=redis://localhost:6379).

    Example:
        ```python
        # From environment variables
        settings = OrchestratorSettings()

        # From dictionary
        settings = OrchestratorSettings.from_dict({"anonymous_session_ttl_seconds": 600})
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="FLOWCORE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Dialogue session configuration
    authenticated_session_ttl_seconds: int = Field(
        default=7 * 24 * 60 * 60,
        description="Sliding session window for signed-in users",
        gt=0,
    )
    anonymous_session_ttl_seconds: int = Field(
        default=30 * 60,
        description="Sliding session window for anonymous visitors",
        gt=0,
    )
    history_size: int = Field(
        default=10,
        description="Number of chat messages kept per session",
        ge=1,
    )
    history_max_chars: int = Field(
        default=300,
        description="Each stored chat message is truncated to this length",
        ge=1,
    )
    chat_max_chars: int = Field(
        default=1200,
        description="Incoming chat messages are truncated to this length",
        ge=1,
    )

    # TransitionEngine configuration
    optimistic_concurrency: bool = Field(
        default=False,
        description="Make entity saves conditional on the version that was loaded",
    )

    # Observability configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON; False for human-readable console output",
    )

    # LLM provider configuration
    llm_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Base URL of an OpenAI-compatible chat completions API",
    )
    llm_api_key: str | None = Field(
        default=None,
        description="API key for the LLM provider; free chat uses the fallback reply when unset",
    )
    llm_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Model name sent with each completion request",
    )
    llm_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for a single completion request",
        gt=0,
    )

    # Identity configuration
    anonymous_token_secret: str | None = Field(
        default=None,
        description=(
            "Secret used to sign anonymous session tokens; falls back to FLOWCORE_SECRET_KEY"
        ),
    )

    # Persistence configuration
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for dialogue sessions; in-memory sessions when unset",
    )
    mongodb_url: str | None = Field(
        default=None,
        description="MongoDB URL for lifecycle entities; in-memory repositories when unset",
    )
    mongodb_database: str = Field(
        default="flowcore",
        description="MongoDB database name",
    )

    # SweepJobs configuration
    payment_reminder_after_hours: float = Field(
        default=2.0,
        description="Pending orders older than this receive a payment reminder",
        gt=0,
    )
    sweep_batch_limit: int = Field(
        default=100,
        description="Maximum candidates processed per sweep run",
        ge=1,
    )

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "OrchestratorSettings":
        """Create settings from a dictionary.

        Args:
            config: Dictionary with configuration values.

        Returns:
            OrchestratorSettings instance.
        """
        return cls(**config)
