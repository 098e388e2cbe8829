"""Chat entry-point models and resolved identities."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatMode(str, Enum):
    """Who is talking to the assistant."""

    Public = "public"
    Admin = "admin"


class Identity(BaseModel):
    """Stable session identity resolved from auth or an anonymous cookie token."""

    key: str = Field(..., description="Session lookup key, 'user:<id>' or 'anon:<id>'")
    authenticated: bool = False
    user_id: str | None = None
    anonymous_token: str | None = Field(
        default=None,
        description="Signed anonymous token to set as cookie; None for authenticated users",
    )
    issued: bool = Field(
        default=False,
        description="True when a fresh anonymous token was minted for this request",
    )

    model_config = ConfigDict(frozen=True)


class ChatRequest(BaseModel):
    """One inbound chat turn."""

    message: str = ""
    user_id: str | None = None
    anonymous_token: str | None = None
    mode: ChatMode = ChatMode.Public
    page: str | None = None

    model_config = ConfigDict(frozen=True)


class ChatResponse(BaseModel):
    """Reply for one chat turn. Never carries a hard error."""

    reply: str
    quick_replies: list[str] = Field(default_factory=list)
    intent: str
    session_meta: dict[str, Any] = Field(default_factory=dict)
    anonymous_token: str | None = None
    escalate: bool = False
    reference_id: str | None = Field(
        default=None,
        description="Id of a record created during the turn (e.g. a service request)",
    )

    model_config = ConfigDict(frozen=True)
