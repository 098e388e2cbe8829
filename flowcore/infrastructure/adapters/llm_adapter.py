"""OpenAI-compatible chat completion provider."""

from __future__ import annotations

from typing import Any

import httpx

from flowcore.domain.interfaces.collaborators import LLMProvider
from flowcore.domain.models.errors import ProviderError


class OpenAICompatibleProvider(LLMProvider):
    """LLMProvider for any OpenAI-compatible ``/chat/completions`` endpoint.

    Defaults target Groq. Every failure, including an empty completion, is
    raised as ProviderError so the chat layer can fall back.

    Example:
        ```python
        provider = OpenAICompatibleProvider(api_key="gsk_...")
        text = await provider.complete([{"role": "user", "content": "Hello!"}])
        ```
    """

    BASE_URL = "https://api.groq.com/openai/v1"
    """Default API base URL."""

    MODEL = "llama-3.3-70b-versatile"
    """Default model name."""

    TIMEOUT = 15.0
    """Request timeout in seconds."""

    MAX_TOKENS = 300
    """Upper bound on completion length; chat replies are short."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        temperature: float = 0.4,
    ) -> None:
        """Initialize the provider.

        Args:
            api_key: Bearer token for the API.
            base_url: Optional base URL override.
            model: Optional model override.
            timeout: Optional timeout override.
            temperature: Sampling temperature.
        """
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.model = model or self.MODEL
        self.timeout = timeout or self.TIMEOUT
        self.temperature = temperature

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        """Return the assistant text for ``messages``.

        Raises:
            ProviderError: If the request fails or the completion is empty.
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.MAX_TOKENS,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise self.map_error(e) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"Completion request timed out after {self.timeout}s",
                provider_code="timeout",
                retryable=True,
            ) from e
        except httpx.NetworkError as e:
            raise ProviderError(
                f"Network error connecting to LLM provider: {e}",
                provider_code="network_error",
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Transport error talking to LLM provider: {e}",
                provider_code="transport_error",
                retryable=True,
            ) from e
        except ValueError as e:
            raise ProviderError(
                f"LLM provider returned invalid JSON: {e}",
                provider_code="invalid_response",
            ) from e

        return self._extract_text(data)

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                "LLM provider response has no choices",
                provider_code="invalid_response",
            ) from e
        if not isinstance(text, str) or not text.strip():
            raise ProviderError("LLM provider returned an empty completion", provider_code="empty")
        return text.strip()

    def map_error(self, error: httpx.HTTPStatusError) -> ProviderError:
        """Map an HTTP status error to ProviderError.

        Args:
            error: The httpx status error.

        Returns:
            ProviderError with a provider code and retryability.
        """
        status_code = error.response.status_code
        details: dict[str, Any] = {"status_code": status_code}
        try:
            body = error.response.json()
            if isinstance(body, dict) and isinstance(body.get("error"), dict):
                details["message"] = body["error"].get("message")
        except ValueError:
            pass

        if status_code == 401:
            return ProviderError(
                "LLM provider authentication failed",
                provider_code="invalid_api_key",
                details=details,
            )
        if status_code == 429:
            return ProviderError(
                "LLM provider rate limit exceeded",
                provider_code="rate_limit_exceeded",
                retryable=True,
                details=details,
            )
        if 500 <= status_code < 600:
            return ProviderError(
                f"LLM provider server error ({status_code})",
                provider_code=f"server_error_{status_code}",
                retryable=True,
                details=details,
            )
        return ProviderError(
            f"LLM provider request failed ({status_code})",
            provider_code=f"http_{status_code}",
            details=details,
        )
