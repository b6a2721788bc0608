from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ClaudeError(Exception):
    """Claude API error."""

    pass


class ClaudeRateLimitError(ClaudeError):
    """Claude API rate limit or token exhaustion error."""

    pass


# Substrings of error bodies that mean "back off", not "broken request"
RATE_LIMIT_INDICATORS = (
    "rate_limit",
    "rate limit",
    "overloaded",
    "credit balance",
    "insufficient_quota",
    "billing",
)


@dataclass
class ClaudeResponse:
    """Response from the Messages API.

    Attributes:
        text: Concatenated text content
        model: Model that generated the response
        stop_reason: Why generation stopped
        usage: Token usage information
    """

    text: str
    model: str | None = None
    stop_reason: str | None = None
    usage: dict[str, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "text": self.text,
            "model": self.model,
            "stop_reason": self.stop_reason,
            "usage": self.usage,
        }


class ClaudeClient:
    """Anthropic Messages API client.

    Serves both roles the engine needs from a language model:
    - invoke(prompt): single-prompt completion for extraction and merge decisions
    - generate(messages, system): chat completion for cited answers
    """

    BASE_URL = "https://api.anthropic.com/v1"
    DEFAULT_MODEL = "claude-sonnet-4-20250514"
    DEFAULT_MAX_TOKENS = 1024
    API_VERSION = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        max_tokens: int | None = None,
        timeout: float = 60.0,
    ):
        """Initialize the Claude client.

        Args:
            api_key: Anthropic API key
            model: Optional model override
            max_tokens: Optional max_tokens override (default: 1024)
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens or self.DEFAULT_MAX_TOKENS
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": self.API_VERSION,
                    "content-type": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        messages: list[dict],
        system: str | None = None,
        max_tokens_override: int | None = None,
    ) -> ClaudeResponse:
        """Make a request to the Messages API.

        Raises:
            ClaudeRateLimitError: On 429 or quota/overload errors
            ClaudeError: On any other failure or an empty response
        """
        client = await self._get_client()
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens_override or self.max_tokens,
            "messages": messages,
        }
        if system:
            payload["system"] = system

        try:
            response = await client.post("/messages", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            body = e.response.text
            if e.response.status_code == 429 or any(
                indicator in body.lower() for indicator in RATE_LIMIT_INDICATORS
            ):
                raise ClaudeRateLimitError(f"Claude API rate limit/token error: {body}") from e
            raise ClaudeError(f"Claude API error: HTTP {e.response.status_code}: {body}") from e
        except httpx.HTTPError as e:
            raise ClaudeError(f"Claude API error: {e}") from e

        content = data.get("content", [])
        if not content:
            raise ClaudeError("Empty response from Claude")

        text = "".join(block.get("text", "") for block in content if block.get("type") == "text")
        return ClaudeResponse(
            text=text,
            model=data.get("model"),
            stop_reason=data.get("stop_reason"),
            usage=data.get("usage"),
        )

    async def invoke(self, prompt: str) -> str:
        """Single-prompt completion."""
        response = await self._request([{"role": "user", "content": prompt}])
        return response.text.strip()

    async def generate(self, messages: list[dict], system: str | None = None) -> str:
        """Chat completion over a message history.

        Roles other than "assistant" are sent as "user", and consecutive
        messages with the same role are joined, since the Messages API
        requires alternating turns.
        """
        converted: list[dict] = []
        for message in messages:
            role = "assistant" if message.get("role") in ("assistant", "ai") else "user"
            content = str(message.get("content", ""))
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"] = f"{converted[-1]['content']}\n\n{content}"
            else:
                converted.append({"role": role, "content": content})

        response = await self._request(converted, system=system)
        logger.debug(f"Claude generation used {response.usage}")
        return response.text
