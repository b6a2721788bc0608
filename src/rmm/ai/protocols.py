"""Interfaces for the external model services.

The engine only needs text-in/text-out from a language model and
text-in/vector-out from an embedding model; anything satisfying these
protocols can be plugged in (ClaudeClient, HTTPEmbeddings, test fakes).
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol


class LanguageModel(Protocol):
    """Protocol for prompt-completion models (summarization, merge decisions)."""

    @abstractmethod
    async def invoke(self, prompt: str) -> str:
        """Complete a single-prompt request.

        Args:
            prompt: Full prompt text

        Returns:
            Completion text
        """
        ...


class ChatModel(Protocol):
    """Protocol for the generation model that answers the user."""

    @abstractmethod
    async def generate(self, messages: list[dict], system: str | None = None) -> str:
        """Generate a reply for a message history.

        Args:
            messages: Ordered {"role", "content"} messages
            system: Optional system prompt

        Returns:
            Completion text
        """
        ...


class Embeddings(Protocol):
    """Protocol for embedding models."""

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        ...

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of documents, preserving order."""
        ...
