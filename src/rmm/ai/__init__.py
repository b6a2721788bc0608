"""Language model and embedding integrations."""

from rmm.ai.claude import ClaudeClient, ClaudeError, ClaudeRateLimitError
from rmm.ai.embeddings import EmbeddingValidator, HTTPEmbeddings
from rmm.ai.protocols import ChatModel, Embeddings, LanguageModel

__all__ = [
    "ChatModel",
    "ClaudeClient",
    "ClaudeError",
    "ClaudeRateLimitError",
    "EmbeddingValidator",
    "Embeddings",
    "HTTPEmbeddings",
    "LanguageModel",
]
