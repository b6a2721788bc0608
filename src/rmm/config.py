"""Configuration for the reflective memory management engine.

Two layers:
- ReflectionConfig: when prospective reflection (memory extraction) runs
- RMMConfig: reranker hyper-parameters, batching and storage settings

Both accept camelCase or snake_case keys in from_dict so configs written
for other hosts can be loaded unchanged.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_DIMENSION = 1536


class ConfigurationError(Exception):
    """Invalid configuration or embedding dimension mismatch."""

    pass


class ReflectionMode(str, Enum):
    """How the two minimum thresholds combine."""

    STRICT = "strict"  # Both min_turns AND min_inactivity_ms
    RELAXED = "relaxed"  # Either min_turns OR min_inactivity_ms


def _pick(data: dict[str, Any], snake: str, camel: str, default: Any) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


@dataclass
class ReflectionConfig:
    """Thresholds for triggering prospective reflection.

    Max thresholds force reflection regardless of mode. Min thresholds are
    combined according to mode.
    """

    min_turns: int = 2
    max_turns: int = 50
    min_inactivity_ms: int = 600_000  # 10 minutes
    max_inactivity_ms: int = 1_800_000  # 30 minutes
    mode: ReflectionMode = ReflectionMode.STRICT
    max_retries: int = 3
    retry_delay_ms: int = 1000

    def __post_init__(self) -> None:
        """Validate threshold ordering."""
        if isinstance(self.mode, str) and not isinstance(self.mode, ReflectionMode):
            try:
                self.mode = ReflectionMode(self.mode)
            except ValueError:
                raise ConfigurationError(f"Unknown reflection mode: {self.mode!r}")

        if self.min_turns < 0:
            raise ConfigurationError(f"min_turns must be non-negative, got {self.min_turns}")
        if self.max_turns < self.min_turns:
            raise ConfigurationError(
                f"max_turns ({self.max_turns}) must be >= min_turns ({self.min_turns})"
            )
        if self.min_inactivity_ms < 0:
            raise ConfigurationError("min_inactivity_ms must be non-negative")
        if self.max_inactivity_ms < self.min_inactivity_ms:
            raise ConfigurationError(
                f"max_inactivity_ms ({self.max_inactivity_ms}) must be >= "
                f"min_inactivity_ms ({self.min_inactivity_ms})"
            )
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "min_turns": self.min_turns,
            "max_turns": self.max_turns,
            "min_inactivity_ms": self.min_inactivity_ms,
            "max_inactivity_ms": self.max_inactivity_ms,
            "mode": self.mode.value,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReflectionConfig:
        """Deserialize from dictionary."""
        defaults = cls()
        return cls(
            min_turns=_pick(data, "min_turns", "minTurns", defaults.min_turns),
            max_turns=_pick(data, "max_turns", "maxTurns", defaults.max_turns),
            min_inactivity_ms=_pick(
                data, "min_inactivity_ms", "minInactivityMs", defaults.min_inactivity_ms
            ),
            max_inactivity_ms=_pick(
                data, "max_inactivity_ms", "maxInactivityMs", defaults.max_inactivity_ms
            ),
            mode=ReflectionMode(_pick(data, "mode", "mode", defaults.mode.value)),
            max_retries=_pick(data, "max_retries", "maxRetries", defaults.max_retries),
            retry_delay_ms=_pick(data, "retry_delay_ms", "retryDelayMs", defaults.retry_delay_ms),
        )


@dataclass
class RMMConfig:
    """Top-level engine configuration.

    Reranker defaults follow the RMM paper (ACL 2025): K=20 candidates,
    M=5 selected, temperature 0.5, learning rate 1e-3, baseline 0.5 and
    batches of 4 turns per weight update.
    """

    top_k: int = 20
    top_m: int = 5
    temperature: float = 0.5
    learning_rate: float = 0.001
    baseline: float = 0.5
    batch_size: int = 4
    clip_threshold: float = 100.0
    embedding_dimension: int | None = None
    session_id: str | None = None
    namespace_root: str = "rmm"
    similarity_top_k: int = 5  # Candidates shown to the Merge/Add decision
    reflection: ReflectionConfig = field(default_factory=ReflectionConfig)

    @property
    def dimension(self) -> int:
        """Embedding dimension, falling back to the OpenAI ada-002 size."""
        return self.embedding_dimension or DEFAULT_EMBEDDING_DIMENSION

    def validate(self) -> RMMConfig:
        """Validate values, capping top_m at top_k.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If a value is out of range
        """
        if self.top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {self.top_k}")
        if self.top_m < 1:
            raise ConfigurationError(f"top_m must be at least 1, got {self.top_m}")
        if self.temperature <= 0:
            raise ConfigurationError(f"temperature must be positive, got {self.temperature}")
        if self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.clip_threshold <= 0:
            raise ConfigurationError(f"clip_threshold must be positive, got {self.clip_threshold}")
        if self.embedding_dimension is not None and self.embedding_dimension < 1:
            raise ConfigurationError(
                f"embedding_dimension must be positive, got {self.embedding_dimension}"
            )

        if self.top_m > self.top_k:
            logger.warning(f"top_m ({self.top_m}) exceeds top_k ({self.top_k}), capping to top_k")
            self.top_m = self.top_k

        return self

    def config_hash(self) -> str:
        """Short fingerprint of the hyper-parameters that shape learned weights."""
        payload = json.dumps(
            {
                "top_k": self.top_k,
                "top_m": self.top_m,
                "temperature": self.temperature,
                "learning_rate": self.learning_rate,
                "baseline": self.baseline,
                "batch_size": self.batch_size,
                "clip_threshold": self.clip_threshold,
                "dimension": self.dimension,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "top_k": self.top_k,
            "top_m": self.top_m,
            "temperature": self.temperature,
            "learning_rate": self.learning_rate,
            "baseline": self.baseline,
            "batch_size": self.batch_size,
            "clip_threshold": self.clip_threshold,
            "embedding_dimension": self.embedding_dimension,
            "session_id": self.session_id,
            "namespace_root": self.namespace_root,
            "similarity_top_k": self.similarity_top_k,
            "reflection": self.reflection.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RMMConfig:
        """Deserialize from dictionary and validate."""
        defaults = cls()
        reflection_data = _pick(data, "reflection", "reflectionConfig", None)
        config = cls(
            top_k=_pick(data, "top_k", "topK", defaults.top_k),
            top_m=_pick(data, "top_m", "topM", defaults.top_m),
            temperature=_pick(data, "temperature", "temperature", defaults.temperature),
            learning_rate=_pick(data, "learning_rate", "learningRate", defaults.learning_rate),
            baseline=_pick(data, "baseline", "baseline", defaults.baseline),
            batch_size=_pick(data, "batch_size", "batchSize", defaults.batch_size),
            clip_threshold=_pick(data, "clip_threshold", "clipThreshold", defaults.clip_threshold),
            embedding_dimension=_pick(
                data, "embedding_dimension", "embeddingDimension", defaults.embedding_dimension
            ),
            session_id=_pick(data, "session_id", "sessionId", defaults.session_id),
            namespace_root=_pick(data, "namespace_root", "namespaceRoot", defaults.namespace_root),
            similarity_top_k=_pick(
                data, "similarity_top_k", "similarityTopK", defaults.similarity_top_k
            ),
            reflection=ReflectionConfig.from_dict(reflection_data)
            if reflection_data
            else ReflectionConfig(),
        )
        return config.validate()
