"""Reranker, citation and gradient state types.

Matrices are held as numpy arrays in memory and serialized as nested
lists, so every type here round-trips through JSON storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from rmm.linalg.matrix import (
    DimensionMismatchError,
    as_matrix,
    as_vector,
    initialize_matrix,
    zeros_matrix,
)
from rmm.memory.types import now_ms

if TYPE_CHECKING:
    from rmm.config import RMMConfig


@dataclass
class RerankerConfig:
    """Hyper-parameters for reranking and REINFORCE updates.

    top_m <= top_k is expected but not enforced here; RMMConfig.validate
    caps it before a state is created.
    """

    top_k: int = 20
    top_m: int = 5
    temperature: float = 0.5
    learning_rate: float = 0.001
    baseline: float = 0.5

    def __post_init__(self) -> None:
        """Validate positive temperature and learning rate."""
        if self.temperature <= 0:
            raise ValueError(f"temperature must be positive, got {self.temperature}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")

    @classmethod
    def from_rmm_config(cls, config: RMMConfig) -> RerankerConfig:
        return cls(
            top_k=config.top_k,
            top_m=config.top_m,
            temperature=config.temperature,
            learning_rate=config.learning_rate,
            baseline=config.baseline,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "top_k": self.top_k,
            "top_m": self.top_m,
            "temperature": self.temperature,
            "learning_rate": self.learning_rate,
            "baseline": self.baseline,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RerankerConfig:
        """Deserialize from dictionary."""
        return cls(
            top_k=int(data["top_k"]),
            top_m=int(data["top_m"]),
            temperature=float(data["temperature"]),
            learning_rate=float(data["learning_rate"]),
            baseline=float(data["baseline"]),
        )


@dataclass
class RerankerWeights:
    """The two learnable D x D transforms (W_q and W_m)."""

    query_transform: np.ndarray
    memory_transform: np.ndarray

    def __post_init__(self) -> None:
        """Coerce to float arrays and check both are square with equal size."""
        self.query_transform = as_matrix(self.query_transform)
        self.memory_transform = as_matrix(self.memory_transform)

        q_rows, q_cols = self.query_transform.shape
        m_rows, m_cols = self.memory_transform.shape
        if q_rows != q_cols or m_rows != m_cols:
            raise DimensionMismatchError(
                f"Transforms must be square: query {self.query_transform.shape}, "
                f"memory {self.memory_transform.shape}"
            )
        if q_rows != m_rows:
            raise DimensionMismatchError(
                f"Transform dimensions must match: query {q_rows}, memory {m_rows}"
            )

    @property
    def dimension(self) -> int:
        return int(self.query_transform.shape[0])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "query_transform": self.query_transform.tolist(),
            "memory_transform": self.memory_transform.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RerankerWeights:
        """Deserialize from dictionary."""
        return cls(
            query_transform=np.asarray(data["query_transform"], dtype=np.float64),
            memory_transform=np.asarray(data["memory_transform"], dtype=np.float64),
        )


@dataclass
class RerankerState:
    """Per-user reranker: learned weights plus the config they were trained with."""

    weights: RerankerWeights
    config: RerankerConfig = field(default_factory=RerankerConfig)

    @property
    def dimension(self) -> int:
        return self.weights.dimension

    @classmethod
    def initialize(
        cls,
        dimension: int,
        config: RerankerConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> RerankerState:
        """Create a fresh state with N(0, 0.01) transforms.

        Args:
            dimension: Embedding dimension D
            config: Reranker hyper-parameters (defaults if omitted)
            rng: Optional generator for reproducible initialization

        Returns:
            New RerankerState
        """
        return cls(
            weights=RerankerWeights(
                query_transform=initialize_matrix(dimension, dimension, 0.0, 0.01, rng),
                memory_transform=initialize_matrix(dimension, dimension, 0.0, 0.01, rng),
            ),
            config=config or RerankerConfig(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"weights": self.weights.to_dict(), "config": self.config.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RerankerState:
        """Deserialize from dictionary."""
        return cls(
            weights=RerankerWeights.from_dict(data["weights"]),
            config=RerankerConfig.from_dict(data["config"]),
        )


@dataclass
class CitationRecord:
    """Reward bookkeeping for one retrieved memory in one turn."""

    memory_id: str
    cited: bool
    reward: int  # +1 useful, -1 not useful
    turn_index: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "memory_id": self.memory_id,
            "cited": self.cited,
            "reward": self.reward,
            "turn_index": self.turn_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CitationRecord:
        """Deserialize from dictionary."""
        return cls(
            memory_id=data["memory_id"],
            cited=bool(data["cited"]),
            reward=int(data["reward"]),
            turn_index=int(data["turn_index"]),
        )


def _as_rows(values: Any, dim: int) -> np.ndarray:
    """Coerce a list of D-vectors to a (K, D) array, allowing K == 0."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, dim))
    if arr.ndim != 2 or arr.shape[1] != dim:
        raise DimensionMismatchError(
            f"Expected memory embeddings of shape (K, {dim}), got {arr.shape}"
        )
    return arr


@dataclass(frozen=True)
class GradientSample:
    """Snapshot of one turn's reranking decision for exact REINFORCE.

    All per-candidate arrays cover the full K retrieved memories, not just
    the M selected ones.
    """

    query_embedding: np.ndarray
    adapted_query: np.ndarray
    memory_embeddings: np.ndarray  # (K, D)
    adapted_memory_embeddings: np.ndarray  # (K, D)
    sampling_probabilities: np.ndarray  # (K,)
    selected_indices: tuple[int, ...]
    citation_rewards: np.ndarray  # (K,)
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        """Coerce arrays and enforce shape invariants."""
        q = as_vector(self.query_embedding)
        q_adapted = as_vector(self.adapted_query)
        dim = q.shape[0]

        memories = _as_rows(self.memory_embeddings, dim)
        adapted = _as_rows(self.adapted_memory_embeddings, dim)
        probs = np.asarray(self.sampling_probabilities, dtype=np.float64).reshape(-1)
        rewards = np.asarray(self.citation_rewards, dtype=np.float64).reshape(-1)

        if q_adapted.shape[0] != dim:
            raise DimensionMismatchError(
                f"Adapted query has dimension {q_adapted.shape[0]}, expected {dim}"
            )
        k = memories.shape[0]
        if adapted.shape[0] != k or probs.shape[0] != k or rewards.shape[0] != k:
            raise DimensionMismatchError(
                f"Per-candidate lengths differ: memories={k}, adapted={adapted.shape[0]}, "
                f"probabilities={probs.shape[0]}, rewards={rewards.shape[0]}"
            )
        for idx in self.selected_indices:
            if not 0 <= idx < k:
                raise DimensionMismatchError(f"Selected index {idx} out of range for K={k}")

        # frozen dataclass: bypass __setattr__ for normalization
        object.__setattr__(self, "query_embedding", q)
        object.__setattr__(self, "adapted_query", q_adapted)
        object.__setattr__(self, "memory_embeddings", memories)
        object.__setattr__(self, "adapted_memory_embeddings", adapted)
        object.__setattr__(self, "sampling_probabilities", probs)
        object.__setattr__(self, "citation_rewards", rewards)
        object.__setattr__(self, "selected_indices", tuple(int(i) for i in self.selected_indices))

    @property
    def dimension(self) -> int:
        return int(self.query_embedding.shape[0])

    @property
    def num_candidates(self) -> int:
        return int(self.memory_embeddings.shape[0])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "query_embedding": self.query_embedding.tolist(),
            "adapted_query": self.adapted_query.tolist(),
            "memory_embeddings": self.memory_embeddings.tolist(),
            "adapted_memory_embeddings": self.adapted_memory_embeddings.tolist(),
            "sampling_probabilities": self.sampling_probabilities.tolist(),
            "selected_indices": list(self.selected_indices),
            "citation_rewards": self.citation_rewards.tolist(),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GradientSample:
        """Deserialize from dictionary."""
        return cls(
            query_embedding=np.asarray(data["query_embedding"], dtype=np.float64),
            adapted_query=np.asarray(data["adapted_query"], dtype=np.float64),
            memory_embeddings=np.asarray(data["memory_embeddings"], dtype=np.float64),
            adapted_memory_embeddings=np.asarray(
                data["adapted_memory_embeddings"], dtype=np.float64
            ),
            sampling_probabilities=np.asarray(data["sampling_probabilities"], dtype=np.float64),
            selected_indices=tuple(data["selected_indices"]),
            citation_rewards=np.asarray(data["citation_rewards"], dtype=np.float64),
            timestamp=data.get("timestamp") or now_ms(),
        )


class AccumulatorPhase(str, Enum):
    """Gradient accumulator state machine."""

    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class GradientAccumulatorState:
    """Running gradient totals for the current batch of samples."""

    samples: list[GradientSample]
    accumulated_grad_wq: np.ndarray
    accumulated_grad_wm: np.ndarray
    last_batch_index: int = 0
    last_updated: int = field(default_factory=now_ms)
    version: int = 1

    @classmethod
    def empty(cls, dimension: int, last_batch_index: int = 0, version: int = 1) -> GradientAccumulatorState:
        """Create an empty accumulator with zero gradients."""
        return cls(
            samples=[],
            accumulated_grad_wq=zeros_matrix(dimension, dimension),
            accumulated_grad_wm=zeros_matrix(dimension, dimension),
            last_batch_index=last_batch_index,
            version=version,
        )

    @property
    def dimension(self) -> int:
        return int(self.accumulated_grad_wq.shape[0])

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "samples": [s.to_dict() for s in self.samples],
            "accumulated_grad_wq": self.accumulated_grad_wq.tolist(),
            "accumulated_grad_wm": self.accumulated_grad_wm.tolist(),
            "last_batch_index": self.last_batch_index,
            "last_updated": self.last_updated,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GradientAccumulatorState:
        """Deserialize from dictionary."""
        return cls(
            samples=[GradientSample.from_dict(s) for s in data.get("samples", [])],
            accumulated_grad_wq=as_matrix(data["accumulated_grad_wq"]),
            accumulated_grad_wm=as_matrix(data["accumulated_grad_wm"]),
            last_batch_index=int(data.get("last_batch_index", 0)),
            last_updated=data.get("last_updated") or now_ms(),
            version=int(data.get("version", 1)),
        )
