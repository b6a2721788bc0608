"""Batched REINFORCE updates for the reranker.

Gradient samples accumulate per user until batch_size turns have been
seen (or the session ends), then the summed gradient is applied:

    W <- clip_by_norm(W + G, clip_threshold)

Accumulator state is persisted after every mutation so a process restart
mid-batch loses nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rmm.learning.gradients import compute_exact_gradient
from rmm.learning.types import (
    AccumulatorPhase,
    GradientAccumulatorState,
    GradientSample,
    RerankerState,
    RerankerWeights,
)
from rmm.linalg.matrix import DimensionMismatchError, add_matrices, clip_matrix_by_norm

if TYPE_CHECKING:
    from rmm.db.kv import RMMStateStore

logger = logging.getLogger(__name__)


@dataclass
class AccumulatorOutcome:
    """Result of recording a sample or flushing a batch."""

    reranker_state: RerankerState
    accumulator: GradientAccumulatorState
    flushed: bool = False
    weights_saved: bool = True
    phase: AccumulatorPhase = AccumulatorPhase.ACCUMULATING


def apply_accumulated_update(
    state: RerankerState,
    accumulator: GradientAccumulatorState,
    clip_threshold: float,
) -> RerankerState:
    """Apply accumulated gradients to both transforms with norm clipping.

    Args:
        state: Current reranker state (not mutated)
        accumulator: Accumulated gradients for the batch
        clip_threshold: Maximum Frobenius norm for each updated transform

    Returns:
        New RerankerState with updated weights and the same config
    """
    if accumulator.dimension != state.dimension:
        raise DimensionMismatchError(
            f"Accumulator dimension ({accumulator.dimension}) does not match "
            f"reranker dimension ({state.dimension})"
        )

    query_transform = clip_matrix_by_norm(
        add_matrices(state.weights.query_transform, accumulator.accumulated_grad_wq),
        clip_threshold,
    )
    memory_transform = clip_matrix_by_norm(
        add_matrices(state.weights.memory_transform, accumulator.accumulated_grad_wm),
        clip_threshold,
    )
    return RerankerState(
        weights=RerankerWeights(query_transform=query_transform, memory_transform=memory_transform),
        config=state.config,
    )


class GradientAccumulator:
    """Per-user gradient batching and weight updates.

    Assumes one in-flight turn per user; no intra-user locking.
    """

    def __init__(
        self,
        state_store: RMMStateStore,
        batch_size: int = 4,
        clip_threshold: float = 100.0,
    ):
        """Initialize the accumulator.

        Args:
            state_store: Persistence for gradient state and weights
            batch_size: Samples per weight update (paper default 4)
            clip_threshold: Max Frobenius norm of each transform after update
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.state_store = state_store
        self.batch_size = batch_size
        self.clip_threshold = clip_threshold

    async def load(self, user_id: str, dimension: int) -> GradientAccumulatorState:
        """Load the user's accumulator, or create an empty one.

        A stored accumulator of the wrong dimension (e.g. after changing
        embedding models) is discarded.
        """
        state = await self.state_store.load_gradient_state(user_id)
        if state is None:
            return GradientAccumulatorState.empty(dimension)
        if state.dimension != dimension:
            logger.warning(
                f"Discarding gradient state for {user_id}: dimension {state.dimension} != {dimension}"
            )
            return GradientAccumulatorState.empty(dimension, state.last_batch_index, state.version)
        return state

    async def record_sample(
        self,
        user_id: str,
        sample: GradientSample,
        reranker_state: RerankerState,
    ) -> AccumulatorOutcome:
        """Add one turn's gradient to the batch, flushing when full.

        Args:
            user_id: User whose reranker is learning
            sample: Frozen decision with rewards for all K candidates
            reranker_state: Current weights and config

        Returns:
            AccumulatorOutcome with the (possibly updated) reranker state
        """
        accumulator = await self.load(user_id, reranker_state.dimension)

        grad_wq, grad_wm = compute_exact_gradient(sample, reranker_state.config)
        accumulator.samples.append(sample)
        accumulator.accumulated_grad_wq = accumulator.accumulated_grad_wq + grad_wq
        accumulator.accumulated_grad_wm = accumulator.accumulated_grad_wm + grad_wm

        await self.state_store.save_gradient_state(user_id, accumulator)
        logger.debug(
            f"Accumulated sample {len(accumulator.samples)}/{self.batch_size} for {user_id}"
        )

        if len(accumulator.samples) >= self.batch_size:
            return await self._flush(user_id, accumulator, reranker_state, reason="batch full")

        return AccumulatorOutcome(reranker_state=reranker_state, accumulator=accumulator)

    async def flush(
        self,
        user_id: str,
        reranker_state: RerankerState,
        reason: str = "session end",
    ) -> AccumulatorOutcome:
        """Apply any pending samples now (e.g. at session end)."""
        accumulator = await self.load(user_id, reranker_state.dimension)
        if not accumulator.samples:
            return AccumulatorOutcome(reranker_state=reranker_state, accumulator=accumulator)
        return await self._flush(user_id, accumulator, reranker_state, reason=reason)

    async def _flush(
        self,
        user_id: str,
        accumulator: GradientAccumulatorState,
        reranker_state: RerankerState,
        reason: str,
    ) -> AccumulatorOutcome:
        n_samples = len(accumulator.samples)
        updated = apply_accumulated_update(reranker_state, accumulator, self.clip_threshold)

        weights_saved = await self.state_store.save_weights(user_id, updated)
        if not weights_saved:
            logger.warning(f"Failed to persist updated reranker weights for {user_id}")

        reset = GradientAccumulatorState.empty(
            reranker_state.dimension,
            last_batch_index=accumulator.last_batch_index + 1,
            version=accumulator.version + 1,
        )
        await self.state_store.save_gradient_state(user_id, reset)

        logger.info(
            f"Applied reranker update for {user_id} from {n_samples} samples "
            f"({reason}), batch {reset.last_batch_index}"
        )
        return AccumulatorOutcome(
            reranker_state=updated,
            accumulator=reset,
            flushed=True,
            weights_saved=weights_saved,
            phase=AccumulatorPhase.FLUSHING,
        )
