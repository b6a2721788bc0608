"""Turn orchestrator for reflective memory management.

The host agent loop calls three hooks per turn and one at session end:

1. on_turn_start: load (or initialize) reranker weights, count the
   session, and check whether buffered dialogue should be reflected on
2. on_before_generate: retrieve top_k memories for the last user
   message, rerank and select top_m, and return the messages to send to
   the generator with the memory block appended
3. on_after_generate: read citations from the completion, turn them into
   a gradient sample, accumulate (applying an update on a full batch),
   and append the turn to the reflection buffer
4. end_session: apply any pending gradients and drop the session

Failures in the learning and persistence path are logged and the turn
continues with unmodified weights.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import numpy as np

from rmm.agents.session import SessionArena, SessionContext
from rmm.ai.embeddings import EmbeddingValidator
from rmm.ai.prompts import CITATION_SYSTEM_PROMPT
from rmm.config import ConfigurationError, RMMConfig
from rmm.db.kv import RMMStateStore
from rmm.learning.accumulator import AccumulatorOutcome, GradientAccumulator
from rmm.learning.citations import build_citation_records, citation_rewards, extract_citations
from rmm.learning.gradients import build_gradient_sample
from rmm.learning.reranker import rerank_memories
from rmm.learning.types import RerankerConfig, RerankerState
from rmm.memory.formatting import format_memory_block
from rmm.memory.messages import extract_last_human_message, is_human_message
from rmm.memory.vectorstore import find_similar_memories
from rmm.monitoring.rerank_monitor import RerankMonitor
from rmm.reflection.engine import ReflectionEngine
from rmm.reflection.scheduler import ReflectionScheduler

if TYPE_CHECKING:
    from rmm.ai.protocols import Embeddings, LanguageModel
    from rmm.db.store import BaseStore
    from rmm.memory.types import RetrievedMemory
    from rmm.memory.vectorstore import VectorStore

logger = logging.getLogger(__name__)


@dataclass
class TurnState:
    """Explicit per-turn state passed between the hooks.

    The hooks return updated copies; messages is never modified in place.
    """

    user_id: str
    messages: list[Any] = field(default_factory=list)
    session_id: str | None = None
    turn_index: int = 0
    selected_memory_ids: list[str] = field(default_factory=list)


class RMMOrchestrator:
    """Runs retrieval, reranking, learning and reflection around a host's turns."""

    def __init__(
        self,
        store: BaseStore,
        vector_store: VectorStore,
        embeddings: Embeddings | None = None,
        summarizer: LanguageModel | None = None,
        config: RMMConfig | None = None,
        rng: np.random.Generator | None = None,
        monitor: RerankMonitor | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            store: Namespaced key-value store for per-user state
            vector_store: Long-term memory store
            embeddings: Embedding model (enables reranking and learning)
            summarizer: Model for memory extraction and merge decisions
                (enables prospective reflection)
            config: Engine configuration (defaults if omitted)
            rng: Generator for sampling and weight initialization
            monitor: Citation outcome monitor (a fresh one if omitted)
            sleep: Awaitable sleep used for reflection retry backoff

        Raises:
            ConfigurationError: If embeddings and embedding_dimension are not
                supplied together, or a config value is invalid
        """
        self.config = (config or RMMConfig()).validate()
        if (embeddings is None) != (self.config.embedding_dimension is None):
            raise ConfigurationError(
                "embeddings and embedding_dimension must be provided together"
            )

        self.vector_store = vector_store
        self.embeddings = (
            EmbeddingValidator(embeddings, self.config.embedding_dimension) if embeddings else None
        )
        self.summarizer = summarizer
        self.rng = rng if rng is not None else np.random.default_rng()
        self.monitor = monitor or RerankMonitor()

        self.state_store = RMMStateStore(store, root=self.config.namespace_root)
        self.accumulator = GradientAccumulator(
            self.state_store,
            batch_size=self.config.batch_size,
            clip_threshold=self.config.clip_threshold,
        )
        self.sessions = SessionArena()

        self.scheduler: ReflectionScheduler | None = None
        if summarizer is not None and self.embeddings is not None:
            engine = ReflectionEngine(
                summarizer,
                self.embeddings,
                vector_store,
                top_k=self.config.similarity_top_k,
            )
            self.scheduler = ReflectionScheduler(
                self.state_store, engine, self.config.reflection, sleep=sleep
            )

    @property
    def learning_enabled(self) -> bool:
        return self.embeddings is not None

    @property
    def system_prompt(self) -> str:
        """Citation instructions the host should pass to its generator."""
        return CITATION_SYSTEM_PROMPT

    # Hooks

    async def on_turn_start(self, state: TurnState) -> TurnState:
        """Prepare a user's session for a new turn.

        Args:
            state: Incoming turn state

        Returns:
            State carrying the session id and turn index
        """
        context = self.sessions.get_or_create(state.user_id, state.session_id or self.config.session_id)

        if self.learning_enabled and context.reranker_state is None:
            context.reranker_state = await self._load_reranker_state(state.user_id)

        if not context.session_counted:
            try:
                metadata = await self.state_store.increment_session_count(
                    state.user_id, self.config.config_hash()
                )
                logger.debug(f"Session {metadata.session_count} for {state.user_id}")
            except Exception as e:
                logger.warning(f"Failed to update session metadata for {state.user_id}: {e}")
            context.session_counted = True

        if self.scheduler is not None:
            try:
                job = await self.scheduler.maybe_trigger(state.user_id, session_id=context.session_id)
                if job is not None:
                    context.track_reflection_job(job)
            except Exception as e:
                logger.warning(f"Reflection check failed for {state.user_id}, continuing: {e}")

        return replace(state, session_id=context.session_id, turn_index=context.turn_index)

    async def on_before_generate(self, state: TurnState) -> tuple[TurnState, list[Any]]:
        """Retrieve and select memories for the generator.

        Args:
            state: Turn state with the conversation so far

        Returns:
            (updated state, messages for the generator). The second element
            is a new list: the caller's history followed by one user message
            holding the <memories> block, or a plain copy when no memories
            were selected.
        """
        context = self.sessions.get_or_create(state.user_id, state.session_id or self.config.session_id)
        context.reset_turn()
        messages = list(state.messages)

        query = extract_last_human_message(messages)
        if not query:
            return replace(state, selected_memory_ids=[]), messages

        retrieved = await find_similar_memories(self.vector_store, query, self.config.top_k)
        if not retrieved:
            return replace(state, selected_memory_ids=[]), messages

        selected = await self._select_memories(context, query, retrieved)
        if not selected:
            return replace(state, selected_memory_ids=[]), messages

        messages.append({"role": "user", "content": format_memory_block(selected)})
        logger.debug(f"Injected {len(selected)}/{len(retrieved)} memories for {state.user_id}")
        return replace(state, selected_memory_ids=[m.id for m in selected]), messages

    async def on_after_generate(self, state: TurnState, completion: str) -> TurnState:
        """Learn from the completion's citations and buffer the turn.

        Args:
            state: Turn state returned by on_before_generate
            completion: Generator output

        Returns:
            State advanced to the next turn index
        """
        context = self.sessions.get(state.user_id)
        if context is None:
            logger.warning(f"No active session for {state.user_id}, skipping learning")
            return state

        if context.rerank is not None and context.reranker_state is not None:
            try:
                await self._learn_from_citations(context, completion)
            except Exception as e:
                logger.warning(f"Reranker update failed for {state.user_id}, weights unchanged: {e}")

        if self.scheduler is not None:
            turn_messages = self._turn_messages(state.messages, completion)
            try:
                await self.scheduler.append_to_buffer(state.user_id, turn_messages)
            except Exception as e:
                logger.warning(f"Failed to buffer turn for {state.user_id}: {e}")

        context.turn_index += 1
        return replace(state, turn_index=context.turn_index)

    async def end_session(self, user_id: str) -> AccumulatorOutcome | None:
        """Apply pending gradients and close the user's session.

        Returns:
            The flush outcome, or None if there was nothing to flush
        """
        context = self.sessions.get(user_id)
        if context is None:
            return None

        outcome = None
        if context.reranker_state is not None:
            try:
                outcome = await self.accumulator.flush(user_id, context.reranker_state)
            except Exception as e:
                logger.warning(f"Session-end flush failed for {user_id}: {e}")

        self.sessions.close(user_id)
        return outcome

    async def close(self) -> None:
        """Flush every open session and stop background reflection."""
        for context in list(self.sessions.close_all()):
            if context.reranker_state is not None:
                try:
                    await self.accumulator.flush(context.user_id, context.reranker_state)
                except Exception as e:
                    logger.warning(f"Flush on close failed for {context.user_id}: {e}")
        if self.scheduler is not None:
            await self.scheduler.shutdown()

    # Internals

    async def _load_reranker_state(self, user_id: str) -> RerankerState:
        """Stored weights with the current hyper-parameters, or fresh ones."""
        reranker_config = RerankerConfig.from_rmm_config(self.config)
        stored = await self.state_store.load_weights(user_id, expected_dimension=self.config.dimension)
        if stored is not None:
            return RerankerState(weights=stored.weights, config=reranker_config)

        # Persisted by the first flush, never here; a failed load reads as absent.
        logger.info(
            f"Initializing reranker weights in memory for {user_id} (dimension {self.config.dimension})"
        )
        return RerankerState.initialize(self.config.dimension, reranker_config, self.rng)

    async def _select_memories(
        self,
        context: SessionContext,
        query: str,
        retrieved: list[RetrievedMemory],
    ) -> list[RetrievedMemory]:
        """Rerank when learning is enabled; otherwise keep retrieval order."""
        context.retrieved = retrieved
        if not self.learning_enabled or context.reranker_state is None:
            return retrieved[: self.config.top_m]

        start = time.perf_counter()
        try:
            await self._populate_embeddings(retrieved)
            query_embedding = await self.embeddings.embed_query(query)
            result = rerank_memories(query_embedding, retrieved, context.reranker_state, self.rng)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Reranking failed for {context.user_id}, using retrieval order: {e}")
            return retrieved[: self.config.top_m]

        context.rerank = result
        context.retrieved = result.scored_memories
        context.rerank_latency_ms = (time.perf_counter() - start) * 1000
        return result.selected_memories

    async def _populate_embeddings(self, memories: list[RetrievedMemory]) -> None:
        """Embed summaries for memories the vector store returned without vectors."""
        missing = [m for m in memories if not m.embedding]
        if not missing:
            return
        try:
            vectors = await self.embeddings.embed_documents([m.topic_summary for m in missing])
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Failed to embed memories, reranking will use relevance scores: {e}")
            return
        for memory, vector in zip(missing, vectors):
            memory.embedding = list(vector)

    async def _learn_from_citations(self, context: SessionContext, completion: str) -> None:
        result = context.rerank
        citations = extract_citations(completion)
        records = build_citation_records(
            citations, result.scored_memories, result.selected_indices, context.turn_index
        )
        context.citations = records

        flushed = False
        if records:
            sample = build_gradient_sample(
                result.query_embedding,
                result.adapted_query,
                result.memory_embeddings,
                result.adapted_memory_embeddings,
                result.probabilities,
                result.selected_indices,
                citation_rewards(records),
            )
            outcome = await self.accumulator.record_sample(
                context.user_id, sample, context.reranker_state
            )
            context.reranker_state = outcome.reranker_state
            flushed = outcome.flushed

        self.monitor.record_turn(
            user_id=context.user_id,
            candidates=len(result.scored_memories),
            selected=len(result.selected_indices),
            cited=sum(1 for r in records if r.cited),
            citation_type=citations.type,
            latency_ms=context.rerank_latency_ms,
            flushed=flushed,
        )

    @staticmethod
    def _turn_messages(messages: list[Any], completion: str) -> list[Any]:
        """The turn's user message followed by the completion."""
        turn: list[Any] = []
        for message in reversed(messages):
            if is_human_message(message):
                turn.append(message)
                break
        turn.append({"role": "assistant", "content": completion})
        return turn
