"""Per-user session state for the turn hooks.

A SessionContext carries what one turn's hooks hand to the next (the
reranking decision, citations, the learned weights in use) so that none
of it lives in module-level state. The orchestrator owns a SessionArena
and closes contexts explicitly when a session ends.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rmm.learning.reranker import RerankResult
    from rmm.learning.types import CitationRecord, RerankerState
    from rmm.memory.types import RetrievedMemory
    from rmm.reflection.scheduler import ReflectionJob


@dataclass
class SessionContext:
    """State for one user's active session."""

    user_id: str
    session_id: str
    started_at: datetime = field(default_factory=datetime.now)

    # Learned weights in use for this session
    reranker_state: RerankerState | None = None
    session_counted: bool = False

    # Current turn
    turn_index: int = 0
    retrieved: list[RetrievedMemory] = field(default_factory=list)
    rerank: RerankResult | None = None
    rerank_latency_ms: float = 0.0
    citations: list[CitationRecord] = field(default_factory=list)

    # Reflection jobs queued during this session
    reflection_jobs: list[ReflectionJob] = field(default_factory=list)

    def reset_turn(self) -> None:
        """Forget the previous turn's retrieval and citations."""
        self.retrieved = []
        self.rerank = None
        self.rerank_latency_ms = 0.0
        self.citations = []

    def prune_reflection_jobs(self) -> int:
        """Drop jobs whose outcome is already known.

        Returns:
            Number of jobs removed
        """
        pending = [job for job in self.reflection_jobs if not job.future.done()]
        removed = len(self.reflection_jobs) - len(pending)
        self.reflection_jobs = pending
        return removed

    def track_reflection_job(self, job: ReflectionJob) -> None:
        """Keep a handle on a queued job, forgetting finished ones."""
        self.prune_reflection_jobs()
        self.reflection_jobs.append(job)

    def to_dict(self) -> dict[str, Any]:
        """Serialize a summary of the session."""
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "turn_index": self.turn_index,
            "retrieved": len(self.retrieved),
            "selected": len(self.rerank.selected_indices) if self.rerank else 0,
            "citations": [c.to_dict() for c in self.citations],
            "reflection_jobs": len(self.reflection_jobs),
        }


class SessionArena:
    """Keyed store of live SessionContexts, one per user."""

    def __init__(self):
        self._sessions: dict[str, SessionContext] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> SessionContext | None:
        return self._sessions.get(user_id)

    def get_or_create(self, user_id: str, session_id: str | None = None) -> SessionContext:
        """Return the user's context, opening a new session if needed.

        Args:
            user_id: User the session belongs to
            session_id: Id for a new session (random if omitted)
        """
        context = self._sessions.get(user_id)
        if context is None:
            context = SessionContext(user_id=user_id, session_id=session_id or str(uuid.uuid4()))
            self._sessions[user_id] = context
        return context

    def close(self, user_id: str) -> SessionContext | None:
        """Remove and return the user's context."""
        return self._sessions.pop(user_id, None)

    def close_all(self) -> list[SessionContext]:
        contexts = list(self._sessions.values())
        self._sessions.clear()
        return contexts
