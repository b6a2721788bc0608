"""Reranking quality monitoring.

Tracks how often the generator actually cites the memories the reranker
selected, so a reranker that stops learning (or a generator that stops
following the citation format) shows up in the numbers.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from rmm.learning.citations import CitationType

logger = logging.getLogger(__name__)


@dataclass
class TurnLog:
    """Log entry for one reranked turn."""

    timestamp: datetime
    user_id: str
    candidates: int
    selected: int
    cited: int
    citation_type: CitationType
    latency_ms: float
    flushed: bool = False


@dataclass
class RerankMetrics:
    """Aggregated reranking metrics."""

    turn_count: int
    citation_rate: float  # Cited / selected, over turns with a parseable response
    no_cite_rate: float
    malformed_rate: float
    avg_candidates: float
    avg_selected: float
    avg_latency_ms: float
    updates_applied: int
    per_user_turns: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "turn_count": self.turn_count,
            "citation_rate": self.citation_rate,
            "no_cite_rate": self.no_cite_rate,
            "malformed_rate": self.malformed_rate,
            "avg_candidates": self.avg_candidates,
            "avg_selected": self.avg_selected,
            "avg_latency_ms": self.avg_latency_ms,
            "updates_applied": self.updates_applied,
            "per_user_turns": self.per_user_turns,
        }


class RerankMonitor:
    """In-process monitor of citation outcomes.

    Used to detect:
    - Generators ignoring the citation format (high malformed rate)
    - Selections the generator never uses (low citation rate)
    """

    def __init__(self, max_logs: int = 1000):
        """Initialize the monitor.

        Args:
            max_logs: Most recent turns kept in memory
        """
        self._turn_logs: list[TurnLog] = []
        self._max_logs = max_logs

    def __len__(self) -> int:
        return len(self._turn_logs)

    def record_turn(
        self,
        user_id: str,
        candidates: int,
        selected: int,
        cited: int,
        citation_type: CitationType,
        latency_ms: float = 0.0,
        flushed: bool = False,
    ) -> TurnLog:
        """Record one turn's reranking outcome.

        Args:
            user_id: User the turn belongs to
            candidates: K, memories retrieved
            selected: Memories shown to the generator
            cited: Selected memories the generator cited
            citation_type: How the response was classified
            latency_ms: Time spent reranking
            flushed: Whether this turn completed a weight update
        """
        entry = TurnLog(
            timestamp=datetime.now(),
            user_id=user_id,
            candidates=candidates,
            selected=selected,
            cited=cited,
            citation_type=citation_type,
            latency_ms=latency_ms,
            flushed=flushed,
        )
        self._turn_logs.append(entry)

        if len(self._turn_logs) > self._max_logs:
            self._turn_logs = self._turn_logs[-self._max_logs:]

        if citation_type == CitationType.MALFORMED:
            logger.debug(f"Malformed citations for {user_id} ({selected} memories shown)")
        return entry

    def get_metrics(self, user_id: str | None = None) -> RerankMetrics:
        """Aggregate the recorded turns.

        Args:
            user_id: Restrict to one user (all users if omitted)

        Returns:
            RerankMetrics over the retained window
        """
        logs = [log for log in self._turn_logs if user_id is None or log.user_id == user_id]
        if not logs:
            return RerankMetrics(
                turn_count=0,
                citation_rate=0.0,
                no_cite_rate=0.0,
                malformed_rate=0.0,
                avg_candidates=0.0,
                avg_selected=0.0,
                avg_latency_ms=0.0,
                updates_applied=0,
            )

        count = len(logs)
        types = Counter(log.citation_type for log in logs)
        parseable = [log for log in logs if log.citation_type != CitationType.MALFORMED]
        shown = sum(log.selected for log in parseable)
        cited = sum(log.cited for log in parseable)

        return RerankMetrics(
            turn_count=count,
            citation_rate=cited / shown if shown else 0.0,
            no_cite_rate=types[CitationType.NO_CITE] / count,
            malformed_rate=types[CitationType.MALFORMED] / count,
            avg_candidates=sum(log.candidates for log in logs) / count,
            avg_selected=sum(log.selected for log in logs) / count,
            avg_latency_ms=sum(log.latency_ms for log in logs) / count,
            updates_applied=sum(1 for log in logs if log.flushed),
            per_user_turns=dict(Counter(log.user_id for log in logs)),
        )

    def check_quality_alert(
        self,
        min_citation_rate: float = 0.2,
        max_malformed_rate: float = 0.3,
        min_turns: int = 10,
    ) -> list[str]:
        """Check for quality issues that need attention.

        Returns:
            Alert messages (empty if no issues or too few turns)
        """
        metrics = self.get_metrics()
        alerts = []
        if metrics.turn_count < min_turns:
            return alerts

        if metrics.citation_rate < min_citation_rate:
            alerts.append(
                f"Low citation rate: {metrics.citation_rate:.1%} "
                f"(threshold: {min_citation_rate:.1%})"
            )
        if metrics.malformed_rate > max_malformed_rate:
            alerts.append(
                f"High malformed citation rate: {metrics.malformed_rate:.1%} "
                f"(threshold: {max_malformed_rate:.1%})"
            )
        return alerts
