"""Reranking quality monitoring."""

from rmm.monitoring.rerank_monitor import RerankMetrics, RerankMonitor, TurnLog

__all__ = [
    "RerankMetrics",
    "RerankMonitor",
    "TurnLog",
]
