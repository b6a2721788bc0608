"""Reflective memory management for long-running conversational agents.

Two feedback loops around a host's generation step:
- Retrospective reflection: a learned reranker picks which retrieved
  memories the generator sees and learns from which ones it cites
- Prospective reflection: buffered dialogue is periodically distilled
  into topic memories and merged into the long-term store

Most hosts only need the orchestrator:

    from rmm import RMMConfig, RMMOrchestrator, TurnState
"""

from rmm.config import ConfigurationError, ReflectionConfig, ReflectionMode, RMMConfig
from rmm.agents.orchestrator import RMMOrchestrator, TurnState

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ReflectionConfig",
    "ReflectionMode",
    "RMMConfig",
    "RMMOrchestrator",
    "TurnState",
]
