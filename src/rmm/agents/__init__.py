"""Turn orchestration for hosts that drive their own agent loop.

Usage:
    from rmm.agents import RMMOrchestrator, TurnState
    from rmm.db import InMemoryStore
    from rmm.memory import InMemoryVectorStore

    orchestrator = RMMOrchestrator(
        store=InMemoryStore(),
        vector_store=InMemoryVectorStore(embeddings),
        embeddings=embeddings,
        summarizer=claude,
        config=RMMConfig(embedding_dimension=1536),
    )

    state = await orchestrator.on_turn_start(TurnState(user_id="u1", messages=history))
    state, messages = await orchestrator.on_before_generate(state)
    completion = await claude.generate(messages, system=orchestrator.system_prompt)
    state = await orchestrator.on_after_generate(state, completion)

    await orchestrator.end_session("u1")
"""

from rmm.agents.session import SessionArena, SessionContext
from rmm.agents.orchestrator import RMMOrchestrator, TurnState

__all__ = [
    "RMMOrchestrator",
    "SessionArena",
    "SessionContext",
    "TurnState",
]
