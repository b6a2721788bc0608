"""Reflection module: prospective reflection on buffered dialogue.

The scheduler decides when a user's buffered messages are turned into
long-term memories:
- Append each turn to a per-user live buffer
- Trigger on human-message count and inactivity (strict or relaxed)
- Snapshot the buffer into staging and extract in the background
- Retry failed extractions with exponential backoff, then drop
- Resume a staged buffer whose job did not survive a restart

Usage:
    from rmm.reflection import ReflectionEngine, ReflectionScheduler

    engine = ReflectionEngine(summarizer, embeddings, vector_store)
    scheduler = ReflectionScheduler(state_store, engine, config.reflection)

    job = await scheduler.maybe_trigger(user_id, session_id=session_id)
    ...
    await scheduler.append_to_buffer(user_id, [user_message, ai_message])

    if job:
        outcome = await job.wait()
"""

from rmm.reflection.triggers import check_reflection_triggers
from rmm.reflection.engine import ReflectionEngine, ReflectionError, ReflectionResult
from rmm.reflection.scheduler import (
    ReflectionJob,
    ReflectionOutcome,
    ReflectionScheduler,
    ReflectionStatus,
)

__all__ = [
    "check_reflection_triggers",
    "ReflectionEngine",
    "ReflectionError",
    "ReflectionResult",
    "ReflectionJob",
    "ReflectionOutcome",
    "ReflectionScheduler",
    "ReflectionStatus",
]
