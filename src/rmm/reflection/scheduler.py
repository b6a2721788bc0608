"""Reflection scheduling: buffer, trigger, stage and retry.

Lifecycle per user:
1. After each turn the new messages are appended to the live buffer.
2. Before each turn the trigger is checked against the live buffer,
   using the store's own write time as the inactivity clock.
3. When it fires, the live buffer is snapshotted into staging and
   cleared, and a ReflectionJob is queued for that user's worker.
4. The worker runs the engine on the staged copy. Success clears
   staging; failure bumps the persisted retry count and backs off
   retry_delay_ms * 2^n. Past max_retries the staged buffer is dropped.

At most one staged buffer exists per user. A trigger while a job for that
buffer is queued or running does nothing. A staged buffer with no job
behind it (left by a restart, or by shutdown mid-job) is resumed by the
next trigger check, keeping its persisted retry count.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from rmm.memory.messages import count_human_messages, serialize_message
from rmm.memory.types import MessageBuffer, now_ms
from rmm.reflection.engine import ReflectionResult
from rmm.reflection.triggers import check_reflection_triggers

if TYPE_CHECKING:
    from rmm.config import ReflectionConfig
    from rmm.db.kv import RMMStateStore
    from rmm.reflection.engine import ReflectionEngine

logger = logging.getLogger(__name__)


class ReflectionStatus(str, Enum):
    """How a reflection job ended."""

    COMPLETED = "completed"
    DROPPED = "dropped"  # Retries exhausted, staged buffer discarded
    SKIPPED = "skipped"  # Staging was empty when the worker got to it
    FAILED = "failed"  # Unexpected worker error


@dataclass
class ReflectionOutcome:
    """Final result of a ReflectionJob."""

    status: ReflectionStatus
    attempts: int = 0
    result: ReflectionResult | None = None
    error: str | None = None


@dataclass
class ReflectionJob:
    """One unit of reflection work for a user.

    generation increases with every job queued for the user; future resolves
    to a ReflectionOutcome once the worker is done with the job. session_id
    is stamped on the memories the job creates.
    """

    user_id: str
    generation: int
    future: asyncio.Future = field(repr=False)
    session_id: str | None = None

    async def wait(self) -> ReflectionOutcome:
        return await asyncio.shield(self.future)


class ReflectionScheduler:
    """Per-user reflection queue with staged, retried execution."""

    def __init__(
        self,
        state_store: RMMStateStore,
        engine: ReflectionEngine,
        config: ReflectionConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the scheduler.

        Args:
            state_store: Buffer and staging persistence
            engine: Runs extraction and consolidation on a staged buffer
            config: Trigger thresholds and retry policy
            sleep: Awaitable sleep in seconds (injectable for tests)
        """
        self.state_store = state_store
        self.engine = engine
        self.config = config
        self._sleep = sleep
        self._queues: dict[str, asyncio.Queue[ReflectionJob]] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._generations: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}

    # Buffer

    async def append_to_buffer(self, user_id: str, messages: Sequence[Any]) -> MessageBuffer | None:
        """Append one turn's messages to the user's live buffer.

        Returns:
            The updated buffer, or None if it could not be persisted
        """
        if not messages:
            return None

        buffer = await self.state_store.load_buffer(user_id)
        buffer.messages.extend(serialize_message(m) for m in messages)
        buffer.human_message_count = count_human_messages(buffer.messages)
        buffer.last_message_timestamp = now_ms()

        if not await self.state_store.save_buffer(user_id, buffer):
            logger.warning(f"Failed to persist message buffer for {user_id}")
            return None
        return buffer

    # Triggering

    async def maybe_trigger(
        self,
        user_id: str,
        now: int | None = None,
        session_id: str | None = None,
    ) -> ReflectionJob | None:
        """Stage and enqueue reflection if the buffer's triggers are met.

        A staged buffer that no queued or running job owns is resumed
        instead, before the live buffer is looked at.

        Args:
            user_id: User whose buffer to check
            now: Current time in epoch ms (defaults to the wall clock)
            session_id: Session stamped on the memories the job creates

        Returns:
            The queued job, or None if nothing was staged or resumed
        """
        staged = await self.state_store.load_staging_buffer(user_id)
        if staged is not None:
            if self._in_flight.get(user_id):
                logger.debug(f"Reflection already staged for {user_id}, not re-staging")
                return None
            logger.info(
                f"Resuming staged reflection for {user_id} "
                f"({len(staged.messages)} messages, {staged.retry_count} retries so far)"
            )
            return self._enqueue(user_id, session_id)

        item = await self.state_store.load_buffer_item(user_id)
        if item is None:
            return None

        try:
            buffer = MessageBuffer.from_dict(item.value)
        except ValueError as e:
            logger.warning(f"Live buffer for {user_id} is invalid, skipping reflection check: {e}")
            return None
        if buffer.is_empty:
            return None

        elapsed_ms = (now if now is not None else now_ms()) - item.updated_at_ms
        if not check_reflection_triggers(buffer.human_message_count, elapsed_ms, self.config):
            return None

        if not await self.state_store.stage_buffer(user_id, buffer):
            logger.warning(f"Failed to stage buffer for {user_id}, skipping reflection")
            return None

        logger.debug(
            f"Staged {len(buffer.messages)} messages for {user_id} "
            f"after {elapsed_ms / 1000:.0f}s inactivity"
        )
        return self._enqueue(user_id, session_id)

    def _enqueue(self, user_id: str, session_id: str | None = None) -> ReflectionJob:
        generation = self._generations.get(user_id, 0) + 1
        self._generations[user_id] = generation

        job = ReflectionJob(
            user_id=user_id,
            generation=generation,
            future=asyncio.get_running_loop().create_future(),
            session_id=session_id,
        )
        self._in_flight[user_id] = self._in_flight.get(user_id, 0) + 1
        queue = self._queues.setdefault(user_id, asyncio.Queue())
        queue.put_nowait(job)

        worker = self._workers.get(user_id)
        if worker is None or worker.done():
            self._workers[user_id] = asyncio.create_task(
                self._worker(user_id), name=f"rmm-reflection-{user_id}"
            )
        return job

    # Worker

    async def _worker(self, user_id: str) -> None:
        queue = self._queues[user_id]
        while True:
            job = await queue.get()
            try:
                outcome = await self._run_job(job)
            except asyncio.CancelledError:
                if not job.future.done():
                    job.future.cancel()
                raise
            except Exception as e:
                logger.error(f"Reflection worker for {user_id} failed on generation {job.generation}: {e}")
                outcome = ReflectionOutcome(status=ReflectionStatus.FAILED, error=str(e))
            finally:
                queue.task_done()
                self._in_flight[user_id] = max(self._in_flight.get(user_id, 0) - 1, 0)

            if not job.future.done():
                job.future.set_result(outcome)

    async def _run_job(self, job: ReflectionJob) -> ReflectionOutcome:
        user_id = job.user_id
        retry_count = 0
        attempts = 0

        while True:
            buffer = await self.state_store.load_staging_buffer(user_id)
            if buffer is None:
                return ReflectionOutcome(status=ReflectionStatus.SKIPPED, attempts=attempts)
            retry_count = max(retry_count, buffer.retry_count)

            attempts += 1
            try:
                result = await self.engine.process(buffer, session_id=job.session_id)
            except Exception as e:
                logger.warning(f"Reflection attempt {attempts} for {user_id} failed: {e}")
                persisted = await self.record_failure(user_id)
                retry_count = persisted if persisted is not None else retry_count + 1

                if retry_count > self.config.max_retries:
                    logger.error(
                        f"Reflection for {user_id} failed {retry_count} times, "
                        f"dropping {len(buffer.messages)} staged messages"
                    )
                    await self.state_store.clear_staging(user_id)
                    return ReflectionOutcome(
                        status=ReflectionStatus.DROPPED, attempts=attempts, error=str(e)
                    )

                delay_ms = self.retry_delay_ms(retry_count - 1)
                logger.debug(f"Retrying reflection for {user_id} in {delay_ms}ms")
                await self._sleep(delay_ms / 1000)
                continue

            if not await self.state_store.clear_staging(user_id):
                logger.warning(f"Reflection for {user_id} succeeded but staging was not cleared")
            return ReflectionOutcome(status=ReflectionStatus.COMPLETED, attempts=attempts, result=result)

    def retry_delay_ms(self, retry_count: int) -> int:
        """Backoff before the next attempt, given retries already made."""
        return self.config.retry_delay_ms * 2**retry_count

    async def record_failure(self, user_id: str) -> int | None:
        """Increment the staged buffer's persisted retry count.

        Falls back to a raw read-modify-write of the staging record when the
        typed update fails.

        Returns:
            The persisted retry count, or None if neither path succeeded
        """
        count = await self.state_store.increment_staging_retry(user_id)
        if count is not None:
            return count

        logger.warning(f"Typed retry update failed for {user_id}, falling back to raw update")
        count = await self.state_store.increment_staging_retry_raw(user_id)
        if count is None:
            logger.error(f"Could not persist reflection retry count for {user_id}")
        return count

    # Lifecycle

    @property
    def active_users(self) -> list[str]:
        return [user_id for user_id, task in self._workers.items() if not task.done()]

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        await asyncio.gather(*(queue.join() for queue in self._queues.values()))

    async def shutdown(self) -> None:
        """Cancel all workers, abandoning queued jobs."""
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        for queue in self._queues.values():
            while not queue.empty():
                job = queue.get_nowait()
                if not job.future.done():
                    job.future.cancel()
                queue.task_done()

        self._workers.clear()
        self._in_flight.clear()
        logger.debug(f"Reflection scheduler stopped ({len(workers)} workers)")
