"""Debounced scheduling of memory extraction jobs."""

from datetime import datetime
from typing import Any

from recall.core.logging import get_logger
from recall.memory.base import ExtractionJob, MemorySchema
from recall.memory.extraction import ExtractionWorker, serialize_messages
from recall.memory.schemas import DEFAULT_MEMORY_SCHEMAS
from recall.storage.cache import SessionCache
from recall.storage.queue import DelayedJobQueue, JobState

logger = get_logger("memory.scheduler")

EXTRACTION_JOB = "memory.extract"


class ExtractionScheduler:
    """Collapses bursts of conversation updates into a single extraction run.

    Each call replaces any still-pending job for the session, so only the
    last update in a burst is processed, ``debounce_seconds`` after it.
    """

    def __init__(
        self,
        queue: DelayedJobQueue,
        session_cache: SessionCache,
        debounce_seconds: float = 3.0,
        grace_seconds: float = 5.0,
        default_schemas: list[MemorySchema] | None = None,
    ):
        self.queue = queue
        self.session_cache = session_cache
        self.debounce_seconds = debounce_seconds
        self.grace_seconds = grace_seconds
        self.default_schemas = default_schemas or DEFAULT_MEMORY_SCHEMAS

    def bind_worker(self, worker: ExtractionWorker) -> None:
        """Route extraction jobs to the worker."""
        self.queue.register(EXTRACTION_JOB, worker.process)

    async def schedule_extraction(
        self,
        session_id: str,
        user_id: str,
        messages: list[Any],
        schemas: list[MemorySchema] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Schedule extraction, superseding a pending one. Returns the new job id."""
        now = now or datetime.now()

        existing_id = await self.session_cache.get_debounce_task_id(session_id)
        if existing_id:
            try:
                existing = await self.queue.get_job(existing_id)
                if existing and existing.state == JobState.DELAYED:
                    await self.queue.remove(existing_id)
                    logger.debug(f"Cancelled pending extraction job {existing_id}")
            except Exception as e:
                logger.warning(f"Failed to cancel pending job {existing_id}: {e}")

        job = ExtractionJob(
            user_id=user_id,
            session_id=session_id,
            messages=serialize_messages(messages),
            schemas=schemas or self.default_schemas,
        )
        job_id = f"extract-{session_id}-{int(now.timestamp() * 1_000_000)}"
        await self.queue.add(
            EXTRACTION_JOB,
            job.to_payload(),
            delay=self.debounce_seconds,
            job_id=job_id,
            remove_on_complete=True,
            now=now,
        )

        await self.session_cache.update_debounce_key(
            session_id, job_id, self.debounce_seconds + self.grace_seconds
        )

        logger.info(f"Scheduled memory extraction job {job_id} for session {session_id}")
        return job_id
