"""Durable delayed-job queue.

Jobs are rows in the ``jobs`` table. A job is created ``delayed`` with a
``run_at`` time, claimed to ``active`` when due, and finishes ``completed`` or,
after ``max_attempts`` handler failures, ``failed``. Only delayed jobs can be
removed, which is what debounced rescheduling relies on.
"""

import asyncio
import contextlib
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from recall.core.logging import get_logger
from recall.core.typing import JSONDict
from recall.storage.database import Database

logger = get_logger("storage.queue")


class JobState(Enum):
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """A queued unit of work."""

    id: str
    name: str
    payload: JSONDict
    state: JobState
    run_at: datetime
    attempts: int
    max_attempts: int
    created_at: datetime
    last_error: str | None = None
    finished_at: datetime | None = None
    remove_on_complete: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "Job":
        return cls(
            id=row["id"],
            name=row["name"],
            payload=json.loads(row["payload"]),
            state=JobState(row["state"]),
            run_at=row["run_at"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            created_at=row["created_at"],
            last_error=row["last_error"],
            finished_at=row["finished_at"],
            remove_on_complete=bool(row["remove_on_complete"]),
        )


@dataclass
class JobResult:
    """Outcome of one handler run."""

    job_id: str
    success: bool
    error: str | None = None


JobHandler = Callable[[Job], Awaitable[Any]]


class DelayedJobQueue:
    """SQLite-backed delayed queue with linear retry backoff."""

    def __init__(
        self,
        db: Database,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        poll_interval: float = 1.0,
    ):
        self.db = db
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.poll_interval = poll_interval
        self._handlers: dict[str, JobHandler] = {}
        self._running = False
        self._wakeup = asyncio.Event()
        self._worker_task: asyncio.Task | None = None

    def register(self, name: str, handler: JobHandler) -> None:
        """Register the handler for jobs named ``name``."""
        self._handlers[name] = handler
        logger.debug(f"Registered job handler: {name}")

    async def add(
        self,
        name: str,
        payload: JSONDict,
        delay: float = 0.0,
        job_id: str | None = None,
        remove_on_complete: bool = False,
        now: datetime | None = None,
    ) -> Job:
        """Enqueue a job to run after ``delay`` seconds."""
        now = now or datetime.now()
        job = Job(
            id=job_id or str(uuid4()),
            name=name,
            payload=payload,
            state=JobState.DELAYED,
            run_at=now + timedelta(seconds=delay),
            attempts=0,
            max_attempts=self.max_attempts,
            created_at=now,
            remove_on_complete=remove_on_complete,
        )
        await self.db.conn.execute(
            """INSERT INTO jobs
               (id, name, payload, state, run_at, attempts, max_attempts,
                remove_on_complete, created_at)
               VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)""",
            (
                job.id,
                job.name,
                json.dumps(payload),
                job.state.value,
                job.run_at,
                job.max_attempts,
                int(remove_on_complete),
                job.created_at,
            ),
        )
        await self.db.conn.commit()
        logger.debug(f"Queued job {job.id} ({name}) to run at {job.run_at}")
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """Get job by ID."""
        async with self.db.conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cursor:
            row = await cursor.fetchone()
        return Job.from_row(row) if row else None

    async def remove(self, job_id: str) -> bool:
        """Remove a job that has not started. Active jobs are left alone."""
        cursor = await self.db.conn.execute(
            "DELETE FROM jobs WHERE id = ? AND state != ?", (job_id, JobState.ACTIVE.value)
        )
        await self.db.conn.commit()
        return cursor.rowcount == 1

    async def counts(self) -> dict[str, int]:
        """Number of jobs per state."""
        result = {state.value: 0 for state in JobState}
        async with self.db.conn.execute(
            "SELECT state, COUNT(*) AS n FROM jobs GROUP BY state"
        ) as cursor:
            async for row in cursor:
                result[row["state"]] = row["n"]
        return result

    async def _claim(self, job_id: str) -> bool:
        cursor = await self.db.conn.execute(
            "UPDATE jobs SET state = ?, attempts = attempts + 1 WHERE id = ? AND state = ?",
            (JobState.ACTIVE.value, job_id, JobState.DELAYED.value),
        )
        await self.db.conn.commit()
        return cursor.rowcount == 1

    async def run_due(self, now: datetime | None = None) -> list[JobResult]:
        """Claim and run every delayed job whose run_at has passed."""
        now = now or datetime.now()
        async with self.db.conn.execute(
            "SELECT * FROM jobs WHERE state = ? AND run_at <= ? ORDER BY run_at",
            (JobState.DELAYED.value, now),
        ) as cursor:
            due = [Job.from_row(row) async for row in cursor]

        results = []
        for job in due:
            if not await self._claim(job.id):
                continue
            job.attempts += 1
            job.state = JobState.ACTIVE
            results.append(await self._execute(job, now))
        return results

    async def _execute(self, job: Job, now: datetime) -> JobResult:
        handler = self._handlers.get(job.name)
        try:
            if handler is None:
                raise LookupError(f"No handler registered for job '{job.name}'")
            await handler(job)
        except Exception as e:
            return await self._fail(job, e, now)

        if job.remove_on_complete:
            await self.db.conn.execute("DELETE FROM jobs WHERE id = ?", (job.id,))
        else:
            await self.db.conn.execute(
                "UPDATE jobs SET state = ?, finished_at = ? WHERE id = ?",
                (JobState.COMPLETED.value, datetime.now(), job.id),
            )
        await self.db.conn.commit()
        logger.info(f"Completed job {job.id} ({job.name})")
        return JobResult(job_id=job.id, success=True)

    async def _fail(self, job: Job, error: Exception, now: datetime) -> JobResult:
        if job.attempts < job.max_attempts:
            retry_at = now + timedelta(seconds=self.backoff_seconds * job.attempts)
            await self.db.conn.execute(
                "UPDATE jobs SET state = ?, run_at = ?, last_error = ? WHERE id = ?",
                (JobState.DELAYED.value, retry_at, str(error), job.id),
            )
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts}/{job.max_attempts}), "
                f"retrying at {retry_at}: {error}"
            )
        else:
            await self.db.conn.execute(
                "UPDATE jobs SET state = ?, last_error = ?, finished_at = ? WHERE id = ?",
                (JobState.FAILED.value, str(error), datetime.now(), job.id),
            )
            logger.error(f"Job {job.id} failed permanently after {job.attempts} attempts: {error}")
        await self.db.conn.commit()
        return JobResult(job_id=job.id, success=False, error=str(error))

    async def start(self) -> None:
        """Start the background polling loop."""
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._worker_task = asyncio.create_task(self._worker_loop())
        logger.info("Job queue worker started")

    async def stop(self) -> None:
        """Stop polling. A job already running is allowed to finish."""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._worker_task:
            await self._worker_task
            self._worker_task = None
        logger.info("Job queue worker stopped")

    async def _worker_loop(self) -> None:
        while self._running:
            try:
                await self.run_due()
            except Exception as e:
                logger.error(f"Job queue poll failed: {e}", exc_info=True)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
