"""Tests for debounced extraction scheduling."""

from datetime import datetime, timedelta

import pytest

from recall.memory.base import ExtractionJob
from recall.memory.scheduler import EXTRACTION_JOB, ExtractionScheduler
from recall.storage.cache import SessionCache
from recall.storage.queue import DelayedJobQueue, Job, JobState

MESSAGES = [
    {"role": "user", "content": "I'm flying to Japan in April"},
    {"role": "assistant", "content": "Sounds great!"},
]


@pytest.fixture
def executed() -> list[Job]:
    return []


@pytest.fixture
def scheduler(queue: DelayedJobQueue, session_cache: SessionCache, executed) -> ExtractionScheduler:
    async def record(job: Job):
        executed.append(job)

    queue.register(EXTRACTION_JOB, record)
    return ExtractionScheduler(queue, session_cache, debounce_seconds=3.0, grace_seconds=5.0)


@pytest.mark.asyncio
async def test_schedule_creates_delayed_job(scheduler, queue, session_cache):
    now = datetime.now()
    job_id = await scheduler.schedule_extraction("s1", "u1", MESSAGES, now=now)

    job = await queue.get_job(job_id)
    assert job.state == JobState.DELAYED
    assert job.run_at == now + timedelta(seconds=3)
    assert job.remove_on_complete
    assert await session_cache.get_debounce_task_id("s1") == job_id

    payload = ExtractionJob.from_payload(job.payload)
    assert payload.user_id == "u1"
    assert payload.session_id == "s1"
    assert payload.messages == MESSAGES
    assert [s.name for s in payload.schemas] == ["user_profile", "notes"]


@pytest.mark.asyncio
async def test_rapid_calls_collapse_into_one_execution(scheduler, queue, executed):
    """Two calls inside the debounce window execute exactly once, with the latest messages."""
    now = datetime.now()
    first = await scheduler.schedule_extraction("s1", "u1", MESSAGES[:1], now=now)
    second = await scheduler.schedule_extraction(
        "s1", "u1", MESSAGES, now=now + timedelta(seconds=1)
    )

    assert first != second
    assert await queue.get_job(first) is None

    results = await queue.run_due(now=now + timedelta(seconds=10))
    assert len(results) == 1
    assert [j.id for j in executed] == [second]
    assert len(executed[0].payload["messages"]) == 2


@pytest.mark.asyncio
async def test_sessions_debounce_independently(scheduler, queue, executed):
    now = datetime.now()
    await scheduler.schedule_extraction("s1", "u1", MESSAGES, now=now)
    await scheduler.schedule_extraction("s2", "u1", MESSAGES, now=now)

    await queue.run_due(now=now + timedelta(seconds=10))
    assert sorted(j.payload["sessionId"] for j in executed) == ["s1", "s2"]


@pytest.mark.asyncio
async def test_running_job_is_not_cancelled(scheduler, queue, db):
    """A job already claimed by the worker is left alone by a reschedule."""
    now = datetime.now()
    first = await scheduler.schedule_extraction("s1", "u1", MESSAGES, now=now)
    await db.conn.execute("UPDATE jobs SET state = 'active' WHERE id = ?", (first,))
    await db.conn.commit()

    second = await scheduler.schedule_extraction("s1", "u1", MESSAGES, now=now + timedelta(seconds=1))

    assert (await queue.get_job(first)).state == JobState.ACTIVE
    assert (await queue.get_job(second)).state == JobState.DELAYED


@pytest.mark.asyncio
async def test_accepts_message_objects(scheduler, queue):
    class Msg:
        def __init__(self, role, content):
            self.role = role
            self.content = content

    job_id = await scheduler.schedule_extraction("s1", "u1", [Msg("user", "hello")])
    job = await queue.get_job(job_id)
    assert job.payload["messages"] == [{"role": "user", "content": "hello"}]
