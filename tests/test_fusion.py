"""Tests for memory fusion across the three tiers."""

from unittest.mock import AsyncMock

import pytest

from recall.memory.base import (
    EpisodicMemory,
    EpisodicSearchResult,
    MemoryCategory,
    MergedMemoryContext,
)
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.fusion import MemoryContext, MemoryFusion, ShortTermContext
from recall.memory.profile import ProfileStore, UserProfile
from recall.memory.scheduler import ExtractionScheduler
from recall.memory.store import MemoryStore


@pytest.fixture
def profiles(db) -> ProfileStore:
    return ProfileStore(db)


@pytest.fixture
def store(db, sessions) -> MemoryStore:
    return MemoryStore(db, sessions)


@pytest.fixture
def episodic(db, index) -> EpisodicMemoryStore:
    return EpisodicMemoryStore(db, index)


@pytest.fixture
def scheduler(queue, session_cache) -> ExtractionScheduler:
    return ExtractionScheduler(queue, session_cache)


@pytest.fixture
def fusion(session_cache, store, profiles, episodic, index, scheduler) -> MemoryFusion:
    return MemoryFusion(session_cache, store, profiles, episodic, index, scheduler)


def _memory(memory_id: str, user_id: str, content: str, context: str = "") -> EpisodicMemory:
    return EpisodicMemory(id=memory_id, user_id=user_id, content=content, context=context)


@pytest.mark.asyncio
async def test_get_memory_context_all_tiers(fusion, sessions, store, profiles, episodic, session_cache):
    await sessions.register("s1", "u1", folder_id="f1")
    await store.put_global("u1", MemoryCategory.PREFS, "lang", "zh")
    await store.put_folder("f1", MemoryCategory.PREFS, "lang", "en")
    await profiles.patch("u1", {"preferred_name": "Mei"})
    await episodic.bulk_insert([_memory("m1", "u1", "going to Japan in April", "travel")])
    await session_cache.push_message("s1", {"role": "user", "content": "hi"})
    await session_cache.set_session_context("s1", {"topic": "travel"})

    context = await fusion.get_memory_context("s1", "u1", "Japan travel plans")

    assert context.short_term.session_context == {"topic": "travel"}
    assert context.short_term.recent_messages == [{"role": "user", "content": "hi"}]
    assert [r.memory.id for r in context.mid_term] == ["m1"]
    assert context.mid_term[0].memory.content == "going to Japan in April"
    assert context.long_term.prefs == {"lang": "en"}
    assert context.long_term.profile.preferred_name == "Mei"


@pytest.mark.asyncio
async def test_mid_term_filtered_to_user(fusion, episodic, sessions):
    await sessions.register("s1", "u1")
    await episodic.bulk_insert(
        [
            _memory("mine", "u1", "likes hiking in the alps"),
            _memory("theirs", "u2", "likes hiking in the alps too"),
        ]
    )
    results = await fusion.search_episodic_memory("u1", "hiking alps")
    assert [r.memory.id for r in results] == ["mine"]


@pytest.mark.asyncio
async def test_mid_term_failure_degrades_to_empty(fusion, sessions, store):
    """Vector backend errors leave mid-term empty without failing the read."""
    await sessions.register("s1", "u1")
    await store.put_global("u1", MemoryCategory.PREFS, "lang", "zh")
    fusion.index.similarity_search_with_score = AsyncMock(side_effect=ConnectionError("down"))

    context = await fusion.get_memory_context("s1", "u1", "anything")

    assert context.mid_term == []
    assert context.long_term.prefs == {"lang": "zh"}


@pytest.mark.asyncio
async def test_long_term_failure_propagates(fusion, sessions):
    await sessions.register("s1", "u1")
    fusion.store.get_merged_memory_for_session = AsyncMock(side_effect=RuntimeError("db gone"))

    with pytest.raises(RuntimeError):
        await fusion.get_memory_context("s1", "u1", "anything")

@pytest.mark.asyncio
async def test_short_term_failure_propagates(fusion, sessions):
    await sessions.register("s1", "u1")
    fusion.session_cache.get_session_context = AsyncMock(side_effect=RuntimeError("cache gone"))

    with pytest.raises(RuntimeError):
        await fusion.get_memory_context("s1", "u1", "anything")



def _context() -> MemoryContext:
    long_term = MergedMemoryContext(
        prefs={"lang": "en"},
        rules=["answer briefly", "cite sources"],
        profile=UserProfile(user_id="u1", preferred_name="Mei", interests=["travel", "ramen"]),
    )
    mid_term = [
        EpisodicSearchResult(
            memory=_memory("m1", "u1", "going to Japan in April", "trip planning"), score=0.87
        )
    ]
    return MemoryContext(short_term=ShortTermContext(), mid_term=mid_term, long_term=long_term)


def test_format_sections_in_order(fusion):
    text = fusion.format_memory_context(_context())

    assert text.index("## User Profile") < text.index("## Relevant Memories")
    assert text.index("## Relevant Memories") < text.index("## User Preferences")
    assert text.index("## User Preferences") < text.index("## Rules")
    assert "Name: Mei" in text
    assert "- [relevance:0.87] trip planning: going to Japan in April" in text
    assert '- lang: "en"' in text
    assert "- cite sources" in text

def test_format_memory_without_context(fusion):
    context = MemoryContext(
        short_term=ShortTermContext(),
        mid_term=[EpisodicSearchResult(memory=_memory("m1", "u1", "likes ramen"), score=0.8)],
        long_term=MergedMemoryContext(),
    )
    text = fusion.format_memory_context(context)
    assert "- [relevance:0.80] likes ramen" in text
    assert "] :" not in text



def test_format_is_deterministic(fusion):
    assert fusion.format_memory_context(_context()) == fusion.format_memory_context(_context())


def test_format_omits_empty_sections(fusion):
    context = MemoryContext(
        short_term=ShortTermContext(),
        mid_term=[],
        long_term=MergedMemoryContext(rules=["be kind"]),
    )
    assert fusion.format_memory_context(context) == "## Rules\n- be kind"


def test_format_empty_context(fusion):
    context = MemoryContext(
        short_term=ShortTermContext(), mid_term=[], long_term=MergedMemoryContext()
    )
    assert fusion.format_memory_context(context) == ""


def test_format_token_budget_truncates(fusion):
    """Over budget: the current section is cut with '...' and later ones dropped."""
    text = fusion.format_memory_context(_context(), max_tokens=12)

    assert len(text) <= 12 * 4
    assert text.startswith("## User Profile")
    assert text.endswith("...")
    assert "## Rules" not in text


@pytest.mark.asyncio
async def test_schedule_memory_update_snapshots_and_schedules(fusion, session_cache, queue):
    messages = [{"role": "user", "content": f"message {i}"} for i in range(15)]

    job_id = await fusion.schedule_memory_update("s1", "u1", messages)

    stored = await session_cache.get_session_context("s1")
    snapshot = stored["recent_messages"]
    assert len(snapshot) == 10
    assert snapshot[-1]["content"] == "message 14"
    assert snapshot[-1]["timestamp"] == stored["last_update"]
    assert stored["message_count"] == 15
    job = await queue.get_job(job_id)
    assert len(job.payload["messages"]) == 15


@pytest.mark.asyncio
async def test_short_term_writers(fusion, session_cache):
    await fusion.update_session_context("s1", {"mood": "curious"})
    await fusion.push_message("s1", {"role": "user", "content": "hello"})

    assert await session_cache.get_session_context("s1") == {"mood": "curious"}
    assert await session_cache.get_recent_messages("s1") == [{"role": "user", "content": "hello"}]


@pytest.mark.asyncio
async def test_cleanup_expired_memories(fusion):
    assert await fusion.cleanup_expired_memories() == {"episodic": 0, "long_term": 0}
