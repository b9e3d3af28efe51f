"""End-to-end tests through the engine container."""

from datetime import datetime, timedelta

import pytest

from recall.core.config import Settings
from recall.engine import RecallEngine
from recall.memory.base import MemoryCategory


@pytest.fixture
async def engine(tmp_path, make_llm, embeddings):
    def extract(messages):
        if "user information" in messages[0]["content"]:
            return '{"preferred_name": "Mei"}'
        return '[{"context": "trip planning", "content": "User is going to Japan in April"}]'

    settings = Settings(_env_file=None, data_dir=tmp_path)
    engine = RecallEngine(
        settings,
        chat_llm=make_llm("answer"),
        extraction_llm=make_llm(extract),
        embeddings=embeddings,
    )
    await engine.start()
    yield engine
    await engine.close()


@pytest.mark.asyncio
async def test_write_path_feeds_read_path(engine: RecallEngine):
    """Conversation -> debounced extraction -> memories visible to the next turn."""
    await engine.sessions.register("s1", "u1", folder_id="f1")
    await engine.store.put_folder("f1", MemoryCategory.RULES, "custom_rules", ["be brief"])
    messages = [{"role": "user", "content": "Call me Mei, I'm going to Japan in April"}]

    await engine.fusion.schedule_memory_update("s1", "u1", messages)
    await engine.fusion.schedule_memory_update("s1", "u1", messages)
    results = await engine.queue.run_due(now=datetime.now() + timedelta(seconds=30))
    assert len(results) == 1
    assert results[0].success

    context = await engine.fusion.get_memory_context("s1", "u1", "Japan trip")
    assert context.long_term.profile.preferred_name == "Mei"
    assert [r.memory.content for r in context.mid_term] == ["User is going to Japan in April"]

    prompt = engine.fusion.format_memory_context(context)
    assert "Name: Mei" in prompt
    assert "User is going to Japan in April" in prompt
    assert "- be brief" in prompt


@pytest.mark.asyncio
async def test_cleanup_reports_counts(engine: RecallEngine):
    assert await engine.cleanup() == {"episodic": 0, "long_term": 0, "cache": 0}
