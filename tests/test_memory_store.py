"""Tests for long-term scoped memory and merge semantics."""

from datetime import datetime, timedelta

import pytest

from recall.memory.base import MemoryCategory, MemoryEntry, MemoryScope
from recall.memory.store import CUSTOM_RULES_KEY, MemoryStore, merge_memories
from recall.storage.sessions import SessionDirectory


@pytest.fixture
def store(db, sessions: SessionDirectory) -> MemoryStore:
    return MemoryStore(db, sessions)


def _entry(scope, category, key, value, priority=0):
    return MemoryEntry(
        scope=scope, owner_id="x", category=category, key=key, value=value, priority=priority
    )


def test_merge_folder_overrides_global():
    merged = merge_memories(
        [_entry(MemoryScope.GLOBAL, MemoryCategory.PREFS, "lang", "zh")],
        [_entry(MemoryScope.FOLDER, MemoryCategory.PREFS, "lang", "en")],
    )
    assert merged.prefs == {"lang": "en"}


def test_merge_rules_union():
    """Rules merge as a deduplicated union rather than overwriting."""
    merged = merge_memories(
        [_entry(MemoryScope.GLOBAL, MemoryCategory.RULES, CUSTOM_RULES_KEY, ["a"])],
        [_entry(MemoryScope.FOLDER, MemoryCategory.RULES, CUSTOM_RULES_KEY, ["a", "b"])],
    )
    assert merged.rules == ["a", "b"]


def test_merge_single_rule_value():
    merged = merge_memories(
        [_entry(MemoryScope.GLOBAL, MemoryCategory.RULES, "tone", "be brief")], []
    )
    assert merged.rules == ["be brief"]


@pytest.mark.asyncio
async def test_scenario_folder_pref_wins(store: MemoryStore, sessions: SessionDirectory):
    """Global lang=zh, folder lang=en, session in that folder sees en."""
    await store.put_global("u1", MemoryCategory.PREFS, "lang", "zh")
    await store.put_folder("f1", MemoryCategory.PREFS, "lang", "en")
    await sessions.register("s1", "u1", folder_id="f1")

    merged = await store.get_merged_memory_for_session("s1", "u1")
    assert merged.prefs["lang"] == "en"


@pytest.mark.asyncio
async def test_session_without_folder_gets_global(store: MemoryStore, sessions: SessionDirectory):
    await store.put_global("u1", MemoryCategory.PREFS, "lang", "zh")
    await sessions.register("s2", "u1")

    merged = await store.get_merged_memory_for_session("s2", "u1")
    assert merged.prefs == {"lang": "zh"}


@pytest.mark.asyncio
async def test_put_upserts_by_composite_key(store: MemoryStore):
    await store.put_global("u1", MemoryCategory.KNOWLEDGE, "pet", "cat")
    await store.put_global("u1", MemoryCategory.KNOWLEDGE, "pet", "dog", priority=2)

    entries = await store.get_global_memories("u1")
    assert len(entries) == 1
    assert entries[0].value == "dog"
    assert entries[0].priority == 2


@pytest.mark.asyncio
async def test_entries_ordered_by_priority(store: MemoryStore):
    await store.put_global("u1", MemoryCategory.CONTEXT, "low", 1, priority=1)
    await store.put_global("u1", MemoryCategory.CONTEXT, "high", 2, priority=10)

    entries = await store.get_global_memories("u1")
    assert [e.key for e in entries] == ["high", "low"]


@pytest.mark.asyncio
async def test_scopes_do_not_collide(store: MemoryStore):
    """Same id used as user and folder keeps separate entries."""
    await store.put_global("same", MemoryCategory.PREFS, "lang", "zh")
    await store.put_folder("same", MemoryCategory.PREFS, "lang", "en")

    assert (await store.get_global_memories("same"))[0].value == "zh"
    assert (await store.get_folder_memories("same"))[0].value == "en"


@pytest.mark.asyncio
async def test_folder_rules_add_remove(store: MemoryStore):
    await store.add_folder_rule("f1", "use type hints")
    await store.add_folder_rule("f1", "use type hints")
    await store.add_folder_rule("f1", "write tests")

    entries = await store.get_folder_memories("f1")
    assert len(entries) == 1
    assert entries[0].value == ["use type hints", "write tests"]

    await store.remove_folder_rule("f1", "use type hints")
    entries = await store.get_folder_memories("f1")
    assert entries[0].value == ["write tests"]


@pytest.mark.asyncio
async def test_remove_rule_from_missing_list(store: MemoryStore):
    await store.remove_folder_rule("nowhere", "anything")
    assert await store.get_folder_memories("nowhere") == []


@pytest.mark.asyncio
async def test_expired_entries_hidden_and_cleaned(store: MemoryStore):
    past = datetime.now() - timedelta(minutes=1)
    future = datetime.now() + timedelta(days=1)
    await store.put_global("u1", MemoryCategory.CONTEXT, "old", "x", expires_at=past)
    await store.put_global("u1", MemoryCategory.CONTEXT, "fresh", "y", expires_at=future)

    assert [e.key for e in await store.get_global_memories("u1")] == ["fresh"]
    assert await store.cleanup_expired() == 1
    assert await store.cleanup_expired() == 0


@pytest.mark.asyncio
async def test_delete_entries(store: MemoryStore):
    await store.set_global_pref("u1", "theme", "dark")
    await store.set_folder_context("f1", "repo", "recall")

    assert await store.delete_global_memory("u1", MemoryCategory.PREFS, "theme") == 1
    assert await store.delete_folder_memory("f1", MemoryCategory.CONTEXT, "repo") == 1
    assert await store.delete_global_memory("u1", MemoryCategory.PREFS, "theme") == 0
