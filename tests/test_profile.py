"""Tests for user profiles and episodic memory rows."""

from datetime import datetime, timedelta

import pytest

from recall.memory.base import EpisodicMemory
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.profile import ProfileStore, UserProfile, normalize_patch


@pytest.fixture
def profiles(db) -> ProfileStore:
    return ProfileStore(db)


@pytest.fixture
def episodic(db, index) -> EpisodicMemoryStore:
    return EpisodicMemoryStore(db, index)


def test_normalize_patch_aliases_and_unknown_fields():
    patch = normalize_patch(
        {"preferredName": "Mei", "favorite_color": "blue", "interests": None}
    )
    assert patch == {"preferred_name": "Mei", "interests": []}

def test_normalize_patch_coerces_shapes():
    patch = normalize_patch(
        {
            "interests": "hiking",
            "relationships": ["sister Anna", {"name": "Ken", "relation": "partner"}],
            "age": "31",
            "location": {"city": "Osaka"},
            "occupation": ["nurse"],
        }
    )
    assert patch == {
        "interests": ["hiking"],
        "relationships": [
            {"description": "sister Anna"},
            {"name": "Ken", "relation": "partner"},
        ],
        "age": 31,
    }


def test_normalize_patch_drops_uncoercible_age():
    assert normalize_patch({"age": "thirty-ish", "preferredName": "Mei"}) == {
        "preferred_name": "Mei"
    }


@pytest.mark.asyncio
async def test_patch_with_string_interest_reads_back_as_list(profiles: ProfileStore):
    await profiles.patch("u1", {"interests": "hiking", "preferred_name": {"first": "Mei"}})

    profile = await profiles.get("u1")
    assert profile.interests == ["hiking"]
    assert profile.preferred_name is None
    assert profile.to_prompt_context() == "Interests: hiking"



def test_profile_prompt_context():
    profile = UserProfile(
        user_id="u1",
        preferred_name="Mei",
        occupation="nurse",
        interests=["hiking", "tea"],
    )
    context = profile.to_prompt_context()
    assert "Name: Mei" in context
    assert "Occupation: nurse" in context
    assert "Interests: hiking, tea" in context


@pytest.mark.asyncio
async def test_profile_created_on_first_patch(profiles: ProfileStore):
    assert await profiles.get("u1") is None

    written = await profiles.patch("u1", {"preferred_name": "Mei", "age": 31})
    assert sorted(written) == ["age", "preferred_name"]

    profile = await profiles.get("u1")
    assert profile.preferred_name == "Mei"
    assert profile.age == 31
    assert profile.interests == []


@pytest.mark.asyncio
async def test_patch_leaves_other_fields(profiles: ProfileStore):
    await profiles.patch("u1", {"preferred_name": "Mei", "location": "Osaka"})
    await profiles.patch("u1", {"location": "Kyoto"})

    profile = await profiles.get("u1")
    assert profile.preferred_name == "Mei"
    assert profile.location == "Kyoto"


@pytest.mark.asyncio
async def test_patch_with_nothing_known(profiles: ProfileStore):
    assert await profiles.patch("u1", {"shoe_size": 38}) == []
    assert await profiles.get("u1") is None


@pytest.mark.asyncio
async def test_episodic_get_checks_owner(episodic: EpisodicMemoryStore):
    await episodic.add(EpisodicMemory(id="m1", user_id="u1", content="likes tea"))

    assert (await episodic.get("m1", "u1")).content == "likes tea"
    assert await episodic.get("m1", "u2") is None


@pytest.mark.asyncio
async def test_episodic_history_and_expiry(episodic: EpisodicMemoryStore, index):
    past = datetime.now() - timedelta(minutes=5)
    await episodic.bulk_insert(
        [
            EpisodicMemory(id="old", user_id="u1", content="stale", expires_at=past),
            EpisodicMemory(id="new", user_id="u1", content="fresh"),
        ]
    )

    assert await episodic.cleanup_expired() == 1
    assert [m.id for m in await episodic.list_for_user("u1")] == ["new"]
    assert await index.get("old", episodic.collection) is None
    assert [h["event"] for h in await episodic.get_history("old")] == ["ADD", "EXPIRE"]


@pytest.mark.asyncio
async def test_episodic_index_round_trip(episodic: EpisodicMemoryStore, index):
    memory = EpisodicMemory(id="m1", user_id="u1", content="going to Japan", context="travel")
    await episodic.add(memory)

    doc = await index.get("m1", episodic.collection)
    assert doc.page_content == "travel\n\ngoing to Japan"

    restored = EpisodicMemory.from_index(doc.page_content, doc.metadata)
    assert restored.content == "going to Japan"
    assert restored.context == "travel"
    assert restored.user_id == "u1"
