"""
Memory fusion - one view over the short, mid and long-term tiers.

Short-term lives in the session cache, mid-term is vector recall over
episodic memories, long-term is the structured store plus the user profile.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recall.core.logging import get_logger
from recall.core.typing import JSONDict
from recall.memory.base import (
    EpisodicMemory,
    EpisodicSearchResult,
    MemorySchema,
    MergedMemoryContext,
)
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.extraction import serialize_messages
from recall.memory.profile import ProfileStore
from recall.memory.scheduler import ExtractionScheduler
from recall.memory.store import MemoryStore
from recall.storage.cache import SessionCache
from recall.vector.index import VectorIndex

logger = get_logger("memory.fusion")

CHARS_PER_TOKEN = 4
SNAPSHOT_MESSAGES = 10


@dataclass
class ShortTermContext:
    session_context: JSONDict | None = None
    recent_messages: list[JSONDict] = field(default_factory=list)


@dataclass
class MemoryContext:
    short_term: ShortTermContext
    mid_term: list[EpisodicSearchResult]
    long_term: MergedMemoryContext


def estimate_tokens(text: str) -> int:
    return -(-len(text) // CHARS_PER_TOKEN)


class MemoryFusion:
    """Read path across all tiers, plus the short-term writers."""

    def __init__(
        self,
        session_cache: SessionCache,
        store: MemoryStore,
        profiles: ProfileStore,
        episodic: EpisodicMemoryStore,
        index: VectorIndex,
        scheduler: ExtractionScheduler,
        mid_term_top_k: int = 5,
        recent_message_limit: int = 10,
        token_budget: int = 2000,
    ):
        self.session_cache = session_cache
        self.store = store
        self.profiles = profiles
        self.episodic = episodic
        self.index = index
        self.scheduler = scheduler
        self.mid_term_top_k = mid_term_top_k
        self.recent_message_limit = recent_message_limit
        self.token_budget = token_budget

    async def get_memory_context(
        self, session_id: str, user_id: str, query: str
    ) -> MemoryContext:
        """Fetch all three tiers concurrently.

        Mid-term failures degrade to an empty list; short and long-term
        failures propagate.
        """
        short_term, mid_term, long_term = await asyncio.gather(
            self._get_short_term(session_id),
            self._get_mid_term(user_id, query),
            self._get_long_term(session_id, user_id),
        )
        return MemoryContext(short_term=short_term, mid_term=mid_term, long_term=long_term)

    async def _get_short_term(self, session_id: str) -> ShortTermContext:
        session_context, recent = await asyncio.gather(
            self.session_cache.get_session_context(session_id),
            self.session_cache.get_recent_messages(session_id, self.recent_message_limit),
        )
        return ShortTermContext(session_context=session_context, recent_messages=recent)

    async def _get_mid_term(self, user_id: str, query: str) -> list[EpisodicSearchResult]:
        try:
            return await self.search_episodic_memory(user_id, query, self.mid_term_top_k)
        except Exception as e:
            logger.warning(f"Mid-term recall failed, continuing without it: {e}")
            return []

    async def _get_long_term(self, session_id: str, user_id: str) -> MergedMemoryContext:
        merged, profile = await asyncio.gather(
            self.store.get_merged_memory_for_session(session_id, user_id),
            self.profiles.get(user_id),
        )
        merged.profile = profile
        return merged

    async def search_episodic_memory(
        self, user_id: str, query: str, limit: int = 5
    ) -> list[EpisodicSearchResult]:
        """Top-k episodic memories for the query, restricted to this user."""
        results = await self.index.similarity_search_with_score(
            query, limit, self.episodic.collection
        )
        return [
            EpisodicSearchResult(
                memory=EpisodicMemory.from_index(doc.page_content, doc.metadata), score=score
            )
            for doc, score in results
            if doc.metadata.get("userId") == user_id
        ]

    def format_memory_context(self, context: MemoryContext, max_tokens: int | None = None) -> str:
        """Render the context as a system-prompt fragment.

        Sections in fixed order: profile, relevant memories, preferences, rules.
        Empty sections are omitted. Once the token budget runs out the current
        section is cut with "..." and the rest are dropped.
        """
        budget = max_tokens if max_tokens is not None else self.token_budget
        long_term = context.long_term
        sections = []

        if long_term.profile:
            profile_text = long_term.profile.to_prompt_context()
            if profile_text:
                sections.append("## User Profile\n" + profile_text)

        if context.mid_term:
            lines = ["## Relevant Memories", "<memories>"]
            for result in context.mid_term:
                memory = result.memory
                label = f"{memory.context}: " if memory.context else ""
                lines.append(f"- [relevance:{result.score:.2f}] {label}{memory.content}")
            lines.append("</memories>")
            sections.append("\n".join(lines))

        if long_term.prefs:
            lines = ["## User Preferences"]
            for key, value in long_term.prefs.items():
                lines.append(f"- {key}: {json.dumps(value, ensure_ascii=False)}")
            sections.append("\n".join(lines))

        if long_term.rules:
            lines = ["## Rules"] + [f"- {rule}" for rule in long_term.rules]
            sections.append("\n".join(lines))

        parts = []
        used = 0
        for section in sections:
            tokens = estimate_tokens(section)
            if used + tokens <= budget:
                parts.append(section)
                used += tokens
                continue

            remaining_chars = (budget - used) * CHARS_PER_TOKEN - 3
            if remaining_chars > 0:
                parts.append(section[:remaining_chars] + "...")
            break

        return "\n\n".join(parts)

    async def update_session_context(self, session_id: str, context: JSONDict) -> None:
        await self.session_cache.set_session_context(session_id, context)

    async def push_message(self, session_id: str, message: JSONDict) -> None:
        await self.session_cache.push_message(session_id, message)

    async def schedule_memory_update(
        self,
        session_id: str,
        user_id: str,
        messages: list[Any],
        schemas: list[MemorySchema] | None = None,
    ) -> str:
        """Snapshot recent messages into short-term, then hand off for debounced extraction."""
        now = datetime.now().isoformat()
        snapshot = [
            {**message, "timestamp": now}
            for message in serialize_messages(messages[-SNAPSHOT_MESSAGES:])
        ]
        current = await self.session_cache.get_session_context(session_id) or {}
        await self.session_cache.set_session_context(
            session_id,
            {
                **current,
                "last_update": now,
                "message_count": len(messages),
                "recent_messages": snapshot,
            },
        )
        return await self.scheduler.schedule_extraction(session_id, user_id, messages, schemas)

    async def cleanup_expired_memories(self) -> dict[str, int]:
        """Expiry sweep over episodic and long-term stores."""
        episodic = await self.episodic.cleanup_expired()
        long_term = await self.store.cleanup_expired()
        return {"episodic": episodic, "long_term": long_term}
