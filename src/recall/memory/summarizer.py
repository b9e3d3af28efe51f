"""Conversation summarizer - keeps the short-term message buffer bounded.

Two ways to compact a conversation that outgrew its buffer:
- static buffer: keep the newest messages, summarize the evicted ones in the
  background and store the summary as an episodic memory
- partial evict: replace the oldest share of the conversation with a summary
  message injected in its place

optimize() trims and summarizes plain history for prompt building.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from recall.core.logging import get_logger
from recall.core.typing import MessageDict
from recall.llm.base import LLMProvider
from recall.memory.base import EpisodicMemory, EpisodicMemoryType
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.extraction import conversation_text

logger = get_logger("memory.summarizer")

SUMMARY_SYSTEM_PROMPT = """You are a memory-recall helper for an AI assistant. Your task is to summarize the conversation history.

Instructions:
- Extract key facts, decisions, and important information
- Focus on information about the user that should be remembered
- Keep the summary concise but comprehensive
- Use bullet points for clarity
- Preserve any action items or commitments made

Output format: A clear, structured summary in the same language as the conversation."""

FORGET_ALL_PROMPT = (
    "You're helping an AI that is about to forget all prior messages. Scan the conversation "
    "and write crisp notes that capture any important facts or insights."
)

KEEP_LAST_PROMPT = (
    "You're helping an AI that can only keep the last {retain} messages. Scan the older "
    "messages and write crisp notes of important information so they aren't lost."
)

COMPRESS_PROMPT = """Compress the following conversation history into a concise summary.
- Keep key decisions and conclusions
- Keep important technical details
- Drop greetings and repetition"""

SUMMARY_IMPORTANCE = 0.6


class SummarizationMode(Enum):
    STATIC_BUFFER = "static_buffer"
    PARTIAL_EVICT = "partial_evict"
    NONE = "none"


@dataclass
class SummarizationResult:
    summarized: bool
    messages: list[MessageDict]
    evicted_count: int = 0
    summary: str | None = None


class ConversationSummarizer:
    """Compacts a session's message buffer once it passes ``buffer_limit``.

    The first message is treated as the system prompt and always kept.
    """

    def __init__(
        self,
        llm: LLMProvider,
        episodic: EpisodicMemoryStore | None = None,
        mode: SummarizationMode = SummarizationMode.STATIC_BUFFER,
        buffer_limit: int = 30,
        buffer_min: int = 10,
        evict_fraction: float = 0.3,
        history_max_length: int = 30,
        history_summary_threshold: int = 40,
        history_keep_recent: int = 20,
    ):
        self.llm = llm
        self.episodic = episodic
        self.mode = mode
        self.buffer_limit = buffer_limit
        self.buffer_min = buffer_min
        self.evict_fraction = evict_fraction
        self.history_max_length = history_max_length
        self.history_summary_threshold = history_summary_threshold
        self.history_keep_recent = history_keep_recent
        self._background: set[asyncio.Task] = set()

    async def summarize(
        self,
        messages: list[MessageDict],
        user_id: str | None = None,
        session_id: str | None = None,
        force: bool = False,
    ) -> SummarizationResult:
        """Compact messages according to the configured mode."""
        unchanged = SummarizationResult(summarized=False, messages=messages)

        if self.mode == SummarizationMode.NONE:
            return unchanged

        if not force and len(messages) <= self.buffer_limit:
            logger.debug(f"Buffer not full: {len(messages)}/{self.buffer_limit}")
            return unchanged

        if self.mode == SummarizationMode.STATIC_BUFFER:
            return self._static_buffer(messages, user_id, session_id, force)
        return await self._partial_evict(messages, force)

    def _static_buffer(
        self,
        messages: list[MessageDict],
        user_id: str | None,
        session_id: str | None,
        force: bool,
    ) -> SummarizationResult:
        retain = 0 if force else self.buffer_min

        # Retained part must start at a user turn
        trim_index = max(1, len(messages) - retain)
        while trim_index < len(messages) and messages[trim_index].get("role") != "user":
            trim_index += 1

        evicted = messages[1:trim_index]
        retained = messages[:1] + messages[trim_index:]
        if not evicted:
            return SummarizationResult(summarized=False, messages=messages)

        logger.info(f"Static buffer: evicting {len(evicted)} messages, retaining {len(retained)}")

        task = asyncio.create_task(
            self._store_summary(evicted, len(retained), user_id, session_id)
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

        return SummarizationResult(summarized=True, messages=retained, evicted_count=len(evicted))

    async def _partial_evict(
        self, messages: list[MessageDict], force: bool
    ) -> SummarizationResult:
        if not force:
            return SummarizationResult(summarized=False, messages=messages)

        total = len(messages)
        boundary = round((1 - self.evict_fraction) * total)
        for idx in range(boundary, total):
            if messages[idx].get("role") == "assistant":
                boundary = idx
                break

        to_summarize = messages[1:boundary]
        retained = messages[boundary:]
        if not to_summarize:
            return SummarizationResult(summarized=False, messages=messages)

        logger.info(f"Partial evict: summarizing {len(to_summarize)} messages")
        summary = await self.generate_summary(to_summarize, len(retained))

        summary_message = {
            "role": "user",
            "content": f"[Previous conversation summary]\n{summary}",
            "metadata": {"is_summary": True, "summarized_count": len(to_summarize)},
        }
        return SummarizationResult(
            summarized=True,
            messages=messages[:1] + [summary_message] + retained,
            evicted_count=len(to_summarize),
            summary=summary,
        )

    async def generate_summary(self, messages: list[MessageDict], retain_count: int) -> str:
        if retain_count == 0:
            instruction = FORGET_ALL_PROMPT
        else:
            instruction = KEEP_LAST_PROMPT.format(retain=retain_count)

        return await self.llm.invoke(
            [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": instruction},
                {
                    "role": "user",
                    "content": f"Conversation to summarize:\n{conversation_text(messages)}",
                },
            ]
        )

    async def _store_summary(
        self,
        evicted: list[MessageDict],
        retain_count: int,
        user_id: str | None,
        session_id: str | None,
    ) -> None:
        summary = await self.generate_summary(evicted, retain_count)
        logger.info(f"Generated summary: {summary[:100]}...")

        if self.episodic is None or user_id is None:
            return

        await self.episodic.add(
            EpisodicMemory(
                id=str(uuid4()),
                user_id=user_id,
                session_id=session_id,
                type=EpisodicMemoryType.SUMMARY,
                content=summary,
                context="conversation summary",
                importance=SUMMARY_IMPORTANCE,
                metadata={"summarized_count": len(evicted)},
            )
        )

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background summary failed: {error}")

    async def drain(self) -> None:
        """Wait for background summaries still in flight."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # History optimization

    def trim(self, messages: list[MessageDict], keep_latest: int = 20) -> list[MessageDict]:
        """Keep messages flagged ``important`` plus the newest ``keep_latest``."""
        if len(messages) <= keep_latest:
            return messages

        important = [m for m in messages if m.get("important")]
        recent = messages[-keep_latest:]

        seen: set[int] = set()
        result = []
        for message in important + recent:
            if id(message) in seen:
                continue
            seen.add(id(message))
            result.append(message)
        return result

    async def compress(self, messages: list[MessageDict]) -> list[MessageDict]:
        """Replace everything but the recent tail with one system summary message.

        Falls back to trim() if the model call fails.
        """
        if len(messages) < self.history_summary_threshold:
            return messages

        older = messages[: -self.history_keep_recent]
        recent = messages[-self.history_keep_recent :]

        try:
            summary = await self.llm.invoke(
                [
                    {"role": "system", "content": COMPRESS_PROMPT},
                    {"role": "user", "content": conversation_text(older)},
                ]
            )
        except Exception as e:
            logger.error(f"History summary failed, trimming instead: {e}")
            return self.trim(messages, self.history_max_length)

        summary_message = {
            "role": "system",
            "content": f"[History summary - {len(older)} messages]\n{summary}",
        }
        return [summary_message] + recent

    async def optimize(self, messages: list[MessageDict]) -> list[MessageDict]:
        """Summarize then trim, only when history exceeds history_max_length."""
        if len(messages) <= self.history_max_length:
            return messages
        compressed = await self.compress(messages)
        return self.trim(compressed, self.history_max_length)
