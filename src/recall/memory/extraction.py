"""Extraction worker - turns a conversation batch into durable memories."""

import asyncio
import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from recall.core.logging import get_logger
from recall.core.typing import MessageDict
from recall.llm.base import LLMProvider
from recall.llm.parsing import extract_json_array, extract_json_object
from recall.memory.base import (
    EpisodicMemory,
    EpisodicMemoryType,
    ExtractionJob,
    MemorySchema,
    UpdateMode,
)
from recall.memory.episodic import EpisodicMemoryStore
from recall.memory.profile import ProfileStore
from recall.storage.cache import SessionCache
from recall.storage.queue import Job

logger = get_logger("memory.extraction")

DEFAULT_IMPORTANCE = 0.5

PATCH_PROMPT = """You are a memory extraction assistant. Extract user information from the conversation and return a JSON object.

{description}

{system_prompt}

Current user profile:
{profile}

Schema:
{parameters}

Instructions:
- Only extract information that is explicitly mentioned or strongly implied
- Return a JSON object with only the fields that should be updated
- Use null for fields that should be cleared
- Return an empty object {{}} if no updates are needed"""

PATCH_REQUEST = "Extract the user profile updates as a JSON object. Return only valid JSON, no explanation."

INSERT_PROMPT = """You are a memory extraction assistant. Extract notable memories from the conversation.

{description}

{system_prompt}

Schema:
{parameters}

Instructions:
- Extract multiple memories if appropriate
- Each memory should have 'context' and 'content' fields
- Context describes when/where this memory is relevant
- Content is the actual information to remember
- Return a JSON array of memories
- Return an empty array [] if no notable memories"""

INSERT_REQUEST = "Extract notable memories as a JSON array. Return only valid JSON array, no explanation."


def serialize_messages(messages: list[Any]) -> list[MessageDict]:
    """Normalize dicts or message objects to plain {role, content} dicts."""
    result = []
    for msg in messages:
        if isinstance(msg, dict):
            role, content = msg.get("role", "user"), msg.get("content", "")
        else:
            role, content = getattr(msg, "role", "user"), getattr(msg, "content", "")
        if not isinstance(content, str):
            content = json.dumps(content, ensure_ascii=False)
        result.append({"role": role, "content": content})
    return result


def conversation_text(messages: list[MessageDict]) -> str:
    return "\n".join(
        f"{m['role']}: {m['content']}" for m in messages if m.get("role") != "system"
    )


class ExtractionWorker:
    """Runs every schema of an extraction job against the conversation."""

    def __init__(
        self,
        llm: LLMProvider,
        profiles: ProfileStore,
        episodic: EpisodicMemoryStore,
        session_cache: SessionCache,
    ):
        self.llm = llm
        self.profiles = profiles
        self.episodic = episodic
        self.session_cache = session_cache

    async def process(self, job: Job) -> None:
        """Queue handler. Exceptions propagate so the queue's retry policy applies."""
        data = ExtractionJob.from_payload(job.payload)
        logger.info(f"Processing extraction job {job.id} for user {data.user_id}")

        try:
            await self.extract_memories(data)
        except Exception as e:
            logger.error(f"Failed extraction job {job.id}: {e}")
            raise

        # Only clear the debounce key if no newer job has replaced it
        if await self.session_cache.get_debounce_task_id(data.session_id) == job.id:
            await self.session_cache.cancel_debounce(data.session_id)

        logger.info(f"Completed extraction job {job.id}")

    async def extract_memories(self, data: ExtractionJob) -> None:
        """Run all schemas concurrently; one schema failing never blocks another."""
        if not data.messages:
            logger.warning("No messages to extract memories from")
            return

        logger.info(
            f"Extracting memories for user {data.user_id} from {len(data.messages)} messages"
        )

        await asyncio.gather(
            *(self._process_schema(data, schema) for schema in data.schemas),
            return_exceptions=True,
        )

    async def _process_schema(self, data: ExtractionJob, schema: MemorySchema) -> None:
        try:
            if schema.update_mode == UpdateMode.PATCH:
                await self.patch_memory(data.user_id, data.messages, schema)
            else:
                await self.insert_memory(data.user_id, data.session_id, data.messages, schema)
        except Exception as e:
            logger.error(f"Failed to process schema {schema.name}: {e}", exc_info=True)

    async def patch_memory(
        self, user_id: str, messages: list[MessageDict], schema: MemorySchema
    ) -> list[str]:
        """Patch mode: merge extracted fields into the user profile."""
        existing = await self.profiles.get(user_id)

        system_prompt = PATCH_PROMPT.format(
            description=schema.description,
            system_prompt=schema.system_prompt,
            profile=json.dumps(existing.to_dict(), indent=2) if existing else "No existing profile",
            parameters=json.dumps(schema.parameters, indent=2),
        )
        response = await self.llm.invoke(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": conversation_text(messages)},
                {"role": "user", "content": PATCH_REQUEST},
            ]
        )

        parsed = extract_json_object(response)
        if not parsed.ok:
            logger.warning(f"Skipping patch for {schema.name}: {parsed.error}")
            return []
        if not parsed.value:
            logger.debug("No updates extracted, skipping patch")
            return []

        return await self.profiles.patch(user_id, parsed.value)

    async def insert_memory(
        self,
        user_id: str,
        session_id: str,
        messages: list[MessageDict],
        schema: MemorySchema,
    ) -> list[EpisodicMemory]:
        """Insert mode: one episodic memory per extracted item."""
        system_prompt = INSERT_PROMPT.format(
            description=schema.description,
            system_prompt=schema.system_prompt,
            parameters=json.dumps(schema.parameters, indent=2),
        )
        response = await self.llm.invoke(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": conversation_text(messages)},
                {"role": "user", "content": INSERT_REQUEST},
            ]
        )

        parsed = extract_json_array(response)
        if not parsed.ok:
            logger.warning(f"Skipping insert for {schema.name}: {parsed.error}")
            return []
        if not parsed.value:
            logger.debug("No memories extracted, skipping insert")
            return []

        now = datetime.now()
        memories = [
            EpisodicMemory(
                id=str(uuid4()),
                user_id=user_id,
                session_id=session_id,
                type=EpisodicMemoryType.NOTE,
                content=str(item.get("content", "")),
                context=str(item.get("context", "")),
                importance=DEFAULT_IMPORTANCE,
                created_at=now,
            )
            for item in parsed.value
            if isinstance(item, dict) and item.get("content")
        ]
        if not memories:
            return []

        await self.episodic.bulk_insert(memories)
        logger.info(f"Inserted {len(memories)} episodic memories for {user_id}")
        return memories
