"""Episodic (mid-term) memory rows and their vector index entries."""

import json
from datetime import datetime
from typing import Any

from recall.core.logging import get_logger
from recall.memory.base import EpisodicMemory, EpisodicMemoryType
from recall.storage.database import Database
from recall.vector.documents import Document
from recall.vector.index import VectorIndex

logger = get_logger("memory.episodic")


class EpisodicMemoryStore:
    """Rows in ``episodic_memories`` mirrored into a vector collection.

    Rows are immutable; the expiry sweep is the only deletion path.
    """

    def __init__(self, db: Database, index: VectorIndex, collection: str = "user_memories"):
        self.db = db
        self.index = index
        self.collection = collection

    @staticmethod
    def _row_values(memory: EpisodicMemory) -> tuple:
        return (
            memory.id,
            memory.user_id,
            memory.session_id,
            memory.type.value,
            memory.content,
            memory.context,
            memory.importance,
            memory.created_at,
            memory.expires_at,
            json.dumps(memory.metadata) if memory.metadata else None,
        )

    @staticmethod
    def _from_row(row: Any) -> EpisodicMemory:
        return EpisodicMemory(
            id=row["id"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            type=EpisodicMemoryType(row["type"]),
            content=row["content"],
            context=row["context"],
            importance=row["importance"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
        )

    async def bulk_insert(self, memories: list[EpisodicMemory]) -> int:
        """Index memories for similarity recall, then insert the rows. Returns row count.

        Indexing goes first so a failed embedding leaves no unindexed row
        behind; if the row insert fails, the index entries are removed again.
        """
        if not memories:
            return 0

        ids = [m.id for m in memories]
        await self.index.add_documents(
            [Document(page_content=m.page_content, metadata=m.index_metadata()) for m in memories],
            self.collection,
            ids,
        )

        try:
            await self.db.conn.executemany(
                """INSERT INTO episodic_memories
                   (id, user_id, session_id, type, content, context, importance,
                    created_at, expires_at, metadata)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [self._row_values(m) for m in memories],
            )
            await self.db.conn.commit()
        except Exception:
            await self.db.conn.rollback()
            await self.index.delete(ids, self.collection)
            raise

        for memory in memories:
            await self._record_history(memory.id, memory.user_id, "ADD", None, memory.content)

        logger.info(f"Inserted {len(memories)} episodic memories")
        return len(memories)

    async def add(self, memory: EpisodicMemory) -> EpisodicMemory:
        await self.bulk_insert([memory])
        return memory

    async def get(self, memory_id: str, user_id: str) -> EpisodicMemory | None:
        """Get memory if it exists and belongs to user_id."""
        async with self.db.conn.execute(
            "SELECT * FROM episodic_memories WHERE id = ? AND user_id = ?", (memory_id, user_id)
        ) as cursor:
            row = await cursor.fetchone()
        return self._from_row(row) if row else None

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[EpisodicMemory]:
        """Most recent memories first."""
        async with self.db.conn.execute(
            "SELECT * FROM episodic_memories WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        ) as cursor:
            return [self._from_row(row) async for row in cursor]

    async def cleanup_expired(self) -> int:
        """Delete expired rows and their index entries."""
        now = datetime.now()
        async with self.db.conn.execute(
            "SELECT id, user_id, content FROM episodic_memories "
            "WHERE expires_at IS NOT NULL AND expires_at < ?",
            (now,),
        ) as cursor:
            expired = [(row["id"], row["user_id"], row["content"]) async for row in cursor]

        if not expired:
            return 0

        ids = [memory_id for memory_id, _, _ in expired]
        placeholders = ", ".join("?" for _ in ids)
        await self.db.conn.execute(
            f"DELETE FROM episodic_memories WHERE id IN ({placeholders})", ids
        )
        await self.db.conn.commit()
        await self.index.delete(ids, self.collection)

        for memory_id, user_id, content in expired:
            await self._record_history(memory_id, user_id, "EXPIRE", content, None)

        logger.info(f"Removed {len(ids)} expired episodic memories")
        return len(ids)

    async def _record_history(
        self,
        memory_id: str,
        user_id: str,
        event: str,
        previous_value: str | None,
        new_value: str | None,
    ) -> None:
        # Audit only: a failed history write must not fail the memory write
        try:
            await self.db.conn.execute(
                """INSERT INTO memory_history
                   (memory_id, memory_type, user_id, event, previous_value, new_value,
                    actor_id, created_at)
                   VALUES (?, 'episodic', ?, ?, ?, ?, 'system', ?)""",
                (memory_id, user_id, event, previous_value, new_value, datetime.now()),
            )
            await self.db.conn.commit()
        except Exception as e:
            logger.warning(f"Failed to record memory history: {e}")

    async def get_history(self, memory_id: str) -> list[dict[str, Any]]:
        async with self.db.conn.execute(
            "SELECT event, previous_value, new_value, created_at FROM memory_history "
            "WHERE memory_id = ? ORDER BY id",
            (memory_id,),
        ) as cursor:
            return [dict(row) async for row in cursor]
