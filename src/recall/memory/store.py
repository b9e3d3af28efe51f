"""Long-term scoped key/value memory with priority-ordered merge."""

import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from recall.core.logging import get_logger
from recall.memory.base import MemoryCategory, MemoryEntry, MemoryScope, MergedMemoryContext
from recall.storage.database import Database
from recall.storage.sessions import SessionDirectory

logger = get_logger("memory.store")

CUSTOM_RULES_KEY = "custom_rules"


class MemoryStore:
    """Global (per user) and folder (per project) memory entries.

    Global rows store folder_id = '' and folder rows user_id = '', so the
    composite unique key works for both scopes.
    """

    def __init__(self, db: Database, sessions: SessionDirectory):
        self.db = db
        self.sessions = sessions

    # Writes

    async def _put(
        self,
        scope: MemoryScope,
        owner_id: str,
        category: MemoryCategory,
        key: str,
        value: Any,
        priority: int,
        expires_at: datetime | None,
    ) -> MemoryEntry:
        user_id = owner_id if scope == MemoryScope.GLOBAL else ""
        folder_id = owner_id if scope == MemoryScope.FOLDER else ""
        now = datetime.now()

        await self.db.conn.execute(
            """INSERT INTO memories
               (id, user_id, folder_id, scope, category, key, value, priority,
                expires_at, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, folder_id, scope, category, key) DO UPDATE SET
                   value = excluded.value,
                   priority = excluded.priority,
                   expires_at = excluded.expires_at,
                   updated_at = excluded.updated_at""",
            (
                str(uuid4()),
                user_id,
                folder_id,
                scope.value,
                category.value,
                key,
                json.dumps(value),
                priority,
                expires_at,
                now,
                now,
            ),
        )
        await self.db.conn.commit()

        return MemoryEntry(
            scope=scope,
            owner_id=owner_id,
            category=category,
            key=key,
            value=value,
            priority=priority,
            expires_at=expires_at,
        )

    async def put_global(
        self,
        user_id: str,
        category: MemoryCategory,
        key: str,
        value: Any,
        priority: int = 0,
        expires_at: datetime | None = None,
    ) -> MemoryEntry:
        """Upsert a user-wide entry."""
        return await self._put(
            MemoryScope.GLOBAL, user_id, category, key, value, priority, expires_at
        )

    async def put_folder(
        self,
        folder_id: str,
        category: MemoryCategory,
        key: str,
        value: Any,
        priority: int = 0,
        expires_at: datetime | None = None,
    ) -> MemoryEntry:
        """Upsert a folder-wide entry."""
        return await self._put(
            MemoryScope.FOLDER, folder_id, category, key, value, priority, expires_at
        )

    # Reads

    async def _query(self, column: str, owner_id: str, scope: MemoryScope) -> list[MemoryEntry]:
        entries = []
        async with self.db.conn.execute(
            f"""SELECT category, key, value, priority, expires_at FROM memories
                WHERE {column} = ? AND scope = ?
                  AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY priority DESC""",
            (owner_id, scope.value, datetime.now()),
        ) as cursor:
            async for row in cursor:
                entries.append(
                    MemoryEntry(
                        scope=scope,
                        owner_id=owner_id,
                        category=MemoryCategory(row["category"]),
                        key=row["key"],
                        value=json.loads(row["value"]),
                        priority=row["priority"],
                        expires_at=row["expires_at"],
                    )
                )
        return entries

    async def get_global_memories(self, user_id: str) -> list[MemoryEntry]:
        """Live global entries, highest priority first."""
        return await self._query("user_id", user_id, MemoryScope.GLOBAL)

    async def get_folder_memories(self, folder_id: str) -> list[MemoryEntry]:
        """Live folder entries, highest priority first."""
        return await self._query("folder_id", folder_id, MemoryScope.FOLDER)

    async def get_merged_memory_for_session(
        self, session_id: str, user_id: str | None = None
    ) -> MergedMemoryContext:
        """Merge global then folder entries so folder values win per (category, key)."""
        folder_id = await self.sessions.get_folder_id(session_id)

        global_entries = await self.get_global_memories(user_id) if user_id else []
        folder_entries = await self.get_folder_memories(folder_id) if folder_id else []

        return merge_memories(global_entries, folder_entries)

    # Convenience

    async def _get_value(
        self, folder_id: str, category: MemoryCategory, key: str
    ) -> Any | None:
        async with self.db.conn.execute(
            """SELECT value FROM memories
               WHERE folder_id = ? AND scope = ? AND category = ? AND key = ?""",
            (folder_id, MemoryScope.FOLDER.value, category.value, key),
        ) as cursor:
            row = await cursor.fetchone()
        return json.loads(row["value"]) if row else None

    async def add_folder_rule(self, folder_id: str, rule: str) -> None:
        """Append a rule to the folder's custom_rules list, no-op if present."""
        rules = await self._get_value(folder_id, MemoryCategory.RULES, CUSTOM_RULES_KEY) or []
        if rule in rules:
            return
        rules.append(rule)
        await self.put_folder(folder_id, MemoryCategory.RULES, CUSTOM_RULES_KEY, rules)

    async def remove_folder_rule(self, folder_id: str, rule: str) -> None:
        """Remove a rule from the folder's custom_rules list."""
        rules = await self._get_value(folder_id, MemoryCategory.RULES, CUSTOM_RULES_KEY)
        if rules is None:
            return
        remaining = [r for r in rules if r != rule]
        await self.put_folder(folder_id, MemoryCategory.RULES, CUSTOM_RULES_KEY, remaining)

    async def set_folder_context(self, folder_id: str, key: str, value: Any) -> None:
        await self.put_folder(folder_id, MemoryCategory.CONTEXT, key, value)

    async def set_global_pref(self, user_id: str, key: str, value: Any) -> None:
        await self.put_global(user_id, MemoryCategory.PREFS, key, value)

    # Deletes

    async def delete_global_memory(self, user_id: str, category: MemoryCategory, key: str) -> int:
        cursor = await self.db.conn.execute(
            "DELETE FROM memories WHERE user_id = ? AND scope = ? AND category = ? AND key = ?",
            (user_id, MemoryScope.GLOBAL.value, category.value, key),
        )
        await self.db.conn.commit()
        return cursor.rowcount

    async def delete_folder_memory(self, folder_id: str, category: MemoryCategory, key: str) -> int:
        cursor = await self.db.conn.execute(
            "DELETE FROM memories WHERE folder_id = ? AND scope = ? AND category = ? AND key = ?",
            (folder_id, MemoryScope.FOLDER.value, category.value, key),
        )
        await self.db.conn.commit()
        return cursor.rowcount

    async def cleanup_expired(self) -> int:
        """Delete every entry whose expires_at has passed."""
        cursor = await self.db.conn.execute(
            "DELETE FROM memories WHERE expires_at IS NOT NULL AND expires_at < ?",
            (datetime.now(),),
        )
        await self.db.conn.commit()
        if cursor.rowcount:
            logger.info(f"Removed {cursor.rowcount} expired memory entries")
        return cursor.rowcount


def merge_memories(
    global_entries: list[MemoryEntry], folder_entries: list[MemoryEntry]
) -> MergedMemoryContext:
    """Apply global entries, then folder entries on top."""
    merged = MergedMemoryContext()
    for entry in global_entries:
        merged.apply(entry)
    for entry in folder_entries:
        merged.apply(entry)
    return merged
