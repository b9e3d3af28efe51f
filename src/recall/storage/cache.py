"""TTL key-value cache and the short-term session helpers built on it."""

import json
from datetime import datetime, timedelta
from typing import Any

from recall.core.logging import get_logger
from recall.core.typing import JSONDict
from recall.storage.database import Database

logger = get_logger("storage.cache")


class TTLCache:
    """SQLite-backed key-value cache with per-key expiry.

    Expired keys are dropped lazily on read and in bulk by purge_expired().
    """

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def _expiry(ttl: float | None) -> datetime | None:
        if ttl is None:
            return None
        return datetime.now() + timedelta(seconds=ttl)

    async def get(self, key: str) -> Any | None:
        """Get value, or None if missing or expired."""
        async with self.db.conn.execute(
            "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None

        if row["expires_at"] is not None and row["expires_at"] <= datetime.now():
            await self.delete(key)
            return None

        return json.loads(row["value"])

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set value with optional TTL in seconds."""
        await self.db.conn.execute(
            """INSERT INTO cache_entries (key, value, expires_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                              expires_at = excluded.expires_at""",
            (key, json.dumps(value), self._expiry(ttl)),
        )
        await self.db.conn.commit()

    async def delete(self, key: str) -> None:
        """Delete key if present."""
        await self.db.conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await self.db.conn.commit()

    async def expire(self, key: str, ttl: float) -> None:
        """Reset TTL on an existing key."""
        await self.db.conn.execute(
            "UPDATE cache_entries SET expires_at = ? WHERE key = ?",
            (self._expiry(ttl), key),
        )
        await self.db.conn.commit()

    async def purge_expired(self) -> int:
        """Delete all expired keys, return count."""
        cursor = await self.db.conn.execute(
            "DELETE FROM cache_entries WHERE expires_at IS NOT NULL AND expires_at <= ?",
            (datetime.now(),),
        )
        await self.db.conn.commit()
        return cursor.rowcount


class SessionCache:
    """Short-term memory: session context, message window, entity slots, debounce keys."""

    def __init__(self, cache: TTLCache, ttl_seconds: float = 3600, max_messages: int = 50):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages

    # Session context

    @staticmethod
    def _context_key(session_id: str) -> str:
        return f"memory:session:{session_id}:context"

    async def set_session_context(
        self, session_id: str, context: JSONDict, ttl: float | None = None
    ) -> None:
        await self.cache.set(self._context_key(session_id), context, ttl or self.ttl_seconds)

    async def get_session_context(self, session_id: str) -> JSONDict | None:
        value = await self.cache.get(self._context_key(session_id))
        return value if isinstance(value, dict) else None

    async def delete_session_context(self, session_id: str) -> None:
        await self.cache.delete(self._context_key(session_id))

    # Message sliding window

    @staticmethod
    def _messages_key(session_id: str) -> str:
        return f"memory:session:{session_id}:messages"

    async def push_message(self, session_id: str, message: JSONDict) -> None:
        """Append message, keeping only the newest max_messages."""
        key = self._messages_key(session_id)
        window = await self.cache.get(key) or []
        window.append(message)
        await self.cache.set(key, window[-self.max_messages :], self.ttl_seconds)

    async def get_recent_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[JSONDict]:
        window = await self.cache.get(self._messages_key(session_id)) or []
        count = limit or self.max_messages
        return window[-count:]

    async def clear_messages(self, session_id: str) -> None:
        await self.cache.delete(self._messages_key(session_id))

    # Entity slots

    @staticmethod
    def _slots_key(session_id: str) -> str:
        return f"memory:session:{session_id}:slots"

    async def update_entity_slots(self, session_id: str, slots: JSONDict) -> None:
        key = self._slots_key(session_id)
        current = await self.cache.get(key) or {}
        current.update(slots)
        await self.cache.set(key, current, self.ttl_seconds)

    async def update_entity_slot(self, session_id: str, slot_name: str, value: Any) -> None:
        await self.update_entity_slots(session_id, {slot_name: value})

    async def get_entity_slots(self, session_id: str) -> JSONDict:
        return await self.cache.get(self._slots_key(session_id)) or {}

    async def delete_entity_slot(self, session_id: str, slot_name: str) -> None:
        key = self._slots_key(session_id)
        current = await self.cache.get(key)
        if current and slot_name in current:
            del current[slot_name]
            await self.cache.set(key, current, self.ttl_seconds)

    # Debounce control

    @staticmethod
    def _debounce_key(session_id: str) -> str:
        return f"memory:debounce:{session_id}"

    async def get_debounce_task_id(self, session_id: str) -> str | None:
        return await self.cache.get(self._debounce_key(session_id))

    async def update_debounce_key(self, session_id: str, task_id: str, ttl_seconds: float) -> None:
        await self.cache.set(self._debounce_key(session_id), task_id, ttl_seconds)

    async def cancel_debounce(self, session_id: str) -> None:
        await self.cache.delete(self._debounce_key(session_id))
        logger.debug(f"Cleared debounce key for session {session_id}")
