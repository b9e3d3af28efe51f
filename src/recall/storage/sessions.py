"""Session directory: which user owns a session and which folder it lives in."""

from dataclasses import dataclass
from datetime import datetime

from recall.storage.database import Database


@dataclass
class SessionInfo:
    id: str
    user_id: str
    folder_id: str | None
    created_at: datetime


class SessionDirectory:
    """Minimal session lookup used to resolve folder-scoped memory."""

    def __init__(self, db: Database):
        self.db = db

    async def register(self, session_id: str, user_id: str, folder_id: str | None = None) -> None:
        """Create or update a session's owner and folder."""
        await self.db.conn.execute(
            """INSERT INTO sessions (id, user_id, folder_id, created_at) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET user_id = excluded.user_id,
                                             folder_id = excluded.folder_id""",
            (session_id, user_id, folder_id, datetime.now()),
        )
        await self.db.conn.commit()

    async def move_to_folder(self, session_id: str, folder_id: str | None) -> bool:
        cursor = await self.db.conn.execute(
            "UPDATE sessions SET folder_id = ? WHERE id = ?", (folder_id, session_id)
        )
        await self.db.conn.commit()
        return cursor.rowcount == 1

    async def get(self, session_id: str) -> SessionInfo | None:
        async with self.db.conn.execute(
            "SELECT id, user_id, folder_id, created_at FROM sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return SessionInfo(
            id=row["id"],
            user_id=row["user_id"],
            folder_id=row["folder_id"],
            created_at=row["created_at"],
        )

    async def get_folder_id(self, session_id: str) -> str | None:
        """Folder of the session, None if unknown or unfiled."""
        info = await self.get(session_id)
        return info.folder_id if info else None
