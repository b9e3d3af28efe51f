"""User profile structure and persistence."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from recall.core.logging import get_logger
from recall.storage.database import Database

logger = get_logger("memory.profile")

# Fields an extraction patch may set
PROFILE_FIELDS = (
    "preferred_name",
    "age",
    "interests",
    "occupation",
    "location",
    "conversation_preferences",
    "relationships",
)

_LIST_FIELDS = ("interests", "conversation_preferences", "relationships")

# camelCase keys models tend to emit, mapped to profile fields
_ALIASES = {
    "preferredName": "preferred_name",
    "conversationPreferences": "conversation_preferences",
}


@dataclass
class UserProfile:
    """Structured user profile learned from conversations.

    One row per user, created on the first patch.
    """

    user_id: str

    # Basic identity
    preferred_name: str | None = None
    age: int | None = None
    occupation: str | None = None
    location: str | None = None

    # Interests and conversation style
    interests: list[str] = field(default_factory=list)
    conversation_preferences: list[str] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)

    # Metadata
    created_at: datetime = field(default_factory=datetime.now)
    last_updated: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize profile to dictionary for JSON prompts."""
        return {
            "user_id": self.user_id,
            "preferred_name": self.preferred_name,
            "age": self.age,
            "occupation": self.occupation,
            "location": self.location,
            "interests": self.interests,
            "conversation_preferences": self.conversation_preferences,
            "relationships": self.relationships,
            "last_updated": self.last_updated.isoformat(),
        }

    def to_prompt_context(self) -> str:
        """Format profile for injection into system prompts."""
        lines = []

        if self.preferred_name:
            lines.append(f"Name: {self.preferred_name}")

        if self.occupation:
            lines.append(f"Occupation: {self.occupation}")

        if self.location:
            lines.append(f"Location: {self.location}")

        if self.interests:
            lines.append(f"Interests: {', '.join(self.interests)}")

        if self.conversation_preferences:
            lines.append(f"Conversation preferences: {', '.join(self.conversation_preferences)}")

        return "\n".join(lines)


_MISSING = object()


def _coerce_list(name: str, value: Any) -> Any:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]

    items = []
    for item in value:
        if name == "relationships":
            if isinstance(item, dict):
                items.append(item)
            elif isinstance(item, str) and item.strip():
                items.append({"description": item.strip()})
        elif isinstance(item, str) and item.strip():
            items.append(item.strip())
    if value and not items:
        return _MISSING
    return items


def _coerce_age(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        return _MISSING
    try:
        return int(value)
    except (TypeError, ValueError):
        return _MISSING


def _coerce_text(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return _MISSING
    text = str(value).strip()
    return text or None


def normalize_patch(updates: dict[str, Any]) -> dict[str, Any]:
    """Keep only known profile fields, accepting camelCase aliases.

    Values are coerced to the column's shape: a lone string becomes a
    one-item list, age goes through int(). Values that cannot be coerced
    are dropped rather than failing the whole patch.
    """
    patch = {}
    for key, value in updates.items():
        name = _ALIASES.get(key, key)
        if name not in PROFILE_FIELDS:
            continue

        if name in _LIST_FIELDS:
            coerced = _coerce_list(name, value)
        elif name == "age":
            coerced = _coerce_age(value)
        else:
            coerced = _coerce_text(value)

        if coerced is _MISSING:
            logger.debug(f"Dropping profile field {name}: unusable value {value!r}")
            continue
        patch[name] = coerced
    return patch


class ProfileStore:
    """Persistence for UserProfile rows."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, user_id: str) -> UserProfile | None:
        """Get profile, or None if the user has never been patched."""
        async with self.db.conn.execute(
            "SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            return None

        return UserProfile(
            user_id=row["user_id"],
            preferred_name=row["preferred_name"],
            age=row["age"],
            occupation=row["occupation"],
            location=row["location"],
            interests=json.loads(row["interests"]),
            conversation_preferences=json.loads(row["conversation_preferences"]),
            relationships=json.loads(row["relationships"]),
            created_at=row["created_at"],
            last_updated=row["updated_at"],
        )

    async def patch(self, user_id: str, updates: dict[str, Any]) -> list[str]:
        """Upsert only the fields present in ``updates``. Returns the fields written."""
        patch = normalize_patch(updates)
        if not patch:
            return []

        columns = list(patch)
        values = [json.dumps(patch[c]) if c in _LIST_FIELDS else patch[c] for c in columns]
        now = datetime.now()

        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        await self.db.conn.execute(
            f"""INSERT INTO user_profiles (user_id, {', '.join(columns)}, created_at, updated_at)
                VALUES (?, {placeholders}, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET {assignments}, updated_at = excluded.updated_at""",
            (user_id, *values, now, now),
        )
        await self.db.conn.commit()

        logger.info(f"Patched user profile for {user_id}: {columns}")
        return columns
