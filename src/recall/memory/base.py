"""
Memory data model shared by the store, extraction and fusion layers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from recall.core.typing import JSONDict, MessageDict

if TYPE_CHECKING:
    from recall.memory.profile import UserProfile


class MemoryScope(Enum):
    GLOBAL = "global"  # per user
    FOLDER = "folder"  # per project folder


class MemoryCategory(Enum):
    PREFS = "prefs"
    RULES = "rules"
    KNOWLEDGE = "knowledge"
    CONTEXT = "context"


@dataclass
class MemoryEntry:
    """Single long-term memory record. Unique per (owner, scope, category, key)."""

    scope: MemoryScope
    owner_id: str
    category: MemoryCategory
    key: str
    value: Any
    priority: int = 0
    expires_at: datetime | None = None


@dataclass
class MergedMemoryContext:
    """Global and folder entries folded together for one session."""

    prefs: JSONDict = field(default_factory=dict)
    rules: list[str] = field(default_factory=list)
    knowledge: JSONDict = field(default_factory=dict)
    context: JSONDict = field(default_factory=dict)
    profile: "UserProfile | None" = None

    def apply(self, entry: MemoryEntry) -> None:
        """Fold one entry in. Later entries overwrite keys; rules accumulate as a set."""
        if entry.category == MemoryCategory.PREFS:
            self.prefs[entry.key] = entry.value
        elif entry.category == MemoryCategory.RULES:
            values = entry.value if isinstance(entry.value, list) else [entry.value]
            for rule in values:
                if isinstance(rule, str) and rule not in self.rules:
                    self.rules.append(rule)
        elif entry.category == MemoryCategory.KNOWLEDGE:
            self.knowledge[entry.key] = entry.value
        elif entry.category == MemoryCategory.CONTEXT:
            self.context[entry.key] = entry.value


class EpisodicMemoryType(Enum):
    SUMMARY = "summary"
    EVENT = "event"
    INTERACTION = "interaction"
    NOTE = "note"
    RELATIONSHIP = "relationship"


@dataclass
class EpisodicMemory:
    """Timestamped note extracted from conversation. Immutable once created."""

    id: str
    user_id: str
    content: str
    context: str = ""
    type: EpisodicMemoryType = EpisodicMemoryType.NOTE
    importance: float = 0.5  # 0-1 ranking
    session_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    expires_at: datetime | None = None
    metadata: JSONDict | None = None

    @property
    def page_content(self) -> str:
        """Text that gets embedded: context first, then content."""
        return f"{self.context}\n\n{self.content}"

    def index_metadata(self) -> JSONDict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "type": self.type.value,
            "context": self.context,
            "importance": self.importance,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_index(cls, page_content: str, metadata: JSONDict) -> "EpisodicMemory":
        """Rebuild from a vector record written with index_metadata()."""
        context = metadata.get("context") or ""
        content = page_content
        prefix = f"{context}\n\n"
        if page_content.startswith(prefix):
            content = page_content[len(prefix) :]
        expires_at = metadata.get("expiresAt")
        return cls(
            id=metadata["id"],
            user_id=metadata["userId"],
            session_id=metadata.get("sessionId"),
            type=EpisodicMemoryType(metadata.get("type", "note")),
            content=content,
            context=context,
            importance=float(metadata.get("importance", 0.5)),
            created_at=datetime.fromisoformat(metadata["createdAt"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )


@dataclass
class EpisodicSearchResult:
    memory: EpisodicMemory
    score: float


class UpdateMode(Enum):
    PATCH = "patch"  # merge into the single user profile
    INSERT = "insert"  # append new episodic memories


@dataclass
class MemorySchema:
    """What to extract from a conversation and how to store it."""

    name: str
    description: str
    update_mode: UpdateMode
    parameters: JSONDict = field(default_factory=dict)
    system_prompt: str = ""

    def to_dict(self) -> JSONDict:
        return {
            "name": self.name,
            "description": self.description,
            "update_mode": self.update_mode.value,
            "parameters": self.parameters,
            "system_prompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, data: JSONDict) -> "MemorySchema":
        return cls(
            name=data["name"],
            description=data["description"],
            update_mode=UpdateMode(data["update_mode"]),
            parameters=data.get("parameters") or {},
            system_prompt=data.get("system_prompt") or "",
        )


@dataclass
class ExtractionJob:
    """Payload of one queued extraction run."""

    user_id: str
    session_id: str
    messages: list[MessageDict]
    schemas: list[MemorySchema]

    def to_payload(self) -> JSONDict:
        return {
            "userId": self.user_id,
            "sessionId": self.session_id,
            "messages": self.messages,
            "schemas": [s.to_dict() for s in self.schemas],
        }

    @classmethod
    def from_payload(cls, payload: JSONDict) -> "ExtractionJob":
        return cls(
            user_id=payload["userId"],
            session_id=payload["sessionId"],
            messages=payload.get("messages") or [],
            schemas=[MemorySchema.from_dict(s) for s in payload.get("schemas") or []],
        )
