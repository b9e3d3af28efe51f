"""Shared fixtures: temporary database, deterministic embedder, scripted LLM."""

import hashlib
import re
from collections.abc import Callable
from pathlib import Path

import pytest

from recall.llm.base import EmbeddingProvider, LLMConfig, LLMProvider, LLMResponse
from recall.storage.cache import SessionCache, TTLCache
from recall.storage.database import Database
from recall.storage.queue import DelayedJobQueue
from recall.storage.sessions import SessionDirectory
from recall.vector.index import VectorIndex

EMBEDDING_DIMS = 4096
_WORD_RE = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbeddings(EmbeddingProvider):
    """Hashes each word into a bucket. Equal text gives equal vectors."""

    def __init__(self):
        self.embedded: list[str] = []

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * EMBEDDING_DIMS
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % EMBEDDING_DIMS
            vector[bucket] += 1.0
        return vector

    async def embed_query(self, text: str) -> list[float]:
        self.embedded.append(text)
        return self._vector(text)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.embedded.extend(texts)
        return [self._vector(t) for t in texts]


class ScriptedLLM(LLMProvider):
    """Answers from a callable of the message list; records every call."""

    def __init__(self, responder: str | Callable[[list[dict]], str] = ""):
        self.responder = responder
        self.calls: list[list[dict]] = []

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        self.calls.append(messages)
        if callable(self.responder):
            content = self.responder(messages)
        else:
            content = self.responder
        return LLMResponse(content=content, model="scripted")


def prompt_text(messages: list[dict]) -> str:
    return "\n".join(m["content"] for m in messages)


@pytest.fixture
async def db(tmp_path: Path):
    """Connected temporary database."""
    database = Database(tmp_path / "test.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def embeddings() -> BagOfWordsEmbeddings:
    return BagOfWordsEmbeddings()


@pytest.fixture
def index(db: Database, embeddings: BagOfWordsEmbeddings) -> VectorIndex:
    return VectorIndex(db, embeddings)


@pytest.fixture
def cache(db: Database) -> TTLCache:
    return TTLCache(db)


@pytest.fixture
def session_cache(cache: TTLCache) -> SessionCache:
    return SessionCache(cache, ttl_seconds=3600, max_messages=50)


@pytest.fixture
def sessions(db: Database) -> SessionDirectory:
    return SessionDirectory(db)


@pytest.fixture
def queue(db: Database) -> DelayedJobQueue:
    return DelayedJobQueue(db, max_attempts=3, backoff_seconds=2.0, poll_interval=0.01)


@pytest.fixture
def make_llm() -> type[ScriptedLLM]:
    """ScriptedLLM factory: make_llm("reply") or make_llm(lambda messages: ...)."""
    return ScriptedLLM
