"""Vector index over SQLite: JSON-encoded embeddings, brute-force cosine ranking."""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from math import sqrt
from typing import Any
from uuid import uuid4

from recall.core.logging import get_logger
from recall.core.typing import MetadataFilter, Vector
from recall.llm.base import EmbeddingProvider
from recall.storage.database import Database
from recall.vector.documents import Document, content_hash, matches_filter

logger = get_logger("vector.index")

DEFAULT_COLLECTION = "default"


class UpsertAction(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class UpsertResult:
    id: str
    action: UpsertAction
    hash: str


def _normalize(vector: Vector) -> Vector:
    length = sqrt(sum(item * item for item in vector))
    if length == 0:
        return vector
    return [item / length for item in vector]


def cosine_similarity(left: Vector, right: Vector) -> float:
    if not left or not right:
        return 0.0
    left, right = _normalize(left), _normalize(right)
    size = min(len(left), len(right))
    return sum(left[idx] * right[idx] for idx in range(size))


class VectorIndex:
    """Embedding-backed semantic store partitioned into named collections.

    Collections are created lazily on first access. Backend and embedding
    failures propagate to the caller.
    """

    def __init__(self, db: Database, embeddings: EmbeddingProvider, filter_overfetch: int = 4):
        self.db = db
        self.embeddings = embeddings
        self.filter_overfetch = filter_overfetch
        self._collections: set[str] = set()

    async def _ensure_collection(self, collection: str) -> None:
        if collection in self._collections:
            return
        await self.db.conn.execute(
            "INSERT OR IGNORE INTO vector_collections (name, created_at) VALUES (?, ?)",
            (collection, datetime.now()),
        )
        await self.db.conn.commit()
        self._collections.add(collection)
        logger.debug(f"Vector collection ready: {collection}")

    @staticmethod
    def _row_to_document(row: Any) -> Document:
        return Document(
            page_content=row["content"],
            metadata=json.loads(row["metadata"]),
            id=row["id"],
        )

    async def _insert(self, collection: str, ids: list[str], docs: list[Document]) -> None:
        vectors = await self.embeddings.embed_documents([d.page_content for d in docs])
        now = datetime.now()
        rows = []
        for record_id, doc, vector in zip(ids, docs, vectors):
            digest = content_hash(doc.page_content)
            metadata = {**doc.metadata, "hash": digest}
            rows.append(
                (
                    collection,
                    record_id,
                    doc.page_content,
                    json.dumps(vector),
                    json.dumps(metadata),
                    digest,
                    now,
                )
            )
        await self.db.conn.executemany(
            """INSERT OR REPLACE INTO vector_records
               (collection, id, content, embedding, metadata, hash, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            rows,
        )
        await self.db.conn.commit()

    async def add_documents(
        self,
        docs: list[Document],
        collection: str = DEFAULT_COLLECTION,
        ids: list[str] | None = None,
    ) -> list[str]:
        """Embed and store documents without dedup. Returns the record ids."""
        await self._ensure_collection(collection)
        if not docs:
            return []
        if ids is not None and len(ids) != len(docs):
            raise ValueError("ids and docs must have the same length")

        record_ids = ids or [d.id or str(uuid4()) for d in docs]
        await self._insert(collection, record_ids, docs)
        logger.info(f"Added {len(docs)} documents to {collection}")
        return record_ids

    async def get(self, record_id: str, collection: str = DEFAULT_COLLECTION) -> Document | None:
        await self._ensure_collection(collection)
        async with self.db.conn.execute(
            "SELECT id, content, metadata FROM vector_records WHERE collection = ? AND id = ?",
            (collection, record_id),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def _hash_of(self, record_id: str, collection: str) -> str | None:
        async with self.db.conn.execute(
            "SELECT hash FROM vector_records WHERE collection = ? AND id = ?",
            (collection, record_id),
        ) as cursor:
            row = await cursor.fetchone()
        return row["hash"] if row else None

    async def _find_id_by_hash(self, digest: str, collection: str) -> str | None:
        async with self.db.conn.execute(
            "SELECT id FROM vector_records WHERE collection = ? AND hash = ? LIMIT 1",
            (collection, digest),
        ) as cursor:
            row = await cursor.fetchone()
        return row["id"] if row else None

    async def upsert(
        self,
        doc: Document,
        collection: str = DEFAULT_COLLECTION,
        record_id: str | None = None,
    ) -> UpsertResult:
        """Insert or replace a document, skipping the embedding call if unchanged.

        With an explicit id, identity is the id: same hash is ``unchanged``,
        different hash replaces the record as ``updated``. The old record
        stays in place if embedding the new content fails. Without an id,
        identity is the content hash.
        """
        await self._ensure_collection(collection)
        digest = content_hash(doc.page_content)
        record_id = record_id or doc.id

        if record_id is not None:
            existing_hash = await self._hash_of(record_id, collection)
            if existing_hash == digest:
                return UpsertResult(id=record_id, action=UpsertAction.UNCHANGED, hash=digest)
            if existing_hash is not None:
                # Replaced in place once the new embedding exists
                await self._insert(collection, [record_id], [doc])
                logger.debug(f"Updated {record_id} in {collection}")
                return UpsertResult(id=record_id, action=UpsertAction.UPDATED, hash=digest)
        else:
            existing_id = await self._find_id_by_hash(digest, collection)
            if existing_id is not None:
                return UpsertResult(id=existing_id, action=UpsertAction.UNCHANGED, hash=digest)
            record_id = str(uuid4())

        await self._insert(collection, [record_id], [doc])
        logger.debug(f"Created {record_id} in {collection}")
        return UpsertResult(id=record_id, action=UpsertAction.CREATED, hash=digest)

    async def update_document(
        self, record_id: str, doc: Document, collection: str = DEFAULT_COLLECTION
    ) -> None:
        """Replace a record's content and metadata under the same id."""
        await self._ensure_collection(collection)
        await self._insert(collection, [record_id], [doc])

    async def _scored(self, query: str, collection: str) -> list[tuple[Document, float]]:
        await self._ensure_collection(collection)
        query_vec = await self.embeddings.embed_query(query)

        scored = []
        async with self.db.conn.execute(
            "SELECT id, content, metadata, embedding FROM vector_records WHERE collection = ?",
            (collection,),
        ) as cursor:
            async for row in cursor:
                vector = json.loads(row["embedding"])
                score = cosine_similarity(query_vec, vector)
                scored.append((self._row_to_document(row), score))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored

    async def similarity_search_with_score(
        self, query: str, k: int = 5, collection: str = DEFAULT_COLLECTION
    ) -> list[tuple[Document, float]]:
        """Top-k documents with cosine similarity, best first."""
        results = (await self._scored(query, collection))[:k]
        logger.debug(f"Search in {collection} returned {len(results)} results")
        return results

    async def similarity_search(
        self, query: str, k: int = 5, collection: str = DEFAULT_COLLECTION
    ) -> list[Document]:
        return [doc for doc, _ in await self.similarity_search_with_score(query, k, collection)]

    async def similarity_search_with_filter(
        self,
        query: str,
        k: int = 5,
        filter: MetadataFilter | None = None,
        collection: str = DEFAULT_COLLECTION,
    ) -> list[tuple[Document, float]]:
        """Over-fetch, then keep documents whose metadata equals every filter value."""
        candidates = await self.similarity_search_with_score(
            query, k * self.filter_overfetch, collection
        )
        if filter:
            candidates = [(d, s) for d, s in candidates if matches_filter(d.metadata, filter)]
        return candidates[:k]

    async def similarity_search_with_threshold(
        self,
        query: str,
        k: int = 5,
        threshold: float = 0.3,
        collection: str = DEFAULT_COLLECTION,
    ) -> list[tuple[Document, float]]:
        """Top-k documents scoring at least ``threshold``."""
        results = await self.similarity_search_with_score(query, k, collection)
        return [(d, s) for d, s in results if s >= threshold]

    async def find_by_metadata(
        self, filter: MetadataFilter, collection: str = DEFAULT_COLLECTION, limit: int = 10
    ) -> list[Document]:
        """Documents whose metadata matches ``filter``, no ranking."""
        await self._ensure_collection(collection)
        found = []
        async with self.db.conn.execute(
            "SELECT id, content, metadata FROM vector_records WHERE collection = ?",
            (collection,),
        ) as cursor:
            async for row in cursor:
                doc = self._row_to_document(row)
                if matches_filter(doc.metadata, filter):
                    found.append(doc)
                    if len(found) >= limit:
                        break
        return found

    async def delete(self, ids: list[str], collection: str = DEFAULT_COLLECTION) -> int:
        """Delete records by id, return count removed."""
        await self._ensure_collection(collection)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self.db.conn.execute(
            f"DELETE FROM vector_records WHERE collection = ? AND id IN ({placeholders})",
            (collection, *ids),
        )
        await self.db.conn.commit()
        logger.info(f"Deleted {cursor.rowcount} documents from {collection}")
        return cursor.rowcount

    async def delete_by_filter(
        self, filter: MetadataFilter, collection: str = DEFAULT_COLLECTION
    ) -> int:
        """Delete every record whose metadata matches ``filter``."""
        await self._ensure_collection(collection)
        ids = []
        async with self.db.conn.execute(
            "SELECT id, metadata FROM vector_records WHERE collection = ?", (collection,)
        ) as cursor:
            async for row in cursor:
                if matches_filter(json.loads(row["metadata"]), filter):
                    ids.append(row["id"])
        return await self.delete(ids, collection)

    async def get_stats(self, collection: str = DEFAULT_COLLECTION) -> dict[str, Any]:
        await self._ensure_collection(collection)
        async with self.db.conn.execute(
            "SELECT COUNT(*) AS n, MAX(created_at) AS latest FROM vector_records "
            "WHERE collection = ?",
            (collection,),
        ) as cursor:
            row = await cursor.fetchone()
        return {
            "collection": collection,
            "document_count": row["n"],
            "last_indexed_at": row["latest"],
        }
