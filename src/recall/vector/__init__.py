"""
Vector module - embedding-backed semantic storage.

- documents: Document type, content hashing, stable identities, dedup merge
- index: VectorIndex (upsert with hash dedup, cosine similarity search)
"""

from recall.vector.documents import Document, content_hash
from recall.vector.index import UpsertAction, UpsertResult, VectorIndex

__all__ = ["Document", "content_hash", "VectorIndex", "UpsertAction", "UpsertResult"]
