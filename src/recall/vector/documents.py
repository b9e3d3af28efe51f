"""Document type and identity helpers."""

import hashlib
from dataclasses import dataclass, field
from typing import Any
from uuid import NAMESPACE_URL, uuid5

# Namespace for content-derived document identities
_DOC_NAMESPACE = uuid5(NAMESPACE_URL, "recall:document")


@dataclass
class Document:
    """A piece of text plus metadata, as stored in or returned by the index."""

    page_content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


def content_hash(content: str) -> str:
    """MD5 hex digest of content, used for upsert dedup."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def document_uuid(content: str) -> str:
    """Stable identity derived from content: equal text, equal uuid."""
    return str(uuid5(_DOC_NAMESPACE, content))


def ensure_document_uuid(doc: Document) -> Document:
    """Return doc with metadata['uuid'] set, copying rather than mutating."""
    if doc.metadata.get("uuid"):
        return doc
    return Document(
        page_content=doc.page_content,
        metadata={**doc.metadata, "uuid": document_uuid(doc.page_content)},
        id=doc.id,
    )


def ensure_documents_uuid(docs: list[Document]) -> list[Document]:
    return [ensure_document_uuid(doc) for doc in docs]


def reduce_docs(existing: list[Document] | None, incoming: list[Document]) -> list[Document]:
    """Union two document lists by uuid, keeping first occurrence."""
    merged = list(existing or [])
    seen = {d.metadata.get("uuid") for d in merged}
    seen.discard(None)

    for doc in ensure_documents_uuid(incoming):
        uid = doc.metadata["uuid"]
        if uid in seen:
            continue
        seen.add(uid)
        merged.append(doc)

    return merged


def matches_filter(metadata: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Metadata equality filter: every filter key must be present and equal."""
    return all(key in metadata and metadata[key] == value for key, value in filter.items())
