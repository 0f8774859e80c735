from __future__ import annotations

"""In-memory document store for local testing and small knowledge bases."""

import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from src.rag.embeddings import DEFAULT_DIMENSION, cosine_similarity
from src.rag.types import Document, SearchResult, utcnow
from src.vectorstore.base import (
    DocumentNotFoundError,
    check_changes,
    check_query_vector,
    keyword_score,
    keyword_tokens,
    rank,
    validate_document,
)


@dataclass
class InMemoryDocumentStore:
    """Dictionary-backed store with brute-force cosine similarity search.

    Operations never await mid-mutation, so they are atomic with respect to
    other coroutines on the same event loop.
    """
    dimension: int = DEFAULT_DIMENSION
    documents: dict[str, Document] = field(default_factory=dict)

    async def add(self, document: Document) -> Document:
        """Validate and store a document, assigning an ID when missing."""
        document = validate_document(document, self.dimension)
        if not document.doc_id:
            document = replace(document, doc_id=str(uuid.uuid4()))
        self.documents[document.doc_id] = document
        return document

    async def update(self, doc_id: str, changes: dict[str, Any]) -> Document:
        """Apply field changes to an existing document."""
        current = await self.get(doc_id)
        updated = replace(current, **check_changes(changes), updated_at=utcnow())
        updated = validate_document(updated, self.dimension)
        self.documents[doc_id] = updated
        return updated

    async def delete(self, doc_id: str) -> None:
        if self.documents.pop(doc_id, None) is None:
            raise DocumentNotFoundError(doc_id)

    async def get(self, doc_id: str) -> Document:
        document = self.documents.get(doc_id)
        if document is None:
            raise DocumentNotFoundError(doc_id)
        return document

    async def list_documents(self, limit: int = 100, offset: int = 0) -> list[Document]:
        ordered = sorted(self.documents.values(), key=lambda doc: doc.created_at, reverse=True)
        return ordered[offset : offset + limit]

    async def filter_documents(
        self, source_contains: str | None, is_public: bool = True, limit: int = 20
    ) -> list[Document]:
        """Return the most recent documents whose source contains the fragment."""
        needle = (source_contains or "").strip().lower()
        matches = [
            doc
            for doc in self.documents.values()
            if doc.is_public == is_public and needle in doc.source.lower()
        ]
        matches.sort(key=lambda doc: doc.created_at, reverse=True)
        return matches[:limit]

    async def search(
        self,
        query_embedding: list[float],
        candidate_ids: list[str] | None = None,
        threshold: float = 0.3,
        limit: int = 5,
    ) -> list[SearchResult]:
        """Rank public, embedded documents by cosine similarity."""
        query_vector = check_query_vector(query_embedding, self.dimension)
        allowed = set(candidate_ids) if candidate_ids is not None else None
        scored = [
            SearchResult(document=doc, similarity=cosine_similarity(query_vector, doc.embedding))
            for doc in self.documents.values()
            if doc.is_public
            and doc.embedding is not None
            and (allowed is None or doc.doc_id in allowed)
        ]
        return rank(scored, threshold, limit)

    async def keyword_search(
        self, query: str, candidate_ids: list[str] | None = None, limit: int = 5
    ) -> list[SearchResult]:
        """Score public documents by query token overlap, embedded or not."""
        tokens = keyword_tokens(query)
        allowed = set(candidate_ids) if candidate_ids is not None else None
        scored = [
            SearchResult(document=doc, similarity=keyword_score(tokens, doc.content))
            for doc in self.documents.values()
            if doc.is_public and (allowed is None or doc.doc_id in allowed)
        ]
        return rank([item for item in scored if item.similarity > 0.0], 0.0, limit)

    async def stats(self) -> dict[str, Any]:
        """Return basic stats for the store."""
        by_source: Counter[str] = Counter()
        for doc in self.documents.values():
            for label in doc.source_labels:
                by_source[label] += 1
        return {
            "backend": "memory",
            "document_count": len(self.documents),
            "public_count": sum(1 for doc in self.documents.values() if doc.is_public),
            "embedded_count": sum(
                1 for doc in self.documents.values() if doc.embedding is not None
            ),
            "embedding_dimension": self.dimension,
            "by_source": dict(by_source),
        }

    async def health(self) -> dict[str, Any]:
        return {"backend": "memory", "ok": True}
