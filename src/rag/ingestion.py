from __future__ import annotations

"""Embed and store knowledge-base documents."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable

from src.rag.cache import INGESTION_TTL_SECONDS, EmbeddingCache, cache_key
from src.rag.embeddings import EmbeddingProvider, validate_vector
from src.rag.types import DEFAULT_SOURCE, Document
from src.vectorstore.base import DocumentStore, validate_document

logger = logging.getLogger(__name__)


@dataclass
class DocumentIngestor:
    """Compute document embeddings through a content-hash cache and write them."""
    store: DocumentStore
    embedder: EmbeddingProvider
    cache: EmbeddingCache
    ttl: float = INGESTION_TTL_SECONDS

    async def embed_content(self, content: str) -> list[float]:
        key = cache_key(content)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        vector = validate_vector(await self.embedder.embed(content), self.embedder.dimension)
        self.cache.set(key, vector, ttl=self.ttl, metadata={"kind": "document"})
        return vector

    async def create(
        self,
        content: str,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
        is_public: bool = True,
        embedding: list[float] | None = None,
        doc_id: str | None = None,
    ) -> Document:
        """Validate, embed when no vector is supplied, and store a new document."""
        document = validate_document(
            Document(
                doc_id=doc_id or "",
                content=content,
                source=source or DEFAULT_SOURCE,
                metadata=metadata or {},
                is_public=is_public,
                embedding=embedding,
            ),
            self.store.dimension,
        )
        if document.embedding is None:
            document = replace(document, embedding=await self.embed_content(document.content))
        stored = await self.store.add(document)
        logger.info(
            "document_ingested",
            extra={"doc_id": stored.doc_id, "source": stored.source},
        )
        return stored

    async def update(self, doc_id: str, changes: dict[str, Any]) -> Document:
        """Apply changes, re-embedding when the content changes without a new vector."""
        changes = dict(changes)
        content = changes.get("content")
        if isinstance(content, str) and content.strip() and changes.get("embedding") is None:
            changes["embedding"] = await self.embed_content(content.strip())
        updated = await self.store.update(doc_id, changes)
        logger.info("document_updated", extra={"doc_id": doc_id, "fields": sorted(changes)})
        return updated

    async def ingest_many(self, records: Iterable[dict[str, Any]]) -> list[Document]:
        stored: list[Document] = []
        for record in records:
            stored.append(
                await self.create(
                    content=record["content"],
                    source=record.get("source"),
                    metadata=record.get("metadata"),
                    is_public=record.get("is_public", True),
                    doc_id=record.get("id"),
                )
            )
        return stored
