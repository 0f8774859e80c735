from __future__ import annotations

"""Document store contract, errors and write-time validation."""

import re
from dataclasses import replace
from typing import Any, Protocol

from src.rag.embeddings import EmbeddingError, validate_vector
from src.rag.types import DEFAULT_SOURCE, Document, SearchResult

MAX_CONTENT_CHARS = 10_000
UPDATABLE_FIELDS = {"content", "source", "metadata", "is_public", "embedding"}

_KEYWORD_RE = re.compile(r"\w{3,}", flags=re.UNICODE)


class DocumentStoreError(RuntimeError):
    """Raised when the document store cannot complete an operation."""
    pass


class SearchError(DocumentStoreError):
    """Raised when filtering or similarity search fails (not on zero matches)."""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document ID does not exist."""
    pass


class DocumentValidationError(ValueError):
    """Raised when a document violates the write-time contract."""
    pass


class DocumentStore(Protocol):
    """Operations the pipeline and admin surface need from a store."""
    dimension: int

    async def add(self, document: Document) -> Document: ...

    async def update(self, doc_id: str, changes: dict[str, Any]) -> Document: ...

    async def delete(self, doc_id: str) -> None: ...

    async def get(self, doc_id: str) -> Document: ...

    async def list_documents(self, limit: int = 100, offset: int = 0) -> list[Document]: ...

    async def filter_documents(
        self, source_contains: str | None, is_public: bool = True, limit: int = 20
    ) -> list[Document]: ...

    async def search(
        self,
        query_embedding: list[float],
        candidate_ids: list[str] | None = None,
        threshold: float = 0.3,
        limit: int = 5,
    ) -> list[SearchResult]: ...

    async def keyword_search(
        self, query: str, candidate_ids: list[str] | None = None, limit: int = 5
    ) -> list[SearchResult]: ...

    async def stats(self) -> dict[str, Any]: ...

    async def health(self) -> dict[str, Any]: ...


def validate_document(document: Document, dimension: int) -> Document:
    """Normalize and check a document before it is written."""
    content = document.content.strip()
    if not content:
        raise DocumentValidationError("Document content cannot be empty")
    if len(content) > MAX_CONTENT_CHARS:
        raise DocumentValidationError(
            f"Document content exceeds {MAX_CONTENT_CHARS} characters"
        )
    source = (document.source or "").strip() or DEFAULT_SOURCE
    embedding = document.embedding
    if embedding is not None:
        try:
            embedding = validate_vector(list(embedding), dimension)
        except EmbeddingError as exc:
            raise DocumentValidationError(str(exc)) from exc
    return replace(
        document,
        content=content,
        source=source,
        metadata=dict(document.metadata or {}),
        embedding=embedding,
    )


def check_changes(changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise DocumentValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    return changes


def check_query_vector(query_embedding: list[float], dimension: int) -> list[float]:
    try:
        return validate_vector(list(query_embedding), dimension)
    except EmbeddingError as exc:
        raise SearchError(str(exc)) from exc


def keyword_tokens(text: str) -> list[str]:
    """Distinct lowercase tokens of three or more characters."""
    seen: list[str] = []
    for token in _KEYWORD_RE.findall(text.lower()):
        if token not in seen:
            seen.append(token)
    return seen


def keyword_score(tokens: list[str], content: str) -> float:
    """Fraction of query tokens present in the content."""
    if not tokens:
        return 0.0
    lowered = content.lower()
    return sum(1 for token in tokens if token in lowered) / len(tokens)


def rank(results: list[SearchResult], threshold: float, limit: int) -> list[SearchResult]:
    """Drop results below ``threshold`` and keep the top ``limit`` by similarity.

    The sort is stable, so ties keep the order in which results were given.
    """
    if limit <= 0:
        return []
    kept = [result for result in results if result.similarity >= threshold]
    kept.sort(key=lambda item: item.similarity, reverse=True)
    return kept[:limit]
