from __future__ import annotations

"""Document store backed by a Supabase (PostgREST + pgvector) ``documents`` table."""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import TypeAdapter

from src.rag.embeddings import DEFAULT_DIMENSION, cosine_similarity
from src.rag.types import DEFAULT_SOURCE, Document, SearchResult, utcnow
from src.vectorstore.base import (
    DocumentNotFoundError,
    DocumentStoreError,
    SearchError,
    check_changes,
    check_query_vector,
    keyword_score,
    keyword_tokens,
    rank,
    validate_document,
)

logger = logging.getLogger(__name__)

_DOCUMENT_FIELDS = "id,content,source,metadata,is_public,created_at,updated_at"
_TIMESTAMP = TypeAdapter(datetime)


@dataclass(frozen=True)
class SupabaseConfig:
    """Connection settings for the Supabase REST API."""
    url: str
    api_key: str
    table: str = "documents"
    match_function: str = "match_documents"
    timeout: float = 10.0


class SupabaseDocumentStore:
    """Document store speaking PostgREST over httpx.

    Similarity search over the full population runs server side through the
    ``match_documents`` RPC. When a candidate pool is given, the candidates'
    embeddings are fetched and ranked locally so the result is exactly the
    intersection of the pool and the threshold.
    """
    def __init__(
        self,
        config: SupabaseConfig,
        dimension: int = DEFAULT_DIMENSION,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Validate configuration."""
        if not config.url:
            raise DocumentStoreError("SUPABASE_URL is required for the supabase store")
        if not config.api_key:
            raise DocumentStoreError("SUPABASE_KEY is required for the supabase store")
        self.config = config
        self.dimension = dimension
        self._transport = transport
        self._base_url = config.url.rstrip("/") + "/rest/v1"

    async def add(self, document: Document) -> Document:
        document = validate_document(document, self.dimension)
        payload = self._to_row(document)
        if not document.doc_id:
            payload.pop("id")
        rows = await self._request(
            "POST",
            f"/{self.config.table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return self._first(rows, document.doc_id)

    async def update(self, doc_id: str, changes: dict[str, Any]) -> Document:
        changes = check_changes(changes)
        current = await self.get(doc_id)
        merged = validate_document(
            Document(
                doc_id=current.doc_id,
                content=changes.get("content", current.content),
                source=changes.get("source", current.source),
                metadata=changes.get("metadata", current.metadata),
                is_public=changes.get("is_public", current.is_public),
                embedding=changes.get("embedding", current.embedding),
                created_at=current.created_at,
            ),
            self.dimension,
        )
        payload = {
            key: value
            for key, value in self._to_row(merged).items()
            if key in changes
        }
        payload["updated_at"] = utcnow().isoformat()
        rows = await self._request(
            "PATCH",
            f"/{self.config.table}",
            params={"id": f"eq.{doc_id}"},
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        return self._first(rows, doc_id)

    async def delete(self, doc_id: str) -> None:
        rows = await self._request(
            "DELETE",
            f"/{self.config.table}",
            params={"id": f"eq.{doc_id}"},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise DocumentNotFoundError(doc_id)

    async def get(self, doc_id: str) -> Document:
        rows = await self._request(
            "GET",
            f"/{self.config.table}",
            params={"select": f"{_DOCUMENT_FIELDS},embedding", "id": f"eq.{doc_id}"},
        )
        return self._first(rows, doc_id)

    async def list_documents(self, limit: int = 100, offset: int = 0) -> list[Document]:
        rows = await self._request(
            "GET",
            f"/{self.config.table}",
            params={
                "select": _DOCUMENT_FIELDS,
                "order": "created_at.desc",
                "limit": str(limit),
                "offset": str(offset),
            },
        )
        return [self._from_row(row) for row in rows]

    async def filter_documents(
        self, source_contains: str | None, is_public: bool = True, limit: int = 20
    ) -> list[Document]:
        params = {
            "select": _DOCUMENT_FIELDS,
            "is_public": f"eq.{str(is_public).lower()}",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        if source_contains and source_contains.strip():
            params["source"] = f"ilike.*{source_contains.strip()}*"
        rows = await self._request("GET", f"/{self.config.table}", params=params, search=True)
        return [self._from_row(row, DocumentStoreError) for row in rows]

    async def search(
        self,
        query_embedding: list[float],
        candidate_ids: list[str] | None = None,
        threshold: float = 0.3,
        limit: int = 5,
    ) -> list[SearchResult]:
        query_vector = check_query_vector(query_embedding, self.dimension)
        if candidate_ids is not None:
            return await self._search_candidates(query_vector, candidate_ids, threshold, limit)
        rows = await self._request(
            "POST",
            f"/rpc/{self.config.match_function}",
            json={
                "query_embedding": query_vector,
                "match_threshold": threshold,
                "match_count": limit,
            },
            search=True,
        )
        results = []
        for row in rows:
            try:
                similarity = float(row["similarity"])
            except (KeyError, TypeError, ValueError) as exc:
                raise SearchError("match_documents returned a row without similarity") from exc
            results.append(
                SearchResult(document=self._from_row(row, SearchError), similarity=similarity)
            )
        return rank(results, threshold, limit)

    async def keyword_search(
        self, query: str, candidate_ids: list[str] | None = None, limit: int = 5
    ) -> list[SearchResult]:
        tokens = keyword_tokens(query)
        if not tokens or candidate_ids == []:
            return []
        clauses = ",".join(f"content.ilike.*{token}*" for token in tokens)
        params = {"select": _DOCUMENT_FIELDS, "is_public": "eq.true", "or": f"({clauses})"}
        if candidate_ids is not None:
            params["id"] = f"in.({','.join(candidate_ids)})"
        rows = await self._request("GET", f"/{self.config.table}", params=params, search=True)
        scored = [
            SearchResult(document=doc, similarity=keyword_score(tokens, doc.content))
            for doc in (self._from_row(row, SearchError) for row in rows)
        ]
        return rank([item for item in scored if item.similarity > 0.0], 0.0, limit)

    async def stats(self) -> dict[str, Any]:
        rows = await self._request(
            "GET",
            f"/{self.config.table}",
            params={"select": "id,source,is_public"},
        )
        embedded = await self._request(
            "GET",
            f"/{self.config.table}",
            params={"select": "id", "embedding": "not.is.null"},
        )
        by_source: Counter[str] = Counter()
        for row in rows:
            for label in str(row.get("source") or DEFAULT_SOURCE).split(","):
                if label.strip():
                    by_source[label.strip()] += 1
        return {
            "backend": "supabase",
            "document_count": len(rows),
            "public_count": sum(1 for row in rows if row.get("is_public")),
            "embedded_count": len(embedded),
            "embedding_dimension": self.dimension,
            "by_source": dict(by_source),
        }

    async def health(self) -> dict[str, Any]:
        try:
            await self._request(
                "GET", f"/{self.config.table}", params={"select": "id", "limit": "1"}
            )
        except DocumentStoreError as exc:
            return {"backend": "supabase", "ok": False, "detail": str(exc)}
        return {"backend": "supabase", "ok": True}

    async def _search_candidates(
        self,
        query_vector: list[float],
        candidate_ids: list[str],
        threshold: float,
        limit: int,
    ) -> list[SearchResult]:
        if not candidate_ids:
            return []
        rows = await self._request(
            "GET",
            f"/{self.config.table}",
            params={
                "select": f"{_DOCUMENT_FIELDS},embedding",
                "id": f"in.({','.join(candidate_ids)})",
                "is_public": "eq.true",
            },
            search=True,
        )
        order = {doc_id: idx for idx, doc_id in enumerate(candidate_ids)}
        documents = sorted(
            (self._from_row(row, SearchError) for row in rows),
            key=lambda doc: order.get(doc.doc_id, len(order)),
        )
        scored = [
            SearchResult(document=doc, similarity=cosine_similarity(query_vector, doc.embedding))
            for doc in documents
            if doc.embedding is not None and len(doc.embedding) == self.dimension
        ]
        return rank(scored, threshold, limit)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
        search: bool = False,
    ) -> list[dict[str, Any]]:
        """Send a PostgREST request and return the decoded row list."""
        request_headers = {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)
        error_type = SearchError if search else DocumentStoreError
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self.config.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, params=params, json=json, headers=request_headers
                )
                response.raise_for_status()
                data = response.json() if response.content else []
        except httpx.HTTPError as exc:
            logger.error(
                "supabase_request_failed",
                extra={"method": method, "path": path, "detail": type(exc).__name__},
            )
            raise error_type(f"Supabase request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise error_type("Supabase returned invalid JSON") from exc
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise error_type("Supabase returned an unexpected payload")
        return data

    def _first(self, rows: list[dict[str, Any]], doc_id: str) -> Document:
        if not rows:
            raise DocumentNotFoundError(doc_id)
        return self._from_row(rows[0])

    def _to_row(self, document: Document) -> dict[str, Any]:
        return {
            "id": document.doc_id,
            "content": document.content,
            "source": document.source,
            "metadata": document.metadata,
            "is_public": document.is_public,
            "embedding": document.embedding,
        }

    def _from_row(
        self, row: dict[str, Any], error_type: type[DocumentStoreError] = DocumentStoreError
    ) -> Document:
        """Decode one PostgREST row, raising ``error_type`` for malformed data."""
        try:
            embedding = row.get("embedding")
            if isinstance(embedding, str):
                embedding = json.loads(embedding)
            metadata = row.get("metadata")
            if isinstance(metadata, str):
                metadata = json.loads(metadata)
            created_at = row.get("created_at")
            updated_at = row.get("updated_at") or created_at
            return Document(
                doc_id=str(row.get("id", "")),
                content=str(row.get("content") or ""),
                source=str(row.get("source") or DEFAULT_SOURCE),
                metadata=metadata if isinstance(metadata, dict) else {},
                is_public=bool(row.get("is_public", True)),
                embedding=[float(value) for value in embedding] if embedding else None,
                created_at=_TIMESTAMP.validate_python(created_at) if created_at else utcnow(),
                updated_at=_TIMESTAMP.validate_python(updated_at) if updated_at else utcnow(),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            logger.error(
                "supabase_row_invalid",
                extra={"doc_id": row.get("id") if isinstance(row, dict) else None},
            )
            raise error_type(f"Supabase returned a malformed row: {type(exc).__name__}") from exc
