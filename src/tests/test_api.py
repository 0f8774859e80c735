from __future__ import annotations

import os

import httpx
import pytest

from src.app.dependencies import get_pipeline, reset_pipeline_cache
from src.app.main import app, seed_knowledge_base
from src.app.settings import settings
from src.rag.embeddings import EmbeddingError
from src.rag.guardrails import NO_INFORMATION_MESSAGE, SERVICE_ERROR_MESSAGE
from src.tests.fakes import CountingEmbedder

pytestmark = pytest.mark.anyio

QRIBAR = {"content": "QRiBar cuesta desde 29€/mes con setup incluido.", "source": "qribar_product"}


def get_client() -> httpx.AsyncClient:
    reset_pipeline_cache()
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


async def test_health_endpoints() -> None:
    async with get_client() as client:
        response = await client.get("/health")
        store = await client.get("/health/store")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert store.json()["ok"] is True
    assert store.json()["backend"] == "memory"


async def test_chat_answers_from_created_document() -> None:
    async with get_client() as client:
        created = await client.post("/documents", json=QRIBAR)
        assert created.status_code == 201
        assert created.json()["has_embedding"] is True

        response = await client.post(
            "/chat",
            json={
                "userQuery": "¿Cuánto cuesta QRIBAR?",
                "conversationHistory": [{"role": "user", "content": "Hola"}],
            },
            headers={"X-Request-ID": "trace-123"},
        )
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "trace-123"
    payload = response.json()
    assert "29€" in payload["response"]
    assert payload["documents"][0]["source"] == "qribar_product"
    assert payload["documents"][0]["relevance_score"] > 0.3
    metadata = payload["metadata"]
    assert metadata["request_id"] == "trace-123"
    assert metadata["documents_filtered"] == 1
    assert metadata["documents_semantic"] == 1
    assert metadata["documents_reranked"] == 1
    assert "embed" in metadata["timings"]


async def test_chat_without_matches_returns_no_information() -> None:
    async with get_client() as client:
        await client.post("/documents", json=QRIBAR)
        response = await client.post("/chat", json={"userQuery": "asdkjaslkdj random gibberish"})
    assert response.status_code == 200
    assert response.json()["response"] == NO_INFORMATION_MESSAGE
    assert response.json()["documents"] == []


async def test_chat_rejects_blank_or_malformed_queries() -> None:
    async with get_client() as client:
        blank = await client.post("/chat", json={"userQuery": "   "})
        missing = await client.post("/chat", json={})
        malformed = await client.post("/chat", json={"userQuery": 42})
    assert blank.status_code == 400
    assert "error" in blank.json()
    assert missing.status_code == 400
    assert malformed.status_code == 422
    assert "error" in malformed.json()


async def test_chat_fatal_error_returns_generic_503() -> None:
    async with get_client() as client:
        await client.post("/documents", json=QRIBAR)
        get_pipeline().embedder = CountingEmbedder(error=EmbeddingError("HTTP 500 from provider"))
        response = await client.post("/chat", json={"userQuery": "¿Cuánto cuesta QRIBAR?"})
    assert response.status_code == 503
    assert response.json() == {"error": SERVICE_ERROR_MESSAGE}


async def test_chat_rate_limit_returns_429() -> None:
    original = settings.rate_limit_requests
    object.__setattr__(settings, "rate_limit_requests", 2)
    try:
        async with get_client() as client:
            responses = [await client.post("/chat", json={"userQuery": "hola"}) for _ in range(3)]
            limited = await client.post(
                "/chat",
                json={"userQuery": "hola"},
                headers={"X-Forwarded-For": "198.51.100.9"},
            )
            blocked = await client.post("/chat", json={"userQuery": "hola"})
    finally:
        object.__setattr__(settings, "rate_limit_requests", original)
    assert [response.status_code for response in responses] == [200, 200, 429]
    assert [response.headers["X-RateLimit-Remaining"] for response in responses] == ["1", "0", "0"]
    assert limited.status_code == 200
    assert blocked.status_code == 429
    assert "error" in blocked.json()
    assert int(blocked.headers["Retry-After"]) >= 1


async def test_admin_endpoints_require_api_key_when_configured() -> None:
    original = os.environ.get("RAG_API_KEYS")
    os.environ["RAG_API_KEYS"] = "secret"
    try:
        async with get_client() as client:
            denied = await client.get("/documents")
            with_header = await client.get("/documents", headers={"X-API-Key": "secret"})
            with_bearer = await client.get(
                "/documents/stats", headers={"Authorization": "Bearer secret"}
            )
            wrong = await client.get("/cache/stats", headers={"X-API-Key": "nope"})
            chat = await client.post("/chat", json={"userQuery": "hola"})
    finally:
        if original is None:
            os.environ.pop("RAG_API_KEYS", None)
        else:
            os.environ["RAG_API_KEYS"] = original
    assert denied.status_code == 401
    assert denied.headers["WWW-Authenticate"] == "Bearer"
    assert "error" in denied.json()
    assert with_header.status_code == 200
    assert with_bearer.status_code == 200
    assert wrong.status_code == 401
    assert chat.status_code == 200


async def test_document_crud_lifecycle() -> None:
    async with get_client() as client:
        created = (await client.post("/documents", json={**QRIBAR, "id": "qribar"})).json()
        assert created["id"] == "qribar"

        fetched = await client.get("/documents/qribar")
        assert fetched.json()["content"] == QRIBAR["content"]

        updated = await client.put(
            "/documents/qribar", json={"content": "QRiBar cuesta desde 35€/mes.", "is_public": False}
        )
        assert updated.status_code == 200
        assert updated.json()["is_public"] is False
        assert updated.json()["content"] == "QRiBar cuesta desde 35€/mes."

        empty_update = await client.put("/documents/qribar", json={})
        assert empty_update.status_code == 422

        listing = await client.get("/documents", params={"limit": 10})
        assert [item["id"] for item in listing.json()["documents"]] == ["qribar"]

        stats = await client.get("/documents/stats")
        assert stats.json()["document_count"] == 1
        assert stats.json()["public_count"] == 0
        assert stats.json()["embedding_dimension"] == 768

        deleted = await client.delete("/documents/qribar")
        assert deleted.status_code == 204

        missing = await client.get("/documents/qribar")
        assert missing.status_code == 404
        assert "error" in missing.json()


async def test_document_with_wrong_dimension_is_rejected() -> None:
    async with get_client() as client:
        response = await client.post(
            "/documents", json={"content": "texto", "embedding": [0.1, 0.2, 0.3]}
        )
    assert response.status_code == 422
    assert "dimension" in response.json()["error"]


async def test_cache_stats_and_invalidation() -> None:
    async with get_client() as client:
        await client.post("/documents", json=QRIBAR)
        await client.post("/chat", json={"userQuery": "¿Cuánto cuesta QRIBAR?"})
        second = await client.post("/chat", json={"userQuery": "¿Cuánto cuesta QRIBAR?"})
        assert second.json()["metadata"]["cache_hit"] is True

        stats = (await client.get("/cache/stats")).json()
        assert stats["entries"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1

        invalidated = await client.delete("/cache", params={"pattern": "*"})
        assert invalidated.json() == {"removed": 1, "cleared": False}

        await client.post("/chat", json={"userQuery": "otra pregunta"})
        cleared = await client.delete("/cache")
        assert cleared.json() == {"removed": 1, "cleared": True}


async def test_metrics_endpoint_exposes_pipeline_counters() -> None:
    async with get_client() as client:
        await client.post("/chat", json={"userQuery": "hola"})
        response = await client.get("/metrics")
    assert response.status_code == 200
    assert "rag_pipeline_outcomes_total" in response.text
    assert "rag_stage_duration_seconds" in response.text


async def test_seed_knowledge_base_loads_catalogue_once() -> None:
    reset_pipeline_cache()
    assert await seed_knowledge_base() == 5
    assert await seed_knowledge_base() == 0
    reset_pipeline_cache()
