from __future__ import annotations

from functools import lru_cache

from src.agents.classifier import KeywordClassifier, LLMClassifier, QueryClassifier
from src.app.ratelimit import SlidingWindowRateLimiter
from src.app.settings import settings
from src.rag.answerer import ExtractiveResponseGenerator, LLMResponseGenerator, ResponseGenerator
from src.rag.cache import EmbeddingCache, SQLEmbeddingCacheStore
from src.rag.embeddings import EmbeddingProvider, build_embedder
from src.rag.ingestion import DocumentIngestor
from src.rag.llm import ChatModel, LLMError, build_chat_model
from src.rag.pipeline import RAGPipeline
from src.rag.reranker import LLMReranker, PassthroughReranker, Reranker
from src.vectorstore.base import DocumentStore
from src.vectorstore.inmemory import InMemoryDocumentStore
from src.vectorstore.supabase import SupabaseConfig, SupabaseDocumentStore


@lru_cache
def get_pipeline() -> RAGPipeline:
    return RAGPipeline(
        store=get_document_store(),
        embedder=get_embedder(),
        cache=get_query_cache(),
        classifier=build_classifier(),
        reranker=build_reranker(),
        generator=build_generator(),
        similarity_threshold=settings.similarity_threshold,
        top_k=settings.search_top_k,
        filter_limit=settings.filter_pool_limit,
        history_messages=settings.history_messages,
        classify_timeout=settings.classify_timeout,
        embedding_timeout=settings.embedding_timeout,
        rerank_timeout=settings.rerank_timeout,
        generation_timeout=settings.generation_timeout,
        keyword_fallback=settings.keyword_fallback,
    )


@lru_cache
def get_ingestor() -> DocumentIngestor:
    return DocumentIngestor(
        store=get_document_store(),
        embedder=get_embedder(),
        cache=get_ingestion_cache(),
        ttl=settings.ingestion_cache_ttl_seconds,
    )


@lru_cache
def get_document_store() -> DocumentStore:
    backend = settings.document_store.lower().strip()
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase store")
        config = SupabaseConfig(
            url=settings.supabase_url,
            api_key=settings.supabase_key,
            timeout=settings.supabase_timeout,
        )
        return SupabaseDocumentStore(config=config, dimension=settings.embedding_dimension)
    if backend != "memory":
        raise ValueError(f"Unsupported document store: {settings.document_store}")
    return InMemoryDocumentStore(dimension=settings.embedding_dimension)


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return build_embedder(
        settings.embedding_provider,
        dimension=settings.embedding_dimension,
        timeout=settings.embedding_timeout,
        gemini_api_key=settings.gemini_api_key,
        gemini_model=settings.gemini_embedding_model,
        openai_api_key=settings.openai_api_key,
        openai_model=settings.openai_embedding_model,
        openai_base_url=settings.openai_base_url,
    )


@lru_cache
def get_cache_backing() -> SQLEmbeddingCacheStore | None:
    if not settings.embedding_cache_db_uri:
        return None
    return SQLEmbeddingCacheStore(settings.embedding_cache_db_uri)


@lru_cache
def get_query_cache() -> EmbeddingCache:
    return EmbeddingCache(
        ttl=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        dimension=settings.embedding_dimension,
        backing=get_cache_backing(),
    )


@lru_cache
def get_ingestion_cache() -> EmbeddingCache:
    return EmbeddingCache(
        ttl=settings.ingestion_cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        dimension=settings.embedding_dimension,
    )


@lru_cache
def get_chat_model() -> ChatModel:
    return build_chat_model(
        settings.llm_provider,
        gemini_api_key=settings.gemini_api_key,
        gemini_model=settings.gemini_chat_model,
        openai_api_key=settings.openai_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        timeout=settings.generation_timeout,
    )


@lru_cache
def get_rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


def build_classifier() -> QueryClassifier:
    mode = settings.classifier_mode.lower().strip()
    if mode == "llm":
        return LLMClassifier(model=get_chat_model())
    if mode != "rules":
        raise LLMError(f"Unsupported classifier mode: {settings.classifier_mode}")
    return KeywordClassifier()


def build_reranker() -> Reranker:
    mode = settings.reranker_mode.lower().strip()
    if mode == "llm":
        return LLMReranker(
            model=get_chat_model(),
            input_limit=settings.rerank_input_limit,
            cutoff=settings.rerank_cutoff,
            top_n=settings.rerank_top_n,
        )
    if mode != "none":
        raise LLMError(f"Unsupported reranker mode: {settings.reranker_mode}")
    return PassthroughReranker(top_n=settings.rerank_top_n)


def build_generator() -> ResponseGenerator:
    mode = settings.answerer_mode.lower().strip()
    if mode == "llm":
        return LLMResponseGenerator(
            model=get_chat_model(),
            context_max_chars=settings.llm_context_max_chars,
        )
    if mode != "extractive":
        raise LLMError(f"Unsupported answerer mode: {settings.answerer_mode}")
    return ExtractiveResponseGenerator()


def reset_pipeline_cache() -> None:
    get_pipeline.cache_clear()
    get_ingestor.cache_clear()
    get_document_store.cache_clear()
    get_embedder.cache_clear()
    get_cache_backing.cache_clear()
    get_query_cache.cache_clear()
    get_ingestion_cache.cache_clear()
    get_chat_model.cache_clear()
    get_rate_limiter.cache_clear()
