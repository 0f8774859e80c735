from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from src.agents.classifier import QueryClassifier
from src.app.metrics import observe_stage, record_cache_lookup, record_fallback, record_outcome
from src.rag.answerer import GeneratedAnswer, GenerationError, ResponseGenerator
from src.rag.cache import EmbeddingCache, cache_key
from src.rag.embeddings import EmbeddingError, EmbeddingProvider, validate_vector
from src.rag.guardrails import NO_INFORMATION_MESSAGE, SERVICE_ERROR_MESSAGE, require_context
from src.rag.llm import LLMError
from src.rag.reranker import Reranker, semantic_fallback
from src.rag.types import (
    Classification,
    PipelineState,
    QueryContext,
    RerankedDocument,
    SearchResult,
    StageTiming,
)
from src.vectorstore.base import DocumentStore, DocumentStoreError, SearchError

logger = logging.getLogger(__name__)

OUTCOME_ANSWERED = "answered"
OUTCOME_NO_INFORMATION = "no_information"
OUTCOME_ERROR = "error"


class InvalidQueryError(ValueError):
    """Raised when the caller's query is missing or malformed."""
    pass


@dataclass
class PipelineResult:
    outcome: str
    response: str
    context: QueryContext
    total_ms: float
    sources: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def documents(self) -> list[RerankedDocument]:
        if self.outcome != OUTCOME_ANSWERED:
            return []
        return self.context.reranked_results

    def metadata(self) -> dict[str, Any]:
        ctx = self.context
        return {
            "timings": {
                stage: {"started_at": timing.started_at, "duration_ms": timing.duration_ms}
                for stage, timing in ctx.timings.items()
            },
            "total_ms": self.total_ms,
            "documents_filtered": len(ctx.candidate_ids or []),
            "documents_semantic": len(ctx.semantic_results),
            "documents_reranked": len(ctx.reranked_results),
            "intent": ctx.classification.intent,
            "tags": list(ctx.classification.tags),
            "confidence": ctx.classification.confidence,
            "cache_hit": ctx.cache_hit,
            "fallbacks": list(ctx.fallbacks),
            "state": ctx.state.value,
            "request_id": ctx.request_id,
        }


@dataclass
class RAGPipeline:
    """Classify, filter, embed, search, rerank and generate for one query.

    Classification, filtering and reranking degrade to less precise inputs
    when they fail. Embedding, search and generation failures end the request
    in the ``errored`` state with a generic message. A request whose search or
    rerank leaves no context returns the fixed no-information message without
    calling the generator.
    """
    store: DocumentStore
    embedder: EmbeddingProvider
    cache: EmbeddingCache
    classifier: QueryClassifier
    reranker: Reranker
    generator: ResponseGenerator
    similarity_threshold: float = 0.3
    top_k: int = 5
    filter_limit: int = 20
    history_messages: int = 5
    classify_timeout: float = 8.0
    embedding_timeout: float = 10.0
    rerank_timeout: float = 10.0
    generation_timeout: float = 20.0
    keyword_fallback: bool = False
    max_query_chars: int = 2000

    async def run(
        self,
        user_query: str,
        history: list[dict[str, str]] | None = None,
        request_id: str | None = None,
    ) -> PipelineResult:
        query = (user_query or "").strip()
        if not query:
            raise InvalidQueryError("userQuery is required")
        if len(query) > self.max_query_chars:
            raise InvalidQueryError(f"userQuery exceeds {self.max_query_chars} characters")
        ctx = QueryContext(
            user_query=query,
            history=self.trim_history(history),
            request_id=request_id,
        )
        started = time.perf_counter()
        try:
            await self._classify(ctx)
            await self._filter_and_embed(ctx)
            await self._search(ctx)
            if not ctx.semantic_results:
                return self._no_information(ctx, started, "no_semantic_results")
            await self._rerank(ctx)
            guardrail = require_context(ctx.reranked_results)
            if not guardrail.allowed:
                return self._no_information(ctx, started, guardrail.reason)
            answer = await self._generate(ctx)
        except (EmbeddingError, SearchError, GenerationError) as exc:
            return self._errored(ctx, exc, started)
        ctx.advance(PipelineState.DONE)
        result = PipelineResult(
            outcome=OUTCOME_ANSWERED,
            response=answer.text,
            context=ctx,
            total_ms=_elapsed_ms(started),
            sources=answer.sources,
        )
        self._log_complete(result)
        return result

    def trim_history(self, history: list[dict[str, str]] | None) -> list[dict[str, str]]:
        """Keep the last few well-formed messages."""
        if not history:
            return []
        cleaned = [
            {"role": str(item.get("role", "user")), "content": str(item.get("content", ""))}
            for item in history
            if isinstance(item, dict) and str(item.get("content", "")).strip()
        ]
        if self.history_messages <= 0:
            return []
        return cleaned[-self.history_messages :]

    async def _classify(self, ctx: QueryContext) -> None:
        with self._timed(ctx, "classify"):
            try:
                ctx.classification = await asyncio.wait_for(
                    self.classifier.classify(ctx.user_query), timeout=self.classify_timeout
                )
            except Exception as exc:
                self._fallback(ctx, "classification", exc)
                ctx.classification = Classification.unfiltered()
        ctx.advance(PipelineState.CLASSIFIED)

    async def _filter_and_embed(self, ctx: QueryContext) -> None:
        outcomes = await asyncio.gather(
            self._filter(ctx), self._embed(ctx), return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        ctx.advance(PipelineState.FILTERED)
        ctx.advance(PipelineState.EMBEDDED)

    async def _filter(self, ctx: QueryContext) -> None:
        metadata_filter = ctx.classification.metadata_filter
        with self._timed(ctx, "filter"):
            if metadata_filter.is_empty:
                ctx.candidate_ids = None
                return
            try:
                documents = await self.store.filter_documents(
                    metadata_filter.source_contains,
                    is_public=True,
                    limit=self.filter_limit,
                )
            except Exception as exc:
                self._fallback(ctx, "filter", exc)
                ctx.candidate_ids = None
                return
        if not documents:
            self._fallback(ctx, "filter_empty", None)
            ctx.candidate_ids = None
            return
        ctx.candidate_ids = [document.doc_id for document in documents]

    async def _embed(self, ctx: QueryContext) -> None:
        with self._timed(ctx, "embed"):
            key = cache_key(ctx.user_query)
            cached = self.cache.get(key)
            record_cache_lookup(cached is not None)
            if cached is not None:
                ctx.cache_hit = True
                ctx.query_embedding = cached
                logger.info("embedding_cache_hit", extra={"request_id": ctx.request_id})
                return
            try:
                vector = await asyncio.wait_for(
                    self.embedder.embed(ctx.user_query), timeout=self.embedding_timeout
                )
            except asyncio.TimeoutError as exc:
                raise EmbeddingError("Embedding provider timed out") from exc
            vector = validate_vector(vector, self.embedder.dimension)
            self.cache.set(key, vector)
            ctx.query_embedding = vector

    async def _search(self, ctx: QueryContext) -> None:
        if ctx.query_embedding is None:
            raise EmbeddingError("Query embedding missing after embedding stage")
        with self._timed(ctx, "search"):
            try:
                results = await self.store.search(
                    ctx.query_embedding,
                    candidate_ids=ctx.candidate_ids,
                    threshold=self.similarity_threshold,
                    limit=self.top_k,
                )
                if not results and self.keyword_fallback:
                    results = await self._keyword_search(ctx)
            except SearchError:
                raise
            except DocumentStoreError as exc:
                raise SearchError(str(exc)) from exc
        ctx.semantic_results = results
        ctx.advance(PipelineState.SEARCHED)

    async def _keyword_search(self, ctx: QueryContext) -> list[SearchResult]:
        results = await self.store.keyword_search(
            ctx.user_query, candidate_ids=ctx.candidate_ids, limit=self.top_k
        )
        results = [item for item in results if item.similarity >= self.similarity_threshold]
        if results:
            ctx.fallbacks.append("keyword")
            logger.info(
                "keyword_fallback_used",
                extra={"request_id": ctx.request_id, "results": len(results)},
            )
        return results

    async def _rerank(self, ctx: QueryContext) -> None:
        with self._timed(ctx, "rerank"):
            try:
                ctx.reranked_results = await asyncio.wait_for(
                    self.reranker.rerank(ctx.user_query, ctx.semantic_results),
                    timeout=self.rerank_timeout,
                )
            except Exception as exc:
                self._fallback(ctx, "rerank", exc)
                ctx.reranked_results = semantic_fallback(ctx.semantic_results)
        ctx.advance(PipelineState.RERANKED)

    async def _generate(self, ctx: QueryContext) -> GeneratedAnswer:
        with self._timed(ctx, "generate"):
            try:
                answer = await asyncio.wait_for(
                    self.generator.generate(ctx.user_query, ctx.reranked_results, ctx.history),
                    timeout=self.generation_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise GenerationError("Generation timed out") from exc
            except LLMError as exc:
                raise GenerationError(str(exc)) from exc
        if not answer.text.strip():
            raise GenerationError("Generator returned an empty answer")
        ctx.advance(PipelineState.GENERATED)
        return answer

    def _no_information(self, ctx: QueryContext, started: float, reason: str) -> PipelineResult:
        ctx.advance(PipelineState.DONE)
        result = PipelineResult(
            outcome=OUTCOME_NO_INFORMATION,
            response=NO_INFORMATION_MESSAGE,
            context=ctx,
            total_ms=_elapsed_ms(started),
        )
        logger.info(
            "pipeline_no_information",
            extra={"request_id": ctx.request_id, "reason": reason},
        )
        self._log_complete(result)
        return result

    def _errored(self, ctx: QueryContext, exc: Exception, started: float) -> PipelineResult:
        failed_in = ctx.state.value
        ctx.advance(PipelineState.ERRORED)
        logger.error(
            "pipeline_failed",
            extra={
                "request_id": ctx.request_id,
                "after_state": failed_in,
                "detail": type(exc).__name__,
            },
        )
        result = PipelineResult(
            outcome=OUTCOME_ERROR,
            response=SERVICE_ERROR_MESSAGE,
            context=ctx,
            total_ms=_elapsed_ms(started),
            error=type(exc).__name__,
        )
        record_outcome(result.outcome)
        return result

    def _fallback(self, ctx: QueryContext, stage: str, exc: Exception | None) -> None:
        ctx.fallbacks.append(stage)
        record_fallback(stage)
        logger.warning(
            f"{stage}_fallback",
            extra={
                "request_id": ctx.request_id,
                "detail": type(exc).__name__ if exc is not None else "empty",
            },
        )

    def _log_complete(self, result: PipelineResult) -> None:
        record_outcome(result.outcome)
        metadata = result.metadata()
        logger.info(
            "pipeline_complete",
            extra={
                "request_id": metadata["request_id"],
                "outcome": result.outcome,
                "total_ms": metadata["total_ms"],
                "documents_filtered": metadata["documents_filtered"],
                "documents_semantic": metadata["documents_semantic"],
                "documents_reranked": metadata["documents_reranked"],
                "cache_hit": metadata["cache_hit"],
            },
        )

    @contextmanager
    def _timed(self, ctx: QueryContext, stage: str) -> Iterator[None]:
        started_at = time.time() * 1000
        start = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start
            ctx.timings[stage] = StageTiming(
                started_at=round(started_at, 3), duration_ms=round(duration * 1000, 3)
            )
            observe_stage(stage, duration)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
