from __future__ import annotations

"""Second-pass relevance scoring of semantic search candidates."""

from dataclasses import dataclass
import math
from typing import Protocol

from src.rag.llm import ChatModel, LLMError, parse_json_object
from src.rag.prompts import build_rerank_prompt
from src.rag.types import RerankedDocument, SearchResult


class RerankError(RuntimeError):
    """Raised when the reranking call fails or its output is unusable."""
    pass


class Reranker(Protocol):
    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[RerankedDocument]:
        """Return a scored subset of the candidates, best first."""
        raise NotImplementedError


@dataclass(frozen=True)
class LLMReranker:
    """Score candidates in one language-model call and keep the best few.

    Only the first ``input_limit`` candidates are sent to the model. Scores at
    or below ``cutoff`` are dropped and at most ``top_n`` survivors are returned.
    """
    model: ChatModel
    input_limit: int = 10
    cutoff: float = 0.5
    top_n: int = 3
    temperature: float = 0.2
    max_tokens: int = 500

    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[RerankedDocument]:
        if not candidates:
            return []
        pool = candidates[: self.input_limit]
        prompt = build_rerank_prompt(query, [item.document for item in pool])
        try:
            content = await self.model.complete(
                prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )
            payload = parse_json_object(content)
        except LLMError as exc:
            raise RerankError(str(exc)) from exc
        return select_rankings(payload, pool, cutoff=self.cutoff, top_n=self.top_n)


@dataclass(frozen=True)
class PassthroughReranker:
    """Keep semantic order and use similarity as the relevance score."""
    top_n: int = 3

    async def rerank(self, query: str, candidates: list[SearchResult]) -> list[RerankedDocument]:
        return [
            RerankedDocument(
                document=item.document,
                relevance_score=item.similarity,
                reasoning="semantic_order",
            )
            for item in candidates[: self.top_n]
        ]


def semantic_fallback(candidates: list[SearchResult]) -> list[RerankedDocument]:
    """Context set used when reranking fails: every semantic result, in order."""
    return [
        RerankedDocument(
            document=item.document,
            relevance_score=item.similarity,
            reasoning="semantic_fallback",
        )
        for item in candidates
    ]


def select_rankings(
    payload: dict[str, object],
    pool: list[SearchResult],
    cutoff: float,
    top_n: int,
) -> list[RerankedDocument]:
    """Turn a ``rankings`` payload into validated, filtered, sorted results."""
    rankings = payload.get("rankings")
    if not isinstance(rankings, list) or not rankings:
        raise RerankError("Rerank payload has no rankings")
    seen: set[int] = set()
    scored: list[RerankedDocument] = []
    valid = 0
    for item in rankings:
        if not isinstance(item, dict):
            continue
        index = _as_index(item.get("document_index"))
        score = _as_score(item.get("relevance_score"))
        if index is None or score is None or index >= len(pool) or index in seen:
            continue
        seen.add(index)
        valid += 1
        if score <= cutoff:
            continue
        reasoning = item.get("reasoning")
        scored.append(
            RerankedDocument(
                document=pool[index].document,
                relevance_score=score,
                reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
            )
        )
    if not valid:
        raise RerankError("Rerank payload has no usable rankings")
    scored.sort(key=lambda entry: entry.relevance_score, reverse=True)
    return scored[:top_n]


def _as_index(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_score(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    return min(max(score, 0.0), 1.0)
