from __future__ import annotations

import json

import pytest

from src.rag.reranker import (
    LLMReranker,
    PassthroughReranker,
    RerankError,
    select_rankings,
    semantic_fallback,
)
from src.rag.types import Document, SearchResult
from src.tests.fakes import ScriptedChatModel

pytestmark = pytest.mark.anyio


def candidates(count: int) -> list[SearchResult]:
    return [
        SearchResult(
            document=Document(doc_id=f"d{index}", content=f"contenido {index}", source="general"),
            similarity=round(0.9 - index * 0.05, 2),
        )
        for index in range(count)
    ]


def rankings(*entries: tuple[int, float]) -> str:
    return json.dumps(
        {
            "rankings": [
                {"document_index": index, "relevance_score": score, "reasoning": f"doc {index}"}
                for index, score in entries
            ]
        }
    )


async def test_output_is_sorted_subset_above_cutoff() -> None:
    pool = candidates(5)
    model = ScriptedChatModel(rankings((0, 0.4), (1, 0.95), (2, 0.5), (3, 0.7), (4, 0.6)))

    result = await LLMReranker(model=model).rerank("pregunta", pool)

    ids = [item.document.doc_id for item in result]
    assert ids == ["d1", "d3", "d4"]
    assert all(item.relevance_score > 0.5 for item in result)
    assert {item.document.doc_id for item in result} <= {item.document.doc_id for item in pool}
    assert result[0].reasoning == "doc 1"


async def test_only_input_limit_candidates_reach_model() -> None:
    pool = candidates(12)
    model = ScriptedChatModel(rankings((11, 0.9), (9, 0.8)))

    result = await LLMReranker(model=model, input_limit=10).rerank("pregunta", pool)

    assert [item.document.doc_id for item in result] == ["d9"]
    assert "Document [9]" in model.prompts[0]
    assert "Document [10]" not in model.prompts[0]


async def test_all_scores_below_cutoff_yield_empty_list() -> None:
    model = ScriptedChatModel(rankings((0, 0.1), (1, 0.5)))
    assert await LLMReranker(model=model).rerank("pregunta", candidates(2)) == []


async def test_empty_candidates_skip_model_call() -> None:
    model = ScriptedChatModel(rankings((0, 0.9)))
    assert await LLMReranker(model=model).rerank("pregunta", []) == []
    assert model.calls == 0


async def test_malformed_output_raises() -> None:
    with pytest.raises(RerankError):
        await LLMReranker(model=ScriptedChatModel("lo siento")).rerank("q", candidates(2))
    with pytest.raises(RerankError):
        await LLMReranker(model=ScriptedChatModel('{"rankings": []}')).rerank("q", candidates(2))


def test_duplicate_and_invalid_indices_are_ignored() -> None:
    pool = candidates(3)
    payload = {
        "rankings": [
            {"document_index": 1, "relevance_score": 0.8},
            {"document_index": 1, "relevance_score": 0.99},
            {"document_index": 7, "relevance_score": 0.9},
            {"document_index": True, "relevance_score": 0.9},
            {"document_index": "2", "relevance_score": "1.4"},
        ]
    }

    result = select_rankings(payload, pool, cutoff=0.5, top_n=3)

    assert [(item.document.doc_id, item.relevance_score) for item in result] == [
        ("d2", 1.0),
        ("d1", 0.8),
    ]


async def test_passthrough_keeps_semantic_order_and_caps() -> None:
    result = await PassthroughReranker(top_n=3).rerank("q", candidates(5))

    assert [item.document.doc_id for item in result] == ["d0", "d1", "d2"]
    assert result[0].relevance_score == pytest.approx(0.9)


def test_semantic_fallback_keeps_every_candidate() -> None:
    result = semantic_fallback(candidates(5))

    assert [item.document.doc_id for item in result] == ["d0", "d1", "d2", "d3", "d4"]
    assert all(item.reasoning == "semantic_fallback" for item in result)
