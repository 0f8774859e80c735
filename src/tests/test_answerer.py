from __future__ import annotations

import pytest

from src.rag.answerer import (
    ExtractiveResponseGenerator,
    GenerationError,
    LLMResponseGenerator,
    unique_sources,
)
from src.rag.guardrails import require_context
from src.rag.llm import LLMError
from src.rag.prompts import GENERATION_SYSTEM, build_context_block, build_generation_prompt
from src.rag.types import Document, RerankedDocument
from src.tests.fakes import ScriptedChatModel

pytestmark = pytest.mark.anyio


def ranked(doc_id: str, source: str, content: str, score: float) -> RerankedDocument:
    return RerankedDocument(
        document=Document(doc_id=doc_id, content=content, source=source),
        relevance_score=score,
    )


CONTEXT = [
    ranked("a", "qribar_product", "QRiBar cuesta desde 29€/mes.", 0.9),
    ranked("b", "contact_info", "Atendemos de lunes a viernes.", 0.6),
    ranked("c", "qribar_product", "QRiBar incluye analítica.", 0.55),
]


async def test_llm_generator_prompts_with_context_history_and_system() -> None:
    model = ScriptedChatModel("QRiBar cuesta 29€/mes [qribar_product].")
    generator = LLMResponseGenerator(model=model)

    answer = await generator.generate(
        "¿Cuánto cuesta QRiBar?",
        CONTEXT,
        history=[{"role": "user", "content": "Hola"}, {"role": "assistant", "content": "¡Hola!"}],
    )

    assert answer.text.startswith("QRiBar cuesta 29€")
    assert answer.sources == ["qribar_product", "contact_info"]
    assert answer.documents_used == 3
    assert model.systems[0] == GENERATION_SYSTEM
    assert "Usuario: Hola" in model.prompts[0]
    assert "Asistente: ¡Hola!" in model.prompts[0]
    assert "[1] Fuente: qribar_product" in model.prompts[0]


async def test_llm_generator_wraps_failures() -> None:
    with pytest.raises(GenerationError):
        await LLMResponseGenerator(model=ScriptedChatModel(LLMError("timeout"))).generate("q", CONTEXT)
    with pytest.raises(GenerationError):
        await LLMResponseGenerator(model=ScriptedChatModel("respuesta")).generate("q", [])


async def test_extractive_generator_cites_best_document() -> None:
    answer = await ExtractiveResponseGenerator().generate("¿Cuánto cuesta QRiBar?", CONTEXT)

    assert "29€/mes" in answer.text
    assert "[qribar_product]" in answer.text
    assert answer.sources == ["qribar_product"]


async def test_extractive_generator_truncates_on_word_boundary() -> None:
    long_doc = [ranked("a", "general", "palabra " * 200, 0.9)]
    answer = await ExtractiveResponseGenerator(max_chars=50).generate("q", long_doc)

    assert answer.text.endswith("...")
    assert "palabr..." not in answer.text


def test_context_block_truncates_at_char_limit() -> None:
    block = build_context_block(CONTEXT, max_chars=60)

    assert len(block) <= 60 + 2
    assert block.startswith("[1] Fuente: qribar_product")
    assert "contact_info" not in block


def test_generation_prompt_without_history() -> None:
    prompt = build_generation_prompt("¿Precio?", CONTEXT[:1])

    assert "Conversación previa" not in prompt
    assert prompt.rstrip().endswith("Responde usando solo el contexto anterior.")


def test_require_context_and_unique_sources() -> None:
    assert require_context([]).reason == "no_context"
    assert require_context([ranked("x", "general", "   ", 0.9)]).reason == "empty_context"
    assert require_context(CONTEXT).allowed
    assert unique_sources(CONTEXT) == ["qribar_product", "contact_info"]
