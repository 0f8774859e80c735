from __future__ import annotations

"""Grounded answer generation from reranked context."""

from dataclasses import dataclass
from typing import Protocol

from src.rag.llm import ChatModel, LLMError
from src.rag.prompts import GENERATION_SYSTEM, build_generation_prompt
from src.rag.types import RerankedDocument


class GenerationError(RuntimeError):
    """Raised when the final answer cannot be produced."""
    pass


@dataclass(frozen=True)
class GeneratedAnswer:
    """Answer text plus the sources it was grounded on."""
    text: str
    sources: list[str]
    documents_used: int


class ResponseGenerator(Protocol):
    async def generate(
        self,
        query: str,
        documents: list[RerankedDocument],
        history: list[dict[str, str]] | None = None,
    ) -> GeneratedAnswer:
        """Answer the query using only the given documents."""
        raise NotImplementedError


def unique_sources(documents: list[RerankedDocument]) -> list[str]:
    sources: list[str] = []
    for item in documents:
        if item.document.source not in sources:
            sources.append(item.document.source)
    return sources


@dataclass(frozen=True)
class LLMResponseGenerator:
    """Generator that prompts a language model with context and history."""
    model: ChatModel
    temperature: float = 0.3
    max_tokens: int = 1024
    context_max_chars: int = 12000

    async def generate(
        self,
        query: str,
        documents: list[RerankedDocument],
        history: list[dict[str, str]] | None = None,
    ) -> GeneratedAnswer:
        if not documents:
            raise GenerationError("Generation requires at least one context document")
        prompt = build_generation_prompt(
            query, documents, history, max_context_chars=self.context_max_chars
        )
        try:
            content = await self.model.complete(
                prompt,
                system=GENERATION_SYSTEM,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except LLMError as exc:
            raise GenerationError(str(exc)) from exc
        text = content.strip()
        if not text:
            raise GenerationError("LLM returned an empty answer")
        return GeneratedAnswer(
            text=text,
            sources=unique_sources(documents),
            documents_used=len(documents),
        )


@dataclass(frozen=True)
class ExtractiveResponseGenerator:
    """Return a short extract from the most relevant document."""
    max_chars: int = 480

    async def generate(
        self,
        query: str,
        documents: list[RerankedDocument],
        history: list[dict[str, str]] | None = None,
    ) -> GeneratedAnswer:
        if not documents:
            raise GenerationError("Generation requires at least one context document")
        best = max(documents, key=lambda item: item.relevance_score)
        snippet = self._truncate(best.document.content.strip())
        return GeneratedAnswer(
            text=f"Según nuestra base de conocimiento [{best.document.source}]: {snippet}",
            sources=[best.document.source],
            documents_used=1,
        )

    def _truncate(self, text: str) -> str:
        """Trim text to the max character budget without cutting words."""
        if len(text) <= self.max_chars:
            return text
        return text[: self.max_chars].rsplit(" ", 1)[0] + "..."
