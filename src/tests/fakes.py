from __future__ import annotations

"""Scripted stand-ins for language models, embedders and clocks used in tests."""

import asyncio

from src.rag.answerer import ExtractiveResponseGenerator, GeneratedAnswer
from src.rag.embeddings import HashEmbedder
from src.rag.llm import LLMError
from src.rag.types import Document, RerankedDocument
from src.vectorstore.inmemory import InMemoryDocumentStore

DIMENSION = 768


class ScriptedChatModel:
    """Return queued responses in order; the last one repeats once the queue runs dry."""

    model = "scripted"

    def __init__(self, *responses: str | Exception, delay: float = 0.0) -> None:
        self.responses = list(responses)
        self.delay = delay
        self.prompts: list[str] = []
        self.systems: list[str | None] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        self.prompts.append(prompt)
        self.systems.append(system)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise LLMError("No scripted response left")
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class CountingEmbedder:
    """Hash embedder that counts provider calls and can be told to fail."""

    def __init__(self, dimension: int = DIMENSION, error: Exception | None = None) -> None:
        self.dimension = dimension
        self.error = error
        self.calls = 0
        self._inner = HashEmbedder(dimension=dimension)

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return await self._inner.embed(text)


class CountingGenerator:
    """Extractive generator that records every context set it receives."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[list[RerankedDocument]] = []
        self._inner = ExtractiveResponseGenerator()

    async def generate(
        self,
        query: str,
        documents: list[RerankedDocument],
        history: list[dict[str, str]] | None = None,
    ) -> GeneratedAnswer:
        self.calls.append(list(documents))
        if self.error is not None:
            raise self.error
        return await self._inner.generate(query, documents, history)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def build_store(*documents: tuple[str, str, str]) -> InMemoryDocumentStore:
    """Create a store holding ``(doc_id, source, content)`` documents embedded with hashing."""
    embedder = HashEmbedder(dimension=DIMENSION)
    store = InMemoryDocumentStore(dimension=DIMENSION)
    for doc_id, source, content in documents:
        await store.add(
            Document(
                doc_id=doc_id,
                content=content,
                source=source,
                embedding=await embedder.embed(content),
            )
        )
    return store
