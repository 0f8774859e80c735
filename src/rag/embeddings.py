from __future__ import annotations

"""Embedding provider adapters with a fixed output dimensionality."""

import asyncio
import hashlib
import math
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

DEFAULT_DIMENSION = 768

_TOKEN_RE = re.compile(r"\w+", flags=re.UNICODE)


class EmbeddingError(RuntimeError):
    """Raised when a provider fails or returns an unusable vector."""
    pass


class EmbeddingConfigError(RuntimeError):
    """Raised when embedding configuration is invalid."""
    pass


class EmbeddingProvider(Protocol):
    """Protocol for embedding providers."""
    dimension: int

    async def embed(self, text: str) -> list[float]:
        """Return a vector of exactly ``dimension`` floats for the text."""
        raise NotImplementedError


def validate_vector(vector: list[float], dimension: int) -> list[float]:
    """Check length and numeric content of a vector."""
    if len(vector) != dimension:
        raise EmbeddingError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )
    cleaned: list[float] = []
    for value in vector:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingError("Embedding contains a non-numeric value")
        if not math.isfinite(value):
            raise EmbeddingError("Embedding contains a non-finite value")
        cleaned.append(float(value))
    return cleaned


def fit_dimension(vector: list[float], dimension: int) -> list[float]:
    """Truncate provider output to ``dimension`` components.

    Truncation keeps the leading components and does not re-normalize. A
    vector shorter than ``dimension`` cannot be repaired and is rejected.
    """
    if len(vector) < dimension:
        raise EmbeddingError(
            f"Provider returned {len(vector)} dimensions, expected at least {dimension}"
        )
    return validate_vector(list(vector[:dimension]), dimension)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Compute cosine similarity between two vectors."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def _require_text(text: str) -> str:
    cleaned = text.strip()
    if not cleaned:
        raise ValueError("Cannot embed empty text")
    return cleaned


@dataclass
class HashEmbedder:
    """Deterministic hash-based embedder for testing or offline use."""
    dimension: int = DEFAULT_DIMENSION

    async def embed(self, text: str) -> list[float]:
        """Embed text using token hashing and L2 normalization."""
        return self.embed_sync(_require_text(text))

    def embed_sync(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(text.lower())
        vector = [0.0] * self.dimension
        for token in tokens:
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dimension
            vector[idx] += 1.0
        return validate_vector(self._l2_normalize(vector), self.dimension)

    def _l2_normalize(self, vector: list[float]) -> list[float]:
        """Normalize vector magnitude to 1.0."""
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0.0:
            return vector
        return [value / norm for value in vector]


@dataclass
class GeminiEmbedder:
    """Embedding provider using the Gemini embeddings API."""
    api_key: str
    model: str
    dimension: int = DEFAULT_DIMENSION
    timeout: float = 10.0
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate Gemini configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("GEMINI_API_KEY is required for GeminiEmbedder")
        if not self.model:
            raise EmbeddingConfigError("GEMINI_EMBEDDING_MODEL is required for GeminiEmbedder")
        if self.dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be greater than zero")
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise EmbeddingConfigError(
                "google-generativeai package is required for GeminiEmbedder"
            ) from exc
        genai.configure(api_key=self.api_key)
        self.client = genai

    async def embed(self, text: str) -> list[float]:
        """Embed text using the Gemini embeddings API."""
        content = _require_text(text)

        def _run() -> Any:
            return self.client.embed_content(
                model=self.model,
                content=content,
                output_dimensionality=self.dimension,
            )

        try:
            result = await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
        except Exception as exc:
            raise EmbeddingError(f"Gemini embedding failed: {type(exc).__name__}") from exc
        embedding = None
        if isinstance(result, dict):
            embedding = result.get("embedding")
        if embedding is None:
            embedding = getattr(result, "embedding", None)
        if isinstance(embedding, dict):
            embedding = embedding.get("values")
        if not isinstance(embedding, (list, tuple)):
            raise EmbeddingError("Gemini embedding response missing embedding vector")
        return fit_dimension(list(embedding), self.dimension)


@dataclass
class OpenAIEmbedder:
    """Embedding provider using the OpenAI embeddings API."""
    api_key: str
    model: str
    dimension: int = DEFAULT_DIMENSION
    timeout: float = 10.0
    base_url: str | None = None
    client: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate OpenAI configuration and create a client."""
        if not self.api_key:
            raise EmbeddingConfigError("OPENAI_API_KEY is required for OpenAIEmbedder")
        if not self.model:
            raise EmbeddingConfigError("OPENAI_EMBEDDING_MODEL is required for OpenAIEmbedder")
        if self.dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be greater than zero")
        try:
            from openai import OpenAI
        except ImportError as exc:
            raise EmbeddingConfigError("openai package is required for OpenAIEmbedder") from exc
        self.client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)

    async def embed(self, text: str) -> list[float]:
        """Embed text using the OpenAI embeddings API."""
        content = _require_text(text)

        def _run() -> Any:
            kwargs: dict[str, Any] = {"model": self.model, "input": content}
            if self.model.startswith("text-embedding-3"):
                kwargs["dimensions"] = self.dimension
            return self.client.embeddings.create(**kwargs)

        try:
            response = await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
            vector = list(response.data[0].embedding)
        except Exception as exc:
            raise EmbeddingError(f"OpenAI embedding failed: {type(exc).__name__}") from exc
        return fit_dimension(vector, self.dimension)


def build_embedder(
    provider: str,
    *,
    dimension: int,
    timeout: float,
    gemini_api_key: str | None = None,
    gemini_model: str | None = None,
    openai_api_key: str | None = None,
    openai_model: str | None = None,
    openai_base_url: str | None = None,
) -> EmbeddingProvider:
    """Factory for embedding providers based on provider name."""
    normalized = provider.lower().strip()
    if normalized in {"", "hash"}:
        if dimension <= 0:
            raise EmbeddingConfigError("EMBEDDING_DIMENSION must be greater than zero")
        return HashEmbedder(dimension=dimension)
    if normalized in {"gemini", "google"}:
        return GeminiEmbedder(
            api_key=gemini_api_key or "",
            model=gemini_model or "",
            dimension=dimension,
            timeout=timeout,
        )
    if normalized == "openai":
        return OpenAIEmbedder(
            api_key=openai_api_key or "",
            model=openai_model or "",
            dimension=dimension,
            timeout=timeout,
            base_url=openai_base_url,
        )
    raise EmbeddingConfigError(f"Unsupported embedding provider: {provider}")
