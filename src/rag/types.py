from __future__ import annotations

"""Core data types for documents, classification and pipeline state."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_SOURCE = "general"


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Document:
    """Knowledge-base entry with an optional precomputed embedding."""
    doc_id: str
    content: str
    source: str = DEFAULT_SOURCE
    metadata: dict[str, Any] = field(default_factory=dict)
    is_public: bool = True
    embedding: list[float] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def source_labels(self) -> list[str]:
        """Return the individual labels of a comma-separated source."""
        return [label.strip() for label in self.source.split(",") if label.strip()]


@dataclass(frozen=True)
class MetadataFilter:
    """Filter applied to the document store before vector search."""
    source_contains: str | None = None
    is_public: bool = True

    @property
    def is_empty(self) -> bool:
        return not self.source_contains


@dataclass(frozen=True)
class Classification:
    """Intent, topic tags and metadata filter for a query."""
    intent: str = "general_query"
    tags: tuple[str, ...] = ()
    metadata_filter: MetadataFilter = field(default_factory=MetadataFilter)
    confidence: float = 0.0

    @classmethod
    def unfiltered(cls) -> "Classification":
        """Fallback classification that searches the whole public population."""
        return cls()


@dataclass(frozen=True)
class SearchResult:
    """Document paired with its cosine similarity to the query."""
    document: Document
    similarity: float


@dataclass(frozen=True)
class RerankedDocument:
    """Document with a relevance score from the reranking pass."""
    document: Document
    relevance_score: float
    reasoning: str = ""


@dataclass(frozen=True)
class StageTiming:
    started_at: float
    duration_ms: float


class PipelineState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    FILTERED = "filtered"
    EMBEDDED = "embedded"
    SEARCHED = "searched"
    RERANKED = "reranked"
    GENERATED = "generated"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class QueryContext:
    """Per-request working state of the pipeline."""
    user_query: str
    history: list[dict[str, str]] = field(default_factory=list)
    request_id: str | None = None
    state: PipelineState = PipelineState.RECEIVED
    classification: Classification = field(default_factory=Classification.unfiltered)
    candidate_ids: list[str] | None = None
    query_embedding: list[float] | None = None
    cache_hit: bool = False
    semantic_results: list[SearchResult] = field(default_factory=list)
    reranked_results: list[RerankedDocument] = field(default_factory=list)
    timings: dict[str, StageTiming] = field(default_factory=dict)
    fallbacks: list[str] = field(default_factory=list)

    def advance(self, state: PipelineState) -> None:
        self.state = state
