from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class ChatRequest(BaseModel):
    userQuery: str | None = None
    conversationHistory: list[ChatMessage] = Field(default_factory=list)


class DocumentOut(BaseModel):
    source: str
    content: str
    relevance_score: float


class ChatResponse(BaseModel):
    response: str
    documents: list[DocumentOut]
    metadata: dict[str, Any]


class ErrorResponse(BaseModel):
    error: str


class DocumentCreate(BaseModel):
    id: str | None = None
    content: str = Field(min_length=1, max_length=10_000)
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_public: bool = True
    embedding: list[float] | None = None


class DocumentUpdate(BaseModel):
    content: str | None = Field(default=None, min_length=1, max_length=10_000)
    source: str | None = None
    metadata: dict[str, Any] | None = None
    is_public: bool | None = None
    embedding: list[float] | None = None


class DocumentRecord(BaseModel):
    id: str
    content: str
    source: str
    metadata: dict[str, Any]
    is_public: bool
    has_embedding: bool
    created_at: datetime
    updated_at: datetime


class DocumentListResponse(BaseModel):
    documents: list[DocumentRecord]
    limit: int
    offset: int


class StoreStatsResponse(BaseModel):
    backend: str
    document_count: int
    public_count: int | None = None
    embedded_count: int | None = None
    embedding_dimension: int
    by_source: dict[str, int] = Field(default_factory=dict)


class StoreHealthResponse(BaseModel):
    backend: str
    ok: bool
    detail: str | None = None


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    hit_rate: float
    entries: int
    oldest_entry: float | None = None
    newest_entry: float | None = None


class CacheInvalidateResponse(BaseModel):
    removed: int
    cleared: bool = False
