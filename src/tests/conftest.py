from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("RAG_ALLOW_ANONYMOUS", "true")
os.environ.pop("RAG_API_KEYS", None)
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("RAG_EMBEDDING_CACHE_DB_URI", None)
os.environ["RAG_DOCUMENT_STORE"] = "memory"
os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["EMBEDDING_DIMENSION"] = "768"
os.environ["RAG_CLASSIFIER"] = "rules"
os.environ["RAG_RERANKER"] = "none"
os.environ["RAG_ANSWERER"] = "extractive"
os.environ["RAG_SEED_KNOWLEDGE_BASE"] = "false"
os.environ.setdefault("RAG_RATE_LIMIT_REQUESTS", "50")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
