from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    metrics_enabled: bool = _env_bool("RAG_METRICS_ENABLED", "true")
    api_keys_raw: str = os.getenv("RAG_API_KEYS", "")
    allow_anonymous_raw: str = os.getenv("RAG_ALLOW_ANONYMOUS", "false")
    document_store: str = os.getenv("RAG_DOCUMENT_STORE", "memory")
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_key: str | None = os.getenv("SUPABASE_KEY")
    supabase_timeout: float = float(os.getenv("SUPABASE_TIMEOUT", "10"))
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "768"))
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_embedding_model: str = os.getenv("GEMINI_EMBEDDING_MODEL", "models/text-embedding-004")
    gemini_chat_model: str = os.getenv("GEMINI_CHAT_MODEL", "gemini-1.5-flash")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    llm_provider: str = os.getenv("RAG_LLM_PROVIDER", "gemini")
    classifier_mode: str = os.getenv("RAG_CLASSIFIER", "rules")
    reranker_mode: str = os.getenv("RAG_RERANKER", "none")
    answerer_mode: str = os.getenv("RAG_ANSWERER", "extractive")
    llm_context_max_chars: int = int(os.getenv("RAG_LLM_CONTEXT_MAX_CHARS", "12000"))
    similarity_threshold: float = float(os.getenv("RAG_SIMILARITY_THRESHOLD", "0.3"))
    search_top_k: int = int(os.getenv("RAG_SEARCH_TOP_K", "5"))
    filter_pool_limit: int = int(os.getenv("RAG_FILTER_POOL_LIMIT", "20"))
    rerank_input_limit: int = int(os.getenv("RAG_RERANK_INPUT_LIMIT", "10"))
    rerank_cutoff: float = float(os.getenv("RAG_RERANK_CUTOFF", "0.5"))
    rerank_top_n: int = int(os.getenv("RAG_RERANK_TOP_N", "3"))
    history_messages: int = int(os.getenv("RAG_HISTORY_MESSAGES", "5"))
    classify_timeout: float = float(os.getenv("RAG_CLASSIFY_TIMEOUT", "8"))
    rerank_timeout: float = float(os.getenv("RAG_RERANK_TIMEOUT", "10"))
    embedding_timeout: float = float(os.getenv("RAG_EMBEDDING_TIMEOUT", "10"))
    generation_timeout: float = float(os.getenv("RAG_GENERATION_TIMEOUT", "20"))
    cache_ttl_seconds: float = float(os.getenv("RAG_CACHE_TTL_SECONDS", "3600"))
    cache_max_entries: int = int(os.getenv("RAG_CACHE_MAX_ENTRIES", "1000"))
    ingestion_cache_ttl_seconds: float = float(
        os.getenv("RAG_INGESTION_CACHE_TTL_SECONDS", "604800")
    )
    embedding_cache_db_uri: str | None = os.getenv("RAG_EMBEDDING_CACHE_DB_URI")
    keyword_fallback: bool = _env_bool("RAG_KEYWORD_FALLBACK", "false")
    rate_limit_requests: int = int(os.getenv("RAG_RATE_LIMIT_REQUESTS", "10"))
    rate_limit_window_seconds: float = float(os.getenv("RAG_RATE_LIMIT_WINDOW_SECONDS", "60"))
    seed_knowledge_base: bool = _env_bool("RAG_SEED_KNOWLEDGE_BASE", "false")

    @property
    def api_keys(self) -> set[str]:
        raw = os.getenv("RAG_API_KEYS", self.api_keys_raw)
        return {value.strip() for value in raw.split(",") if value.strip()}

    @property
    def allow_anonymous(self) -> bool:
        raw = os.getenv("RAG_ALLOW_ANONYMOUS", self.allow_anonymous_raw)
        return raw.strip().lower() in {"1", "true", "yes"}


settings = Settings()
