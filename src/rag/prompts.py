from __future__ import annotations

"""Versioned instruction templates and the builders that fill them."""

from src.rag.types import Document, RerankedDocument

PROMPT_VERSION = "v1"

INTENTS = (
    "pricing_query",
    "hours_query",
    "location_query",
    "product_query",
    "general_query",
)
TAG_VOCABULARY = (
    "copas",
    "bebidas",
    "comida",
    "precios",
    "horarios",
    "ubicacion",
    "menu",
    "promociones",
)
SOURCE_HINTS = ("qribar", "nfc", "automation", "company", "contact")

CLASSIFY_INSTRUCTIONS = (
    "Analyze the user query and extract retrieval metadata. Return ONLY valid JSON.\n"
    f"Allowed intents: {', '.join(INTENTS)}\n"
    f"Allowed tags: {', '.join(TAG_VOCABULARY)}\n"
    f"Known sources: {', '.join(SOURCE_HINTS)}. Set metadata_filters.source only when the "
    "query clearly names one of them; otherwise use null.\n"
    "JSON structure:\n"
    '{"intent": "<intent>", "tags": ["<tag>"], '
    '"metadata_filters": {"source": "<source or null>", "is_public": true}, '
    '"confidence": 0.0}'
)

RERANK_INSTRUCTIONS = (
    "You are a document relevance scorer. Score how well each document answers the "
    "user's question with a relevance_score between 0.0 and 1.0 and a brief reasoning. "
    "Score every document exactly once and refer to it by its index.\n"
    "Return ONLY valid JSON:\n"
    '{"rankings": [{"document_index": 0, "relevance_score": 0.0, "reasoning": "..."}]}'
)

GENERATION_SYSTEM = (
    "Eres el asistente virtual de SmartConnect AI. "
    "Responde SOLO con la información del contexto proporcionado. "
    "Si la respuesta no está en el contexto, dilo explícitamente: "
    "\"No tengo información sobre eso en mi base de conocimiento\". "
    "No inventes precios, plazos ni datos de contacto. "
    "Cita la fuente entre corchetes cuando uses información de un documento, "
    "por ejemplo [qribar_product]. "
    "Responde en el idioma del usuario, de forma breve y cordial."
)


def build_classification_prompt(query: str) -> str:
    """Fill the classification template with the user query."""
    return f"{CLASSIFY_INSTRUCTIONS}\n\nQuery: {query.strip()}"


def build_rerank_prompt(query: str, documents: list[Document], max_chars: int = 1500) -> str:
    """Number the candidate documents from zero and ask for per-document scores."""
    blocks = []
    for idx, document in enumerate(documents):
        content = document.content.strip()
        if len(content) > max_chars:
            content = content[:max_chars].rsplit(" ", 1)[0] + "..."
        blocks.append(f"Document [{idx}] (source={document.source}):\n{content}")
    joined = "\n\n---\n\n".join(blocks)
    return (
        f"{RERANK_INSTRUCTIONS}\n\n"
        f"Question: {query.strip()}\n\n"
        f"Documents:\n{joined}"
    )


def build_generation_prompt(
    query: str,
    documents: list[RerankedDocument],
    history: list[dict[str, str]] | None = None,
    max_context_chars: int = 12000,
) -> str:
    """Combine context blocks, recent history and the question into one prompt."""
    return (
        f"{format_history(history)}"
        f"Contexto:\n{build_context_block(documents, max_context_chars)}\n\n"
        f"Pregunta: {query.strip()}\n\n"
        "Responde usando solo el contexto anterior."
    )


def build_context_block(documents: list[RerankedDocument], max_chars: int) -> str:
    """Build a context block with each document tagged by its source."""
    chunks: list[str] = []
    total = 0
    for idx, item in enumerate(documents, start=1):
        header = f"[{idx}] Fuente: {item.document.source}\n"
        content = item.document.content.strip()
        snippet = header + content
        if total + len(snippet) > max_chars:
            remaining = max_chars - total
            if remaining <= len(header):
                break
            snippet = header + content[: remaining - len(header)]
        chunks.append(snippet)
        total += len(snippet)
        if total >= max_chars:
            break
    return "\n\n".join(chunks)


def format_history(history: list[dict[str, str]] | None) -> str:
    """Format chat history for inclusion in prompts."""
    if not history:
        return ""
    lines: list[str] = []
    for item in history:
        role = str(item.get("role", "user")).strip().lower()
        content = str(item.get("content", "")).strip()
        if not content:
            continue
        label = "Asistente" if role == "assistant" else "Usuario"
        lines.append(f"{label}: {content}")
    if not lines:
        return ""
    return "Conversación previa:\n" + "\n".join(lines) + "\n\n"
