from __future__ import annotations

from dataclasses import dataclass

from src.rag.types import RerankedDocument


NO_INFORMATION_MESSAGE = (
    "No encontré información relevante en mi base de conocimiento para responder a tu "
    "pregunta. Por favor, reformula tu pregunta o pregunta sobre otro tema."
)
SERVICE_ERROR_MESSAGE = (
    "Lo siento, he tenido un problema técnico al procesar tu pregunta. "
    "Por favor, inténtalo de nuevo en unos momentos."
)


@dataclass(frozen=True)
class GuardrailResult:
    allowed: bool
    reason: str


def require_context(documents: list[RerankedDocument]) -> GuardrailResult:
    if not documents:
        return GuardrailResult(allowed=False, reason="no_context")
    if all(not item.document.content.strip() for item in documents):
        return GuardrailResult(allowed=False, reason="empty_context")
    return GuardrailResult(allowed=True, reason="ok")
