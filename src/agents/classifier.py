from __future__ import annotations

"""Query classification into intent, topic tags and a metadata filter."""

from dataclasses import dataclass
import math
import re
import unicodedata
from typing import Protocol

from src.rag.llm import ChatModel, LLMError, parse_json_object
from src.rag.prompts import INTENTS, TAG_VOCABULARY, build_classification_prompt
from src.rag.types import Classification, MetadataFilter

_WORD_RE = re.compile(r"\w+", flags=re.UNICODE)
_NULLISH = {"", "null", "none", "general", "all", "*"}

_INTENT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("pricing_query", ("precio", "cuesta", "cuanto", "coste", "costo", "tarifa", "pric", "cost")),
    ("hours_query", ("horario", "hora", "abier", "abren", "cierra", "hours", "open")),
    ("location_query", ("donde", "ubicacion", "ubicad", "direccion", "where", "location", "address")),
)
_TAG_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("precios", ("precio", "cuesta", "cuanto", "coste", "costo", "tarifa", "pric", "cost")),
    ("horarios", ("horario", "hora", "abier", "abren", "cierra", "hours")),
    ("ubicacion", ("donde", "ubicacion", "ubicad", "direccion", "location", "address")),
    ("menu", ("menu", "carta")),
    ("copas", ("copa", "coctel", "cocktail")),
    ("bebidas", ("bebida", "drink")),
    ("comida", ("comida", "plato", "food")),
    ("promociones", ("promo", "oferta", "descuento", "discount")),
)
_SOURCE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("qribar", ("qribar", "qr")),
    ("nfc", ("nfc", "tarjeta", "resena", "review")),
    ("automation", ("automatiz", "automation", "n8n", "lead")),
    ("contact", ("contacto", "email", "correo", "contact")),
)


class ClassificationError(RuntimeError):
    """Raised when a query cannot be classified."""
    pass


class QueryClassifier(Protocol):
    async def classify(self, query: str) -> Classification:
        """Return intent, tags and metadata filter for the query."""
        raise NotImplementedError


def normalize_text(text: str) -> str:
    """Lowercase and strip accents so keyword rules match Spanish spellings."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def _matches(tokens: list[str], stems: tuple[str, ...]) -> bool:
    return any(token.startswith(stem) for token in tokens for stem in stems)


class KeywordClassifier:
    """Rule-based classifier used offline and in tests."""
    async def classify(self, query: str) -> Classification:
        return self.classify_sync(query)

    def classify_sync(self, query: str) -> Classification:
        tokens = _WORD_RE.findall(normalize_text(query))
        if not tokens:
            return Classification.unfiltered()
        intent = next(
            (name for name, stems in _INTENT_RULES if _matches(tokens, stems)),
            None,
        )
        tags = tuple(tag for tag, stems in _TAG_RULES if _matches(tokens, stems))
        source = next(
            (name for name, stems in _SOURCE_RULES if _matches(tokens, stems)),
            None,
        )
        if intent is None:
            intent = "product_query" if source else "general_query"
        confidence = 0.9 if source else 0.6 if intent != "general_query" else 0.3
        return Classification(
            intent=intent,
            tags=tags,
            metadata_filter=MetadataFilter(source_contains=source),
            confidence=confidence,
        )


@dataclass(frozen=True)
class LLMClassifier:
    """Classifier asking a language model for structured metadata."""
    model: ChatModel
    temperature: float = 0.1
    max_tokens: int = 250

    async def classify(self, query: str) -> Classification:
        try:
            content = await self.model.complete(
                build_classification_prompt(query),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )
            payload = parse_json_object(content)
        except LLMError as exc:
            raise ClassificationError(str(exc)) from exc
        return classification_from_payload(payload)


def classification_from_payload(payload: dict[str, object]) -> Classification:
    """Validate untyped model output into a Classification with safe defaults."""
    if not any(key in payload for key in ("intent", "tags", "metadata_filters", "metadata_filter")):
        raise ClassificationError("Classification payload has no recognised keys")
    intent = str(payload.get("intent") or "").strip().lower()
    if intent not in INTENTS:
        intent = "general_query"

    raw_tags = payload.get("tags")
    tags: list[str] = []
    if isinstance(raw_tags, list):
        for item in raw_tags:
            tag = normalize_text(str(item)).strip()
            if tag in TAG_VOCABULARY and tag not in tags:
                tags.append(tag)

    raw_filter = payload.get("metadata_filters", payload.get("metadata_filter"))
    source_contains = None
    if isinstance(raw_filter, dict):
        source = raw_filter.get("source")
        if isinstance(source, str) and source.strip().lower() not in _NULLISH:
            source_contains = source.strip().lower()

    try:
        confidence = float(payload.get("confidence", 0.0))
    except (TypeError, ValueError):
        confidence = 0.0
    if not math.isfinite(confidence):
        confidence = 0.0
    confidence = min(max(confidence, 0.0), 1.0)

    return Classification(
        intent=intent,
        tags=tuple(tags),
        metadata_filter=MetadataFilter(source_contains=source_contains, is_public=True),
        confidence=confidence,
    )
