from __future__ import annotations

"""Starter knowledge base describing the agency's products and services."""

from typing import Any

SEED_DOCUMENTS: list[dict[str, Any]] = [
    {
        "content": (
            "QRiBar es el producto estrella de SmartConnect AI: una carta digital para "
            "restaurantes. Los clientes escanean el código QR de la mesa, ven el menú, "
            "piden desde el móvil sin instalar ninguna app y pagan online. El restaurante "
            "ahorra en cartas impresas, sirve más rápido, actualiza precios y platos en "
            "tiempo real y consulta qué platos se miran más.\n"
            "Precio: desde 29€/mes con setup incluido."
        ),
        "source": "qribar_product",
        "metadata": {"category": "product", "price_eur": 29, "billing": "monthly"},
    },
    {
        "content": (
            "Las tarjetas NFC de reseñas de SmartConnect AI capturan reseñas de Google "
            "con un simple tap del móvil y también pueden redirigir a Instagram. Llevan "
            "diseño personalizado con el logo del negocio, un QR de respaldo para móviles "
            "sin NFC y analítica de conversión. Son ideales para restaurantes, tiendas "
            "físicas y negocios locales que quieren mejorar su reputación online.\n"
            "Precio: 45€ por tarjeta con configuración inicial gratuita."
        ),
        "source": "nfc_reviews_product",
        "metadata": {"category": "product", "price_eur": 45, "billing": "per_card"},
    },
    {
        "content": (
            "SmartConnect AI ofrece automatizaciones de marketing con n8n en servidor "
            "propio: captación de leads desde landing pages, análisis de la temperatura "
            "del lead con IA, avisos por Telegram al equipo comercial, CRM en Google "
            "Sheets, seguimientos automáticos y email marketing según el comportamiento "
            "del cliente.\n"
            "Precio: desde 99€/mes según la complejidad de los flujos."
        ),
        "source": "automation_product",
        "metadata": {"category": "service", "price_eur": 99, "billing": "monthly"},
    },
    {
        "content": (
            "SmartConnect AI funciona como agencia-escuela: construye productos reales "
            "para negocios locales y aplica IA, automatización y cloud con foco en "
            "resultados medibles. Stack: Next.js y Flutter Web en frontend, Supabase y "
            "n8n en backend, Gemini con arquitectura RAG para la IA."
        ),
        "source": "company_philosophy",
        "metadata": {"category": "company"},
    },
    {
        "content": (
            "Contacto de SmartConnect AI: hola@smartconnect.example. Trabajamos en "
            "remoto para toda España, de lunes a viernes de 9:00 a 18:00 (CET), y "
            "respondemos en menos de 24 horas. El proceso empieza con una consulta "
            "inicial gratuita de 30 minutos, sigue con una propuesta personalizada y un "
            "setup técnico de una a dos semanas, e incluye formación y un mes de soporte."
        ),
        "source": "contact_info",
        "metadata": {"category": "contact"},
    },
]


def seed_documents() -> list[dict[str, Any]]:
    """Return copies of the starter records, ready for ``DocumentIngestor.ingest_many``."""
    return [dict(record, metadata=dict(record["metadata"])) for record in SEED_DOCUMENTS]
