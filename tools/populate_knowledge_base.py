from __future__ import annotations

"""CLI utility to load the starter product catalogue into the document store."""

import argparse
import asyncio

from src.app.settings import settings


async def _populate(force: bool, dry_run: bool) -> None:
    from src.app.dependencies import get_document_store, get_ingestor, reset_pipeline_cache
    from src.rag.catalog import seed_documents

    reset_pipeline_cache()
    records = seed_documents()
    if dry_run:
        for record in records:
            print(f"Would insert: {record['source']} ({len(record['content'])} chars)")
        return

    store = get_document_store()
    existing = await store.stats()
    if existing["document_count"] and not force:
        print(
            f"Store already holds {existing['document_count']} documents; "
            "use --force to insert the catalogue anyway."
        )
        return

    stored = await get_ingestor().ingest_many(records)
    for document in stored:
        print(f"Inserted {document.source}: {document.doc_id}")
    final = await store.stats()
    print(f"Total documents in store: {final['document_count']}")


def main() -> None:
    """Embed and insert the built-in catalogue using app settings."""
    parser = argparse.ArgumentParser(description="Populate the knowledge base.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Insert even when the store already has documents.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the documents without embedding or inserting them.",
    )
    args = parser.parse_args()

    if settings.document_store.lower().strip() == "memory" and not args.dry_run:
        print("Warning: RAG_DOCUMENT_STORE=memory, documents will not outlive this process.")
    asyncio.run(_populate(force=args.force, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
