"""Command-line interface for Knowledge-RAG."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional

from knowledge_rag.config import get_settings
from knowledge_rag.ingestion.client import IngestionClient
from knowledge_rag.ingestion.loaders import (
    DEFAULT_DOCUMENTS,
    SourceDocument,
    load_qa_items,
    select_documents,
)
from knowledge_rag.ingestion.pipeline import QA_SOURCE, KnowledgeIngestor
from knowledge_rag.logging_config import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Knowledge-RAG CLI")
    parser.add_argument("--api-url", default=None, help="Knowledge API base URL")
    parser.add_argument("--log-level", default=None, help="Log level override")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the knowledge API")
    serve.add_argument("--host", default=None, help="Bind host")
    serve.add_argument("--port", type=int, default=None, help="Bind port")

    docs = subparsers.add_parser("ingest-docs", help="Ingest PDF/TXT/MD documents")
    docs.add_argument(
        "files",
        nargs="*",
        help="Files to ingest (default: the registered documents in --docs-dir)",
    )
    docs.add_argument("--docs-dir", default="docs", help="Directory of registered documents")
    docs.add_argument("--source", default=None, help="Source tag (default: file stem)")
    docs.add_argument(
        "--priority",
        choices=["alta", "media", "baja"],
        default="media",
        help="Priority stored in chunk metadata",
    )
    docs.add_argument("--description", default="", help="Human-readable description")

    qa = subparsers.add_parser("ingest-qa", help="Ingest Q&A pairs from a JSON file")
    qa.add_argument("file", type=str, help="JSON array of {question, answer, category}")
    qa.add_argument("--source", default=QA_SOURCE, help="Source tag")

    search = subparsers.add_parser("search", help="Run a retrieval query")
    search.add_argument("query", type=str, help="User question")
    search.add_argument("--limit", type=int, default=5, help="Number of results")

    clear = subparsers.add_parser("clear", help="Delete every chunk of a source")
    clear.add_argument("source", type=str, help="Source tag")

    return parser


def _documents_from_args(args: argparse.Namespace) -> List[SourceDocument]:
    if not args.files:
        return [
            SourceDocument(
                name=str(Path(args.docs_dir) / doc.name),
                source=doc.source,
                priority=doc.priority,
                description=doc.description,
            )
            for doc in DEFAULT_DOCUMENTS
        ]
    return [
        SourceDocument(
            name=f,
            source=args.source or Path(f).stem,
            priority=args.priority,
            description=args.description,
        )
        for f in args.files
    ]


def _client(args: argparse.Namespace) -> IngestionClient:
    settings = get_settings()
    return IngestionClient.from_config(settings, base_url=args.api_url or settings.ingest_api_url)


async def _run_ingest_docs(args: argparse.Namespace) -> None:
    settings = get_settings()
    documents = _documents_from_args(args)
    # File filters match on the bare file name
    documents = [
        doc
        for doc in select_documents(documents, sources=settings.ingest_sources_list)
        if not settings.ingest_files_list or Path(doc.name).name in settings.ingest_files_list
    ]

    async with _client(args) as client:
        ingestor = KnowledgeIngestor(client, settings)
        for doc in documents:
            path = Path(doc.name)
            if not path.exists():
                print(json.dumps({"file": path.name, "error": "not found"}))
                continue
            stats = await ingestor.ingest_document(
                SourceDocument(
                    name=path.name,
                    source=doc.source,
                    priority=doc.priority,
                    description=doc.description,
                ),
                docs_dir=path.parent,
            )
            print(json.dumps({"file": path.name, "source": doc.source, **stats.to_dict()}))


async def _run_ingest_qa(args: argparse.Namespace) -> None:
    items = load_qa_items(args.file)
    async with _client(args) as client:
        ingestor = KnowledgeIngestor(client, get_settings())
        stats = await ingestor.ingest_qa(items, source=args.source)
    print(json.dumps({"file": Path(args.file).name, "source": args.source, **stats.to_dict()}))


async def _run_search(args: argparse.Namespace) -> None:
    async with _client(args) as client:
        results = await client.search(args.query, limit=args.limit)
    print(json.dumps(results, ensure_ascii=False, indent=2))


async def _run_clear(args: argparse.Namespace) -> None:
    async with _client(args) as client:
        deleted = await client.clear_source(args.source)
    print(json.dumps({"source": args.source, "deleted": deleted}))


def _run_serve(args: argparse.Namespace) -> None:
    import uvicorn

    from knowledge_rag.api import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        log_config=None,
    )


def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "ingest-docs":
        asyncio.run(_run_ingest_docs(args))
    elif args.command == "ingest-qa":
        asyncio.run(_run_ingest_qa(args))
    elif args.command == "search":
        asyncio.run(_run_search(args))
    elif args.command == "clear":
        asyncio.run(_run_clear(args))


if __name__ == "__main__":
    main()
