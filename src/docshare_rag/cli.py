"""Command line entry point for scanning and querying the document index."""

import argparse
import json
import sys
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel

from .config import Settings
from .logger import logger
from .rag import DocumentType, StoreError
from .service import DocumentIndexService

# Same code argparse uses for bad arguments
EXIT_USAGE = 2
EXIT_STORE_ERROR = 3


def _print(value) -> None:
    if isinstance(value, BaseModel):
        print(value.model_dump_json(indent=2))
    elif isinstance(value, list):
        print(json.dumps([v.model_dump(mode="json") for v in value], indent=2))
    else:
        print(json.dumps(value, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docshare-rag",
        description="Index office documents from a shared folder and search them",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Document folder to scan. Overrides DOCUMENT_ROOT env var.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", help="Create or update the database schema")
    sub.add_parser("scan", help="Ingest new and changed documents")
    sub.add_parser("status", help="Show index counts and last scan time")

    search = sub.add_parser("search", help="Rank chunks by similarity to a query")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)

    ask = sub.add_parser("ask", help="Answer a question from the indexed documents")
    ask.add_argument("question")
    ask.add_argument("--limit", type=int, default=None)

    list_cmd = sub.add_parser("list", help="List indexed documents, newest first")
    list_cmd.add_argument("--page", type=int, default=1)
    list_cmd.add_argument("--limit", type=int, default=10)
    list_cmd.add_argument("--type", choices=[t.value for t in DocumentType], default=None)

    show = sub.add_parser("show", help="Show one document")
    show.add_argument("document_id", type=UUID)
    show.add_argument("--chunks", action="store_true", help="Include the stored chunk texts")

    summarize = sub.add_parser("summarize", help="Summarize one document")
    summarize.add_argument("document_id", type=UUID)

    suggest = sub.add_parser("suggest", help="Suggest questions about one document")
    suggest.add_argument("document_id", type=UUID)

    delete = sub.add_parser("delete", help="Delete a document and its chunks")
    delete.add_argument("document_id", type=UUID)

    evict = sub.add_parser("evict", help="Delete old documents with no recent chunk activity")
    evict.add_argument("--max-age-days", type=int, default=None)
    evict.add_argument("--grace-days", type=int, default=None)

    return parser


def run(args: argparse.Namespace, service: DocumentIndexService) -> int:
    command = args.command

    if command == "migrate":
        service.db.run_migrations(service.settings.migrations_dir)
        _print({"migrated": True})
    elif command == "scan":
        _print(service.scan())
    elif command == "status":
        _print(service.status())
    elif command == "search":
        _print(service.search(args.query, args.limit))
    elif command == "ask":
        _print(service.answer(args.question, args.limit))
    elif command == "list":
        _print(service.list_documents(page=args.page, limit=args.limit, file_type=args.type))
    elif command in ("show", "summarize", "suggest"):
        document = service.get_document(args.document_id)
        if document is None:
            print(f"document {args.document_id} not found", file=sys.stderr)
            return 1
        if command == "summarize":
            _print({"document_id": document.id, "summary": service.summarize_document(document.id)})
        elif command == "suggest":
            _print({"document_id": document.id, "questions": service.suggest_questions(document.id)})
        elif args.chunks:
            chunks = service.get_document_chunks(document.id)
            _print(
                {
                    "document": document.model_dump(mode="json"),
                    "chunks": [c.model_dump(mode="json", exclude={"embedding"}) for c in chunks],
                }
            )
        else:
            _print(document)
    elif command == "delete":
        _print({"deleted": service.delete_document(args.document_id)})
    elif command == "evict":
        _print({"evicted": service.evict_stale(args.max_age_days, args.grace_days)})
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValueError as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE
    if args.root:
        settings = settings.model_copy(update={"document_root": Path(args.root)})
    logger.set_level(settings.log_level)

    service = DocumentIndexService.from_settings(settings)
    try:
        service.connect()
        return run(args, service)
    except StoreError as e:
        print(f"database error: {e}", file=sys.stderr)
        return EXIT_STORE_ERROR
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_USAGE
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
