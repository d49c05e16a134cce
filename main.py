"""
Drive Knowledge Base RAG - Entry Point

Commands:
    uv run main.py sync                  # Sync Drive documents into the knowledge base
    uv run main.py api                   # Start the RAG API server
    uv run main.py query "question"      # Ask a question from the command line
    uv run main.py stats                 # Show knowledge base statistics
    uv run main.py delete FILE_NAME      # Remove one document from the knowledge base
"""

import argparse
import json
import sys

from drive_rag.config import validate_config
from drive_rag.errors import AppError, ConfigurationError
from drive_rag.logging_config import logger


def run_sync_command(args):
    """Run one incremental sync."""
    from drive_rag.container import build_services

    validate_config()
    services = build_services()
    summary = services.sync_engine.run()
    print(json.dumps(summary, indent=2))


def run_api_command(args):
    """Start the RAG API server."""
    from drive_rag.api import start_server

    start_server(port=args.port)


def run_query_command(args):
    """Answer a question and print the JSON result."""
    from drive_rag.container import build_services

    validate_config(require_drive=False)
    services = build_services(with_sync=False)
    result = services.query_engine.query(
        args.text,
        {
            "maxResults": args.max_results,
            "similarityThreshold": args.threshold,
            "language": args.lang,
            "excludeEmbeddings": True,
        },
    )
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


def run_stats_command(args):
    from drive_rag.container import build_services

    validate_config(require_drive=False)
    services = build_services(with_sync=False)
    print(json.dumps(services.query_engine.get_statistics(), indent=2))


def run_delete_command(args):
    from drive_rag.container import build_services

    validate_config(require_drive=False)
    services = build_services(with_sync=False)
    services.store.delete(args.file_name)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Drive Knowledge Base Sync & RAG API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.required = True

    sync_parser = subparsers.add_parser("sync", help="Sync Drive documents")
    sync_parser.set_defaults(func=run_sync_command)

    api_parser = subparsers.add_parser("api", help="Start the RAG API server")
    api_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to run the API server on (default: 3000)",
    )
    api_parser.set_defaults(func=run_api_command)

    query_parser = subparsers.add_parser("query", help="Ask a question")
    query_parser.add_argument("text", help="The question")
    query_parser.add_argument("--lang", choices=["vi", "en"], default="vi")
    query_parser.add_argument("--max-results", type=int, default=5)
    query_parser.add_argument("--threshold", type=float, default=0.5)
    query_parser.set_defaults(func=run_query_command)

    stats_parser = subparsers.add_parser("stats", help="Show knowledge base statistics")
    stats_parser.set_defaults(func=run_stats_command)

    delete_parser = subparsers.add_parser("delete", help="Delete a document by file name")
    delete_parser.add_argument("file_name")
    delete_parser.set_defaults(func=run_delete_command)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        args.func(args)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration Error: {e.message}")
        sys.exit(2)
    except AppError as e:
        logger.error(f"❌ {type(e).__name__}: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
