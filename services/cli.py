"""Command line entry point for autogather.

A thin adapter: parses arguments into request structs, calls ``AutoGather``
and prints JSON to stdout. Logs go to stderr.
"""

import sys
import json
import argparse
import logging
from typing import Any, List, Optional

from config.settings import AutoGatherConfig
from indexer.source_schema import SourceFilters
from observability.logging import setup_logging
from .gather import AutoGather
from .shared.errors import AutoGatherError
from .shared.requests import AddSourceRequest, SearchRequest, UpdateSourceRequest

logger = logging.getLogger(__name__)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _filters(args: argparse.Namespace) -> Optional[SourceFilters]:
    if not any([args.include, args.exclude, args.max_depth, args.max_size]):
        return None
    return SourceFilters(
        include=args.include or [],
        exclude=args.exclude or [],
        max_depth=args.max_depth,
        max_size=args.max_size,
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--include", action="append", help="Glob to include (repeatable)")
    parser.add_argument("--exclude", action="append", help="Glob to exclude (repeatable)")
    parser.add_argument("--max-depth", type=int, help="Directory depth limit")
    parser.add_argument("--max-size", type=int, help="Maximum file size in bytes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Gather, index and search documentation")
    parser.add_argument("--db", help="SQLite database path (overrides AUTOGATHER_DB_PATH)")
    parser.add_argument("--log-level", help="Log level (overrides AUTOGATHER_LOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-source", help="Register a source")
    add.add_argument("name")
    add.add_argument("url", help="file:// root for local sources")
    add.add_argument("--type", default="local", choices=["local", "git", "web", "api"])
    add.add_argument("--disabled", action="store_true", help="Register the source disabled")
    _add_filter_arguments(add)

    sources = sub.add_parser("list-sources", help="List sources with their status")
    sources.add_argument("--enabled-only", action="store_true")

    show = sub.add_parser("get-source", help="Show a source, its status and recent documents")
    show.add_argument("source_id")

    update = sub.add_parser("update-source", help="Update a source")
    update.add_argument("source_id")
    update.add_argument("--name")
    update.add_argument("--enable", dest="enabled", action="store_true", default=None)
    update.add_argument("--disable", dest="enabled", action="store_false")
    _add_filter_arguments(update)

    delete = sub.add_parser("delete-source", help="Delete a source and its documents")
    delete.add_argument("source_id")

    crawl = sub.add_parser("crawl", help="Crawl one source, or all enabled sources")
    crawl.add_argument("source_id", nargs="?")

    sync = sub.add_parser("sync-sources", help="Load YAML source definitions into the store")
    sync.add_argument("directory", nargs="?")

    search = sub.add_parser("search", help="Fuzzy search documents")
    search.add_argument("query")
    search.add_argument("--limit", type=int)
    search.add_argument("--threshold", type=float)
    search.add_argument("--source", dest="source_ids", action="append")
    search.add_argument("--type", dest="types", action="append")
    search.add_argument("--tag", dest="tags", action="append")

    doc = sub.add_parser("get-document", help="Print a document")
    doc.add_argument("document_id")

    recent = sub.add_parser("recent", help="Most recently updated documents")
    recent.add_argument("--limit", type=int, default=20)

    similar = sub.add_parser("similar", help="Documents similar to a document")
    similar.add_argument("document_id")
    similar.add_argument("--limit", type=int, default=10)

    sub.add_parser("stats", help="Store and index statistics")
    return parser


def run_command(gather: AutoGather, args: argparse.Namespace) -> Any:
    command = args.command

    if command == "add-source":
        source = gather.add_source(AddSourceRequest(
            name=args.name,
            type=args.type,
            url=args.url,
            enabled=not args.disabled,
            filters=_filters(args),
        ))
        return source.to_dict()
    if command == "list-sources":
        return gather.list_sources_with_status(enabled_only=args.enabled_only)
    if command == "get-source":
        return gather.describe_source(args.source_id)
    if command == "update-source":
        source = gather.update_source(UpdateSourceRequest(
            source_id=args.source_id,
            name=args.name,
            enabled=args.enabled,
            filters=_filters(args),
        ))
        return source.to_dict()
    if command == "delete-source":
        return {'deleted': gather.delete_source(args.source_id)}
    if command == "crawl":
        if args.source_id:
            return gather.crawl_source(args.source_id).to_dict()
        return gather.summarize_runs(gather.crawl_all_enabled())
    if command == "sync-sources":
        return [s.to_dict() for s in gather.sync_sources_from_dir(args.directory)]
    if command == "search":
        results = gather.search(SearchRequest(
            query=args.query,
            limit=args.limit,
            threshold=args.threshold,
            source_ids=args.source_ids or [],
            types=args.types or [],
            tags=args.tags or [],
        ))
        return [r.to_dict() for r in results]
    if command == "get-document":
        return gather.get_document(args.document_id).to_dict()
    if command == "recent":
        return [d.to_dict(include_content=False) for d in gather.recent_documents(args.limit)]
    if command == "similar":
        return [r.to_dict() for r in gather.similar_documents(args.document_id, args.limit)]
    if command == "stats":
        return gather.stats()

    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    config = AutoGatherConfig.from_env()
    if args.db:
        config.store.path = args.db
    if args.log_level:
        config.log_level = args.log_level
    if args.json_logs:
        config.log_json = True

    setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        use_json=config.log_json,
        use_colors=sys.stderr.isatty(),
    )

    with AutoGather(config) as gather:
        try:
            _print(run_command(gather, args))
        except AutoGatherError as e:
            logger.error(str(e))
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
