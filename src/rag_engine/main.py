"""rag-engine entry point - indexing, search and document sync CLI."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from rag_engine.logging_config import configure_logging

load_dotenv(os.getenv("ENV_FILE", ".env"))

logger = logging.getLogger(__name__)


def _sync_api(s):
    """DocumentSyncAPI over the workspace registry and the configured store/provider."""
    from rag_engine.config import workspace_root
    from rag_engine.indexing import create_components
    from rag_engine.runtime import create_runtime
    from rag_engine.sync import DocumentSyncAPI, SyncConfig, create_registry

    root = workspace_root(s)
    root.mkdir(parents=True, exist_ok=True)
    runtime = create_runtime(root)
    components = create_components(s, runtime)
    registry = create_registry("filesystem", fs=runtime.fs, backup_retention=s.rag_registry_backup_retention)
    config = SyncConfig.model_validate({"soft_delete": {"ttl_days": s.rag_sync_ttl_days}})
    return DocumentSyncAPI(registry, components.store, components.provider, runtime=runtime, config=config)


def run_index(args, s) -> int:
    """Index the sources listed in a YAML file into a scope."""
    from rag_engine.cancellation import CancellationToken
    from rag_engine.indexing import index_workspace

    token = CancellationToken(timeout=args.timeout) if args.timeout else None
    result = index_workspace(args.sources, args.scope, s, token=token, resume=args.resume)
    stats = result.stats
    print(
        f"success={result.success} discovered={stats.files_discovered} processed={stats.files_processed} "
        f"skipped={stats.files_skipped} chunks={stats.total_chunks} errors={len(result.errors)} "
        f"({result.duration:.1f}s)"
    )
    for err in result.errors[:20]:
        print(f"  {err.file}: {err.error}")
    return 0 if result.success else 1


def run_search(args, s) -> int:
    from rag_engine.config import workspace_root
    from rag_engine.indexing import create_components
    from rag_engine.retrieval import SemanticDeduplicator, create_reranker, search, snippet
    from rag_engine.runtime import create_runtime

    runtime = create_runtime(workspace_root(s))
    components = create_components(s, runtime)
    reranker = create_reranker(args.reranker or s.rag_reranker)
    deduplicator = None if args.no_dedup else SemanticDeduplicator()
    matches = search(
        components.store,
        components.provider,
        args.scope,
        args.query,
        limit=args.limit,
        reranker=reranker,
        deduplicator=deduplicator,
        hybrid=args.hybrid,
    )
    if not matches:
        print("No results.")
        return 0
    for m in matches:
        print(f"{m.chunk.path}:{m.chunk.span.start_line}-{m.chunk.span.end_line}  score={m.score:.3f}")
        print(snippet(m.chunk.text))
        print()
    return 0


def _read_content(args) -> str:
    if args.file:
        return Path(args.file).read_text(encoding="utf-8")
    if args.content is not None:
        return args.content
    return sys.stdin.read()


def run_sync(args, s) -> int:
    """Apply one document sync operation and print the SyncResult as JSON."""
    api = _sync_api(s)
    if args.action == "batch":
        from rag_engine.sync import batch_sync

        operations = json.loads(Path(args.file).read_text(encoding="utf-8"))
        batch = batch_sync(api, operations)
        print(batch.model_dump_json(indent=2))
        return 0 if batch.failed == 0 else 1

    if args.action in ("add", "update"):
        metadata = json.loads(args.metadata) if args.metadata else None
        method = api.add_document if args.action == "add" else api.update_document
        result = method(args.source, args.id, args.scope, _read_content(args), metadata)
    elif args.action == "delete":
        result = api.delete_document(args.source, args.id, args.scope, soft=not args.hard)
    else:
        result = api.restore_document(args.source, args.id, args.scope)
    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


def run_cleanup(args, s) -> int:
    removed = _sync_api(s).cleanup_expired()
    print(f"Removed {removed} expired documents")
    return 0


def run_stats(args, s) -> int:
    from rag_engine.sync import calculate_metrics

    metrics = calculate_metrics(_sync_api(s).registry)
    print(metrics.model_dump_json(indent=2))
    return 0


def _doc_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--source", required=True, help="Source system (e.g. confluence, notion)")
    p.add_argument("--id", required=True, help="Document id within the source")
    p.add_argument("--scope", required=True, help="Scope id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="rag-engine: code and document indexing with semantic search")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # index - run the five-stage pipeline
    index_parser = subparsers.add_parser("index", help="Index sources from a YAML file into a scope")
    index_parser.add_argument("--sources", required=True, help="YAML file with root and sources list")
    index_parser.add_argument("--scope", required=True, help="Scope id")
    index_parser.add_argument("--resume", action="store_true", help="Resume from the last checkpoint")
    index_parser.add_argument("--timeout", type=float, default=None, help="Deadline in seconds")

    # search - query a scope
    search_parser = subparsers.add_parser("search", help="Semantic search in a scope")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--scope", required=True, help="Scope id")
    search_parser.add_argument("--limit", type=int, default=8, help="Maximum results")
    search_parser.add_argument(
        "--reranker",
        choices=["none", "heuristic", "smart-heuristic", "cross-encoder"],
        default=None,
        help="Reranker (default: RAG_RERANKER)",
    )
    search_parser.add_argument("--no-dedup", action="store_true", help="Skip semantic deduplication")
    search_parser.add_argument(
        "--hybrid", action="store_true", help="Fuse keyword (BM25) matches with the vector results"
    )

    # sync - external documents
    sync_parser = subparsers.add_parser("sync", help="Sync externally sourced documents")
    sync_sub = sync_parser.add_subparsers(dest="action", required=True)
    for action in ("add", "update"):
        p = sync_sub.add_parser(action, help=f"{action.capitalize()} a document")
        _doc_args(p)
        p.add_argument("--file", help="Read content from file (default: stdin)")
        p.add_argument("--content", help="Inline content")
        p.add_argument("--metadata", help="JSON object merged into document metadata")
    delete_parser = sync_sub.add_parser("delete", help="Soft-delete a document")
    _doc_args(delete_parser)
    delete_parser.add_argument("--hard", action="store_true", help="Remove the registry record too")
    _doc_args(sync_sub.add_parser("restore", help="Restore a soft-deleted document"))
    batch_parser = sync_sub.add_parser("batch", help="Run a JSON list of sync operations")
    batch_parser.add_argument("file", help="JSON file with [{operation, source, id, scope_id, content?}]")

    subparsers.add_parser("cleanup", help="Hard-delete soft-deleted documents past their TTL")
    subparsers.add_parser("stats", help="Print document sync metrics")
    return parser


COMMANDS = {
    "index": run_index,
    "search": run_search,
    "sync": run_sync,
    "cleanup": run_cleanup,
    "stats": run_stats,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    from rag_engine.config import get_settings
    from rag_engine.errors import RagEngineError

    s = get_settings()
    configure_logging(s.log_level)

    handler = COMMANDS.get(args.command)
    if handler is None:
        logger.debug("No command specified, showing help")
        parser.print_help()
        return 1
    try:
        return handler(args, s)
    except RagEngineError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
